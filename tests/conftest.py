# ABOUTME: Shared pytest fixtures for Librarium tests.
# ABOUTME: Builds sample ebooks, comics, PDFs, MOBI files, and covers in memory, plus temporary libraries for CLI runs.

import io
import sqlite3
import zipfile
from collections.abc import Callable, Iterator
from pathlib import Path

import fitz
import mobi
import pytest
from click.testing import CliRunner
from ebooklib import epub

from librarium.cli import cli
from librarium.config import PipelineSettings
from librarium.core.ingest import IngestionPipeline
from librarium.core.storage import LocalStorage
from librarium.db.catalog import LibraryCatalog
from librarium.db.connection import open_library
from librarium.db.mapping import BookRecord
from tests.fixtures.images import make_image
from tests.fixtures.kindleunpack import (
    TreeWriter,
    fake_extract,
    kf8_epub,
    mobi7_book_html,
    mobi7_opf,
    write_mobi7_tree,
    write_mobi8_tree,
)
from tests.fixtures.mobi_builder import SAMPLE_CHAPTERS, build_mobi, kf8_html, mobi6_html


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to the test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def cover_jpeg() -> bytes:
    """A portrait cover large enough to be accepted and downsized."""
    return make_image(800, 1200)


@pytest.fixture
def tiny_png() -> bytes:
    """An image too small to be a cover."""
    return make_image(40, 40, fmt="PNG")


@pytest.fixture
def epub_bytes(tmp_path: Path, cover_jpeg: bytes) -> bytes:
    """A valid EPUB with known metadata, two chapters, and a cover."""
    book = epub.EpubBook()

    book.set_identifier("isbn:9780151446476")
    book.set_title("The Name of the Rose")
    book.set_language("en")
    book.add_author("Umberto Eco")
    book.add_metadata("DC", "publisher", "Harcourt")
    book.add_metadata("DC", "description", "A mystery set in a medieval monastery.")
    book.set_cover("cover.jpg", cover_jpeg)

    first = epub.EpubHtml(title="Prologue", file_name="chap01.xhtml", lang="en")
    first.content = "<html><body><h1>Prologue</h1><p>In the beginning was the Word.</p></body></html>"
    second = epub.EpubHtml(title="First Day", file_name="chap02.xhtml", lang="en")
    second.content = "<html><body><h1>First Day</h1><p>Brother William of Baskerville arrives.</p></body></html>"
    book.add_item(first)
    book.add_item(second)

    book.toc = [
        epub.Link("chap01.xhtml", "Prologue", "prologue"),
        epub.Link("chap02.xhtml", "First Day", "first-day"),
    ]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = ["nav", first, second]

    filepath = tmp_path / "name_of_the_rose.epub"
    epub.write_epub(str(filepath), book)
    return filepath.read_bytes()


@pytest.fixture
def sample_epub(tmp_path: Path, epub_bytes: bytes) -> Path:
    """The sample EPUB written to disk under its original name."""
    filepath = tmp_path / "books" / "name_of_the_rose.epub"
    filepath.parent.mkdir(parents=True, exist_ok=True)
    filepath.write_bytes(epub_bytes)
    return filepath


def _pdf(pages: list[list[tuple[str, float]]], *, toc: list[list] | None = None, title: str = "") -> bytes:
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page()
        y = 72.0
        for text, size in lines:
            page.insert_text((72, y), text, fontsize=size)
            y += size * 1.8
    if toc:
        doc.set_toc(toc)
    doc.set_metadata({"title": title, "author": "Paula Writer"})
    data = doc.tobytes()
    doc.close()
    return data


_BODY = [(f"Body line {i} of ordinary paragraph text.", 11) for i in range(6)]


@pytest.fixture
def pdf_bytes() -> bytes:
    """Three pages with large headings on pages one and three and no outline."""
    return _pdf(
        [
            [("Chapter One", 24), *_BODY],
            list(_BODY),
            [("Chapter Two", 24), *_BODY],
        ],
        title="Heading Study",
    )


@pytest.fixture
def outlined_pdf_bytes() -> bytes:
    """Four pages with a two-entry outline starting on page two."""
    return _pdf(
        [list(_BODY), list(_BODY), list(_BODY), list(_BODY)],
        toc=[[1, "Part One", 2], [1, "Part Two", 4]],
        title="Outlined Study",
    )


@pytest.fixture
def blank_pdf_bytes() -> bytes:
    """Two pages with neither text nor images."""
    return _pdf([[], []])


@pytest.fixture
def cbz_bytes() -> bytes:
    """A comic archive whose page names only sort correctly in natural order."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("page10.png", make_image(300, 450, (0, 0, 255), fmt="PNG"))
        archive.writestr("page2.png", make_image(300, 450, (0, 255, 0), fmt="PNG"))
        archive.writestr("page1.png", make_image(300, 450, (255, 0, 0), fmt="PNG"))
        archive.writestr("ComicInfo.xml", "<ComicInfo/>")
    return buffer.getvalue()


@pytest.fixture
def kindle_unpack(monkeypatch: pytest.MonkeyPatch) -> dict[bytes, TreeWriter]:
    """Route mobi.extract through KindleUnpack-shaped trees registered by file bytes."""
    trees: dict[bytes, TreeWriter] = {}
    monkeypatch.setattr(mobi, "extract", fake_extract(trees))
    return trees


HARBOR_CHAPTERS = [
    ("The Arrival", "<p>The ship docked at dawn &amp; nobody noticed.</p>"),
    ("The Harbor", "<p>Gulls circled the harbor.<br />Night fell.</p>"),
    ("The Departure", '<p>They left at noon.</p><p><img src="Images/image00001.jpeg" /></p>'),
]


@pytest.fixture
def mobi_bytes(cover_jpeg: bytes, kindle_unpack: dict[bytes, TreeWriter]) -> bytes:
    """A MOBI 6 file with a guide TOC, three chapters, and a cover image."""
    data = build_mobi(
        mobi6_html(SAMPLE_CHAPTERS),
        title="Harbor Tales",
        authors=["Ada Writer"],
        images=[cover_jpeg],
        cover_index=0,
    )
    kindle_unpack[data] = lambda root: write_mobi7_tree(
        root,
        html=mobi7_book_html(HARBOR_CHAPTERS),
        opf=mobi7_opf(
            title="Harbor Tales",
            authors=["Ada Writer"],
            images=("image00001.jpeg",),
            cover="image00001.jpeg",
            isbn="9780306406157",
            publisher="Tide Press",
        ),
        images={"image00001.jpeg": cover_jpeg},
    )
    return data


@pytest.fixture
def kf8_bytes(cover_jpeg: bytes, kindle_unpack: dict[bytes, TreeWriter]) -> bytes:
    """A KF8-only file with two chapter documents and an embedded image."""
    chapters = [
        ("Opening", "<p>First flow text.</p>"),
        ("Closing", '<p>Second flow text.</p><img src="kindle:embed:0001?mime=image/jpeg"/>'),
    ]
    data = build_mobi(
        kf8_html(chapters),
        title="Flow Book",
        authors=["Kay Eight"],
        images=[cover_jpeg],
        cover_index=0,
        version=8,
    )
    package = kf8_epub(
        [
            ("Opening", "<p>First flow text.</p>"),
            ("Closing", '<p>Second flow text.</p><img src="../Images/image00001.jpeg"/>'),
        ],
        title="Flow Book",
        authors=["Kay Eight"],
        images={"image00001.jpeg": cover_jpeg},
        cover="image00001.jpeg",
    )
    kindle_unpack[data] = lambda root: write_mobi8_tree(root, package)
    return data


@pytest.fixture
def joint_mobi_bytes(cover_jpeg: bytes, kindle_unpack: dict[bytes, TreeWriter]) -> bytes:
    """A joint MOBI 6 + KF8 file whose KF8 section splits into more chapters."""
    data = build_mobi(mobi6_html(SAMPLE_CHAPTERS[:2]), title="Twin Book", authors=["Jo Int"], images=[cover_jpeg])
    legacy = [("Part One", "<p>Old text one.</p>"), ("Part Two", "<p>Old text two.</p>")]
    modern = [*legacy, ("Part Three", "<p>New text three.</p>")]

    def write(root: Path) -> None:
        write_mobi7_tree(
            root,
            html=mobi7_book_html(legacy),
            opf=mobi7_opf(title="Twin Book", authors=["Jo Int"]),
        )
        write_mobi8_tree(root, kf8_epub(modern, title="Twin Book", authors=["Jo Int"]))

    kindle_unpack[data] = write
    return data


@pytest.fixture
def db_conn(tmp_path: Path) -> Iterator[sqlite3.Connection]:
    """An initialized library database in a temporary directory."""
    conn = open_library(tmp_path / "library.db")
    yield conn
    conn.close()


@pytest.fixture
def catalog(db_conn: sqlite3.Connection) -> LibraryCatalog:
    return LibraryCatalog(db_conn)


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "files")


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings()


@pytest.fixture
def pipeline(catalog: LibraryCatalog, storage: LocalStorage, settings: PipelineSettings) -> IngestionPipeline:
    """An ingestion pipeline over the temporary library with default thresholds."""
    return IngestionPipeline(catalog, storage, settings=settings)


@pytest.fixture
def library_args(tmp_path: Path) -> list[str]:
    """--db and --data-dir flags pointing at a fresh library under tmp_path."""
    return ["--db", str(tmp_path / "library.db"), "--data-dir", str(tmp_path / "data")]


@pytest.fixture
def imported(library_args: list[str], tmp_path: Path) -> Callable[..., list[BookRecord]]:
    """Import paths through the CLI and return the resulting catalog records."""

    def run(*paths: Path, extra: tuple[str, ...] = ()) -> list[BookRecord]:
        result = CliRunner().invoke(cli, ["import", *map(str, paths), *library_args, *extra])
        assert result.exit_code == 0, result.output
        conn = open_library(tmp_path / "library.db")
        try:
            return LibraryCatalog(conn).list_all()
        finally:
            conn.close()

    return run
