# ABOUTME: Unit tests for EPUB 3 package assembly.
# ABOUTME: Checks container layout, the stored mimetype entry, manifest contents, and navigation.

import io
import zipfile
from datetime import datetime, timezone

import pytest
from ebooklib import epub

from librarium.convert.package import (
    ConversionError,
    EpubPackage,
    PackageChapter,
    PackageImage,
    PackageTocEntry,
    build_epub,
    media_type_for,
)


@pytest.fixture()
def package() -> EpubPackage:
    return EpubPackage(
        title="Tides & Currents",
        authors=["Ada Writer", "Bo Editor"],
        language="en",
        chapters=[
            PackageChapter(title="One", html="    <p>First.</p>"),
            PackageChapter(title="Two", html="    <p>Second.</p>"),
        ],
        images=[
            PackageImage(name="cover.jpg", media_type="image/jpeg", data=b"\xff\xd8\xff"),
            PackageImage(name="map.png", media_type="image/png", data=b"\x89PNG\r\n\x1a\n"),
        ],
        toc=[PackageTocEntry(title="Second Part", chapter_index=1)],
        cover_image="cover.jpg",
        identifier="urn:uuid:1234",
        modified=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def _open(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


def _read(data: bytes, suffix: str) -> str:
    """Text of the single archive entry whose name ends with ``suffix``."""
    with _open(data) as zf:
        (name,) = [n for n in zf.namelist() if n.endswith(suffix)]
        return zf.read(name).decode()


class TestBuildEpub:
    """Tests for build_epub."""

    def test_mimetype_is_first_and_stored(self, package: EpubPackage) -> None:
        with _open(build_epub(package)) as zf:
            first = zf.infolist()[0]
            assert first.filename == "mimetype"
            assert first.compress_type == zipfile.ZIP_STORED
            assert zf.read("mimetype") == b"application/epub+zip"

    def test_container_layout(self, package: EpubPackage) -> None:
        with _open(build_epub(package)) as zf:
            names = set(zf.namelist())
        assert "META-INF/container.xml" in names
        for suffix in ("content.opf", "nav.xhtml", "styles.css", "chapter-1.xhtml", "chapter-2.xhtml"):
            assert any(name.endswith(suffix) for name in names), suffix
        assert any(name.endswith("images/cover.jpg") for name in names)
        assert any(name.endswith("images/map.png") for name in names)

    def test_container_points_at_package_document(self, package: EpubPackage) -> None:
        data = build_epub(package)
        with _open(data) as zf:
            container = zf.read("META-INF/container.xml").decode()
            opf_names = [n for n in zf.namelist() if n.endswith("content.opf")]
        assert opf_names and f'full-path="{opf_names[0]}"' in container

    def test_opf_metadata_and_manifest(self, package: EpubPackage) -> None:
        opf = _read(build_epub(package), "content.opf")
        assert "<dc:title>Tides &amp; Currents</dc:title>" in opf
        assert opf.count("<dc:creator") == 2
        assert "urn:uuid:1234" in opf
        assert "2024-05-01T12:00:00Z" in opf
        assert opf.count('properties="cover-image"') == 1
        assert opf.index('idref="chapter-1"') < opf.index('idref="chapter-2"')

    def test_navigation_follows_toc(self, package: EpubPackage) -> None:
        nav = _read(build_epub(package), "nav.xhtml")
        assert '<a href="chapter-2.xhtml">Second Part</a>' in nav
        assert "chapter-1.xhtml" not in nav

    def test_navigation_falls_back_to_chapters(self, package: EpubPackage) -> None:
        package.toc = []
        nav = _read(build_epub(package), "nav.xhtml")
        assert '<a href="chapter-1.xhtml">One</a>' in nav
        assert '<a href="chapter-2.xhtml">Two</a>' in nav

    def test_out_of_range_toc_entry_points_at_first_chapter(self, package: EpubPackage) -> None:
        package.toc = [PackageTocEntry(title="Lost", chapter_index=9)]
        nav = _read(build_epub(package), "nav.xhtml")
        assert '<a href="chapter-1.xhtml">Lost</a>' in nav

    def test_chapter_body_in_template(self, package: EpubPackage) -> None:
        chapter = _read(build_epub(package), "chapter-1.xhtml")
        assert "<title>One</title>" in chapter
        assert "<p>First.</p>" in chapter
        assert 'href="styles.css"' in chapter

    def test_output_reads_back_with_ebooklib(self, package: EpubPackage, tmp_path) -> None:
        target = tmp_path / "out.epub"
        target.write_bytes(build_epub(package))
        book = epub.read_epub(str(target))
        assert book.get_metadata("DC", "title")[0][0] == "Tides & Currents"
        assert [a for a, _ in book.get_metadata("DC", "creator")] == ["Ada Writer", "Bo Editor"]
        assert [book.get_item_with_id(idref).get_name() for idref, _ in book.spine] == [
            "chapter-1.xhtml",
            "chapter-2.xhtml",
        ]

    def test_progress_reported(self, package: EpubPackage) -> None:
        seen: list[int] = []
        build_epub(package, lambda pct, _msg: seen.append(pct))
        assert seen[0] == 72
        assert seen[-1] == 95

    def test_no_chapters_rejected(self) -> None:
        with pytest.raises(ConversionError, match="No chapters"):
            build_epub(EpubPackage(title="Empty"))


class TestMediaTypes:
    @pytest.mark.parametrize(
        "name,expected",
        [("a.JPG", "image/jpeg"), ("b.png", "image/png"), ("c.svg", "image/svg+xml"), ("d.txt", None)],
    )
    def test_media_type_for(self, name: str, expected: str | None) -> None:
        assert media_type_for(name) == expected
