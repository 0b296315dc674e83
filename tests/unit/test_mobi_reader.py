# ABOUTME: Unit tests for the MOBI/KF8 reader built on KindleUnpack output.
# ABOUTME: Covers unpacking, both chapter splitters, shared scratch cleanup, and parse selection.

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from librarium.formats.mobi import (
    MobiError,
    UnpackedMobi,
    parse_best,
    parse_kf8,
    parse_mobi6,
    select_better,
    unpack_mobi,
)
from tests.fixtures.kindleunpack import (
    TreeWriter,
    kf8_epub,
    mobi7_book_html,
    mobi7_opf,
    write_mobi7_tree,
    write_mobi8_tree,
)

CHAPTERS = [
    ("The Arrival", "<p>The ship docked at dawn.</p>"),
    ("The Harbor", "<p>Gulls circled the harbor.</p>"),
    ("The Departure", '<p>They left at noon.</p><p><img src="Images/image00001.jpeg" /></p>'),
]


def _mobi7(tmp_path: Path, *, with_toc: bool = True, images: dict[str, bytes] | None = None, **opf) -> UnpackedMobi:
    root = tmp_path / "unpacked"
    opf.setdefault("title", "Harbor Tales")
    opf.setdefault("authors", ["Ada Writer"])
    write_mobi7_tree(
        root,
        html=mobi7_book_html(CHAPTERS, with_toc=with_toc),
        opf=mobi7_opf(with_toc=with_toc, images=tuple(images or ()), **opf),
        images=images,
    )
    return UnpackedMobi(root)


class TestUnpackMobi:
    """Tests for unpack_mobi and the shared unpack directory."""

    def test_rejected_file_raises_mobi_error(self) -> None:
        with pytest.raises(MobiError, match="KindleUnpack could not read"):
            unpack_mobi(b"this is not a palm database")

    def test_unregistered_bytes_are_rejected(self, kindle_unpack: dict[bytes, TreeWriter]) -> None:
        with pytest.raises(MobiError, match="KindleUnpack could not read"):
            unpack_mobi(b"unknown")

    def test_directory_lives_until_last_holder_releases(self, mobi_bytes: bytes) -> None:
        unpacked = unpack_mobi(mobi_bytes)
        book = parse_mobi6(unpacked)
        unpacked.release()
        assert unpacked.root.is_dir()
        book.close()
        assert unpacked.removed
        assert not unpacked.root.exists()

    def test_release_is_idempotent(self, tmp_path: Path) -> None:
        unpacked = _mobi7(tmp_path)
        unpacked.release()
        unpacked.release()
        assert unpacked.removed


class TestParseMobi6:
    """Tests for parse_mobi6."""

    def test_chapters_follow_guide_toc(self, tmp_path: Path) -> None:
        with parse_mobi6(_mobi7(tmp_path)) as book:
            assert book.variant == "mobi6"
            assert [c.title for c in book.chapters] == ["The Arrival", "The Harbor", "The Departure"]
            assert [(e.title, e.chapter_index) for e in book.toc] == [
                ("The Arrival", 0),
                ("The Harbor", 1),
                ("The Departure", 2),
            ]
            assert "Gulls circled" in book.chapters[1].html
            assert not any('href="#filepos' in c.html for c in book.chapters)

    def test_without_toc_chapters_are_numbered(self, tmp_path: Path) -> None:
        with parse_mobi6(_mobi7(tmp_path, with_toc=False)) as book:
            assert [c.title for c in book.chapters] == ["Chapter 1", "Chapter 2", "Chapter 3"]
            assert book.toc == []

    def test_metadata_from_opf(self, tmp_path: Path) -> None:
        unpacked = _mobi7(
            tmp_path,
            authors=["Ada Writer; Bo Second"],
            isbn="9780306406157",
            publisher="Tide Press",
            description="<p>Salt and <b>spray</b>.</p>",
        )
        with parse_mobi6(unpacked) as book:
            meta = book.metadata()
        assert meta.title == "Harbor Tales"
        assert meta.authors == ["Ada Writer", "Bo Second"]
        assert meta.isbn13 == "9780306406157"
        assert meta.publisher == "Tide Press"
        assert meta.language == "en"
        assert meta.description == "Salt and spray."

    def test_cover_from_opf_meta(self, tmp_path: Path, cover_jpeg: bytes, tiny_png: bytes) -> None:
        images = {"image00001.png": tiny_png, "image00002.jpeg": cover_jpeg}
        with parse_mobi6(_mobi7(tmp_path, images=images, cover="image00002.jpeg")) as book:
            assert [image.name for image in book.images] == ["image00001.png", "image00002.jpeg"]
            assert book.cover_image is not None
            assert book.read_image(book.cover_image) == cover_jpeg

    def test_cover_falls_back_to_cover_named_file(self, tmp_path: Path, cover_jpeg: bytes, tiny_png: bytes) -> None:
        images = {"image00001.png": tiny_png, "cover00002.jpeg": cover_jpeg}
        with parse_mobi6(_mobi7(tmp_path, images=images)) as book:
            assert book.cover_image is not None
            assert book.cover_image.name == "cover00002.jpeg"
            assert book.cover_image.media_type == "image/jpeg"

    def test_close_releases_images(self, tmp_path: Path, cover_jpeg: bytes) -> None:
        unpacked = _mobi7(tmp_path, images={"image00001.jpeg": cover_jpeg})
        book = parse_mobi6(unpacked)
        unpacked.release()
        image = book.images[0]
        book.close()
        assert book.closed
        assert not image.path.exists()
        with pytest.raises(MobiError, match="released"):
            book.read_image(image)

    def test_rejects_kf8_only(self, tmp_path: Path) -> None:
        root = tmp_path / "unpacked"
        write_mobi8_tree(root, kf8_epub([("Only", "<p>x</p>")], title="K", authors=[]))
        with pytest.raises(MobiError, match="only a KF8"):
            parse_mobi6(UnpackedMobi(root))


class TestParseKf8:
    """Tests for parse_kf8."""

    def test_documents_become_chapters(self, kf8_bytes: bytes, cover_jpeg: bytes) -> None:
        unpacked = unpack_mobi(kf8_bytes)
        try:
            book = parse_kf8(unpacked)
        finally:
            unpacked.release()
        with book:
            assert book.is_kf8
            assert [c.title for c in book.chapters] == ["Opening", "Closing"]
            assert [(e.title, e.chapter_index) for e in book.toc] == [("Opening", 0), ("Closing", 1)]
            assert book.metadata().title == "Flow Book"
            assert book.metadata().authors == ["Kay Eight"]
            assert book.cover_image is not None
            assert book.read_image(book.cover_image) == cover_jpeg

    def test_untitled_documents_are_numbered(self, tmp_path: Path) -> None:
        root = tmp_path / "unpacked"
        write_mobi8_tree(root, kf8_epub([("", "<p>Body only.</p>")], title="K", authors=[]))
        with parse_kf8(UnpackedMobi(root)) as book:
            assert [c.title for c in book.chapters] == ["Chapter 1"]

    def test_mobi6_file_has_no_kf8_section(self, tmp_path: Path) -> None:
        with pytest.raises(MobiError, match="no KF8"):
            parse_kf8(_mobi7(tmp_path))


@dataclass
class FakeParse:
    chapters: list
    closed: bool = field(default=False)

    def close(self) -> None:
        self.closed = True


class TestParseSelection:
    """Tests for select_better and parse_best."""

    def test_more_chapters_wins(self) -> None:
        legacy, next_gen = FakeParse([1, 2, 3]), FakeParse([1])
        winner, dispose = select_better(legacy, next_gen)
        dispose()
        assert winner is legacy
        assert next_gen.closed and not legacy.closed

    def test_tie_goes_to_next_generation(self) -> None:
        legacy, next_gen = FakeParse([1, 2]), FakeParse([1, 2])
        winner, dispose = select_better(legacy, next_gen)
        dispose()
        assert winner is next_gen
        assert legacy.closed

    def test_single_parse(self) -> None:
        only = FakeParse([1])
        assert select_better(only, None)[0] is only
        assert select_better(None, only)[0] is only
        assert select_better(None, None)[0] is None

    def test_parse_best_picks_available_parse(self, mobi_bytes: bytes, kf8_bytes: bytes) -> None:
        with parse_best(mobi_bytes) as book:
            assert book.variant == "mobi6"
        with parse_best(kf8_bytes) as book:
            assert book.variant == "kf8"

    def test_joint_file_keeps_richer_kf8_parse(self, joint_mobi_bytes: bytes) -> None:
        with parse_best(joint_mobi_bytes) as book:
            assert book.variant == "kf8"
            assert [c.title for c in book.chapters] == ["Part One", "Part Two", "Part Three"]

    def test_winner_close_removes_unpack_directory(self, mobi_bytes: bytes) -> None:
        book = parse_best(mobi_bytes)
        image = book.images[0]
        assert image.path.exists()
        book.close()
        assert not image.path.exists()

    def test_parse_best_fails_when_neither_parses(self, kindle_unpack: dict[bytes, TreeWriter]) -> None:
        def print_replica(root: Path) -> None:
            root.joinpath("book.001.pdf").write_bytes(b"%PDF-1.4")

        kindle_unpack[b"print replica"] = print_replica
        with pytest.raises(MobiError, match="Could not parse as MOBI 6 or KF8"):
            parse_best(b"print replica")
