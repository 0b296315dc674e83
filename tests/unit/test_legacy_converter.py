# ABOUTME: Unit tests for MOBI-to-EPUB conversion.
# ABOUTME: Covers chapter markup sanitizing and end-to-end conversion of synthetic MOBI 6 and KF8 files.

import io
import zipfile

import pytest

from librarium.convert.legacy import convert_legacy_to_epub, sanitize_chapter_html
from librarium.convert.package import ConversionError
from librarium.metadata.types import ExtractedMetadata


class TestSanitizeChapterHtml:
    """Tests for sanitize_chapter_html."""

    def test_strips_scripts_styles_and_handlers(self) -> None:
        html = '<style>p{}</style><p onclick="steal()">Hi</p><script>bad()</script>'
        assert sanitize_chapter_html(html) == "<p>Hi</p>"

    def test_strips_document_wrapper(self) -> None:
        html = '<?xml version="1.0"?><!DOCTYPE html><html><head><title>x</title></head><body><p>Text</p></body></html>'
        assert sanitize_chapter_html(html) == "<p>Text</p>"

    def test_removes_mobi_markup(self) -> None:
        html = '<mbp:pagebreak/><p><a filepos=000123>Jump</a></p>'
        assert sanitize_chapter_html(html) == "<p><a>Jump</a></p>"

    def test_images_point_at_flat_directory(self) -> None:
        html = '<p><img src="../old/pic.jpg"></p>'
        assert sanitize_chapter_html(html) == '<p><img src="images/pic.jpg"/></p>'

    def test_void_tags_self_close(self) -> None:
        assert sanitize_chapter_html("<p>a<br>b<hr></p>") == "<p>a<br/>b<hr/></p>"

    def test_escapes_bare_ampersands(self) -> None:
        assert sanitize_chapter_html("<p>Fish & chips &amp; peas</p>") == "<p>Fish &amp; chips &amp; peas</p>"

    def test_keeps_named_entities(self) -> None:
        assert sanitize_chapter_html("<p>a&nbsp;b &copy; 2001</p>") == "<p>a\u00a0b \u00a9 2001</p>"

    def test_escapes_unknown_entity_names(self) -> None:
        assert sanitize_chapter_html("<p>R&D; &#169; &#xA9;</p>") == "<p>R&amp;D; \u00a9 \u00a9</p>"

    def test_closes_unbalanced_tags(self) -> None:
        assert sanitize_chapter_html("<p>unclosed") == "<p>unclosed</p>"


def _read_epub(data: bytes) -> dict[str, str]:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name).decode("utf-8", errors="replace") for name in zf.namelist()}


class TestConvertLegacyToEpub:
    """Tests for convert_legacy_to_epub."""

    def test_mobi6_conversion(self, mobi_bytes: bytes) -> None:
        files = _read_epub(convert_legacy_to_epub(mobi_bytes))
        assert files["mimetype"] == "application/epub+zip"
        assert "<dc:title>Harbor Tales</dc:title>" in files["EPUB/content.opf"]
        assert "Ada Writer" in files["EPUB/content.opf"]
        assert "EPUB/images/image00001.jpeg" in files
        assert 'src="images/image00001.jpeg"' in files["EPUB/chapter-3.xhtml"]
        nav = files["EPUB/nav.xhtml"]
        assert nav.index("The Arrival") < nav.index("The Harbor") < nav.index("The Departure")

    def test_kf8_conversion(self, kf8_bytes: bytes) -> None:
        files = _read_epub(convert_legacy_to_epub(kf8_bytes))
        assert "<dc:title>Flow Book</dc:title>" in files["EPUB/content.opf"]
        assert "Opening" in files["EPUB/nav.xhtml"]
        assert "Closing" in files["EPUB/nav.xhtml"]

    def test_catalog_metadata_wins(self, mobi_bytes: bytes) -> None:
        known = ExtractedMetadata(title="Edited Title", authors=["Someone Else"])
        opf = _read_epub(convert_legacy_to_epub(mobi_bytes, known))["EPUB/content.opf"]
        assert "<dc:title>Edited Title</dc:title>" in opf
        assert "Someone Else" in opf
        assert "Ada Writer" not in opf

    def test_progress_ends_at_100(self, mobi_bytes: bytes) -> None:
        seen: list[int] = []
        convert_legacy_to_epub(mobi_bytes, progress=lambda pct, _msg: seen.append(pct))
        assert seen[-1] == 100
        assert seen == sorted(seen)

    def test_unparseable_input(self) -> None:
        with pytest.raises(ConversionError, match="Could not parse MOBI"):
            convert_legacy_to_epub(b"not a mobi file at all")
