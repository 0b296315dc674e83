# ABOUTME: Unit tests for ExtractedMetadata, precedence merging, and filename-derived titles.
# ABOUTME: Validates that populated values always beat empty ones and lists are copied.

from librarium.metadata.types import (
    AudioChapter,
    ExtractedMetadata,
    merge_with_precedence,
    metadata_from_filename,
    title_from_filename,
)


class TestExtractedMetadata:
    def test_defaults_are_empty(self) -> None:
        meta = ExtractedMetadata()
        assert meta.is_empty()
        assert meta.author == ""

    def test_author_joins_authors(self) -> None:
        assert ExtractedMetadata(authors=["A", "B"]).author == "A, B"

    def test_populated_fields_ignore_blank_strings(self) -> None:
        meta = ExtractedMetadata(title="  ", publisher="Tor", authors=[])
        assert meta.populated_fields() == {"publisher"}

    def test_audio_chapter_duration(self) -> None:
        assert AudioChapter(0, "One", 5.0, 12.5).duration == 7.5


class TestMergeWithPrecedence:
    """Tests for merge_with_precedence."""

    def test_primary_wins_when_populated(self) -> None:
        merged = merge_with_precedence(
            ExtractedMetadata(title="Override"), ExtractedMetadata(title="Extracted", language="en")
        )
        assert merged.title == "Override"
        assert merged.language == "en"

    def test_empty_primary_never_blanks_secondary(self) -> None:
        merged = merge_with_precedence(
            ExtractedMetadata(title="", authors=[]), ExtractedMetadata(title="Kept", authors=["Writer"])
        )
        assert merged.title == "Kept"
        assert merged.authors == ["Writer"]

    def test_none_sources(self) -> None:
        assert merge_with_precedence(None, None).is_empty()
        only = ExtractedMetadata(title="Only")
        assert merge_with_precedence(None, only).title == "Only"
        assert merge_with_precedence(only, None).title == "Only"

    def test_three_layer_precedence(self) -> None:
        """Overrides beat extracted values, which beat the filename title."""
        overrides = ExtractedMetadata(authors=["Caller"])
        extracted = ExtractedMetadata(title="From File", authors=["Embedded"])
        fallback = metadata_from_filename("upload_name.epub")
        merged = merge_with_precedence(overrides, merge_with_precedence(extracted, fallback))
        assert merged.title == "From File"
        assert merged.authors == ["Caller"]

    def test_lists_are_copied(self) -> None:
        source = ExtractedMetadata(authors=["A"])
        merged = merge_with_precedence(ExtractedMetadata(), source)
        merged.authors.append("B")
        assert source.authors == ["A"]


class TestTitleFromFilename:
    def test_strips_extension_and_underscores(self) -> None:
        assert title_from_filename("the_left_hand__of_darkness.mobi") == "the left hand of darkness"

    def test_empty_name_is_untitled(self) -> None:
        assert title_from_filename("") == "Untitled"
