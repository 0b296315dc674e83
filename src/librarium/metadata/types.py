# ABOUTME: Core data structures shared by the extractors, the ingest pipeline, and the catalog.
# ABOUTME: ExtractedMetadata is the interchange format; merge_with_precedence combines sources.

import re
from dataclasses import dataclass, field, fields, replace
from pathlib import PurePath


@dataclass
class AudioChapter:
    """A chapter marker in an audio recording, in seconds."""

    index: int
    title: str
    start_time: float
    end_time: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class ExtractedMetadata:
    """Metadata pulled from a book file.

    Every field is optional. A missing value means "not found" and is never
    an error: a book with no recoverable metadata still gets a library entry
    keyed by its filename.
    """

    title: str | None = None
    subtitle: str | None = None
    authors: list[str] = field(default_factory=list)
    publisher: str | None = None
    description: str | None = None
    language: str | None = None
    isbn: str | None = None
    isbn10: str | None = None
    isbn13: str | None = None
    page_count: int | None = None
    published_date: str | None = None
    narrator: str | None = None
    duration: float | None = None
    chapters: list[AudioChapter] = field(default_factory=list)

    @property
    def author(self) -> str:
        """Convenience property: joined author string for display."""
        return ", ".join(self.authors) if self.authors else ""

    def populated_fields(self) -> set[str]:
        """Names of the fields that carry a value."""
        return {f.name for f in fields(self) if _has_value(getattr(self, f.name))}

    def is_empty(self) -> bool:
        return not self.populated_fields()


@dataclass
class Chapter:
    """One chapter of extracted text. Empty text is valid (image-only pages)."""

    index: int
    title: str
    text: str = ""


@dataclass
class TocEntry:
    """A table-of-contents entry pointing at an href or anchor."""

    title: str
    href: str
    index: int


@dataclass
class ExtractedContent:
    """Full text plus chapter partitions and the navigation structure."""

    full_text: str = ""
    chapters: list[Chapter] = field(default_factory=list)
    toc: list[TocEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.full_text and not self.chapters


@dataclass
class CoverResult:
    """A validated, normalized cover image."""

    data: bytes
    mime_type: str
    dominant_color: str
    width: int = 0
    height: int = 0


def _has_value(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def merge_with_precedence(
    primary: ExtractedMetadata | None,
    secondary: ExtractedMetadata | None,
) -> ExtractedMetadata:
    """Combine two metadata sources field by field.

    For every field, a populated value in ``primary`` wins; otherwise the
    value from ``secondary`` is used. An empty value never overwrites a
    populated one. The pipeline layers sources as
    ``merge_with_precedence(overrides, merge_with_precedence(extracted, from_filename))``,
    giving caller overrides > extracted values > filename-derived title.
    """
    if primary is None and secondary is None:
        return ExtractedMetadata()
    if primary is None:
        return replace(secondary)  # type: ignore[arg-type]
    if secondary is None:
        return replace(primary)

    merged: dict[str, object] = {}
    for f in fields(ExtractedMetadata):
        first = getattr(primary, f.name)
        second = getattr(secondary, f.name)
        value = first if _has_value(first) else second
        if isinstance(value, list):
            value = list(value)
        merged[f.name] = value
    return ExtractedMetadata(**merged)  # type: ignore[arg-type]


_TITLE_SEPARATORS = re.compile(r"[_]+")
_SPACES = re.compile(r"\s+")


def title_from_filename(filename: str) -> str:
    """Derive a fallback display title from an upload's filename."""
    stem = PurePath(filename).stem if filename else ""
    title = _SPACES.sub(" ", _TITLE_SEPARATORS.sub(" ", stem)).strip()
    return title or "Untitled"


def metadata_from_filename(filename: str) -> ExtractedMetadata:
    """The lowest-precedence metadata source: just a title."""
    return ExtractedMetadata(title=title_from_filename(filename))
