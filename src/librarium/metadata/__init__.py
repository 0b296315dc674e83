# ABOUTME: Metadata package for book metadata representation and precedence merging.
# ABOUTME: Exports the dataclasses that flow between extractors, pipeline, and catalog.

from librarium.metadata.types import (
    AudioChapter,
    Chapter,
    CoverResult,
    ExtractedContent,
    ExtractedMetadata,
    TocEntry,
    merge_with_precedence,
)

__all__ = [
    "AudioChapter",
    "Chapter",
    "CoverResult",
    "ExtractedContent",
    "ExtractedMetadata",
    "TocEntry",
    "merge_with_precedence",
]
