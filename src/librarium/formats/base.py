# ABOUTME: The common extractor contract shared by every per-format adapter.
# ABOUTME: safe_extract turns a failing extraction step into an empty default plus an ExtractionIssue.

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from librarium.metadata.types import ExtractedContent, ExtractedMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ExtractionIssue:
    """Why one extraction step produced nothing. Logged, never raised."""

    field: str
    message: str
    error_type: str

    def __str__(self) -> str:
        return f"{self.field}: {self.error_type}: {self.message}"


@runtime_checkable
class Extractor(Protocol):
    """Capability set every format adapter exposes.

    Each method may legitimately return an empty result; none of them is
    expected to raise for malformed input.
    """

    def metadata(self) -> ExtractedMetadata: ...

    def content(self) -> ExtractedContent: ...

    def cover(self) -> bytes | None: ...


class BaseExtractor:
    """Default no-op extractor; adapters override what their format supports."""

    def __init__(self, data: bytes) -> None:
        self._data = data

    def metadata(self) -> ExtractedMetadata:
        return ExtractedMetadata()

    def content(self) -> ExtractedContent:
        return ExtractedContent()

    def cover(self) -> bytes | None:
        return None

    def close(self) -> None:
        """Release any scratch resources held by the adapter."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def safe_extract(fn: Callable[[], T], default: T, field: str) -> tuple[T, ExtractionIssue | None]:
    """Run one extraction step, degrading any failure to ``default``.

    Returns:
        The step's value (or ``default``) and the issue describing the
        failure, if there was one.
    """
    try:
        return fn(), None
    except Exception as exc:  # extractor failures must never abort ingestion
        issue = ExtractionIssue(field=field, message=str(exc), error_type=type(exc).__name__)
        logger.debug("Extraction of %s failed: %s", field, issue)
        return default, issue
