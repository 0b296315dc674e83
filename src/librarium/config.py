# ABOUTME: Pipeline policy settings and default filesystem locations for Librarium.
# ABOUTME: Thresholds are configurable defaults rather than hard invariants.

from dataclasses import dataclass, fields, replace
from pathlib import Path

DEFAULT_DATA_DIR = Path.home() / ".librarium"
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "library.db"

_MIB = 1024 * 1024


@dataclass(frozen=True)
class PipelineSettings:
    """Policy knobs for ingestion, conversion, and merging.

    Defaults mirror the production policy: uploads of 5 MiB or more are
    processed in the background, and content over 20 MiB is never
    full-text indexed.
    """

    background_threshold: int = 5 * _MIB
    content_index_limit: int = 20 * _MIB
    chunk_size: int = 10_000
    cover_box: tuple[int, int] = (600, 900)
    cover_quality: int = 90
    min_cover_size: int = 100
    min_cover_aspect: float = 0.8
    job_ttl: float = 300.0
    merge_bitrate: str = "128k"
    ffmpeg: str = "ffmpeg"

    def __post_init__(self) -> None:
        for name in ("background_threshold", "content_index_limit", "chunk_size", "min_cover_size"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.job_ttl <= 0:
            raise ValueError(f"job_ttl must be positive, got {self.job_ttl}")
        width, height = self.cover_box
        if width <= 0 or height <= 0:
            raise ValueError(f"cover_box must be positive, got {self.cover_box}")
        if not 1 <= self.cover_quality <= 100:
            raise ValueError(f"cover_quality must be between 1 and 100, got {self.cover_quality}")

    def with_overrides(self, **overrides: object) -> "PipelineSettings":
        """Return a copy with the given non-None fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)
