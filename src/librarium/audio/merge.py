# ABOUTME: Merges several audio tracks into one chaptered M4B by driving an external ffmpeg process.
# ABOUTME: Chapters come from track durations; progress is parsed incrementally from ffmpeg's stderr.

import asyncio
import codecs
import logging
import re
import shutil
import tempfile
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path, PurePath

from librarium.formats.audio import AudioExtractor
from librarium.formats.comic import natural_key
from librarium.metadata.types import AudioChapter

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS: frozenset[str] = frozenset({".mp3", ".m4a", ".m4b"})
DESTINATION_CODEC = "aac"
_STDERR_TAIL_LINES = 20
_READ_SIZE = 4096

_TRACK_NUMBER_PATTERNS = (
    re.compile(r"^(\d+)"),
    re.compile(r"track\s*(\d+)", re.IGNORECASE),
    re.compile(r"\((\d+)\)"),
)
_TITLE_PREFIXES = (
    re.compile(r"^\d+\s*[-:.)_]*\s*"),
    re.compile(r"^(?:track|chapter|part)\s*\d+\s*[-:.)_]*\s*", re.IGNORECASE),
)
_TITLE_SUFFIX = re.compile(r"\s*\(\d+\)\s*$")
_PROGRESS_TIME = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_LINE_BREAK = re.compile(r"[\r\n]")
_FFMETADATA_SPECIAL = re.compile(r"([\\=;#\n])")


class MergeError(Exception):
    """Raised when tracks cannot be merged (too few, unreadable durations)."""


class EncoderUnavailableError(MergeError):
    """Raised when the ffmpeg executable cannot be found."""


class EncoderError(MergeError):
    """Raised when ffmpeg exits non-zero. ``detail`` holds the tail of its stderr."""

    def __init__(self, message: str, detail: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.detail = detail
        self.returncode = returncode


@dataclass
class AudioTrack:
    """One uploaded track. ``track_number`` overrides filename-based ordering."""

    filename: str
    data: bytes
    track_number: int | None = None


@dataclass(frozen=True)
class TrackInfo:
    duration: float
    codec: str | None


@dataclass(frozen=True)
class MergeProgress:
    percent: int
    message: str
    current_time: float | None = None
    total_time: float | None = None


@dataclass
class MergeResult:
    data: bytes
    chapters: list[AudioChapter]
    duration: float
    stream_copy: bool


ProgressListener = Callable[[MergeProgress], None]
ProbeFn = Callable[[Path], TrackInfo]


def probe_track(path: Path) -> TrackInfo:
    """Duration and codec of an audio file, read with mutagen.

    Raises:
        MergeError: If the duration cannot be determined.
    """
    extractor = AudioExtractor(path.read_bytes())
    duration = extractor.duration
    if not duration:
        raise MergeError(f"Could not read the duration of {path.name}")
    return TrackInfo(duration=duration, codec=extractor.codec)


def infer_track_number(filename: str) -> int | None:
    """Track number from names like "01 - Intro", "Track 2", or "Part (3)"."""
    stem = PurePath(filename).stem
    for pattern in _TRACK_NUMBER_PATTERNS:
        match = pattern.search(stem)
        if match:
            return int(match.group(1))
    return None


def order_tracks(tracks: list[AudioTrack]) -> list[AudioTrack]:
    """Sort by explicit or inferred track number, then by natural filename order.

    Tracks with no number at all go after the numbered ones.
    """

    def sort_key(track: AudioTrack):
        number = track.track_number if track.track_number is not None else infer_track_number(track.filename)
        return (number is None, number or 0, natural_key(track.filename))

    return sorted(tracks, key=sort_key)


def title_from_filename(filename: str) -> str:
    """Chapter title from a track filename with numbering stripped: "01 - Intro.mp3" -> "Intro"."""
    stem = PurePath(filename).stem.strip()
    title = stem
    for pattern in _TITLE_PREFIXES:
        title = pattern.sub("", title)
    title = _TITLE_SUFFIX.sub("", title).strip()
    return title or stem


def compute_chapters(titles: list[str], durations: list[float]) -> list[AudioChapter]:
    """Contiguous chapters: each starts where the previous one ended."""
    if len(titles) != len(durations):
        raise ValueError("Every chapter needs exactly one duration")
    chapters: list[AudioChapter] = []
    start = 0.0
    for index, (title, duration) in enumerate(zip(titles, durations)):
        end = start + duration
        chapters.append(AudioChapter(index=index, title=title, start_time=start, end_time=end))
        start = end
    return chapters


def _escape_ffmetadata(value: str) -> str:
    return _FFMETADATA_SPECIAL.sub(r"\\\1", value)


def render_ffmetadata(chapters: list[AudioChapter], title: str | None = None, artist: str | None = None) -> str:
    """ffmpeg's FFMETADATA1 document with one [CHAPTER] block per chapter, in milliseconds."""
    lines = [";FFMETADATA1"]
    if title:
        lines.append(f"title={_escape_ffmetadata(title)}")
        lines.append(f"album={_escape_ffmetadata(title)}")
    if artist:
        lines.append(f"artist={_escape_ffmetadata(artist)}")
    lines.append("genre=Audiobook")
    lines.append("")
    for chapter in chapters:
        lines.extend(
            [
                "[CHAPTER]",
                "TIMEBASE=1/1000",
                f"START={round(chapter.start_time * 1000)}",
                f"END={round(chapter.end_time * 1000)}",
                f"title={_escape_ffmetadata(chapter.title)}",
                "",
            ]
        )
    return "\n".join(lines)


def render_concat_manifest(paths: list[Path]) -> str:
    """Input list for ffmpeg's concat demuxer."""
    lines = []
    for path in paths:
        quoted = str(path).replace("'", "'\\''")
        lines.append(f"file '{quoted}'")
    return "\n".join(lines) + "\n"


def parse_progress_time(line: str) -> float | None:
    """Seconds from the last ``time=HH:MM:SS.xx`` marker in an ffmpeg status line."""
    matches = _PROGRESS_TIME.findall(line)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def build_ffmpeg_command(
    ffmpeg: str,
    manifest: Path,
    metadata: Path,
    output: Path,
    *,
    stream_copy: bool,
    bitrate: str,
) -> list[str]:
    codec = ["-c:a", "copy"] if stream_copy else ["-c:a", DESTINATION_CODEC, "-b:a", bitrate]
    return [
        ffmpeg,
        "-y",
        "-hide_banner",
        "-f", "concat",
        "-safe", "0",
        "-i", str(manifest),
        "-f", "ffmetadata",
        "-i", str(metadata),
        "-map", "0:a",
        "-map_metadata", "1",
        "-map_chapters", "1",
        *codec,
        "-movflags", "+faststart",
        "-f", "mp4",
        str(output),
    ]


class MergeTask:
    """A running merge exposed as an async stream of progress events.

    Iterate it for MergeProgress updates; await ``result()`` for the merged
    file. Stopping iteration early does not stop the merge.
    """

    def __init__(self, engine: "AudioMergeEngine", tracks: list[AudioTrack], title: str | None) -> None:
        self._queue: asyncio.Queue[MergeProgress | None] = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._run(engine, tracks, title), name="audio-merge")

    async def _run(self, engine: "AudioMergeEngine", tracks: list[AudioTrack], title: str | None) -> MergeResult:
        try:
            return await engine.merge(tracks, title=title, progress=self._queue.put_nowait)
        finally:
            self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[MergeProgress]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def result(self) -> MergeResult:
        return await self._task

    def done(self) -> bool:
        return self._task.done()


class AudioMergeEngine:
    """Concatenates tracks into an AAC/MP4 audiobook with chapter markers.

    Args:
        ffmpeg: Executable name or path.
        bitrate: AAC bitrate used when tracks must be re-encoded.
        probe: Returns duration and codec for a track file.
    """

    def __init__(self, ffmpeg: str = "ffmpeg", bitrate: str = "128k", probe: ProbeFn = probe_track) -> None:
        self._ffmpeg = ffmpeg
        self._bitrate = bitrate
        self._probe = probe

    def executable(self) -> str | None:
        return shutil.which(self._ffmpeg)

    def is_available(self) -> bool:
        return self.executable() is not None

    def start(self, tracks: list[AudioTrack], title: str | None = None) -> MergeTask:
        """Begin merging on the running event loop."""
        return MergeTask(self, tracks, title)

    async def merge(
        self,
        tracks: list[AudioTrack],
        *,
        title: str | None = None,
        progress: ProgressListener | None = None,
    ) -> MergeResult:
        """Merge tracks into one M4B.

        Raises:
            MergeError: Fewer than two tracks, or a duration is unreadable.
            EncoderUnavailableError: ffmpeg is not installed.
            EncoderError: ffmpeg exited non-zero.
        """
        report = progress or (lambda _event: None)
        if len(tracks) < 2:
            raise MergeError("Merging needs at least two audio tracks")
        executable = self.executable()
        if executable is None:
            raise EncoderUnavailableError(f"{self._ffmpeg} is not installed or not on PATH")

        ordered = order_tracks(tracks)
        with tempfile.TemporaryDirectory(prefix="librarium-merge-") as tmp:
            scratch = Path(tmp)
            report(MergeProgress(0, "Writing tracks..."))
            paths: list[Path] = []
            for index, track in enumerate(ordered):
                suffix = PurePath(track.filename).suffix.lower() or ".mp3"
                path = scratch / f"track-{index + 1:03d}{suffix}"
                await asyncio.to_thread(path.write_bytes, track.data)
                paths.append(path)

            report(MergeProgress(2, "Reading track durations..."))
            infos = [await asyncio.to_thread(self._probe, path) for path in paths]
            chapters = compute_chapters([title_from_filename(t.filename) for t in ordered], [i.duration for i in infos])
            total = chapters[-1].end_time
            stream_copy = all(info.codec == DESTINATION_CODEC for info in infos)

            manifest = scratch / "concat.txt"
            manifest.write_text(render_concat_manifest(paths), encoding="utf-8")
            metadata = scratch / "chapters.txt"
            metadata.write_text(render_ffmetadata(chapters, title=title), encoding="utf-8")
            output = scratch / "merged.m4b"

            command = build_ffmpeg_command(
                executable, manifest, metadata, output, stream_copy=stream_copy, bitrate=self._bitrate
            )
            logger.debug("Running %s", " ".join(command))
            mode = "Copying" if stream_copy else "Encoding"
            report(MergeProgress(5, f"{mode} {len(ordered)} tracks...", 0.0, total))

            tail = await self._run_encoder(command, total, mode, report)
            if not output.exists():
                raise EncoderError("ffmpeg produced no output file", detail="\n".join(tail))
            data = await asyncio.to_thread(output.read_bytes)

        report(MergeProgress(100, "Merge complete", total, total))
        logger.info("Merged %d tracks into %.0fs audiobook (stream copy: %s)", len(ordered), total, stream_copy)
        return MergeResult(data=data, chapters=chapters, duration=total, stream_copy=stream_copy)

    async def _run_encoder(
        self,
        command: list[str],
        total: float,
        mode: str,
        report: ProgressListener,
    ) -> list[str]:
        """Run ffmpeg, reporting progress from stderr as it arrives. Returns the stderr tail."""
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        pending = ""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        def consume(line: str) -> None:
            line = line.strip()
            if not line:
                return
            elapsed = parse_progress_time(line)
            if elapsed is None:
                tail.append(line)
            elif total > 0:
                percent = min(99, int(elapsed / total * 100))
                report(MergeProgress(percent, f"{mode}... {percent}%", min(elapsed, total), total))

        try:
            while True:
                chunk = await process.stderr.read(_READ_SIZE)
                if not chunk:
                    break
                parts = _LINE_BREAK.split(pending + decoder.decode(chunk))
                pending = parts.pop()
                for line in parts:
                    consume(line)
            for line in _LINE_BREAK.split(pending + decoder.decode(b"", final=True)):
                consume(line)
            returncode = await process.wait()
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        if returncode != 0:
            detail = "\n".join(tail)
            logger.error("ffmpeg exited with status %d: %s", returncode, detail)
            raise EncoderError(f"ffmpeg exited with status {returncode}", detail=detail, returncode=returncode)
        return list(tail)
