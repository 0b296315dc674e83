# ABOUTME: Audio book extraction for MP3, M4A, and M4B files using mutagen.
# ABOUTME: Reads tags, duration, narrator, embedded chapter markers, and cover art.

import io
import logging

import mutagen
from mutagen.id3 import ID3
from mutagen.mp3 import MP3
from mutagen.mp4 import MP4

from librarium.formats.base import BaseExtractor
from librarium.metadata.types import AudioChapter, ExtractedMetadata

logger = logging.getLogger(__name__)

# MP4 atom names for the fields we read
_MP4_FIELDS = {
    "title": "\xa9nam",
    "album": "\xa9alb",
    "artist": "\xa9ART",
    "album_artist": "aART",
    "composer": "\xa9wrt",
    "comment": "\xa9cmt",
    "description": "desc",
    "date": "\xa9day",
    "publisher": "----:com.apple.iTunes:LABEL",
    "language": "----:com.apple.iTunes:LANGUAGE",
}

# ID3 frame ids for the same fields
_ID3_FIELDS = {
    "title": "TIT2",
    "album": "TALB",
    "artist": "TPE1",
    "album_artist": "TPE2",
    "composer": "TCOM",
    "date": "TDRC",
    "publisher": "TPUB",
    "language": "TLAN",
}


def _first_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).strip() if value is not None else ""
    return text or None


def _mp4_tags(audio: MP4) -> dict[str, str | None]:
    tags = audio.tags or {}
    return {name: _first_text(tags.get(atom)) for name, atom in _MP4_FIELDS.items()}


def _id3_tags(tags: ID3) -> dict[str, str | None]:
    values: dict[str, str | None] = {}
    for name, frame_id in _ID3_FIELDS.items():
        frame = tags.get(frame_id)
        values[name] = _first_text(frame.text) if frame is not None else None
    comments = tags.getall("COMM")
    values["comment"] = _first_text(comments[0].text) if comments else None
    values["description"] = None
    return values


def _mp4_chapters(audio: MP4, duration: float) -> list[AudioChapter]:
    markers = list(getattr(audio, "chapters", None) or [])
    chapters: list[AudioChapter] = []
    for i, marker in enumerate(markers):
        start = float(marker.start)
        end = float(markers[i + 1].start) if i + 1 < len(markers) else duration or start
        chapters.append(AudioChapter(index=i, title=marker.title or f"Chapter {i + 1}", start_time=start, end_time=end))
    return chapters


def _id3_chapters(tags: ID3, duration: float) -> list[AudioChapter]:
    frames = sorted(tags.getall("CHAP"), key=lambda frame: frame.start_time)
    chapters: list[AudioChapter] = []
    for i, frame in enumerate(frames):
        title_frame = frame.sub_frames.get("TIT2") if frame.sub_frames else None
        title = _first_text(title_frame.text) if title_frame is not None else None
        end_ms = frame.end_time if frame.end_time else duration * 1000
        chapters.append(
            AudioChapter(
                index=i,
                title=title or frame.element_id or f"Chapter {i + 1}",
                start_time=frame.start_time / 1000,
                end_time=end_ms / 1000,
            )
        )
    return chapters


class AudioExtractor(BaseExtractor):
    """Extractor for audio book files. Audio has no text content."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self._audio = None
        self._loaded = False

    def _load(self):
        if not self._loaded:
            self._loaded = True
            try:
                self._audio = mutagen.File(io.BytesIO(self._data))
            except mutagen.MutagenError as exc:
                logger.debug("Audio tags unreadable: %s", exc)
        return self._audio

    @property
    def duration(self) -> float | None:
        audio = self._load()
        if audio is None or audio.info is None:
            return None
        length = getattr(audio.info, "length", None)
        return float(length) if length else None

    @property
    def codec(self) -> str | None:
        """Short codec name: "aac" for MP4 audio, "mp3" for MPEG layer 3."""
        audio = self._load()
        if isinstance(audio, MP4):
            codec = getattr(audio.info, "codec", "") or ""
            return "aac" if codec.startswith("mp4a") else codec or None
        if isinstance(audio, MP3):
            return "mp3"
        return None

    def metadata(self) -> ExtractedMetadata:
        audio = self._load()
        if audio is None:
            return ExtractedMetadata()

        duration = self.duration or 0.0
        if isinstance(audio, MP4):
            tags = _mp4_tags(audio)
            chapters = _mp4_chapters(audio, duration)
        elif isinstance(audio.tags, ID3):
            tags = _id3_tags(audio.tags)
            chapters = _id3_chapters(audio.tags, duration)
        else:
            return ExtractedMetadata(duration=round(duration) if duration else None)

        narrator = tags["composer"] or tags["album_artist"]
        return ExtractedMetadata(
            title=tags["title"] or tags["album"],
            authors=[tags["artist"]] if tags["artist"] else [],
            publisher=tags["publisher"],
            description=tags["description"] or tags["comment"],
            language=tags["language"],
            published_date=tags["date"],
            narrator=narrator,
            duration=round(duration) if duration else None,
            chapters=chapters,
        )

    def cover(self) -> bytes | None:
        audio = self._load()
        if audio is None or audio.tags is None:
            return None
        if isinstance(audio, MP4):
            covers = audio.tags.get("covr") or []
            return bytes(covers[0]) if covers else None
        if isinstance(audio.tags, ID3):
            pictures = audio.tags.getall("APIC")
            front = [p for p in pictures if p.type == 3]
            chosen = (front or pictures)[:1]
            return chosen[0].data if chosen else None
        return None
