# ABOUTME: Builds silent MPEG-1 Layer III streams with optional ID3 tags, and a scripted ffmpeg stand-in.
# ABOUTME: Frames are structurally valid for mutagen; the fake encoder writes canned progress and output.

import sys
from pathlib import Path

from mutagen.id3 import ID3, TCOM, TIT2, TPE1

# 128 kbit/s, 44.1 kHz, joint stereo, no padding: 417 bytes per frame
_FRAME = b"\xff\xfb\x90\x44" + b"\x00" * 413


def silent_mp3(frames: int = 200) -> bytes:
    """About 26 ms of silence per frame."""
    return _FRAME * frames


def tagged_mp3(
    tmp_dir: Path,
    *,
    title: str,
    artist: str | None = None,
    composer: str | None = None,
    frames: int = 200,
) -> bytes:
    """A silent MP3 with an ID3v2 tag written by mutagen."""
    path = tmp_dir / "tagged.mp3"
    path.write_bytes(silent_mp3(frames))
    tags = ID3()
    tags.add(TIT2(encoding=3, text=title))
    if artist:
        tags.add(TPE1(encoding=3, text=artist))
    if composer:
        tags.add(TCOM(encoding=3, text=composer))
    tags.save(str(path))
    return path.read_bytes()


_FAKE_FFMPEG = '''#!{python}
import json
import pathlib
import sys

here = pathlib.Path(__file__).parent
(here / "ffmpeg-args.json").write_text(json.dumps(sys.argv[1:]))
for stamp in {stamps!r}:
    sys.stderr.write("size=     256kB time=" + stamp + " bitrate= 128.0kbits/s speed=40x\\r")
    sys.stderr.flush()
if {exit_code}:
    sys.stderr.buffer.write("\\n{failure}\\n".encode("utf-8"))
    sys.stderr.flush()
    sys.exit({exit_code})
pathlib.Path(sys.argv[-1]).write_bytes({payload!r})
'''


def write_fake_ffmpeg(
    directory: Path,
    *,
    stamps: tuple[str, ...] = ("00:00:01.00", "00:00:04.00"),
    exit_code: int = 0,
    failure: str = "Invalid data found when processing input",
    payload: bytes = b"\x00\x00\x00\x20ftypM4B \x00\x00\x02\x00merged audio",
) -> Path:
    """An executable stand-in for ffmpeg that reports progress on stderr.

    It records its arguments to ``ffmpeg-args.json`` beside itself and
    writes ``payload`` to the output path (its last argument) unless
    ``exit_code`` is non-zero.
    """
    script = directory / "ffmpeg"
    script.write_text(
        _FAKE_FFMPEG.format(
            python=sys.executable,
            stamps=list(stamps),
            exit_code=exit_code,
            failure=failure,
            payload=payload,
        )
    )
    script.chmod(0o755)
    return script
