# ABOUTME: Structural checks for ZIP containers before handing bytes to zipfile.
# ABOUTME: Guards extractors against non-ZIP or truncated uploads masquerading as archives.

import io
import zipfile

_LOCAL_HEADER = b"PK\x03\x04"
_END_OF_CENTRAL_DIR = b"PK\x05\x06"
# EOCD record is 22 bytes plus a comment of at most 65535 bytes
_EOCD_SEARCH_WINDOW = 22 + 65535

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff"}
)


def is_valid_zip(data: bytes) -> bool:
    """Check for a local-file signature and an end-of-central-directory record."""
    if len(data) < 22 or not data.startswith(_LOCAL_HEADER):
        return False
    return data.rfind(_END_OF_CENTRAL_DIR, max(0, len(data) - _EOCD_SEARCH_WINDOW)) != -1


def open_zip(data: bytes) -> zipfile.ZipFile | None:
    """Open in-memory bytes as a ZipFile, or None if they are not a readable archive."""
    if not is_valid_zip(data):
        return None
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, OSError, ValueError):
        return None


def is_image_name(name: str) -> bool:
    lowered = name.lower()
    if lowered.startswith("__macosx/") or lowered.rsplit("/", 1)[-1].startswith("."):
        return False
    return any(lowered.endswith(ext) for ext in IMAGE_EXTENSIONS)
