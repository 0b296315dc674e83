# ABOUTME: Cover normalizer: validates, downsizes, and re-encodes cover images with Pillow.
# ABOUTME: Also derives the dominant placeholder color and fetches externally supplied covers.

import io
import logging

from PIL import Image, UnidentifiedImageError

from librarium.config import PipelineSettings
from librarium.metadata.http import CoverFetchError, HttpClient, LibrariumHttpClient
from librarium.metadata.types import CoverResult

logger = logging.getLogger(__name__)

_DEFAULT_SETTINGS = PipelineSettings()


def is_supported_image(data: bytes | None) -> bool:
    """Check magic bytes for JPEG, PNG, GIF, WebP, BMP, or TIFF before any decoding."""
    if not data or len(data) < 8:
        return False
    if data.startswith(b"\xff\xd8\xff"):
        return True
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return True
    if data.startswith(b"GIF8"):
        return True
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return True
    if data.startswith(b"BM"):
        return True
    return data.startswith(b"II*\x00") or data.startswith(b"MM\x00*")


def looks_like_cover(width: int, height: int, settings: PipelineSettings = _DEFAULT_SETTINGS) -> bool:
    """Reject tiny placeholders and landscape banners."""
    if width < settings.min_cover_size or height < settings.min_cover_size:
        return False
    return height / width >= settings.min_cover_aspect


def dominant_color(image: Image.Image) -> str:
    """Hex color of the image averaged down to a single pixel."""
    pixel = image.convert("RGB").resize((1, 1), Image.Resampling.BOX).getpixel((0, 0))
    red, green, blue = pixel[:3]
    return f"#{red:02x}{green:02x}{blue:02x}"


def _flatten(image: Image.Image) -> Image.Image:
    """Composite transparency onto white and return an RGB image."""
    if image.mode in ("RGBA", "LA", "P", "PA"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def normalize_cover(
    data: bytes | None,
    settings: PipelineSettings = _DEFAULT_SETTINGS,
) -> CoverResult | None:
    """Turn raw image bytes into a validated JPEG cover.

    Returns None when the bytes are not a supported image, cannot be
    decoded, or do not look like a book cover. Images larger than the
    target box are shrunk to fit it; smaller images are never upscaled.
    """
    if not is_supported_image(data):
        logger.debug("Cover rejected: unrecognized image signature")
        return None

    try:
        with Image.open(io.BytesIO(data)) as source:
            source.load()
            width, height = source.size
            if not looks_like_cover(width, height, settings):
                logger.debug("Cover rejected: %dx%d is not cover-shaped", width, height)
                return None
            image = _flatten(source)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        logger.debug("Cover rejected: %s", exc)
        return None

    color = dominant_color(image)
    image.thumbnail(settings.cover_box, Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=settings.cover_quality, optimize=True)
    return CoverResult(
        data=buffer.getvalue(),
        mime_type="image/jpeg",
        dominant_color=color,
        width=image.width,
        height=image.height,
    )


def fetch_remote_cover(url: str, client: HttpClient | None = None) -> bytes:
    """Download an externally supplied cover image.

    Raises:
        CoverFetchError: If the request fails or the body is not an image.
    """
    if client is None:
        owned = LibrariumHttpClient()
        try:
            body, content_type = owned.get_bytes(url)
        finally:
            owned.close()
    else:
        body, content_type = client.get_bytes(url)
    if not is_supported_image(body):
        raise CoverFetchError(f"Response from {url} is not a supported image ({content_type or 'unknown type'})")
    return body
