from __future__ import annotations

import base64
import io
import logging

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


class ImageDecodeError(ValueError):
    """Base chart bytes could not be decoded into an image."""


def _open(raw: bytes) -> Image.Image:
    if not raw:
        raise ImageDecodeError("Empty image bytes")
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.info("Chart image decode failed: %s", type(e).__name__)
        raise ImageDecodeError(f"Could not decode chart image: {type(e).__name__}") from e

    if img.size[0] <= 0 or img.size[1] <= 0:
        raise ImageDecodeError("Chart image has no pixels")
    return img


def decode_image(raw: bytes) -> Image.Image:
    """
    Decode chart bytes into a fully loaded RGBA image.

    Pixel data is loaded eagerly so the caller gets either a ready image
    (with known dimensions) or an ImageDecodeError, nothing in between.
    """
    return _open(raw).convert("RGBA")


def image_mime(raw: bytes) -> str:
    """MIME type of decodable image bytes, e.g. image/jpeg. Raises ImageDecodeError."""
    img = _open(raw)
    return Image.MIME.get(img.format or "", "application/octet-stream")


def encode_png(img: Image.Image) -> bytes:
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def to_data_url(data: bytes, mime: str = "image/png") -> str:
    b64 = base64.b64encode(data).decode("utf-8")
    return f"data:{mime};base64,{b64}"
