# makeup_preview/services/utils/image_io.py
import base64
import binascii
import io
import re

import numpy as np
import structlog
from PIL import Image, UnidentifiedImageError

logger = structlog.get_logger(__name__)

_DATA_URL_RE = re.compile(r"^data:([\w/+.-]+);base64,(.*)$", re.DOTALL)
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+=*$")


def sniff_mime(data: bytes | None) -> str | None:
    """Guesses the MIME type of image data from its magic bytes."""
    if not data:
        return None
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def parse_data_url(data_url: str) -> tuple[bytes, str]:
    """Parses a base64 data URL and returns the decoded bytes and mime type."""
    match = _DATA_URL_RE.match(data_url.strip())
    if not match:
        raise ValueError("Invalid data URL format")
    mime_type, b64_data = match.groups()
    return base64.b64decode(b64_data), mime_type


def looks_like_base64(text: str) -> bool:
    return bool(_BASE64_RE.match(text.strip()[:100]))


def decode_image_payload(image: bytes | str) -> tuple[bytes | None, str | None]:
    """
    Normalizes an image given as raw bytes, a base64 string or a data URL.

    Returns the decoded bytes (None when undecodable) and the declared mime
    type when the payload carried one.
    """
    if isinstance(image, (bytes, bytearray)):
        return bytes(image), None
    text = image.strip()
    if text.startswith("data:"):
        try:
            data, mime = parse_data_url(text)
        except (ValueError, binascii.Error):
            return None, None
        return data, mime
    try:
        return base64.b64decode(text, validate=True), None
    except (ValueError, binascii.Error):
        return None, None


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def probe_dimensions(data: bytes) -> tuple[int, int] | None:
    """Returns (width, height) of an encoded image, or None if it cannot be read."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError):
        logger.debug("Could not read image dimensions", size=len(data))
        return None


def encode_grayscale_png(pixels: np.ndarray) -> bytes:
    """Encodes a 2D uint8 array as a grayscale PNG."""
    img = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
    with io.BytesIO() as buf:
        img.save(buf, format="PNG")
        return buf.getvalue()
