import base64
import binascii
import io
from typing import Optional

from PIL import Image, UnidentifiedImageError

from src.specs.common.errors import InvalidImageError

_MIME_BY_FORMAT = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


def sniff_mime(data: bytes, default: str = "image/png") -> str:
    """Return the MIME type Pillow detects for ``data``."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _MIME_BY_FORMAT.get((img.format or "").upper(), default)
    except (UnidentifiedImageError, OSError):
        return default


def to_png(data: bytes) -> bytes:
    """Re-encode an image as PNG; PNG input is returned untouched."""
    with Image.open(io.BytesIO(data)) as img:
        if (img.format or "").upper() == "PNG":
            return data
        converted = img.convert("RGBA") if img.mode in ("P", "LA", "RGBA") else img.convert("RGB")
        buf = io.BytesIO()
        converted.save(buf, format="PNG")
        return buf.getvalue()


def to_data_url(data: bytes, mime_type: Optional[str] = None) -> str:
    mime = mime_type or sniff_mime(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_image(value: str, *, field: str = "image") -> bytes:
    """Decode a base64 string or data URL and check that it is an image."""
    payload = value.split(",", 1)[1] if value.startswith("data:") else value
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError(f"{field} is not valid base64", details={"field": field}) from exc
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError(f"{field} is not a readable image", details={"field": field}) from exc
    return data


def encode_image(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
