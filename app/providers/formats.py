"""
Image format detection.

Providers and upload clients misreport content types and file extensions
(a "webp" that is really a PNG, a data URL labelled image/jpeg holding WebP
bytes). The stored extension and content type are therefore derived from the
leading bytes of the buffer:

1. Magic-byte signature (authoritative)
2. Declared content type, if it is an image/* type
3. PNG
"""
import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class ImageFormat:
    mime_type: str
    extension: str


PNG = ImageFormat("image/png", "png")
JPEG = ImageFormat("image/jpeg", "jpg")
WEBP = ImageFormat("image/webp", "webp")
GIF = ImageFormat("image/gif", "gif")

DEFAULT_FORMAT = PNG

# Shortest buffer that can hold every signature we check (RIFF header + form type)
MIN_SIGNATURE_BYTES = 12

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}

_DATA_URL_RE = re.compile(r"^data:([^;,]+)?(?:;[^,]*)?;base64,(.*)$", re.DOTALL)


def detect_format(data: bytes) -> Optional[ImageFormat]:
    """
    Identify an image format from its magic bytes.

    Returns None ("unknown") for buffers shorter than 12 bytes or without a
    known signature. Never raises.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        return None
    head = bytes(data[:MIN_SIGNATURE_BYTES])
    if len(head) < MIN_SIGNATURE_BYTES:
        return None

    # PNG: 89 50 4E 47 0D 0A 1A 0A
    if head[:4] == b"\x89PNG":
        return PNG

    # JPEG: FF D8 FF (SOI + first marker)
    if head[:3] == b"\xff\xd8\xff":
        return JPEG

    # WebP: RIFF <size> WEBP
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return WEBP

    # GIF87a / GIF89a
    if head[:3] == b"GIF":
        return GIF

    return None


def extension_for_mime(mime_type: Optional[str]) -> str:
    """Map an image MIME type to a file extension (png if unrecognised)."""
    if not mime_type:
        return DEFAULT_FORMAT.extension
    return MIME_EXTENSIONS.get(mime_type.split(";")[0].strip().lower(), DEFAULT_FORMAT.extension)


def resolve_format(data: bytes, declared_content_type: Optional[str] = None) -> ImageFormat:
    """
    Decide the format to store bytes under.

    Byte inspection wins; a declared image/* content type is used only when
    the bytes are inconclusive; PNG is the last resort.
    """
    detected = detect_format(data)
    if detected:
        return detected

    if declared_content_type:
        mime_type = declared_content_type.split(";")[0].strip().lower()
        if mime_type.startswith("image/"):
            if mime_type == "image/jpg":
                mime_type = "image/jpeg"
            return ImageFormat(mime_type, extension_for_mime(mime_type))

    return DEFAULT_FORMAT


def decode_data_url(data_url: str) -> Tuple[bytes, Optional[str]]:
    """
    Split a base64 data URL into (bytes, declared mime type).

    Accepts `data:<mime>;base64,<payload>`; a bare `<prefix>,<payload>` string
    is also tolerated with no declared type.

    Raises:
        ValueError: if the payload is not valid base64
    """
    match = _DATA_URL_RE.match(data_url)
    if match:
        declared, payload = match.group(1), match.group(2)
    elif "," in data_url:
        declared, payload = None, data_url.split(",", 1)[1]
    else:
        declared, payload = None, data_url

    try:
        return base64.b64decode(payload, validate=False), declared
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e


def is_data_url(value: str) -> bool:
    return value.startswith("data:")
