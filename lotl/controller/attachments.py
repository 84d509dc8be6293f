"""Attachment payloads: `data:image/...;base64,...` URLs decoded and validated."""

from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass

from .errors import AttachmentError

_DATA_URL_RE = re.compile(r"^data:(image/[a-z0-9.+-]+);base64,(.+)$", re.IGNORECASE | re.DOTALL)

_FORMAT_MIME: dict[str, str] = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

_MIME_EXT: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class Attachment:
    data: bytes
    mime_type: str
    width: int = 0
    height: int = 0

    @property
    def extension(self) -> str:
        return _MIME_EXT.get(self.mime_type, "bin")

    @property
    def size_kb(self) -> int:
        return round(len(self.data) / 1024)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


def decode_data_url(data_url: str, *, platform: str = "") -> Attachment:
    """Decode and validate an image data URL.

    The declared MIME type is not trusted: Pillow identifies the actual format and
    the attachment carries the canonical MIME type for it.
    """
    from PIL import Image, UnidentifiedImageError

    m = _DATA_URL_RE.match(str(data_url or "").strip())
    if not m:
        raise AttachmentError(
            platform=platform,
            reason="Invalid image data URL",
            suggestion="Expected data:image/<png|jpeg|gif|webp>;base64,...",
        )
    try:
        raw = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise AttachmentError(platform=platform, reason=f"Invalid base64 payload: {exc}") from exc
    if not raw:
        raise AttachmentError(platform=platform, reason="Empty image payload")

    try:
        with Image.open(io.BytesIO(raw)) as img:
            fmt = str(img.format or "").upper()
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise AttachmentError(
            platform=platform,
            reason=f"Attachment is not a readable image: {exc}",
            details={"declaredMime": m.group(1).lower()},
        ) from exc

    mime = _FORMAT_MIME.get(fmt)
    if mime is None:
        raise AttachmentError(
            platform=platform,
            reason=f"Unsupported image format: {fmt or 'unknown'}",
            suggestion="Use PNG, JPEG, GIF or WEBP",
        )
    return Attachment(data=raw, mime_type=mime, width=int(width), height=int(height))


def decode_all(items: list[str] | None, *, platform: str = "") -> list[Attachment]:
    return [decode_data_url(item, platform=platform) for item in (items or [])]
