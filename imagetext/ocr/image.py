from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from imagetext.core.errors import InvalidImageError

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<body>.*)$", re.DOTALL)


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str | None = None) -> ImagePayload:
        return cls(data=bytes(data), mime_type=mime_type or "application/octet-stream")

    @classmethod
    def from_data_uri(cls, uri: str) -> ImagePayload:
        """Decode a ``data:<mime>;base64,<body>`` URI as produced by a browser FileReader."""
        match = _DATA_URI_RE.match(uri.strip())
        if not match:
            raise InvalidImageError("Malformed image data URI.")
        try:
            data = base64.b64decode(match.group("body"), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidImageError("Image data is not valid base64.") from exc
        return cls(data=data, mime_type=match.group("mime") or "application/octet-stream")


def validate_upload(content_type: str | None, size: int, max_bytes: int) -> None:
    """Reject non-image uploads and files above ``max_bytes``."""
    if not content_type or not content_type.lower().startswith("image/"):
        raise InvalidImageError()
    if size <= 0:
        raise InvalidImageError("The uploaded image is empty.")
    if size > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise InvalidImageError(
            f"Image file is too large. Please select an image under {limit_mb}MB.",
            too_large=True,
        )
