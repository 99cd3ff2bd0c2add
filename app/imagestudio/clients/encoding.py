"""
Payload encoding for the image studio.
Turns local images (uploaded files or data URLs) into inline parts.
"""
import base64
import binascii
import mimetypes
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .base import InvalidImageError

DEFAULT_MIME_TYPE = "image/png"

_MIME_PATTERN = re.compile(r":(.*?);")


@dataclass
class InlinePart:
    """Image payload as the service expects it: a MIME type and base64 data."""
    mime_type: str
    data: str

    def to_wire(self) -> dict:
        return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass
class UploadedImage:
    """A file the user uploaded from the browser."""
    data: bytes
    filename: str = "image.png"
    content_type: Optional[str] = None


def data_url_to_part(data_url: str) -> InlinePart:
    """
    Convert a data URL string to an inline part.

    The payload after the comma is passed through unchanged.
    """
    pieces = data_url.split(",", 1)
    if len(pieces) < 2:
        raise InvalidImageError("Invalid data URL")

    mime_match = _MIME_PATTERN.search(pieces[0])
    if not mime_match or not mime_match.group(1):
        raise InvalidImageError("Could not parse MIME type from data URL")

    return InlinePart(mime_type=mime_match.group(1), data=pieces[1])


def file_to_part(image_data: bytes, filename: str, content_type: Optional[str] = None) -> InlinePart:
    """Convert raw file bytes to an inline part."""
    if not image_data:
        raise InvalidImageError(f"Uploaded file is empty: {filename}")

    mime_type = content_type
    if not mime_type or mime_type == "application/octet-stream":
        mime_type, _ = mimetypes.guess_type(filename)
    if not mime_type:
        mime_type = DEFAULT_MIME_TYPE

    data = base64.standard_b64encode(image_data).decode("ascii")
    return InlinePart(mime_type=mime_type, data=data)


def to_part(image: Union[str, UploadedImage, InlinePart]) -> InlinePart:
    """Encode any supported image source as an inline part."""
    if isinstance(image, InlinePart):
        return image
    if isinstance(image, str):
        return data_url_to_part(image)
    if isinstance(image, UploadedImage):
        return file_to_part(image.data, image.filename, image.content_type)
    raise InvalidImageError(f"Unsupported image source: {type(image).__name__}")


def data_url_to_bytes(data_url: str) -> Tuple[str, bytes]:
    """Decode a data URL into its MIME type and raw bytes."""
    part = data_url_to_part(data_url)
    try:
        return part.mime_type, base64.b64decode(part.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"Invalid base64 payload in data URL: {e}") from e
