"""
Message content variant.

On the wire a message body is a single string: plain text, or an image
encoded as a data URI ("data:image/png;base64,..."). Inside the service it
is a tagged variant so nothing downstream has to sniff prefixes.
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional, Union

from siso.errors import InvalidArgument

IMAGE_PREFIX = "data:image/"

# Client-side courtesy cap for image uploads; the server enforces no limit.
MAX_IMAGE_BYTES = 2 * 1024 * 1024

# data:image/<subtype>[;name=value]*;base64,<payload>
_DATA_URI_RE = re.compile(
    r"^data:(image/[A-Za-z0-9.+-]+)((?:;[^;,=]+=[^;,]*)*);base64,(.*)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class TextContent:
    text: str

    kind = "text"


@dataclass(frozen=True)
class ImageContent:
    data: bytes
    mime_type: str
    # Media type parameters as written, e.g. ";charset=utf-8"
    params: str = ""

    kind = "image"

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type}{self.params};base64,{encoded}"


Content = Union[TextContent, ImageContent]


def _parse_image(raw: str) -> Optional[ImageContent]:
    match = _DATA_URI_RE.match(raw)
    if not match:
        return None
    mime_type, params, payload = match.groups()
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None
    if not data:
        return None
    return ImageContent(data=data, mime_type=mime_type, params=params)


def parse_content(raw: str) -> Content:
    """
    Parse a wire content string into a content variant.

    Only a well-formed base64 image data URI becomes ImageContent. Anything
    else, including text that merely starts with "data:image/", is text.

    Raises:
        InvalidArgument: content is not a non-empty string
    """
    if not isinstance(raw, str) or not raw:
        raise InvalidArgument("content must be a non-empty string")

    if raw.startswith(IMAGE_PREFIX):
        image = _parse_image(raw)
        if image is not None:
            return image
    return TextContent(raw)


def serialize_content(content: Content) -> str:
    """Inverse of parse_content."""
    if isinstance(content, ImageContent):
        return content.to_data_uri()
    return content.text
