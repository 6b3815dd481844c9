"""
Inline media helpers.

Scenes and HTTP clients hand media around as data URLs
(data:<mime>;base64,<payload>); vendors and ffmpeg need bytes or URLs.
"""

import base64
import binascii
import re
from dataclasses import dataclass

from core.errors import InvalidRequest

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<payload>.*)$", re.S)

# Extensions for the MIME types scenes actually carry
_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
    "audio/aac": "aac",
    "video/mp4": "mp4",
    "video/webm": "webm",
}


@dataclass(frozen=True)
class DecodedMedia:
    content_type: str
    data: bytes

    @property
    def extension(self) -> str:
        return extension_for(self.content_type)


def is_data_url(value: str) -> bool:
    return bool(value) and value.startswith("data:")


def extension_for(content_type: str) -> str:
    if content_type in _EXTENSIONS:
        return _EXTENSIONS[content_type]
    return content_type.split("/")[-1].split("+")[0] or "bin"


def decode_data_url(value: str, default_type: str = "image/png") -> DecodedMedia:
    """
    Decode a base64 data URL.

    A bare base64 string (no data: prefix) is accepted and typed as
    default_type.

    Raises:
        InvalidRequest: not valid base64 / not a base64 data URL
    """
    if is_data_url(value):
        match = _DATA_URL.match(value)
        if not match:
            raise InvalidRequest("Only base64 data URLs are supported")
        content_type = match.group("mime") or default_type
        payload = match.group("payload")
    else:
        content_type = default_type
        payload = value

    try:
        data = base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequest(f"Invalid base64 payload: {e}")

    if not data:
        raise InvalidRequest("Empty media payload")

    return DecodedMedia(content_type=content_type, data=data)


def encode_data_url(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
