from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

_DATA_URL_PATTERN = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)

AUDIO_EXTENSIONS: dict[str, str] = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/m4a": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
    "audio/flac": "flac",
    "audio/aac": "aac",
}


@dataclass(frozen=True)
class MediaPayload:
    mime_type: str
    data: bytes

    @property
    def audio_extension(self) -> str:
        return AUDIO_EXTENSIONS.get(self.mime_type, "mp3")


def parse_data_url(content: str) -> MediaPayload | None:
    """Decode a ``data:<mime>;base64,<payload>`` string, or return None when malformed."""
    match = _DATA_URL_PATTERN.match(content.strip())
    if match is None:
        return None

    mime_type = match.group(1).strip().lower()
    encoded = "".join(match.group(2).split())
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None
    if not data:
        return None
    return MediaPayload(mime_type=mime_type, data=data)
