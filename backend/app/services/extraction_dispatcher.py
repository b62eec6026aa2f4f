from __future__ import annotations

import logging
import threading
from typing import Literal, Protocol
from urllib.parse import urlparse

from backend.app.services.caption_service import CaptionExtractor
from backend.app.services.extraction_types import (
    ErrorKind,
    ExtractionFailed,
    ExtractionOk,
    ExtractionResult,
)
from backend.app.services.transcription_service import TranscriptionJobClient

LOGGER = logging.getLogger("claimcheck.extraction")

ExtractionKind = Literal["text", "link", "audio"]
TEXT_CONTENT_LABEL = "text"
MAX_URL_LENGTH = 2048


class LinkExtractor(Protocol):
    def extract(self, url: str) -> ExtractionResult:
        ...


def validate_url(value: str) -> str | None:
    """Return the normalized URL, or None when it is not an absolute http(s) URL."""
    normalized = value.strip()
    if not normalized or len(normalized) > MAX_URL_LENGTH:
        return None
    if any(ord(character) < 32 or character.isspace() for character in normalized):
        return None
    try:
        parsed = urlparse(normalized)
        _ = parsed.port
    except ValueError:
        return None
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
        return None
    if parsed.username or parsed.password:
        return None
    return normalized


class ExtractionDispatcher:
    def __init__(
        self,
        *,
        caption_extractor: CaptionExtractor,
        web_page_extractor: LinkExtractor,
        transcription_client: TranscriptionJobClient,
    ) -> None:
        self._caption_extractor = caption_extractor
        self._web_page_extractor = web_page_extractor
        self._transcription_client = transcription_client

    def is_video_link(self, url: str) -> bool:
        return self._caption_extractor.matches(url)

    def extract(
        self,
        content: str,
        declared_kind: ExtractionKind,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExtractionResult:
        if declared_kind == "text":
            return ExtractionOk(text=content, content_label=TEXT_CONTENT_LABEL)
        if declared_kind == "link":
            return self._extract_link(content)
        if declared_kind == "audio":
            LOGGER.info("extraction audio transcription requested")
            return self._transcription_client.transcribe(content, cancel_event=cancel_event)
        return ExtractionFailed(
            error=f"Unsupported input kind for extraction: {declared_kind}.",
            error_kind=ErrorKind.VALIDATION,
        )

    def _extract_link(self, content: str) -> ExtractionResult:
        url = validate_url(content)
        if url is None:
            return ExtractionFailed(
                error="Invalid URL. Check the format and try again.",
                error_kind=ErrorKind.VALIDATION,
            )

        is_video = self.is_video_link(url)
        LOGGER.info("extraction link is_video=%s url=%s", is_video, url[:100])
        if is_video:
            return self._caption_extractor.extract(url)
        return self._web_page_extractor.extract(url)
