from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from html import unescape
from typing import Any, Protocol
from urllib.parse import parse_qs, urlparse

from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    YouTubeTranscriptApi,
)

from backend.app.services.extraction_types import (
    ExtractionFailed,
    ExtractionOk,
    ExtractionResult,
)

LOGGER = logging.getLogger("claimcheck.captions")

VIDEO_CONTENT_LABEL = "youtube_transcript"
INCONCLUSIVE_NO_TRANSCRIPT = (
    "Inconclusive: this video has no captions or transcript available for analysis. "
    "Paste the transcript or upload the audio."
)
INCONCLUSIVE_SHORT_TRANSCRIPT = (
    "Inconclusive: the transcript is too short for analysis. "
    "Paste the full transcript or upload the audio."
)

_VIDEO_ID_PATTERN = re.compile(r"^[\w-]{11}$")
_VIDEO_PATH_PREFIXES: tuple[str, ...] = ("shorts", "embed", "live", "v")
_SHORT_LINK_HOSTS: frozenset[str] = frozenset({"youtu.be"})
_WHITESPACE_PATTERN = re.compile(r"\s+")


class CaptionsUnavailableError(Exception):
    pass


class CaptionSource(Protocol):
    def fetch(self, video_id: str, *, language: str | None) -> list[str]:
        """Return caption lines, or an empty list when no track matches."""
        ...


class YouTubeCaptionSource:
    def __init__(self, api: Any | None = None) -> None:
        self._api = api if api is not None else YouTubeTranscriptApi()

    def fetch(self, video_id: str, *, language: str | None) -> list[str]:
        try:
            if language is not None:
                fetched: Any = self._api.fetch(video_id, languages=[language])
            else:
                transcript = next(iter(self._api.list(video_id)), None)
                if transcript is None:
                    return []
                fetched = transcript.fetch()
        except NoTranscriptFound:
            return []
        except CouldNotRetrieveTranscript as exc:
            raise CaptionsUnavailableError(str(exc)) from exc
        return [snippet.text for snippet in fetched]


class CaptionExtractor:
    def __init__(
        self,
        *,
        source: CaptionSource,
        video_hosts: Sequence[str],
        preferred_language: str = "pt",
        min_chars: int = 100,
        max_chars: int = 10_000,
    ) -> None:
        self._source = source
        self._video_hosts = frozenset(host.lower() for host in video_hosts)
        self._preferred_language = preferred_language
        self._min_chars = max(1, min_chars)
        self._max_chars = max(self._min_chars, max_chars)

    def matches(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return host in self._video_hosts

    def extract(self, url: str) -> ExtractionResult:
        video_id = extract_video_id(url)
        if video_id is None:
            return ExtractionFailed(error="Could not identify the video ID in the link.")

        try:
            lines = self._source.fetch(video_id, language=self._preferred_language)
        except CaptionsUnavailableError as exc:
            LOGGER.info("captions unavailable video_id=%s reason=%s", video_id, exc)
            return ExtractionFailed(error=INCONCLUSIVE_NO_TRANSCRIPT)
        except Exception as exc:
            LOGGER.warning("captions fetch failed video_id=%s", video_id, exc_info=True)
            return ExtractionFailed(
                error=(
                    f"Failed to fetch the video transcript: {exc or 'unknown error'}. "
                    "Paste the transcript or upload the audio."
                ),
            )

        warnings: list[str] = []
        if not lines:
            lines = self._fetch_any_language(video_id)
            if not lines:
                return ExtractionFailed(error=INCONCLUSIVE_NO_TRANSCRIPT)
            warnings.append(
                "Transcript obtained in an alternative language "
                f"(not {self._preferred_language})."
            )

        return self._build_result(" ".join(lines), video_id=video_id, url=url, warnings=warnings)

    def _fetch_any_language(self, video_id: str) -> list[str]:
        try:
            return self._source.fetch(video_id, language=None)
        except Exception:
            LOGGER.info("captions fallback fetch failed video_id=%s", video_id, exc_info=True)
            return []

    def _build_result(
        self,
        raw_text: str,
        *,
        video_id: str,
        url: str,
        warnings: list[str],
    ) -> ExtractionResult:
        cleaned = unescape(_WHITESPACE_PATTERN.sub(" ", raw_text)).strip()
        if len(cleaned) < self._min_chars:
            return ExtractionFailed(error=INCONCLUSIVE_SHORT_TRANSCRIPT, warnings=tuple(warnings))

        header = f"[Video transcript: {video_id}]\n\n"
        # Header plus body stays within max_chars.
        body_limit = max(self._min_chars, self._max_chars - len(header))
        if len(cleaned) > body_limit:
            cleaned = cleaned[:body_limit].rstrip()
            warnings.append(f"Transcript truncated to {body_limit:,} characters.")

        LOGGER.info("captions extracted video_id=%s chars=%s", video_id, len(cleaned))
        return ExtractionOk(
            text=header + cleaned,
            content_label=VIDEO_CONTENT_LABEL,
            title=f"Video: {video_id}",
            source_url=url,
            warnings=tuple(warnings),
        )


def extract_video_id(url: str) -> str | None:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    path_parts = [part for part in parsed.path.split("/") if part]

    candidates: list[str] = []
    if host in _SHORT_LINK_HOSTS and path_parts:
        candidates.append(path_parts[0])
    candidates.extend(parse_qs(parsed.query).get("v", []))
    if len(path_parts) >= 2 and path_parts[0] in _VIDEO_PATH_PREFIXES:
        candidates.append(path_parts[1])

    for candidate in candidates:
        if _VIDEO_ID_PATTERN.match(candidate):
            return candidate
    return None
