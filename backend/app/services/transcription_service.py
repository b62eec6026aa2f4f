from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from time import monotonic
from typing import Any, cast

import httpx

from backend.app.services.extraction_types import (
    AudioExtractionResult,
    ErrorKind,
    ExtractionFailed,
    ExtractionOk,
)
from backend.app.services.media import MediaPayload, parse_data_url
from backend.app.services.subtitles import parse_subtitle_document, segments_to_text

LOGGER = logging.getLogger("claimcheck.transcription")

JOB_STATUS_PROCESSING = "PROCESSING"
JOB_STATUS_DONE = "DONE"
MIN_TRANSCRIPT_CHARS = 5
MIN_POLL_TIMEOUT_SECONDS = 1.0
AUDIO_CONTENT_LABEL = "audio_transcript"


@dataclass(frozen=True)
class TranscriptionJob:
    job_id: str
    status: str


@dataclass(frozen=True)
class _PollOutcome:
    status: str
    attempts: int
    cancelled: bool


class TranscriptionJobClient:
    """Client for the external subtitle transcription job service.

    One ``transcribe`` call owns one job: upload, poll until the job leaves
    ``PROCESSING`` (bounded by ``poll_max_attempts``), download the subtitle
    document, and flatten it into text. Failures are returned as
    ``ExtractionFailed`` values and never raised.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        language: str = "pt",
        model: str = "small",
        http_timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 3.0,
        poll_max_attempts: int = 60,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._api_key = _normalize_optional_text(api_key)
        self._base_url = base_url.strip().rstrip("/")
        self._language = language
        self._model = model
        self._http_timeout_seconds = max(1.0, http_timeout_seconds)
        self._poll_interval_seconds = max(0.0, poll_interval_seconds)
        self._poll_max_attempts = max(1, poll_max_attempts)
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    def transcribe(
        self,
        audio_payload: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> AudioExtractionResult:
        if self._api_key is None:
            LOGGER.error("transcription service api key is not configured")
            return ExtractionFailed(
                error=(
                    "Audio transcription service is not configured "
                    "(CLAIMCHECK_TRANSCRIPTION_API_KEY)."
                ),
                error_kind=ErrorKind.SERVER_MISCONFIG,
            )

        media = parse_data_url(audio_payload)
        if media is None or not media.mime_type.startswith("audio/"):
            return ExtractionFailed(
                error="Invalid audio format. Upload a valid audio file.",
                error_kind=ErrorKind.VALIDATION,
            )

        LOGGER.info(
            "transcription audio received mime_type=%s size_kb=%s",
            media.mime_type,
            len(media.data) // 1024,
        )
        try:
            with self._open_client() as client:
                return self._run_job(client, media, cancel_event)
        except Exception as exc:
            LOGGER.exception("transcription failed unexpectedly")
            return ExtractionFailed(
                error=f"Audio transcription error: {_summarize_exception_message(exc)}",
            )

    @contextmanager
    def _open_client(self) -> Iterator[httpx.Client]:
        if self._http_client is not None:
            yield self._http_client
            return
        with httpx.Client(timeout=self._http_timeout_seconds) as client:
            yield client

    def _run_job(
        self,
        client: httpx.Client,
        media: MediaPayload,
        cancel_event: threading.Event | None,
    ) -> AudioExtractionResult:
        submitted = self._submit_job(client, media)
        if isinstance(submitted, ExtractionFailed):
            return submitted
        LOGGER.info(
            "transcription job submitted job_id=%s status=%s",
            submitted.job_id,
            submitted.status,
        )

        outcome = self._await_job(client, submitted, cancel_event)
        if outcome.cancelled:
            LOGGER.info(
                "transcription job wait cancelled job_id=%s attempts=%s",
                submitted.job_id,
                outcome.attempts,
            )
            return ExtractionFailed(error="Audio transcription was cancelled before completion.")
        if outcome.status != JOB_STATUS_DONE:
            if outcome.status == JOB_STATUS_PROCESSING:
                LOGGER.error(
                    "transcription job timed out job_id=%s attempts=%s",
                    submitted.job_id,
                    outcome.attempts,
                )
                return ExtractionFailed(
                    error="Timed out waiting for the audio transcription.",
                    error_kind=ErrorKind.UPSTREAM_TIMEOUT,
                )
            LOGGER.error(
                "transcription job failed job_id=%s status=%s",
                submitted.job_id,
                outcome.status,
            )
            return ExtractionFailed(error=f"Audio transcription failed (status: {outcome.status}).")

        document = self._download_document(client, submitted.job_id)
        if document is None:
            return ExtractionFailed(error="Failed to download the generated transcription.")
        LOGGER.info(
            "transcription document received job_id=%s chars=%s",
            submitted.job_id,
            len(document),
        )
        return _build_transcript_result(document)

    def _submit_job(
        self,
        client: httpx.Client,
        media: MediaPayload,
    ) -> TranscriptionJob | ExtractionFailed:
        try:
            response = client.post(
                f"{self._base_url}/api/jobs",
                headers=self._headers(),
                files={"file": (f"audio.{media.audio_extension}", media.data, media.mime_type)},
                data={"language": self._language, "model": self._model},
            )
        except httpx.HTTPError as exc:
            LOGGER.error("transcription upload request failed error=%s", exc)
            return ExtractionFailed(
                error=(
                    "Failed to send audio for transcription: "
                    f"{_summarize_exception_message(exc)}"
                ),
            )

        if not response.is_success:
            LOGGER.error(
                "transcription upload rejected status=%s body=%s",
                response.status_code,
                response.text[:300],
            )
            return ExtractionFailed(
                error=f"Failed to send audio for transcription (status {response.status_code}).",
            )

        payload = _parse_json_dict(response)
        job_id = _coerce_nonempty_string(payload.get("id")) or _coerce_nonempty_string(
            payload.get("jobId")
        )
        if job_id is None:
            return ExtractionFailed(
                error="Transcription job was accepted but no job ID was returned.",
            )
        status = _extract_job_status(payload) or JOB_STATUS_PROCESSING
        return TranscriptionJob(job_id=job_id, status=status)

    def _await_job(
        self,
        client: httpx.Client,
        job: TranscriptionJob,
        cancel_event: threading.Event | None,
    ) -> _PollOutcome:
        status = job.status
        attempts = 0
        # Total wait is bounded by the sleep budget, however slow individual polls are.
        deadline = monotonic() + self._poll_interval_seconds * self._poll_max_attempts
        while status == JOB_STATUS_PROCESSING and attempts < self._poll_max_attempts:
            if self._wait_poll_interval(cancel_event):
                return _PollOutcome(status=status, attempts=attempts, cancelled=True)
            attempts += 1

            remaining = deadline - monotonic()
            polled_status = self._poll_job_status(
                client,
                job.job_id,
                timeout=min(self._http_timeout_seconds, max(remaining, MIN_POLL_TIMEOUT_SECONDS)),
            )
            if polled_status is None and monotonic() >= deadline:
                LOGGER.warning(
                    "transcription poll deadline reached job_id=%s attempt=%s",
                    job.job_id,
                    attempts,
                )
                break
            if polled_status is None:
                LOGGER.warning(
                    "transcription poll failed job_id=%s attempt=%s max_attempts=%s",
                    job.job_id,
                    attempts,
                    self._poll_max_attempts,
                )
                continue
            status = polled_status
            LOGGER.debug(
                "transcription poll job_id=%s attempt=%s status=%s",
                job.job_id,
                attempts,
                status,
            )
            if status == JOB_STATUS_PROCESSING and monotonic() >= deadline:
                break
        return _PollOutcome(status=status, attempts=attempts, cancelled=False)

    def _wait_poll_interval(self, cancel_event: threading.Event | None) -> bool:
        if cancel_event is None:
            time.sleep(self._poll_interval_seconds)
            return False
        return cancel_event.wait(self._poll_interval_seconds)

    def _poll_job_status(
        self,
        client: httpx.Client,
        job_id: str,
        *,
        timeout: float,
    ) -> str | None:
        try:
            response = client.get(
                f"{self._base_url}/api/jobs/{job_id}",
                headers=self._headers(),
                timeout=timeout,
            )
        except httpx.HTTPError:
            return None
        if not response.is_success:
            return None
        return _extract_job_status(_parse_json_dict(response))

    def _download_document(self, client: httpx.Client, job_id: str) -> str | None:
        try:
            response = client.get(
                f"{self._base_url}/api/jobs/{job_id}/download",
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            LOGGER.error("transcription download request failed job_id=%s error=%s", job_id, exc)
            return None
        if not response.is_success:
            LOGGER.error(
                "transcription download rejected job_id=%s status=%s",
                job_id,
                response.status_code,
            )
            return None
        return response.text

    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self._api_key or ""}


def _build_transcript_result(document: str) -> AudioExtractionResult:
    segments = parse_subtitle_document(document)
    full_text = segments_to_text(segments)
    if len(full_text) < MIN_TRANSCRIPT_CHARS:
        return ExtractionFailed(
            error="The audio transcript is empty or contains only instrumental parts.",
            warnings=("No speech was detected in the audio.",),
        )

    warnings: tuple[str, ...] = ()
    if any(segment.is_instrumental for segment in segments):
        warnings = ("Instrumental parts were identified and removed from the analysis.",)
    LOGGER.info(
        "transcription transcript ready chars=%s segments=%s",
        len(full_text),
        len(segments),
    )
    return ExtractionOk(
        text=full_text,
        content_label=AUDIO_CONTENT_LABEL,
        warnings=warnings,
        segments=tuple(segments),
    )


def _parse_json_dict(response: httpx.Response) -> dict[str, Any]:
    try:
        parsed = response.json()
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    raw_dict = cast(dict[object, object], parsed)
    return {key: value for key, value in raw_dict.items() if isinstance(key, str)}


def _extract_job_status(payload: dict[str, Any]) -> str | None:
    raw_status = _coerce_nonempty_string(payload.get("status"))
    if raw_status is None:
        return None
    return raw_status.upper()


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    if isinstance(raw_value, int) and not isinstance(raw_value, bool):
        return str(raw_value)
    return None


def _normalize_optional_text(raw_value: str | None) -> str | None:
    if raw_value is None:
        return None
    normalized = raw_value.strip()
    if not normalized:
        return None
    return normalized


def _summarize_exception_message(exc: Exception, *, max_length: int = 300) -> str:
    message = " ".join(str(exc).split()) or type(exc).__name__
    if len(message) <= max_length:
        return message
    return f"{message[:max_length]}..."
