from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from time import perf_counter
from typing import Any

from pydantic import ValidationError

from backend.app.models.analysis_contracts import AnalysisReport, AnalysisRequest, ErrorResponse
from backend.app.repositories.analysis_repository import (
    AnalysisRecord,
    AnalysisRepository,
    build_input_summary,
)
from backend.app.services.analysis_model import AnalysisModel, ModelRequest, shape_report
from backend.app.services.extraction_dispatcher import ExtractionDispatcher
from backend.app.services.extraction_types import ErrorKind, ExtractionFailed
from backend.app.services.media import MediaPayload, parse_data_url
from backend.app.services.rate_limiter import RateLimitDecision, RateLimiter
from backend.app.services.sanitizer import clean
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("claimcheck.analysis")

STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.EXTRACTION_FAILED: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UNEXPECTED: 500,
    ErrorKind.SERVER_MISCONFIG: 503,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
}
RATE_LIMITED_MESSAGE = "Too many requests. Wait a minute and try again."
MODEL_MISCONFIGURED_MESSAGE = (
    "The analysis model is not configured on the server (CLAIMCHECK_GEMINI_API_KEY)."
)
UNEXPECTED_MESSAGE = "Analysis failed on the server. Try again."
IMAGE_INPUT_TYPE = "image"


@dataclass(frozen=True)
class AnalysisSuccess:
    report: AnalysisReport
    decision: RateLimitDecision
    status_code: int = 200

    def to_response_body(self) -> dict[str, Any]:
        return self.report.to_response_body()


@dataclass(frozen=True)
class AnalysisError:
    kind: ErrorKind
    message: str
    status_code: int
    decision: RateLimitDecision | None = None
    retry_after_seconds: int | None = None

    def to_response_body(self) -> dict[str, Any]:
        return ErrorResponse(error=str(self.kind), message=self.message).model_dump(mode="json")


AnalysisOutcome = AnalysisSuccess | AnalysisError


@dataclass(frozen=True)
class _PreparedInput:
    effective_input_type: str
    model_request: ModelRequest
    analyzed_text: str
    source_url: str | None
    warnings: tuple[str, ...]


def compute_fingerprint(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def error_outcome(
    kind: ErrorKind,
    message: str,
    *,
    decision: RateLimitDecision | None = None,
) -> AnalysisError:
    return AnalysisError(
        kind=kind,
        message=message,
        status_code=STATUS_CODES[kind],
        decision=decision,
    )


class AnalysisOrchestrator:
    """Runs one check request from rate limiting to the shaped report.

    Outcomes are values: callers map ``AnalysisError.status_code`` straight to the
    HTTP response. Persistence is best effort and never changes the outcome.
    """

    def __init__(
        self,
        *,
        rate_limiter: RateLimiter,
        dispatcher: ExtractionDispatcher,
        model: AnalysisModel,
        repository: AnalysisRepository | None,
        telemetry: TelemetryClient,
        analysis_max_chars: int = 10_000,
        analysis_language: str = "pt-BR",
        shutdown_event: threading.Event | None = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._dispatcher = dispatcher
        self._model = model
        self._repository = repository
        self._telemetry = telemetry
        self._analysis_max_chars = max(1, analysis_max_chars)
        self._analysis_language = analysis_language
        self._shutdown_event = shutdown_event

    def handle(self, identifier: str, payload: Any) -> AnalysisOutcome:
        decision = self._rate_limiter.check(identifier)
        if not decision.allowed:
            LOGGER.info(
                "analysis rate limited retry_after_seconds=%s",
                decision.retry_after_seconds,
            )
            self._telemetry.emit(
                "analysis.rate_limited",
                limit=decision.limit,
                retry_after_seconds=decision.retry_after_seconds,
            )
            return AnalysisError(
                kind=ErrorKind.RATE_LIMITED,
                message=RATE_LIMITED_MESSAGE,
                status_code=STATUS_CODES[ErrorKind.RATE_LIMITED],
                decision=decision,
                retry_after_seconds=decision.retry_after_seconds,
            )

        try:
            return self._run(payload, decision)
        except Exception:
            LOGGER.exception("analysis failed unexpectedly")
            self._telemetry.emit(
                "analysis.finish",
                outcome="error",
                error_kind=ErrorKind.UNEXPECTED,
            )
            return error_outcome(ErrorKind.UNEXPECTED, UNEXPECTED_MESSAGE, decision=decision)

    def _run(self, payload: Any, decision: RateLimitDecision) -> AnalysisOutcome:
        started_at = perf_counter()
        try:
            request = AnalysisRequest.model_validate(payload)
        except ValidationError as exc:
            return error_outcome(
                ErrorKind.VALIDATION,
                _first_validation_message(exc),
                decision=decision,
            )

        if not self._model.configured:
            LOGGER.error("analysis model api key is not configured")
            return error_outcome(
                ErrorKind.SERVER_MISCONFIG,
                MODEL_MISCONFIGURED_MESSAGE,
                decision=decision,
            )

        prepared = self._prepare_input(request)
        if isinstance(prepared, ExtractionFailed):
            LOGGER.warning(
                "analysis extraction failed input_kind=%s error_kind=%s error=%s",
                request.input_kind,
                prepared.error_kind,
                prepared.error,
            )
            self._telemetry.emit(
                "analysis.finish",
                outcome="error",
                input_kind=request.input_kind,
                error_kind=prepared.error_kind,
                duration_ms=int((perf_counter() - started_at) * 1000),
            )
            return error_outcome(prepared.error_kind, prepared.error, decision=decision)

        raw_text = self._model.generate(prepared.model_request)
        report = shape_report(
            raw_text,
            input_type=prepared.effective_input_type,
            language=self._analysis_language,
        )
        report.meta.fingerprint = compute_fingerprint(request.content)
        if prepared.source_url is not None:
            report.meta.source_url = prepared.source_url
        report.meta.warnings.extend(prepared.warnings)

        self._persist(request, prepared, report)
        LOGGER.info(
            "analysis finished input_kind=%s input_type=%s verdict=%s fingerprint=%s",
            request.input_kind,
            prepared.effective_input_type,
            report.summary.verdict,
            report.meta.fingerprint[:12],
        )
        self._telemetry.emit(
            "analysis.finish",
            outcome="ok",
            input_kind=request.input_kind,
            input_type=prepared.effective_input_type,
            warning_count=len(report.meta.warnings),
            duration_ms=int((perf_counter() - started_at) * 1000),
        )
        return AnalysisSuccess(report=report, decision=decision)

    def _prepare_input(self, request: AnalysisRequest) -> _PreparedInput | ExtractionFailed:
        if request.input_kind == IMAGE_INPUT_TYPE:
            media = parse_data_url(request.content)
            if media is None or not media.mime_type.startswith("image/"):
                return ExtractionFailed(
                    error="Invalid image format. Upload a valid image file.",
                    error_kind=ErrorKind.VALIDATION,
                )
            return _image_input(media)

        extraction_started_at = perf_counter()
        extraction = self._dispatcher.extract(
            request.content,
            request.input_kind,
            cancel_event=self._shutdown_event,
        )
        if request.input_kind != "text":
            self._telemetry.emit(
                "analysis.extraction.finish",
                input_kind=request.input_kind,
                ok=extraction.ok,
                warning_count=len(extraction.warnings),
                duration_ms=int((perf_counter() - extraction_started_at) * 1000),
            )
        if isinstance(extraction, ExtractionFailed):
            return extraction

        cleaned_text = clean(extraction.text)
        analyzed_text = cleaned_text[: self._analysis_max_chars].strip()
        warnings = extraction.warnings
        if len(cleaned_text) > self._analysis_max_chars:
            LOGGER.info(
                "analysis input truncated chars=%s limit=%s",
                len(cleaned_text),
                self._analysis_max_chars,
            )
            warnings = (
                *warnings,
                f"Content truncated to {self._analysis_max_chars:,} characters for analysis.",
            )
        return _PreparedInput(
            effective_input_type=extraction.content_label,
            model_request=ModelRequest(
                input_type=extraction.content_label,
                text=analyzed_text,
            ),
            analyzed_text=analyzed_text,
            source_url=extraction.source_url,
            warnings=warnings,
        )

    def _persist(
        self,
        request: AnalysisRequest,
        prepared: _PreparedInput,
        report: AnalysisReport,
    ) -> None:
        if self._repository is None:
            return
        fingerprint = report.meta.fingerprint
        claims = [claim.model_dump(mode="json", by_alias=True) for claim in report.claims]
        try:
            self._repository.insert_analysis(
                AnalysisRecord(
                    input_type=request.input_kind,
                    input_summary=build_input_summary(
                        input_type=request.input_kind,
                        raw_content=request.content,
                        analyzed_text=prepared.analyzed_text,
                    ),
                    scores=report.scores.model_dump(mode="json", by_alias=True),
                    verdict=report.summary.verdict,
                    report_markdown=report.report_markdown,
                    claims=claims,
                    fingerprint=fingerprint,
                    fake_probability=report.scores.fake_probability,
                )
            )
        except Exception:
            LOGGER.error("analysis persistence insert failed", exc_info=True)

        if not fingerprint or not report.summary.headline:
            return
        try:
            self._repository.record_trending(
                title=report.summary.headline,
                reason=report.summary.one_paragraph,
                fingerprint=fingerprint,
                claims=claims,
                fake_probability=report.scores.fake_probability,
            )
        except Exception:
            LOGGER.error("analysis trending update failed", exc_info=True)


def _image_input(media: MediaPayload) -> _PreparedInput:
    return _PreparedInput(
        effective_input_type=IMAGE_INPUT_TYPE,
        model_request=ModelRequest(input_type=IMAGE_INPUT_TYPE, media=media),
        analyzed_text=f"[image {media.mime_type}]",
        source_url=None,
        warnings=(),
    )


def _first_validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request data."
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = str(first.get("msg", "Invalid request data."))
    if location:
        return f"{location}: {message}"
    return message
