from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.dependencies import get_orchestrator
from backend.app.models.analysis_contracts import AnalysisReport, ErrorResponse
from backend.app.services.analysis_orchestrator import (
    AnalysisError,
    AnalysisOrchestrator,
    AnalysisOutcome,
)
from backend.app.services.rate_limiter import UNKNOWN_IDENTIFIER

router = APIRouter()


def client_identifier(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return UNKNOWN_IDENTIFIER


def outcome_response(outcome: AnalysisOutcome) -> JSONResponse:
    headers: dict[str, str] = {}
    if outcome.decision is not None:
        headers["X-RateLimit-Limit"] = str(outcome.decision.limit)
        headers["X-RateLimit-Remaining"] = str(outcome.decision.remaining)
    if isinstance(outcome, AnalysisError) and outcome.retry_after_seconds is not None:
        headers["Retry-After"] = str(outcome.retry_after_seconds)
    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.to_response_body(),
        headers=headers,
    )


@router.post(
    "/api/check",
    response_model=AnalysisReport,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
    tags=["analysis"],
    operation_id="check_content",
)
def check_content(
    request: Request,
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)],
    payload: Annotated[Any, Body()] = None,
) -> JSONResponse:
    identifier = client_identifier(request)
    context_tokens = bind_contextvars(analysis_input_kind=_declared_kind(payload))
    try:
        outcome = orchestrator.handle(identifier, payload)
    finally:
        reset_contextvars(**context_tokens)
    return outcome_response(outcome)


def _declared_kind(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    raw_kind = payload.get("inputKind", payload.get("inputType"))
    return raw_kind if isinstance(raw_kind, str) else None
