from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.api.routes import router
from backend.app.dependencies import (
    get_rate_limiter,
    get_settings,
    get_shutdown_event,
    get_telemetry,
)
from backend.app.logging_config import configure_application_logging
from backend.app.models.analysis_contracts import ErrorResponse
from backend.app.services.extraction_types import ErrorKind

LOGGER = logging.getLogger("claimcheck.app")

CORS_EXPOSED_HEADERS: tuple[str, ...] = (
    "Retry-After",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-Request-ID",
)


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    shutdown_event = get_shutdown_event()
    shutdown_event.clear()
    rate_limiter = get_rate_limiter()
    rate_limiter.start()
    LOGGER.info(
        "app started distributed_rate_limit=%s persistence_enabled=%s",
        settings.distributed_rate_limit_configured,
        settings.persistence_enabled,
    )

    try:
        yield
    finally:
        # Wakes any request still waiting on a transcription poll interval.
        shutdown_event.set()
        rate_limiter.stop()
        LOGGER.info("app stopped")


async def request_validation_handler(
    _request: Request,
    exc: Exception,
) -> JSONResponse:
    message = "Invalid request body."
    if isinstance(exc, RequestValidationError):
        errors = exc.errors()
        if errors:
            message = str(errors[0].get("msg", message))
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error=str(ErrorKind.VALIDATION), message=message).model_dump(),
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Claimcheck API", version="0.1.0", lifespan=app_lifespan)
    settings = get_settings()

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=list(CORS_EXPOSED_HEADERS),
        max_age=86400,
    )
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app


app = create_app()
