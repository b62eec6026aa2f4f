from __future__ import annotations

import threading
from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.analysis_repository import AnalysisRepository
from backend.app.repositories.database import Database
from backend.app.services.analysis_model import GeminiAnalysisModel
from backend.app.services.analysis_orchestrator import AnalysisOrchestrator
from backend.app.services.caption_service import CaptionExtractor, YouTubeCaptionSource
from backend.app.services.extraction_dispatcher import ExtractionDispatcher
from backend.app.services.rate_limiter import RateLimiter, build_rate_limiter
from backend.app.services.transcription_service import TranscriptionJobClient
from backend.app.services.web_page_service import WebPageExtractor
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_shutdown_event() -> threading.Event:
    return threading.Event()


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    return build_rate_limiter(get_settings())


@lru_cache(maxsize=1)
def get_analysis_repository() -> AnalysisRepository | None:
    settings = get_settings()
    if not settings.persistence_enabled:
        return None
    database = Database(settings.db_path)
    database.initialize()
    return AnalysisRepository(database)


@lru_cache(maxsize=1)
def get_extraction_dispatcher() -> ExtractionDispatcher:
    settings = get_settings()
    return ExtractionDispatcher(
        caption_extractor=CaptionExtractor(
            source=YouTubeCaptionSource(),
            video_hosts=settings.caption_video_hosts,
            preferred_language=settings.caption_preferred_language,
            min_chars=settings.caption_min_chars,
            max_chars=settings.caption_max_chars,
        ),
        web_page_extractor=WebPageExtractor(
            fetch_timeout_seconds=settings.web_fetch_timeout_seconds,
            user_agent=settings.web_user_agent,
            min_chars=settings.web_min_chars,
            max_chars=settings.web_max_chars,
        ),
        transcription_client=TranscriptionJobClient(
            api_key=settings.transcription_api_key,
            base_url=settings.transcription_base_url,
            language=settings.transcription_language,
            model=settings.transcription_model,
            http_timeout_seconds=settings.transcription_http_timeout_seconds,
            poll_interval_seconds=settings.transcription_poll_interval_seconds,
            poll_max_attempts=settings.transcription_poll_max_attempts,
        ),
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> AnalysisOrchestrator:
    settings = get_settings()
    return AnalysisOrchestrator(
        rate_limiter=get_rate_limiter(),
        dispatcher=get_extraction_dispatcher(),
        model=GeminiAnalysisModel(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
        ),
        repository=get_analysis_repository(),
        telemetry=get_telemetry(),
        analysis_max_chars=settings.analysis_max_chars,
        analysis_language=settings.analysis_language,
        shutdown_event=get_shutdown_event(),
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_orchestrator.cache_clear()
    get_extraction_dispatcher.cache_clear()
    get_analysis_repository.cache_clear()
    get_rate_limiter.cache_clear()
    get_shutdown_event.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
