from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import get_orchestrator, reset_cached_dependencies
from backend.app.main import create_app
from backend.app.repositories.analysis_repository import AnalysisRepository
from backend.app.repositories.database import Database
from backend.app.services.analysis_model import ModelRequest
from backend.app.services.analysis_orchestrator import AnalysisOrchestrator
from backend.app.services.caption_service import CaptionExtractor, CaptionsUnavailableError
from backend.app.services.extraction_dispatcher import ExtractionDispatcher
from backend.app.services.extraction_types import ExtractionOk, ExtractionResult
from backend.app.services.rate_limiter import SlidingWindowRateLimiter
from backend.app.services.transcription_service import TranscriptionJobClient
from backend.app.telemetry import TelemetryClient

TEST_VIDEO_HOSTS: tuple[str, ...] = ("www.youtube.com", "youtu.be", "shortvideo.example")

MODEL_REPORT: dict[str, Any] = {
    "meta": {"warnings": ["Model note."]},
    "scores": {
        "fakeProbability": 82,
        "verifiableTruth": 10,
        "biasFraming": 55,
        "manipulationRisk": 71,
    },
    "summary": {
        "headline": "Claim about vaccines is misleading",
        "oneParagraph": "The text repeats a claim that public data contradicts.",
        "verdict": "Provavel fake",
    },
    "claims": [
        {"claim": "Vaccine X alters DNA", "assessment": "No evidence", "confidence": 0.9},
    ],
    "similar": {"searchQueries": ["vaccine x dna"], "externalChecks": []},
    "reportMarkdown": "# Report\n\nMisleading.",
}


class FakeAnalysisModel:
    def __init__(self, response_text: str | None = None, *, configured: bool = True) -> None:
        self.response_text = (
            response_text if response_text is not None else json.dumps(MODEL_REPORT)
        )
        self.configured = configured
        self.requests: list[ModelRequest] = []

    def generate(self, request: ModelRequest) -> str:
        self.requests.append(request)
        return self.response_text


class FakeCaptionSource:
    def __init__(
        self,
        tracks: dict[tuple[str, str | None], list[str]] | None = None,
        *,
        unavailable: bool = False,
        error: Exception | None = None,
    ) -> None:
        self.tracks = tracks or {}
        self.unavailable = unavailable
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    def fetch(self, video_id: str, *, language: str | None) -> list[str]:
        self.calls.append((video_id, language))
        if self.unavailable:
            raise CaptionsUnavailableError("Subtitles are disabled for this video")
        if self.error is not None:
            raise self.error
        return list(self.tracks.get((video_id, language), []))


class FakeWebPageExtractor:
    def __init__(self, result: ExtractionResult | None = None) -> None:
        self.result = result
        self.urls: list[str] = []

    def extract(self, url: str) -> ExtractionResult:
        self.urls.append(url)
        if self.result is not None:
            return self.result
        return ExtractionOk(
            text="Article body " * 40,
            content_label="link",
            title="Example article",
            source_url=url,
        )


class FailingRepository(AnalysisRepository):
    def __init__(self) -> None:
        pass

    def insert_analysis(self, record: Any) -> str:
        raise RuntimeError("database is locked")

    def record_trending(self, **kwargs: Any) -> Any:
        raise RuntimeError("database is locked")


@pytest.fixture(autouse=True)
def _isolated_env(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[None]:
    for name in (
        "CLAIMCHECK_UPSTASH_REDIS_REST_URL",
        "CLAIMCHECK_UPSTASH_REDIS_REST_TOKEN",
        "CLAIMCHECK_GEMINI_API_KEY",
        "CLAIMCHECK_TRANSCRIPTION_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CLAIMCHECK_DATA_DIR", str(tmp_path / "runtime-data"))
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "analyses.db")
    db.initialize()
    return db


@pytest.fixture
def repository(database: Database) -> AnalysisRepository:
    return AnalysisRepository(database)


@pytest.fixture
def failing_repository() -> AnalysisRepository:
    return FailingRepository()


@pytest.fixture
def caption_source() -> FakeCaptionSource:
    return FakeCaptionSource()


@pytest.fixture
def web_page_extractor() -> FakeWebPageExtractor:
    return FakeWebPageExtractor()


@pytest.fixture
def analysis_model() -> FakeAnalysisModel:
    return FakeAnalysisModel()


@pytest.fixture
def dispatcher(
    caption_source: FakeCaptionSource,
    web_page_extractor: FakeWebPageExtractor,
) -> ExtractionDispatcher:
    return ExtractionDispatcher(
        caption_extractor=CaptionExtractor(source=caption_source, video_hosts=TEST_VIDEO_HOSTS),
        web_page_extractor=web_page_extractor,
        transcription_client=TranscriptionJobClient(
            api_key=None,
            base_url="https://transcriber.test",
        ),
    )


@pytest.fixture
def make_orchestrator(
    dispatcher: ExtractionDispatcher,
    analysis_model: FakeAnalysisModel,
    repository: AnalysisRepository,
) -> Callable[..., AnalysisOrchestrator]:
    def _make(**overrides: Any) -> AnalysisOrchestrator:
        options: dict[str, Any] = {
            "rate_limiter": SlidingWindowRateLimiter(max_requests=10, window_seconds=60),
            "dispatcher": dispatcher,
            "model": analysis_model,
            "repository": repository,
            "telemetry": TelemetryClient.disabled(),
        }
        options.update(overrides)
        return AnalysisOrchestrator(**options)

    return _make


@pytest.fixture
def client(
    make_orchestrator: Callable[..., AnalysisOrchestrator],
) -> Iterator[TestClient]:
    app = create_app()
    orchestrator = make_orchestrator()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

