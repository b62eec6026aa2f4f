from __future__ import annotations

import json
from pathlib import Path
from typing import Any, cast

import pytest
from pydantic import ValidationError

from backend.app.models.analysis_contracts import (
    AnalysisMeta,
    AnalysisReport,
    AnalysisRequest,
    AnalysisScores,
    ErrorResponse,
)
from backend.app.scripts.export_openapi import main as export_openapi


def test_analysis_request_accepts_both_kind_keys() -> None:
    current = AnalysisRequest.model_validate({"inputKind": "link", "content": "https://a.example"})
    legacy = AnalysisRequest.model_validate({"inputType": "audio", "content": "data:audio/x"})

    assert current.input_kind == "link"
    assert legacy.input_kind == "audio"


def test_analysis_request_enforces_per_kind_length() -> None:
    with pytest.raises(ValidationError, match="link content must be at most"):
        AnalysisRequest.model_validate({"inputKind": "link", "content": "h" * 2049})
    with pytest.raises(ValidationError, match="text content must be at most"):
        AnalysisRequest.model_validate({"inputKind": "text", "content": "t" * 100_001})

    image = AnalysisRequest.model_validate({"inputKind": "image", "content": "i" * 200_000})
    assert image.input_kind == "image"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (55.5, 56),
        ("12", 12),
        (-3, 0),
        (250, 100),
        (True, 0),
        ("n/a", 0),
        (float("nan"), 0),
        (float("inf"), 0),
        (None, 0),
    ],
)
def test_scores_are_clamped_to_percent_range(raw: Any, expected: int) -> None:
    assert AnalysisScores.model_validate({"fakeProbability": raw}).fake_probability == expected


def test_report_body_omits_unset_optional_meta() -> None:
    report = AnalysisReport(
        meta=AnalysisMeta(id="a1", created_at="2026-01-01T00:00:00+00:00", input_type="text")
    )

    body = report.to_response_body()

    assert body["meta"] == {
        "id": "a1",
        "createdAt": "2026-01-01T00:00:00+00:00",
        "inputType": "text",
        "language": "pt-BR",
        "mode": "mvp_no_external_sources",
        "warnings": [],
    }
    assert body["summary"]["verdict"] == "Inconclusivo"


def test_error_response_shape() -> None:
    body = ErrorResponse(error="VALIDATION", message="bad").model_dump()

    assert body == {"ok": False, "error": "VALIDATION", "message": "bad"}


def test_export_openapi_writes_schema(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    export_openapi([])

    output = tmp_path / "openapi" / "openapi.json"
    assert output.exists()

    schema = cast(dict[str, Any], json.loads(output.read_text(encoding="utf-8")))
    assert schema["info"]["title"] == "Claimcheck API"
    assert "/api/check" in schema["paths"]


def test_export_openapi_honors_output_flag(tmp_path: Path) -> None:
    output = tmp_path / "schemas" / "api.json"

    export_openapi(["--output", str(output)])

    assert "/health" in json.loads(output.read_text(encoding="utf-8"))["paths"]
