from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

InputKind = Literal["text", "link", "image", "audio"]

MAX_TEXT_CONTENT_CHARS = 100_000
MAX_LINK_CONTENT_CHARS = 2048
MAX_MEDIA_CONTENT_CHARS = 20_000_000

DEFAULT_ANALYSIS_MODE = "mvp_no_external_sources"
INCONCLUSIVE_VERDICT = "Inconclusivo"


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    input_kind: InputKind = Field(validation_alias=AliasChoices("inputKind", "inputType"))
    content: str = Field(max_length=MAX_MEDIA_CONTENT_CHARS)

    @field_validator("content")
    @classmethod
    def _validate_content_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be empty")
        return value

    @model_validator(mode="after")
    def _validate_content_length_for_kind(self) -> AnalysisRequest:
        if self.input_kind == "link" and len(self.content.strip()) > MAX_LINK_CONTENT_CHARS:
            raise ValueError(f"link content must be at most {MAX_LINK_CONTENT_CHARS} characters")
        if self.input_kind == "text" and len(self.content) > MAX_TEXT_CONTENT_CHARS:
            raise ValueError(f"text content must be at most {MAX_TEXT_CONTENT_CHARS} characters")
        return self


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _clamp_score(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if not isinstance(value, int | float) or not math.isfinite(value):
        return 0
    return int(min(100, max(0, round(value))))


class AnalysisScores(_CamelModel):
    fake_probability: int = 0
    verifiable_truth: int = 0
    bias_framing: int = 0
    manipulation_risk: int = 0

    @field_validator(
        "fake_probability",
        "verifiable_truth",
        "bias_framing",
        "manipulation_risk",
        mode="before",
    )
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return _clamp_score(value)


class AnalysisSummary(_CamelModel):
    headline: str = "Resultado"
    one_paragraph: str = ""
    verdict: str = INCONCLUSIVE_VERDICT


class ClaimAssessment(_CamelModel):
    claim: str = ""
    assessment: str = ""
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return float(value)
        return 0.0


class SimilarContent(_CamelModel):
    search_queries: list[str] = Field(default_factory=lambda: [])
    external_checks: list[str] = Field(default_factory=lambda: [])


class AnalysisMeta(_CamelModel):
    id: str
    created_at: str
    input_type: str
    language: str = "pt-BR"
    mode: str = DEFAULT_ANALYSIS_MODE
    warnings: list[str] = Field(default_factory=lambda: [])
    fingerprint: str | None = None
    source_url: str | None = None


class AnalysisReport(_CamelModel):
    ok: Literal[True] = True
    meta: AnalysisMeta
    scores: AnalysisScores = Field(default_factory=AnalysisScores)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)
    claims: list[ClaimAssessment] = Field(default_factory=lambda: [])
    similar: SimilarContent = Field(default_factory=SimilarContent)
    report_markdown: str = ""

    def to_response_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: Literal[False] = False
    error: str
    message: str
