from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from importlib import import_module
from typing import Any, Protocol, TypeVar, cast
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from backend.app.models.analysis_contracts import (
    DEFAULT_ANALYSIS_MODE,
    INCONCLUSIVE_VERDICT,
    AnalysisMeta,
    AnalysisReport,
    AnalysisScores,
    AnalysisSummary,
    ClaimAssessment,
    SimilarContent,
)
from backend.app.services.media import MediaPayload

LOGGER = logging.getLogger("claimcheck.analysis_model")

SectionT = TypeVar("SectionT", bound=BaseModel)

SYSTEM_PROMPT = """You are a neutral content analyst. Analyze the following content for signs of disinformation, bias, and manipulation.

RULES:
- NEVER support candidates, parties, or ideologies
- ONLY evaluate explicit claims, not opinions or rhetoric
- Separate facts from opinions and lack of evidence
- In political contexts, evaluate claims only, never judge people or groups
- Prefer "Inconclusivo" when there is insufficient basis to conclude
- Use neutral language, no partisan rhetoric
- When analyzing images, describe what you see and evaluate text/claims visible in the image
- When analyzing audio transcriptions, evaluate the spoken claims

Return ONLY valid JSON (no markdown fences) with these fields:
{
  "meta": { "warnings": string[] },
  "scores": { "fakeProbability": 0-100, "verifiableTruth": 0-100, "biasFraming": 0-100, "manipulationRisk": 0-100 },
  "summary": { "headline": string, "oneParagraph": string, "verdict": "Provavel fake" | "Provavel verdadeiro" | "Inconclusivo" },
  "claims": [{ "claim": string, "assessment": string, "confidence": number }],
  "similar": { "searchQueries": string[], "externalChecks": string[] },
  "reportMarkdown": string
}"""

_MEDIA_INSTRUCTIONS: dict[str, str] = {
    "image": (
        "The user uploaded an image. Describe what you see and analyze any text, "
        "claims or manipulation signs in it."
    ),
    "audio": (
        "The user uploaded an audio file. Transcribe what you hear and analyze any "
        "claims, bias or manipulation signs."
    ),
}
_LEADING_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE_PATTERN = re.compile(r"\s*```$")

FALLBACK_WARNING = (
    "Analise baseada apenas no conteudo fornecido. Nao substitui verificacao profissional."
)
_FALLBACK_SCORES = AnalysisScores(
    fake_probability=50,
    verifiable_truth=20,
    bias_framing=40,
    manipulation_risk=30,
)
_FALLBACK_SUMMARY = AnalysisSummary(
    headline="Resultado Inconclusivo",
    one_paragraph=(
        "Nao ha base suficiente para uma conclusao definitiva. "
        "Recomendamos verificar em fontes confiaveis."
    ),
    verdict=INCONCLUSIVE_VERDICT,
)
_FALLBACK_REPORT_MARKDOWN = (
    "# Relatorio de Analise\n\n---\n\n**Nota:** Este e um resultado inicial. "
    "Para conclusoes definitivas, consulte agencias de checagem profissionais."
)


class AnalysisModelError(Exception):
    pass


@dataclass(frozen=True)
class ModelRequest:
    input_type: str
    text: str | None = None
    media: MediaPayload | None = None


class AnalysisModel(Protocol):
    @property
    def configured(self) -> bool:
        ...

    def generate(self, request: ModelRequest) -> str:
        """Return the raw model text for one analysis request."""
        ...


class GeminiAnalysisModel:
    def __init__(self, *, api_key: str | None, model_name: str) -> None:
        self._api_key = api_key
        self._model_name = model_name
        self._model: Any | None = None

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    def generate(self, request: ModelRequest) -> str:
        model = self._get_model()
        parts = build_prompt_parts(request)
        LOGGER.info(
            "analysis model request model=%s input_type=%s media=%s",
            self._model_name,
            request.input_type,
            request.media is not None,
        )
        response = model.generate_content(parts)
        return str(getattr(response, "text", "") or "")

    def _get_model(self) -> Any:
        if self._api_key is None:
            raise AnalysisModelError("Gemini API key is not configured")
        if self._model is not None:
            return self._model
        try:
            genai_module = import_module("google.generativeai")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise AnalysisModelError(
                "Analysis requires the google-generativeai dependency"
            ) from exc

        genai: Any = genai_module
        genai.configure(api_key=self._api_key)
        self._model = genai.GenerativeModel(self._model_name)
        return self._model


def build_prompt_parts(request: ModelRequest) -> list[Any]:
    if request.media is not None:
        instruction = _MEDIA_INSTRUCTIONS.get(
            request.input_type,
            "Analyze any claims, bias or manipulation signs in the attached media.",
        )
        return [
            {"mime_type": request.media.mime_type, "data": request.media.data},
            f"{SYSTEM_PROMPT}\n\n{instruction}",
        ]
    return [f"{SYSTEM_PROMPT}\n\nContent to analyze:\n{request.text or ''}"]


def strip_code_fences(raw_text: str) -> str:
    text = raw_text.strip()
    if not text.startswith("```"):
        return text
    text = _LEADING_FENCE_PATTERN.sub("", text)
    return _TRAILING_FENCE_PATTERN.sub("", text).strip()


def shape_report(raw_text: str, *, input_type: str, language: str) -> AnalysisReport:
    """Turn raw model output into a complete report.

    Output that is not a JSON object yields the inconclusive default report.
    Sections that are missing or malformed fall back to their defaults one by
    one, so a partially valid answer still keeps its valid parts.
    """
    meta = AnalysisMeta(
        id=str(uuid4()),
        created_at=datetime.now(UTC).isoformat(),
        input_type=input_type,
        language=language,
        mode=DEFAULT_ANALYSIS_MODE,
    )
    parsed = _parse_json_object(strip_code_fences(raw_text))
    if parsed is None:
        LOGGER.warning(
            "analysis model returned unparseable output input_type=%s chars=%s",
            input_type,
            len(raw_text),
        )
        meta.warnings.append(FALLBACK_WARNING)
        return AnalysisReport(
            meta=meta,
            scores=_FALLBACK_SCORES.model_copy(),
            summary=_FALLBACK_SUMMARY.model_copy(),
            report_markdown=_FALLBACK_REPORT_MARKDOWN,
        )

    raw_meta = parsed.get("meta")
    if isinstance(raw_meta, dict):
        raw_warnings = cast(dict[str, Any], raw_meta).get("warnings")
        if isinstance(raw_warnings, list):
            meta.warnings.extend(
                str(item) for item in cast(list[Any], raw_warnings) if isinstance(item, str)
            )

    report_markdown = parsed.get("reportMarkdown")
    return AnalysisReport(
        meta=meta,
        scores=_validate_section(AnalysisScores, parsed.get("scores")) or AnalysisScores(),
        summary=_validate_section(AnalysisSummary, parsed.get("summary")) or AnalysisSummary(),
        claims=_parse_claims(parsed.get("claims")),
        similar=_validate_section(SimilarContent, parsed.get("similar")) or SimilarContent(),
        report_markdown=report_markdown if isinstance(report_markdown, str) else "",
    )


def _parse_json_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return cast(dict[str, Any], parsed)


def _validate_section(
    model_cls: type[SectionT],
    raw_value: Any,
) -> SectionT | None:
    if not isinstance(raw_value, dict):
        return None
    try:
        return model_cls.model_validate(raw_value)
    except ValidationError:
        LOGGER.info("analysis model section invalid section=%s", model_cls.__name__)
        return None


def _parse_claims(raw_value: Any) -> list[ClaimAssessment]:
    if not isinstance(raw_value, list):
        return []
    claims: list[ClaimAssessment] = []
    for item in cast(list[Any], raw_value):
        claim = _validate_section(ClaimAssessment, item)
        if claim is not None:
            claims.append(claim)
    return claims
