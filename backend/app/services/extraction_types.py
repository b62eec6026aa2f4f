from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from backend.app.services.subtitles import TranscriptSegment


class ErrorKind(StrEnum):
    VALIDATION = "VALIDATION"
    RATE_LIMITED = "RATE_LIMITED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    SERVER_MISCONFIG = "SERVER_MISCONFIG"
    UNEXPECTED = "ANALYZE_FAILED"


@dataclass(frozen=True)
class ExtractionOk:
    text: str
    content_label: str
    title: str | None = None
    source_url: str | None = None
    warnings: tuple[str, ...] = ()
    segments: tuple[TranscriptSegment, ...] = field(default=(), repr=False)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ExtractionFailed:
    error: str
    error_kind: ErrorKind = ErrorKind.EXTRACTION_FAILED
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return False


ExtractionResult = ExtractionOk | ExtractionFailed
AudioExtractionResult = ExtractionResult
