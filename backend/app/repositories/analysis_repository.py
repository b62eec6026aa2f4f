from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from backend.app.repositories.common import clip_text, dump_json, utc_now_iso
from backend.app.repositories.database import Database

INPUT_SUMMARY_MAX_CHARS = 500
TRENDING_REASON_MAX_CHARS = 300
TRENDING_SAMPLE_CLAIMS = 3
FLAGGED_FAKE_PROBABILITY = 70


@dataclass(frozen=True)
class AnalysisRecord:
    input_type: str
    input_summary: str
    scores: dict[str, Any]
    verdict: str
    report_markdown: str
    claims: list[dict[str, Any]]
    fingerprint: str | None
    fake_probability: int


@dataclass(frozen=True)
class TrendingItem:
    id: str
    title: str
    reason: str
    fingerprint: str
    sample_claims: list[dict[str, Any]]
    score_fake_probability: int
    occurrences: int
    last_seen: str


def build_input_summary(*, input_type: str, raw_content: str, analyzed_text: str) -> str:
    prefix = f"[{raw_content.strip()}] " if input_type == "link" else ""
    return prefix + analyzed_text[:INPUT_SUMMARY_MAX_CHARS]


class AnalysisRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def insert_analysis(self, record: AnalysisRecord) -> str:
        analysis_id = f"ana_{uuid4().hex}"
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO analyses
                (
                    id, input_type, input_summary, scores_json, verdict, report_markdown,
                    claims_json, fingerprint, is_flagged, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    analysis_id,
                    record.input_type,
                    record.input_summary,
                    dump_json(record.scores),
                    record.verdict,
                    record.report_markdown,
                    dump_json(record.claims),
                    record.fingerprint,
                    int(record.fake_probability >= FLAGGED_FAKE_PROBABILITY),
                    utc_now_iso(),
                ),
            )
        return analysis_id

    def find_trending_by_fingerprint(self, fingerprint: str) -> TrendingItem | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, title, reason, fingerprint, sample_claims_json,
                       score_fake_probability, occurrences, last_seen
                FROM trending_items
                WHERE fingerprint = ?
                """,
                (fingerprint,),
            ).fetchone()
        if row is None:
            return None
        return TrendingItem(
            id=str(row["id"]),
            title=str(row["title"]),
            reason=str(row["reason"]),
            fingerprint=str(row["fingerprint"]),
            sample_claims=_load_claims(row["sample_claims_json"]),
            score_fake_probability=int(row["score_fake_probability"]),
            occurrences=int(row["occurrences"]),
            last_seen=str(row["last_seen"]),
        )

    def increment_trending(self, item_id: str, *, fake_probability: int) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE trending_items
                SET occurrences = occurrences + 1,
                    last_seen = ?,
                    score_fake_probability = ?
                WHERE id = ?
                """,
                (utc_now_iso(), fake_probability, item_id),
            )

    def insert_trending(
        self,
        *,
        title: str,
        reason: str | None,
        fingerprint: str,
        claims: list[dict[str, Any]],
        fake_probability: int,
    ) -> str:
        item_id = f"trd_{uuid4().hex}"
        now = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO trending_items
                (
                    id, title, reason, fingerprint, sample_claims_json,
                    score_fake_probability, occurrences, last_seen, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    item_id,
                    title,
                    clip_text(reason, TRENDING_REASON_MAX_CHARS),
                    fingerprint,
                    dump_json(claims[:TRENDING_SAMPLE_CLAIMS]),
                    fake_probability,
                    now,
                    now,
                ),
            )
        return item_id

    def record_trending(
        self,
        *,
        title: str,
        reason: str | None,
        fingerprint: str,
        claims: list[dict[str, Any]],
        fake_probability: int,
    ) -> TrendingItem | None:
        existing = self.find_trending_by_fingerprint(fingerprint)
        if existing is not None:
            self.increment_trending(existing.id, fake_probability=fake_probability)
        else:
            self.insert_trending(
                title=title,
                reason=reason,
                fingerprint=fingerprint,
                claims=claims,
                fake_probability=fake_probability,
            )
        return self.find_trending_by_fingerprint(fingerprint)


def _load_claims(raw_value: object) -> list[dict[str, Any]]:
    if not isinstance(raw_value, str):
        return []
    try:
        parsed = json.loads(raw_value)
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return [item for item in parsed if isinstance(item, dict)]
