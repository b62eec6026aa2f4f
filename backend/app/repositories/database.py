from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS analyses (
    id TEXT PRIMARY KEY,
    input_type TEXT NOT NULL,
    input_summary TEXT NOT NULL,
    scores_json TEXT NOT NULL,
    verdict TEXT NOT NULL,
    report_markdown TEXT NOT NULL,
    claims_json TEXT NOT NULL,
    fingerprint TEXT NULL,
    is_flagged INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_analyses_fingerprint ON analyses(fingerprint);

CREATE INDEX IF NOT EXISTS idx_analyses_flagged_created
ON analyses(is_flagged, created_at DESC);

CREATE TABLE IF NOT EXISTS trending_items (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    reason TEXT NOT NULL,
    fingerprint TEXT NOT NULL UNIQUE,
    sample_claims_json TEXT NOT NULL,
    score_fake_probability INTEGER NOT NULL,
    occurrences INTEGER NOT NULL,
    last_seen TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_trending_items_last_seen
ON trending_items(last_seen DESC);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        # Request handlers run on threadpool workers, so every call opens its own connection.
        conn = sqlite3.connect(self._path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_SQL)
