from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from backend.app.telemetry import (
    TelemetryClient,
    build_telemetry_client,
    is_sensitive_key,
    redact_attributes,
)


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_telemetry_client_redacts_sensitive_fields() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "analysis.finish",
        request_id="req_123",
        payload={"content": "sensitive"},
        transcript="very long transcript text",
        client_ip="203.0.113.9",
        api_key="secret",
        content_label="youtube_transcript",
        duration_ms=31,
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "analysis.finish"
    assert attributes["request_id"] == "req_123"
    assert attributes["duration_ms"] == 31
    assert attributes["content_label"] == "youtube_transcript"
    assert attributes["payload"] == "[redacted]"
    assert attributes["transcript"] == "[redacted]"
    assert attributes["client_ip"] == "[redacted]"
    assert attributes["api_key"] == "[redacted]"


@pytest.mark.parametrize(
    ("key", "sensitive"),
    [
        ("content", True),
        ("raw_content", True),
        ("upstash_token", True),
        ("Authorization", True),
        ("content_label", False),
        ("input_kind", False),
        ("tokens_used", False),
        ("shipment", False),
    ],
)
def test_sensitive_key_matches_whole_key_or_suffix(key: str, sensitive: bool) -> None:
    assert is_sensitive_key(key) is sensitive


def test_redact_attributes_flattens_and_clips_values() -> None:
    attributes = redact_attributes(
        {
            " Outcome ": "ok",
            "": "dropped",
            "warnings": ["a", "b"],
            "error_message": "word " * 100,
            "flagged": True,
        }
    )

    assert attributes["outcome"] == "ok"
    assert "" not in attributes
    assert attributes["warnings"] == "list"
    assert attributes["flagged"] is True
    error_message = attributes["error_message"]
    assert isinstance(error_message, str)
    assert error_message.endswith("...")
    assert len(error_message) == 163


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.emit("analysis.finish", request_id="req_1")
    assert sink.events == []


def test_build_telemetry_client_none_sink_is_disabled() -> None:
    client = build_telemetry_client(enabled=True, sink="none")
    assert client.enabled is False


def test_build_telemetry_client_log_sink_is_enabled() -> None:
    assert build_telemetry_client(enabled=True, sink="log").enabled is True
    assert build_telemetry_client(enabled=False, sink="log").enabled is False
