from __future__ import annotations

import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from backend.app.config import AppSettings
from backend.app.services.rate_limiter import (
    DistributedRateLimiter,
    RateLimitDecision,
    SlidingWindowRateLimiter,
    build_rate_limiter,
)


class _Clock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> _Clock:
    fake_clock = _Clock()
    monkeypatch.setattr("backend.app.services.rate_limiter.monotonic", fake_clock)
    return fake_clock


def test_sliding_window_allows_capacity_then_denies(clock: _Clock) -> None:
    limiter = SlidingWindowRateLimiter(max_requests=10, window_seconds=60)

    remaining = [limiter.check("203.0.113.7").remaining for _ in range(10)]
    denied = limiter.check("203.0.113.7")

    assert remaining == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.limit == 10
    assert denied.retry_after_seconds == 60


def test_sliding_window_denial_does_not_consume_slot(clock: _Clock) -> None:
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    limiter.check("client")
    clock.now += 30
    limiter.check("client")

    for _ in range(5):
        assert limiter.check("client").allowed is False

    # Only the first request has aged out; repeated denials did not extend the window.
    clock.now += 30.5
    decision = limiter.check("client")
    assert decision.allowed is True
    assert decision.remaining == 0


def test_sliding_window_restores_full_capacity_after_window(clock: _Clock) -> None:
    limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60)
    for _ in range(3):
        limiter.check("client")
    assert limiter.check("client").allowed is False

    clock.now += 61
    decision = limiter.check("client")

    assert decision.allowed is True
    assert decision.remaining == 2


def test_sliding_window_retry_hint_tracks_oldest_request(clock: _Clock) -> None:
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
    limiter.check("client")
    clock.now += 45.2

    decision = limiter.check("client")

    assert decision.allowed is False
    assert decision.retry_after_seconds == 15


def test_concurrent_checks_never_lose_updates(clock: _Clock) -> None:
    limiter = SlidingWindowRateLimiter(max_requests=10, window_seconds=60)
    thread_count = 40
    barrier = threading.Barrier(thread_count)
    decisions: list[RateLimitDecision] = []
    decisions_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        decision = limiter.check("same")
        with decisions_lock:
            decisions.append(decision)

    threads = [threading.Thread(target=worker) for _ in range(thread_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    allowed = [decision for decision in decisions if decision.allowed]
    assert len(decisions) == thread_count
    assert len(allowed) == 10
    assert sorted(decision.remaining for decision in allowed) == list(range(10))
    assert all(decision.remaining == 0 for decision in decisions if not decision.allowed)


def test_sliding_window_isolates_identifiers_and_shares_empty_identifier(clock: _Clock) -> None:
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)

    assert limiter.check("a").allowed is True
    assert limiter.check("b").allowed is True
    assert limiter.check("").allowed is True
    assert limiter.check("").allowed is False
    assert limiter.check("a").allowed is False


def test_sweep_drops_stale_identifiers(clock: _Clock) -> None:
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=60)
    limiter.check("old")
    clock.now += 50
    limiter.check("recent")
    clock.now += 20

    removed = limiter.sweep()

    assert removed == 1
    clock.now += 50
    assert limiter.sweep() == 1


def test_sweep_thread_starts_and_stops() -> None:
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=60, sweep_interval_seconds=1)
    limiter.start()
    limiter.start()
    limiter.stop()
    limiter.stop()


class _FakeUpstashLimiter:
    def __init__(self, *, allowed: bool = True, remaining: int = 4, reset: float = 0.0) -> None:
        self.allowed = allowed
        self.remaining = remaining
        self.reset = reset
        self.calls: list[str] = []
        self.error: Exception | None = None

    def limit(self, identifier: str) -> Any:
        self.calls.append(identifier)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(allowed=self.allowed, remaining=self.remaining, reset=self.reset)


def test_distributed_limiter_maps_backend_response() -> None:
    backend = _FakeUpstashLimiter(allowed=True, remaining=4)
    limiter = DistributedRateLimiter(
        backend=backend,
        fallback=SlidingWindowRateLimiter(max_requests=10, window_seconds=60),
        max_requests=10,
        window_seconds=60,
    )

    decision = limiter.check("198.51.100.1")

    assert backend.calls == ["198.51.100.1"]
    assert decision.allowed is True
    assert decision.remaining == 4
    assert decision.limit == 10


def test_distributed_limiter_denial_reports_bounded_retry_hint(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr("backend.app.services.rate_limiter.time", lambda: 5_000.0)
    backend = _FakeUpstashLimiter(allowed=False, remaining=0, reset=5_012.3)
    limiter = DistributedRateLimiter(
        backend=backend,
        fallback=SlidingWindowRateLimiter(max_requests=10, window_seconds=60),
        max_requests=10,
        window_seconds=60,
    )

    decision = limiter.check("client")

    assert decision.allowed is False
    assert decision.remaining == 0
    assert decision.retry_after_seconds == 13


def test_distributed_limiter_falls_back_when_backend_fails() -> None:
    backend = _FakeUpstashLimiter()
    backend.error = ConnectionError("upstash unreachable")
    fallback = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    limiter = DistributedRateLimiter(
        backend=backend,
        fallback=fallback,
        max_requests=2,
        window_seconds=60,
    )

    decisions = [limiter.check("client") for _ in range(3)]

    assert [decision.allowed for decision in decisions] == [True, True, False]
    assert fallback.check("client").allowed is False


def test_build_rate_limiter_defaults_to_in_process(tmp_path: Path) -> None:
    settings = AppSettings(data_dir=tmp_path)

    limiter = build_rate_limiter(settings)

    assert isinstance(limiter, SlidingWindowRateLimiter)


def test_build_rate_limiter_uses_upstash_when_configured(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    created: dict[str, Any] = {}

    class _Redis:
        def __init__(self, *, url: str, token: str) -> None:
            created["redis"] = (url, token)

    class _SlidingWindow:
        def __init__(self, *, max_requests: int, window: int) -> None:
            created["window"] = (max_requests, window)

    class _Ratelimit:
        def __init__(self, *, redis: Any, limiter: Any, prefix: str) -> None:
            created["prefix"] = prefix

    modules = {
        "upstash_ratelimit": SimpleNamespace(Ratelimit=_Ratelimit, SlidingWindow=_SlidingWindow),
        "upstash_redis": SimpleNamespace(Redis=_Redis),
    }
    monkeypatch.setattr(
        "backend.app.services.rate_limiter.import_module",
        lambda name: modules[name],
    )
    settings = AppSettings(
        data_dir=tmp_path,
        upstash_redis_rest_url="https://example.upstash.io",
        upstash_redis_rest_token="token-123",
    )

    limiter = build_rate_limiter(settings)

    assert isinstance(limiter, DistributedRateLimiter)
    assert created == {
        "redis": ("https://example.upstash.io", "token-123"),
        "window": (10, 60),
        "prefix": "claimcheck:ratelimit",
    }
