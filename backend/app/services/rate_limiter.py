from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass
from importlib import import_module
from threading import Lock
from time import monotonic, time
from typing import Any, Protocol

from backend.app.config import AppSettings

LOGGER = logging.getLogger("claimcheck.rate_limiter")

UNKNOWN_IDENTIFIER = "unknown"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class RateLimiter(Protocol):
    def check(self, identifier: str) -> RateLimitDecision:
        ...

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...


class SlidingWindowRateLimiter:
    """In-process sliding-window limiter.

    One lock guards the whole identifier map; request checks and the background
    sweep both take it, and it is never held across I/O.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: int,
        sweep_interval_seconds: int = 300,
    ) -> None:
        self._max_requests = max(1, max_requests)
        self._window_seconds = max(1, window_seconds)
        self._sweep_interval_seconds = max(1, sweep_interval_seconds)
        self._lock = Lock()
        self._buckets: dict[str, deque[float]] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def check(self, identifier: str) -> RateLimitDecision:
        now = monotonic()
        cutoff = now - self._window_seconds

        with self._lock:
            bucket = self._buckets.setdefault(identifier, deque())
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= self._max_requests:
                retry_after_seconds = max(
                    1,
                    math.ceil((bucket[0] + self._window_seconds) - now),
                )
                return RateLimitDecision(
                    allowed=False,
                    limit=self._max_requests,
                    remaining=0,
                    retry_after_seconds=retry_after_seconds,
                )

            bucket.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self._max_requests,
                remaining=self._max_requests - len(bucket),
                retry_after_seconds=0,
            )

    def sweep(self) -> int:
        cutoff = monotonic() - self._window_seconds
        removed = 0
        with self._lock:
            for identifier in list(self._buckets):
                bucket = self._buckets[identifier]
                while bucket and bucket[0] <= cutoff:
                    bucket.popleft()
                if not bucket:
                    del self._buckets[identifier]
                    removed += 1
        if removed:
            LOGGER.debug("rate limiter sweep removed_identifiers=%s", removed)
        return removed

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_sweep_loop, name="claimcheck-rate-sweep")
        self._thread.daemon = True
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None

    def _run_sweep_loop(self) -> None:
        while not self._stop_event.wait(self._sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:
                LOGGER.exception("rate limiter sweep failed")


class DistributedRateLimiter:
    """Delegates the sliding-window decision to an external counter service.

    Any failure talking to the service is answered by the in-process fallback so
    a check never fails the request pipeline.
    """

    def __init__(
        self,
        *,
        backend: Any,
        fallback: SlidingWindowRateLimiter,
        max_requests: int,
        window_seconds: int,
    ) -> None:
        self._backend = backend
        self._fallback = fallback
        self._max_requests = max(1, max_requests)
        self._window_seconds = max(1, window_seconds)

    def check(self, identifier: str) -> RateLimitDecision:
        try:
            response = self._backend.limit(identifier)
            allowed = bool(response.allowed)
            remaining = max(0, int(response.remaining))
            reset_at = float(response.reset)
        except Exception:
            LOGGER.warning(
                "distributed rate limiter unavailable; using in-process fallback",
                exc_info=True,
            )
            return self._fallback.check(identifier)

        retry_after_seconds = 0
        if not allowed:
            retry_after_seconds = min(
                self._window_seconds,
                max(1, math.ceil(reset_at - time())),
            )
        return RateLimitDecision(
            allowed=allowed,
            limit=self._max_requests,
            remaining=remaining if allowed else 0,
            retry_after_seconds=retry_after_seconds,
        )

    def start(self) -> None:
        self._fallback.start()

    def stop(self) -> None:
        self._fallback.stop()


def build_rate_limiter(settings: AppSettings) -> RateLimiter:
    in_process = SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
    )
    if not settings.distributed_rate_limit_configured:
        LOGGER.info(
            "rate limiter strategy=in_process max_requests=%s window_seconds=%s",
            settings.rate_limit_max_requests,
            settings.rate_limit_window_seconds,
        )
        return in_process

    ratelimit_module = import_module("upstash_ratelimit")
    redis_module = import_module("upstash_redis")
    redis_client = redis_module.Redis(
        url=settings.upstash_redis_rest_url,
        token=settings.upstash_redis_rest_token,
    )
    backend = ratelimit_module.Ratelimit(
        redis=redis_client,
        limiter=ratelimit_module.SlidingWindow(
            max_requests=settings.rate_limit_max_requests,
            window=settings.rate_limit_window_seconds,
        ),
        prefix=settings.rate_limit_prefix,
    )
    LOGGER.info(
        "rate limiter strategy=distributed max_requests=%s window_seconds=%s prefix=%s",
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
        settings.rate_limit_prefix,
    )
    return DistributedRateLimiter(
        backend=backend,
        fallback=in_process,
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
