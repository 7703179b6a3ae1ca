"""Sliding-window rate limiting for pipeline invocations."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pixelforge.domain.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

MIN_WINDOW_SECONDS = 1.0
MIN_MAX_REQUESTS = 1


@dataclass(frozen=True)
class RateLimitConfig:
    """Window length, request budget and the key count that triggers a sweep."""

    window_seconds: float = 60.0
    max_requests: int = 20
    sweep_threshold: int = 2000

    @property
    def effective_window(self) -> float:
        return max(float(self.window_seconds), MIN_WINDOW_SECONDS)

    @property
    def effective_max(self) -> int:
        return max(int(self.max_requests), MIN_MAX_REQUESTS)


class RateLimiter(Protocol):
    def allow(self, subject_id: str, resource_id: str) -> bool: ...

    def check(self, subject_id: str, resource_id: str) -> None: ...


class _Bucket:
    __slots__ = ("lock", "timestamps", "retired")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.timestamps: deque[float] = deque()
        self.retired = False

    def prune(self, window_start: float) -> None:
        while self.timestamps and self.timestamps[0] < window_start:
            self.timestamps.popleft()


class SlidingWindowRateLimiter:
    """In-process sliding-window limiter keyed by ``subject:resource``.

    Each key keeps its recent timestamps in order. A call drops everything older
    than ``now - window``; if the remaining count has reached the budget the call
    is rejected and *not* recorded, otherwise ``now`` is appended.

    Locking: ``_registry_lock`` guards the key map, each bucket has its own lock
    so callers on different keys never wait on each other. Once the number of
    keys passes ``sweep_threshold`` every bucket is pruned and empty ones are
    dropped; this only bounds memory, decisions never depend on it.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._registry_lock = threading.Lock()

    @staticmethod
    def key(subject_id: str, resource_id: str) -> str:
        return f"{subject_id or 'anonymous'}:{resource_id or 'unknown-image'}"

    def allow(self, subject_id: str, resource_id: str) -> bool:
        return self._try_acquire(self.key(subject_id, resource_id)) is None

    def check(self, subject_id: str, resource_id: str) -> None:
        """Like ``allow`` but raises ``RateLimitExceeded`` with a retry hint."""
        retry_after = self._try_acquire(self.key(subject_id, resource_id))
        if retry_after is not None:
            raise RateLimitExceeded(retry_after=retry_after)

    def _try_acquire(self, key: str) -> float | None:
        """Record a hit for ``key``; return None when allowed, else seconds to wait."""
        window = self.config.effective_window
        limit = self.config.effective_max
        while True:
            bucket = self._bucket(key)
            with bucket.lock:
                # a sweep may have dropped this bucket between lookup and lock
                if bucket.retired:
                    continue
                now = self._clock()
                bucket.prune(now - window)
                if len(bucket.timestamps) >= limit:
                    retry_after = max(0.0, bucket.timestamps[0] + window - now)
                    logger.info(
                        "Rate limit exceeded for key=%s retry_after=%.1fs", key, retry_after
                    )
                    return retry_after
                bucket.timestamps.append(now)
                break
        self._maybe_sweep()
        return None

    def _bucket(self, key: str) -> _Bucket:
        with self._registry_lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket()
                self._buckets[key] = bucket
            return bucket

    def _maybe_sweep(self) -> None:
        with self._registry_lock:
            if len(self._buckets) < self.config.sweep_threshold:
                return
            window_start = self._clock() - self.config.effective_window
            before = len(self._buckets)
            for key, bucket in list(self._buckets.items()):
                with bucket.lock:
                    bucket.prune(window_start)
                    if not bucket.timestamps:
                        bucket.retired = True
                        del self._buckets[key]
            logger.debug("Rate limiter sweep removed %d of %d keys", before - len(self._buckets), before)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._buckets)
