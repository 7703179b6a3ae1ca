from __future__ import annotations

import os
from dataclasses import dataclass

from pixelforge.domain.services.rate_limiter import RateLimitConfig


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Transform-pipeline settings. Storage and database adapters read their own env."""

    rate_limit_window_ms: int = 60_000
    rate_limit_max: int = 20
    rate_limit_sweep_threshold: int = 2000
    pipeline_max_workers: int = 0  # 0: one per CPU
    pipeline_max_queue: int = 32
    pipeline_timeout_seconds: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            rate_limit_window_ms=_int_env("TRANSFORM_RATE_LIMIT_WINDOW_MS", 60_000),
            rate_limit_max=_int_env("TRANSFORM_RATE_LIMIT_MAX", 20),
            rate_limit_sweep_threshold=_int_env("TRANSFORM_RATE_LIMIT_SWEEP_THRESHOLD", 2000),
            pipeline_max_workers=_int_env("PIPELINE_MAX_WORKERS", 0),
            pipeline_max_queue=_int_env("PIPELINE_MAX_QUEUE", 32),
            pipeline_timeout_seconds=_float_env("PIPELINE_TIMEOUT_SECONDS", 30.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def rate_limit(self) -> RateLimitConfig:
        return RateLimitConfig(
            window_seconds=self.rate_limit_window_ms / 1000.0,
            max_requests=self.rate_limit_max,
            sweep_threshold=self.rate_limit_sweep_threshold,
        )
