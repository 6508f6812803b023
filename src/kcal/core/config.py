# src/kcal/core/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

KASI_API_BASE_URL = "http://apis.data.go.kr/B090041/openapi/service/LrsrCldInfoService"

ENV_API_KEY = "KASI_API_KEY"
ENV_API_BASE_URL = "KASI_API_BASE_URL"
ENV_API_TIMEOUT = "KASI_API_TIMEOUT"
ENV_API_MAX_ATTEMPTS = "KASI_API_MAX_ATTEMPTS"


@dataclass(frozen=True)
class SolarTermConfig:
    """
    Configuration for the solar-longitude Newton iteration.

    Degrees and days throughout; the local offset is applied only when
    presenting an instant in civil (KST) time.
    """
    max_iterations: int = 10
    tolerance_deg: float = 1e-5
    mean_daily_motion_deg: float = 0.9856
    local_offset_hours: int = 9

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if self.tolerance_deg <= 0:
            raise ValueError("tolerance_deg must be positive")
        if self.mean_daily_motion_deg <= 0:
            raise ValueError("mean_daily_motion_deg must be positive")


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """
    Thresholds for the upstream circuit breaker.

    failure_threshold:
        consecutive failures (while CLOSED) that open the circuit.
    success_threshold:
        successes needed in HALF_OPEN before closing again.
    cooldown_seconds:
        how long the circuit stays OPEN before a trial request is let through.
    """
    failure_threshold: int = 5
    success_threshold: int = 2
    cooldown_seconds: float = 60.0
    response_history: int = 100

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")
        if self.response_history < 1:
            raise ValueError("response_history must be >= 1")


@dataclass(frozen=True)
class CacheConfig:
    capacity: int = 1000
    ttl_seconds: float = 24 * 3600.0

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")


@dataclass(frozen=True)
class UpstreamConfig:
    """
    KASI LrsrCldInfoService client settings.

    timeout_seconds is per attempt. Backoff before attempt n (n >= 2) is
    backoff_base_seconds * 2 ** (n - 2), i.e. 1s, 2s, 4s with the defaults.
    """
    base_url: str = KASI_API_BASE_URL
    service_key: Optional[str] = None
    timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be >= 0")


@dataclass(frozen=True)
class DataRangeConfig:
    min_year: int = 1900
    max_year: int = 2200

    def __post_init__(self) -> None:
        if self.max_year < self.min_year:
            raise ValueError("max_year must be >= min_year")

    @property
    def total_years(self) -> int:
        return self.max_year - self.min_year + 1

    def contains(self, year: int) -> bool:
        return self.min_year <= int(year) <= self.max_year


def _default_lunar_cache() -> CacheConfig:
    return CacheConfig(capacity=DataRangeConfig().total_years, ttl_seconds=3600.0)


def _default_solar_term_cache() -> CacheConfig:
    # one slot per (year, term) over the whole table
    return CacheConfig(capacity=DataRangeConfig().total_years * 24, ttl_seconds=3600.0)


@dataclass(frozen=True)
class KCalConfig:
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    upstream_cache: CacheConfig = field(default_factory=CacheConfig)
    lunar_cache: CacheConfig = field(default_factory=_default_lunar_cache)
    solar_term_cache: CacheConfig = field(default_factory=_default_solar_term_cache)
    solarterm: SolarTermConfig = field(default_factory=SolarTermConfig)
    data_range: DataRangeConfig = field(default_factory=DataRangeConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "KCalConfig":
        """
        Build a configuration from environment variables.

        Only the upstream section is environment driven; everything else keeps
        its defaults. Blank values are treated as unset.
        """
        env = os.environ if environ is None else environ

        key = env.get(ENV_API_KEY, "").strip() or None
        base_url = env.get(ENV_API_BASE_URL, "").strip() or KASI_API_BASE_URL

        timeout_raw = env.get(ENV_API_TIMEOUT, "").strip()
        attempts_raw = env.get(ENV_API_MAX_ATTEMPTS, "").strip()
        try:
            timeout = float(timeout_raw) if timeout_raw else UpstreamConfig.timeout_seconds
            attempts = int(attempts_raw) if attempts_raw else UpstreamConfig.max_attempts
        except ValueError as e:
            raise ValueError(
                f"invalid upstream setting: {ENV_API_TIMEOUT}={timeout_raw!r} "
                f"{ENV_API_MAX_ATTEMPTS}={attempts_raw!r}"
            ) from e

        return cls(
            upstream=UpstreamConfig(
                base_url=base_url,
                service_key=key,
                timeout_seconds=timeout,
                max_attempts=attempts,
            )
        )
