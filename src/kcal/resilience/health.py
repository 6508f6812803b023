# src/kcal/resilience/health.py
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Deque, Optional

from pydantic import BaseModel, ConfigDict

from kcal.core.config import CircuitBreakerConfig

from .cache import Clock, utcnow

log = logging.getLogger(__name__)

DEGRADED_SUCCESS_RATE = 0.5
DEGRADED_CONSECUTIVE_FAILURES = 3


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ApiStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class CircuitBreakerState(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: CircuitState
    consecutive_failures: int
    half_open_successes: int
    next_attempt_at: Optional[datetime]
    last_transition_at: datetime


class HealthSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ApiStatus
    total_successes: int
    total_failures: int
    consecutive_failures: int
    average_response_time_ms: float
    last_error_message: Optional[str] = None
    last_checked_at: datetime

    @property
    def success_rate(self) -> float:
        total = self.total_successes + self.total_failures
        return self.total_successes / total if total else 1.0


@dataclass(frozen=True)
class AttemptDecision:
    allowed: bool
    reason: Optional[str] = None


class HealthMonitor:
    """
    Circuit breaker and health statistics for one upstream dependency.

    CLOSED -> OPEN after failure_threshold consecutive failures.
    OPEN -> HALF_OPEN on the first can_attempt() after the cooldown.
    HALF_OPEN -> CLOSED after success_threshold successes; any failure reopens.
    A success recorded while OPEN closes the circuit directly.
    """

    def __init__(self, config: CircuitBreakerConfig = CircuitBreakerConfig(), *, clock: Clock = utcnow) -> None:
        self.config = config
        self._clock = clock
        self._lock = threading.RLock()
        self._init_state()

    def _init_state(self) -> None:
        now = self._clock()
        self._state = CircuitState.CLOSED
        self._breaker_failures = 0
        self._half_open_successes = 0
        self._next_attempt_at: Optional[datetime] = None
        self._last_transition_at = now

        self._total_successes = 0
        self._total_failures = 0
        self._consecutive_failures = 0
        self._last_error: Optional[str] = None
        self._last_checked_at = now
        self._response_times: Deque[float] = deque(maxlen=self.config.response_history)

    # ---- breaker ----
    def can_attempt(self) -> AttemptDecision:
        with self._lock:
            if self._state is CircuitState.OPEN:
                now = self._clock()
                if self._next_attempt_at is None or now >= self._next_attempt_at:
                    self._transition(CircuitState.HALF_OPEN)
                    return AttemptDecision(True)
                return AttemptDecision(
                    False,
                    f"Circuit breaker is OPEN. Next attempt at {self._next_attempt_at.isoformat()}",
                )
            return AttemptDecision(True)

    def record_success(self, response_time_ms: float) -> None:
        with self._lock:
            self._total_successes += 1
            self._consecutive_failures = 0
            self._last_checked_at = self._clock()
            self._response_times.append(float(response_time_ms))

            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED)
            elif self._state is CircuitState.OPEN:
                self._transition(CircuitState.CLOSED)

    def record_failure(self, error: BaseException | str) -> None:
        with self._lock:
            self._total_failures += 1
            self._consecutive_failures += 1
            self._last_checked_at = self._clock()
            self._last_error = str(error) or type(error).__name__

            self._breaker_failures += 1
            self._half_open_successes = 0

            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self._state is CircuitState.CLOSED:
                if self._consecutive_failures >= self.config.failure_threshold:
                    self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old = self._state
        now = self._clock()
        self._state = new_state
        self._last_transition_at = now

        if new_state is CircuitState.OPEN:
            self._next_attempt_at = now + timedelta(seconds=self.config.cooldown_seconds)
            log.warning(
                "circuit breaker OPEN (%s -> %s) after %d consecutive failures; next attempt at %s",
                old.value,
                new_state.value,
                self._consecutive_failures,
                self._next_attempt_at.isoformat(),
            )
        else:
            self._breaker_failures = 0
            self._half_open_successes = 0
            log.info("circuit breaker %s (%s -> %s)", new_state.name, old.value, new_state.value)

    # ---- views ----
    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def _status(self) -> ApiStatus:
        total = self._total_successes + self._total_failures
        if total == 0:
            return ApiStatus.HEALTHY
        if self._state is CircuitState.OPEN:
            return ApiStatus.DOWN
        rate = self._total_successes / total
        if rate < DEGRADED_SUCCESS_RATE or self._consecutive_failures >= DEGRADED_CONSECUTIVE_FAILURES:
            return ApiStatus.DEGRADED
        return ApiStatus.HEALTHY

    def health(self) -> HealthSnapshot:
        with self._lock:
            avg = sum(self._response_times) / len(self._response_times) if self._response_times else 0.0
            return HealthSnapshot(
                status=self._status(),
                total_successes=self._total_successes,
                total_failures=self._total_failures,
                consecutive_failures=self._consecutive_failures,
                average_response_time_ms=avg,
                last_error_message=self._last_error,
                last_checked_at=self._last_checked_at,
            )

    def circuit(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                state=self._state,
                consecutive_failures=self._breaker_failures,
                half_open_successes=self._half_open_successes,
                next_attempt_at=self._next_attempt_at if self._state is CircuitState.OPEN else None,
                last_transition_at=self._last_transition_at,
            )

    def reset(self) -> None:
        with self._lock:
            self._init_state()
        log.info("health monitor reset")

    def status_report(self) -> str:
        h = self.health()
        c = self.circuit()
        lines = [
            f"KASI API status: {h.status.value.upper()}",
            f"  circuit: {c.state.value}",
            f"  successes: {h.total_successes}  failures: {h.total_failures}  consecutive failures: {h.consecutive_failures}",
            f"  success rate: {h.success_rate * 100:.1f}%",
            f"  average response time: {h.average_response_time_ms:.0f} ms",
        ]
        if c.next_attempt_at is not None:
            lines.append(f"  next attempt at: {c.next_attempt_at.isoformat()}")
        if h.last_error_message:
            lines.append(f"  last error: {h.last_error_message}")
        return "\n".join(lines)
