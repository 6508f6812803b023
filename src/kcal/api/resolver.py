# src/kcal/api/resolver.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Literal, Optional

from pydantic import BaseModel

from kcal.core.config import KCalConfig
from kcal.core.errors import CircuitOpenError, DataNotFoundError, TransientNetworkError, UpstreamError
from kcal.core.solarterms import SolarTermSolver
from kcal.core.timeutil import kst_year, to_epoch_ms
from kcal.data.records import SolarTermRecord
from kcal.data.store import LocalFallbackStore
from kcal.features.lunar import lunar_to_solar, solar_to_lunar
from kcal.features.terms import SolarTerm, parse_term
from kcal.resilience.cache import CacheStats, TieredCache, make_cache_key
from kcal.resilience.health import CircuitBreakerState, HealthMonitor, HealthSnapshot
from kcal.upstream.kasi import KasiClient, KasiItem

log = logging.getLogger(__name__)


class Direction(str, Enum):
    SOLAR_TO_LUNAR = "solar_to_lunar"
    LUNAR_TO_SOLAR = "lunar_to_solar"


# ============================================================
# Result models
# ============================================================
class CalendarRecord(BaseModel):
    """
    A resolved date in the target calendar.

    The sexagenary names, Julian day and weekday are passed through from the
    API and stay None for locally computed records.
    """
    year: int
    month: int
    day: int
    is_leap_month: bool = False
    source: Literal["upstream", "local"]
    year_ganji: Optional[str] = None
    month_ganji: Optional[str] = None
    day_ganji: Optional[str] = None
    julian_day: Optional[int] = None
    weekday: Optional[str] = None

    @classmethod
    def from_item(cls, item: KasiItem, direction: Direction) -> "CalendarRecord":
        extra = dict(
            year_ganji=item.lun_secha,
            month_ganji=item.lun_wolgeon,
            day_ganji=item.lun_iljin,
            julian_day=item.sol_jd,
            weekday=item.sol_week,
        )
        if direction is Direction.SOLAR_TO_LUNAR:
            return cls(
                year=item.lun_year,
                month=item.lun_month,
                day=item.lun_day,
                is_leap_month=item.is_leap_month,
                source="upstream",
                **extra,
            )
        return cls(year=item.sol_year, month=item.sol_month, day=item.sol_day, source="upstream", **extra)


class HealthReport(BaseModel):
    health: HealthSnapshot
    circuit: CircuitBreakerState
    solar_to_lunar_cache: CacheStats
    lunar_to_solar_cache: CacheStats


# ============================================================
# Resolver
# ============================================================
class CalendarResolver:
    """
    Resolve calendar conversions upstream-first with a local fallback.

    Order per request: response cache, in-flight request for the same key,
    circuit breaker, KASI call (retried for transport failures), then the
    local tables when the year is supported. Only upstream answers are cached.
    """

    def __init__(
        self,
        store: LocalFallbackStore,
        monitor: HealthMonitor,
        client: KasiClient,
        config: KCalConfig = KCalConfig(),
        *,
        solver: Optional[SolarTermSolver] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.monitor = monitor
        self.client = client
        self.config = config
        self.solver = solver if solver is not None else SolarTermSolver(config=config.solarterm)
        self._clock = clock

        self.solar_to_lunar_cache: TieredCache[str, CalendarRecord] = TieredCache(
            config.upstream_cache, name="solar_to_lunar"
        )
        self.lunar_to_solar_cache: TieredCache[str, CalendarRecord] = TieredCache(
            config.upstream_cache, name="lunar_to_solar"
        )

        self._inflight: Dict[str, "Future[CalendarRecord]"] = {}
        self._inflight_lock = threading.Lock()

    # ---- conversions ----
    def resolve(
        self,
        year: int,
        month: int,
        day: int,
        direction: Direction | str,
        *,
        is_leap_month: bool = False,
        timeout: Optional[float] = None,
    ) -> CalendarRecord:
        """
        Convert (year, month, day) in the given direction.

        Raises
        ------
        ValueError
            structurally invalid input.
        UpstreamError
            the API failed and the year is outside the local tables.
        YearOutOfRangeError, DataNotFoundError
            local lookup failed (chained to the upstream error).
        """
        direction = Direction(direction)
        self._validate(year, month, day, direction, is_leap_month)
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")

        cache = self._cache_for(direction)
        kind = "solar" if direction is Direction.SOLAR_TO_LUNAR else "lunar"
        key = make_cache_key(kind, year, month, day, is_leap_month)

        hit = cache.get(key)
        if hit is not None:
            return hit

        with self._inflight_lock:
            fut = self._inflight.get(key)
            leader = fut is None
            if leader:
                # a previous leader may have finished since the first lookup
                hit = cache.get(key) if key in cache else None
                if hit is not None:
                    return hit
                fut = Future()
                self._inflight[key] = fut

        if not leader:
            log.debug("joining in-flight request key=%s", key)
            try:
                return fut.result(timeout=timeout)
            except FutureTimeoutError:
                log.warning("timed out waiting for in-flight request key=%s", key)
                return self._fallback(
                    key,
                    year,
                    month,
                    day,
                    direction,
                    is_leap_month,
                    TransientNetworkError(f"timed out waiting for in-flight request {key}"),
                )

        deadline = self._clock() + timeout if timeout is not None else None
        try:
            result = self._resolve_once(key, year, month, day, direction, is_leap_month, deadline)
        except BaseException as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _validate(self, year: int, month: int, day: int, direction: Direction, is_leap_month: bool) -> None:
        for name, v in (("year", year), ("month", month), ("day", day)):
            if isinstance(v, bool) or not isinstance(v, int):
                raise ValueError(f"{name} must be an int (got {v!r})")
        if direction is Direction.SOLAR_TO_LUNAR:
            if is_leap_month:
                raise ValueError("is_leap_month applies to lunar dates only")
            date(year, month, day)  # ValueError for impossible dates
        else:
            if not (1 <= month <= 12):
                raise ValueError(f"lunar month must be 1..12 (got {month})")
            if not (1 <= day <= 30):
                raise ValueError(f"lunar day must be 1..30 (got {day})")

    def _cache_for(self, direction: Direction) -> TieredCache[str, CalendarRecord]:
        if direction is Direction.SOLAR_TO_LUNAR:
            return self.solar_to_lunar_cache
        return self.lunar_to_solar_cache

    def _fetch(
        self, year: int, month: int, day: int, direction: Direction, is_leap_month: bool, deadline: Optional[float]
    ) -> KasiItem:
        if direction is Direction.SOLAR_TO_LUNAR:
            return self.client.fetch_solar_to_lunar(year, month, day, deadline=deadline)
        return self.client.fetch_lunar_to_solar(year, month, day, is_leap_month, deadline=deadline)

    def _resolve_once(
        self,
        key: str,
        year: int,
        month: int,
        day: int,
        direction: Direction,
        is_leap_month: bool,
        deadline: Optional[float],
    ) -> CalendarRecord:
        decision = self.monitor.can_attempt()
        if not decision.allowed:
            upstream_error: UpstreamError = CircuitOpenError(
                decision.reason or "circuit breaker is open",
                next_attempt_at=self.monitor.circuit().next_attempt_at,
            )
            log.warning("skipping KASI for %s: %s", key, decision.reason)
        else:
            started = self._clock()
            try:
                item = self._fetch(year, month, day, direction, is_leap_month, deadline)
            except UpstreamError as e:
                self.monitor.record_failure(e)
                upstream_error = e
                log.warning("KASI request failed for %s: %s", key, e)
            else:
                latency_ms = (self._clock() - started) * 1000.0
                self.monitor.record_success(latency_ms)
                record = CalendarRecord.from_item(item, direction)
                self._cache_for(direction).set(key, record)
                log.info("KASI success %s (%.0f ms)", key, latency_ms)
                return record

        return self._fallback(key, year, month, day, direction, is_leap_month, upstream_error)

    def _fallback(
        self,
        key: str,
        year: int,
        month: int,
        day: int,
        direction: Direction,
        is_leap_month: bool,
        upstream_error: UpstreamError,
    ) -> CalendarRecord:
        if not self.store.supports(year):
            raise upstream_error

        log.warning("using local tables for %s (%s)", key, type(upstream_error).__name__)
        try:
            if direction is Direction.SOLAR_TO_LUNAR:
                lunar = solar_to_lunar(self.store, date(year, month, day))
                return CalendarRecord(
                    year=lunar.year, month=lunar.month, day=lunar.day, is_leap_month=lunar.is_leap, source="local"
                )
            d = lunar_to_solar(self.store, year, month, day, is_leap_month)
            return CalendarRecord(year=d.year, month=d.month, day=d.day, source="local")
        except DataNotFoundError as e:
            raise e from upstream_error

    # ---- solar terms ----
    def solar_terms_for_year(self, year: int) -> List[SolarTermRecord]:
        """24 terms of `year` in time order; computed when outside the tables."""
        if self.store.supports(year):
            return self.store.get_year_solar_terms(year)
        log.info("year %d outside local tables; computing solar terms", year)
        return self.solver.year_records(year)

    def solar_term(self, year: int, term: SolarTerm | str) -> SolarTermRecord:
        term = parse_term(term)
        if self.store.supports(year):
            return self.store.get_solar_term(year, term)
        return self.solver.term_record(year, term)

    def _computed_terms_around(self, moment: datetime) -> List[SolarTermRecord]:
        y = kst_year(moment)
        out: List[SolarTermRecord] = []
        for year in (y - 1, y, y + 1):
            out.extend(self.solver.year_records(year))
        out.sort(key=lambda r: r.timestamp_ms)
        return out

    def nearest_solar_term(self, moment: datetime) -> Optional[SolarTermRecord]:
        """Last solar term at or before `moment`."""
        if self.store.supports(kst_year(moment)):
            found = self.store.nearest_solar_term(moment)
            if found is not None:
                return found
        ms = to_epoch_ms(moment)
        before = [r for r in self._computed_terms_around(moment) if r.timestamp_ms <= ms]
        return before[-1] if before else None

    def next_solar_term(self, moment: datetime) -> Optional[SolarTermRecord]:
        """First solar term strictly after `moment`."""
        if self.store.supports(kst_year(moment)):
            found = self.store.next_solar_term(moment)
            if found is not None:
                return found
        ms = to_epoch_ms(moment)
        after = [r for r in self._computed_terms_around(moment) if r.timestamp_ms > ms]
        return after[0] if after else None

    # ---- observability ----
    def health_report(self) -> HealthReport:
        return HealthReport(
            health=self.monitor.health(),
            circuit=self.monitor.circuit(),
            solar_to_lunar_cache=self.solar_to_lunar_cache.stats(),
            lunar_to_solar_cache=self.lunar_to_solar_cache.stats(),
        )

    def status_report(self) -> str:
        return "\n".join(
            [
                self.monitor.status_report(),
                self.solar_to_lunar_cache.report(),
                self.lunar_to_solar_cache.report(),
            ]
        )

    def clear_caches(self) -> None:
        self.solar_to_lunar_cache.clear()
        self.lunar_to_solar_cache.clear()
        self.store.clear_cache()
