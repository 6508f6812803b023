# src/kcal/core/solarterms.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

from kcal.data.records import SolarTermRecord
from kcal.features.terms import TERM_BY_DEG, TERM_DEGS, SolarTerm, longitude_of

from .astronomy import DEFAULT_SUN_MODEL, SolarLongitudeModel, angdiff180, norm360
from .config import SolarTermConfig
from .julian import from_julian_day, to_julian_day
from .rootfind import RootResult, newton_fixed_rate
from .timeutil import to_epoch_ms

log = logging.getLogger(__name__)


def seed_julian_day(year: int, target_deg: float) -> float:
    """
    Starting estimate for the crossing of target_deg in `year`.

    The sun sits near 0 deg around March, so the seed month is
    floor(target / 30) + 3 (wrapped into 1..12). Targets in [270, 360) are
    seeded from the previous year with month + 12, which to_julian_day accepts
    as-is; the crossing found for 285 deg (SOHAN) therefore lands in January
    of year + 1.
    """
    target = norm360(target_deg)
    y = int(year)
    month = math.floor(target / 30) + 3
    if month > 12:
        month -= 12
    if 270 <= target < 360:
        y -= 1
        month += 12
    return to_julian_day(y, month, 1)


@dataclass(frozen=True)
class SolarTermSolver:
    model: SolarLongitudeModel = DEFAULT_SUN_MODEL
    config: SolarTermConfig = field(default_factory=SolarTermConfig)

    def solve(self, year: int, target_longitude: float) -> RootResult:
        """
        Julian Day at which the solar longitude reaches target_longitude.

        The last estimate is returned even when the tolerance is not reached
        within max_iterations; converged=False is reported on the result.
        """
        target = norm360(target_longitude)

        def residual(jd: float) -> float:
            return angdiff180(target - self.model.sun_longitude_deg(jd))

        r = newton_fixed_rate(
            residual,
            seed_julian_day(year, target),
            rate=self.config.mean_daily_motion_deg,
            tol=self.config.tolerance_deg,
            max_iter=self.config.max_iterations,
        )
        if not r.converged:
            log.warning(
                "solar term solve did not converge: year=%d target=%.1f iterations=%d residual=%.3g",
                year,
                target,
                r.iterations,
                r.residual,
            )
        return r

    def instant_utc(self, year: int, longitude: float) -> datetime:
        """Crossing instant rounded to the minute (aware UTC)."""
        return from_julian_day(self.solve(year, longitude).x).to_datetime()

    def instant_local(self, year: int, longitude: float) -> datetime:
        """Crossing instant at the fixed civil offset (KST, +09:00)."""
        tz = timezone(timedelta(hours=self.config.local_offset_hours))
        return self.instant_utc(year, longitude).astimezone(tz)

    def term_record(self, year: int, term: SolarTerm) -> SolarTermRecord:
        deg = longitude_of(term)
        return SolarTermRecord(
            year=int(year),
            term=SolarTerm(term),
            timestamp_ms=to_epoch_ms(self.instant_utc(year, deg)),
            longitude=deg,
        )

    def year_records(self, year: int) -> List[SolarTermRecord]:
        """All 24 terms of `year`, ordered by time (DAEHAN first, SOHAN last)."""
        out = [self.term_record(year, TERM_BY_DEG[deg]) for deg in TERM_DEGS]
        out.sort(key=lambda r: r.timestamp_ms)
        return out

