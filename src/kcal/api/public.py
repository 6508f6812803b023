from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import List, Optional

from kcal.core.config import KCalConfig
from kcal.data.records import SolarTermRecord
from kcal.data.store import load_default_store
from kcal.features.terms import SolarTerm
from kcal.resilience.health import HealthMonitor
from kcal.upstream.kasi import KasiClient

from .resolver import CalendarRecord, CalendarResolver, Direction, HealthReport

log = logging.getLogger("kcal.api.public")


@lru_cache(maxsize=1)
def default_resolver() -> CalendarResolver:
    """
    Process-wide resolver configured from the environment.

    Call default_resolver.cache_clear() after changing KASI_* variables.
    """
    config = KCalConfig.from_env()
    if not config.upstream.service_key:
        log.warning("KASI_API_KEY is not set; conversions will use local tables only")
    return CalendarResolver(
        store=load_default_store(),
        monitor=HealthMonitor(config.breaker),
        client=KasiClient(config.upstream),
        config=config,
    )


def resolve_calendar(
    year: int,
    month: int,
    day: int,
    direction: Direction | str = Direction.SOLAR_TO_LUNAR,
    *,
    is_leap_month: bool = False,
    timeout: Optional[float] = None,
) -> CalendarRecord:
    return default_resolver().resolve(year, month, day, direction, is_leap_month=is_leap_month, timeout=timeout)


def get_solar_terms_for_year(year: int) -> List[SolarTermRecord]:
    return default_resolver().solar_terms_for_year(year)


def get_solar_term(year: int, term: SolarTerm | str) -> SolarTermRecord:
    return default_resolver().solar_term(year, term)


def get_nearest_solar_term(moment: datetime) -> Optional[SolarTermRecord]:
    return default_resolver().nearest_solar_term(moment)


def get_next_solar_term(moment: datetime) -> Optional[SolarTermRecord]:
    return default_resolver().next_solar_term(moment)


def get_health_report() -> HealthReport:
    return default_resolver().health_report()


def get_status_report() -> str:
    return default_resolver().status_report()
