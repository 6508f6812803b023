# src/kcal/data/records.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterator, Tuple

from kcal.core.timeutil import KST, from_epoch_ms
from kcal.features.terms import SolarTerm, longitude_of, term_kind

MONTH_LENGTHS = (29, 30)
# 353-day years occur in the tables (1965, 2151), one day below the usual 354 floor
MIN_YEAR_DAYS = 353
MAX_YEAR_DAYS = 385


@dataclass(frozen=True)
class SolarTermRecord:
    """
    A single solar-term instant.

    timestamp_ms is UTC epoch milliseconds (minute resolution in the shipped
    tables). year is the solver year the term was computed for; SOHAN of year Y
    falls in January of Y + 1.
    """
    year: int
    term: SolarTerm
    timestamp_ms: int
    longitude: int

    def __post_init__(self) -> None:
        term = SolarTerm(self.term)
        object.__setattr__(self, "term", term)
        if int(self.longitude) != longitude_of(term):
            raise ValueError(
                f"longitude {self.longitude} does not match {term.name} ({longitude_of(term)})"
            )

    @property
    def utc(self) -> datetime:
        return from_epoch_ms(self.timestamp_ms)

    @property
    def kst(self) -> datetime:
        return self.utc.astimezone(KST)

    @property
    def kind(self) -> str:
        return term_kind(self.longitude)

    @property
    def name(self) -> str:
        return self.term.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "term": self.term.name,
            "timestamp_ms": self.timestamp_ms,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SolarTermRecord":
        return cls(
            year=int(d["year"]),
            term=SolarTerm[d["term"]],
            timestamp_ms=int(d["timestamp_ms"]),
            longitude=int(d["longitude"]),
        )


@dataclass(frozen=True)
class LunarYearRecord:
    """
    Month structure of one lunar year.

    month_lengths lists months in calendar order; when leap_month == n the
    leap month follows regular month n, so the list has 13 entries.
    """
    year: int
    leap_month: int
    month_lengths: Tuple[int, ...]
    total_days: int
    solar_new_year: date

    def __post_init__(self) -> None:
        lengths = tuple(int(x) for x in self.month_lengths)
        object.__setattr__(self, "month_lengths", lengths)

        if not (0 <= self.leap_month <= 12):
            raise ValueError(f"{self.year}: leap_month must be 0..12 (got {self.leap_month})")
        expected = 13 if self.leap_month else 12
        if len(lengths) != expected:
            raise ValueError(
                f"{self.year}: expected {expected} month lengths for leap_month={self.leap_month} "
                f"(got {len(lengths)})"
            )
        if any(x not in MONTH_LENGTHS for x in lengths):
            raise ValueError(f"{self.year}: month lengths must be 29 or 30: {lengths}")
        if sum(lengths) != self.total_days:
            raise ValueError(f"{self.year}: total_days {self.total_days} != sum {sum(lengths)}")
        if not (MIN_YEAR_DAYS <= self.total_days <= MAX_YEAR_DAYS):
            raise ValueError(
                f"{self.year}: total_days out of range: {self.total_days} "
                f"(expected {MIN_YEAR_DAYS}..{MAX_YEAR_DAYS}; the tables include 353-day years)"
            )

    @property
    def has_leap_month(self) -> bool:
        return self.leap_month != 0

    def months(self) -> Iterator[Tuple[int, bool, int]]:
        """Yield (month_no, is_leap, length) in calendar order."""
        idx = 0
        for month in range(1, 13):
            yield month, False, self.month_lengths[idx]
            idx += 1
            if month == self.leap_month:
                yield month, True, self.month_lengths[idx]
                idx += 1

    def month_length(self, month: int, is_leap: bool = False) -> int:
        for m, leap, length in self.months():
            if m == month and leap == is_leap:
                return length
        raise KeyError((month, is_leap))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "leap_month": self.leap_month,
            "month_lengths": list(self.month_lengths),
            "total_days": self.total_days,
            "solar_new_year": self.solar_new_year.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LunarYearRecord":
        return cls(
            year=int(d["year"]),
            leap_month=int(d["leap_month"]),
            month_lengths=tuple(d["month_lengths"]),
            total_days=int(d["total_days"]),
            solar_new_year=date.fromisoformat(d["solar_new_year"]),
        )
