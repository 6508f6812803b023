# src/kcal/data/store.py
from __future__ import annotations

import json
import logging
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from kcal.core.config import CacheConfig, DataRangeConfig, KCalConfig
from kcal.core.errors import DataNotFoundError, YearOutOfRangeError
from kcal.core.timeutil import kst_year, to_epoch_ms
from kcal.features.terms import SolarTerm
from kcal.resilience.cache import TieredCache

from .records import LunarYearRecord, SolarTermRecord

log = logging.getLogger(__name__)

SHARD_FORMAT = 1
SHARD_DIR = Path(__file__).resolve().parent / "shards"


@dataclass(frozen=True)
class Shard:
    """
    Precomputed records for [first_year, last_year].

    solar_terms is ordered by timestamp across the whole shard.
    """
    first_year: int
    last_year: int
    lunar_years: Tuple[LunarYearRecord, ...]
    solar_terms: Tuple[SolarTermRecord, ...]

    def __post_init__(self) -> None:
        if self.last_year < self.first_year:
            raise ValueError(f"shard {self.first_year}..{self.last_year}: empty range")
        for r in self.lunar_years:
            if not self.contains(r.year):
                raise ValueError(f"shard {self.name}: lunar year {r.year} outside range")
        for r in self.solar_terms:
            if not self.contains(r.year):
                raise ValueError(f"shard {self.name}: solar-term year {r.year} outside range")
        ts = [r.timestamp_ms for r in self.solar_terms]
        if any(b <= a for a, b in zip(ts, ts[1:])):
            raise ValueError(f"shard {self.name}: solar terms are not strictly increasing")

        object.__setattr__(self, "_lunar_by_year", {r.year: r for r in self.lunar_years})
        object.__setattr__(self, "_term_by_key", {(r.year, r.term): r for r in self.solar_terms})
        object.__setattr__(self, "_timestamps", ts)

    @property
    def name(self) -> str:
        return f"shard_{self.first_year}_{self.last_year}"

    def contains(self, year: int) -> bool:
        return self.first_year <= year <= self.last_year

    def lunar_year(self, year: int) -> Optional[LunarYearRecord]:
        return self._lunar_by_year.get(year)

    def solar_term(self, year: int, term: SolarTerm) -> Optional[SolarTermRecord]:
        return self._term_by_key.get((year, SolarTerm(term)))

    def year_solar_terms(self, year: int) -> List[SolarTermRecord]:
        return [r for r in self.solar_terms if r.year == year]

    def last_at_or_before(self, ms: int) -> Optional[SolarTermRecord]:
        i = bisect_right(self._timestamps, ms)
        return self.solar_terms[i - 1] if i > 0 else None

    def first_after(self, ms: int) -> Optional[SolarTermRecord]:
        i = bisect_right(self._timestamps, ms)
        return self.solar_terms[i] if i < len(self.solar_terms) else None

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "format": SHARD_FORMAT,
            "first_year": self.first_year,
            "last_year": self.last_year,
            "lunar_years": [r.to_dict() for r in self.lunar_years],
            "solar_terms": [r.to_dict() for r in self.solar_terms],
        }

    @classmethod
    def from_json_dict(cls, d: Dict[str, Any]) -> "Shard":
        fmt = d.get("format")
        if fmt != SHARD_FORMAT:
            raise ValueError(f"unsupported shard format: {fmt!r}")
        return cls(
            first_year=int(d["first_year"]),
            last_year=int(d["last_year"]),
            lunar_years=tuple(LunarYearRecord.from_dict(x) for x in d["lunar_years"]),
            solar_terms=tuple(SolarTermRecord.from_dict(x) for x in d["solar_terms"]),
        )

    @classmethod
    def load(cls, path: Path) -> "Shard":
        with path.open("r", encoding="utf-8") as f:
            shard = cls.from_json_dict(json.load(f))
        log.debug(
            "loaded %s: %d lunar years, %d solar terms",
            path.name,
            len(shard.lunar_years),
            len(shard.solar_terms),
        )
        return shard


class LocalFallbackStore:
    """
    Read-only lookup over an ordered list of contiguous shards.

    Every entry point validates the year against data_range first
    (YearOutOfRangeError); a year in range with no record raises
    DataNotFoundError.
    """

    def __init__(
        self,
        shards: Sequence[Shard],
        *,
        data_range: DataRangeConfig = DataRangeConfig(),
        lunar_cache: Optional[CacheConfig] = None,
        solar_term_cache: Optional[CacheConfig] = None,
    ) -> None:
        self.shards: Tuple[Shard, ...] = tuple(shards)
        self.data_range = data_range
        self._validate_layout()

        defaults = KCalConfig()
        self._lunar_cache: TieredCache[int, LunarYearRecord] = TieredCache(
            lunar_cache or defaults.lunar_cache, name="lunar_years"
        )
        self._term_cache: TieredCache[Tuple[int, SolarTerm], SolarTermRecord] = TieredCache(
            solar_term_cache or defaults.solar_term_cache, name="solar_terms"
        )

    def _validate_layout(self) -> None:
        if not self.shards:
            raise ValueError("at least one shard is required")
        for a, b in zip(self.shards, self.shards[1:]):
            if b.first_year != a.last_year + 1:
                raise ValueError(f"shards are not contiguous: {a.name} -> {b.name}")
        lo, hi = self.shards[0].first_year, self.shards[-1].last_year
        if lo > self.data_range.min_year or hi < self.data_range.max_year:
            raise ValueError(
                f"shards cover {lo}..{hi} but {self.data_range.min_year}.."
                f"{self.data_range.max_year} is required"
            )

    # ---- range ----
    @property
    def min_year(self) -> int:
        return self.data_range.min_year

    @property
    def max_year(self) -> int:
        return self.data_range.max_year

    def supports(self, year: int) -> bool:
        return self.data_range.contains(year)

    def _require_year(self, year: int) -> int:
        y = int(year)
        if not self.supports(y):
            raise YearOutOfRangeError(y, self.min_year, self.max_year)
        return y

    def shard_for(self, year: int) -> Shard:
        y = self._require_year(year)
        firsts = [s.first_year for s in self.shards]
        i = bisect_right(firsts, y) - 1
        if i < 0 or not self.shards[i].contains(y):
            raise DataNotFoundError(f"no shard contains year {y}")
        return self.shards[i]

    # ---- lookups ----
    def get_lunar_year(self, year: int) -> LunarYearRecord:
        y = self._require_year(year)
        hit = self._lunar_cache.get(y)
        if hit is not None:
            return hit
        rec = self.shard_for(y).lunar_year(y)
        if rec is None:
            raise DataNotFoundError(f"lunar year {y} not found")
        self._lunar_cache.set(y, rec)
        return rec

    def get_solar_term(self, year: int, term: SolarTerm) -> SolarTermRecord:
        y = self._require_year(year)
        key = (y, SolarTerm(term))
        hit = self._term_cache.get(key)
        if hit is not None:
            return hit
        rec = self.shard_for(y).solar_term(*key)
        if rec is None:
            raise DataNotFoundError(f"solar term {key[1].name} of {y} not found")
        self._term_cache.set(key, rec)
        return rec

    def get_year_solar_terms(self, year: int) -> List[SolarTermRecord]:
        y = self._require_year(year)
        out = self.shard_for(y).year_solar_terms(y)
        if not out:
            raise DataNotFoundError(f"no solar terms for {y}")
        return out

    def nearest_solar_term(self, moment: datetime) -> Optional[SolarTermRecord]:
        """Last solar term at or before `moment`, or None."""
        self._require_year(kst_year(moment))
        ms = to_epoch_ms(moment)
        found: Optional[SolarTermRecord] = None
        for shard in self.shards:
            if shard.solar_terms and shard.solar_terms[0].timestamp_ms > ms:
                break
            found = shard.last_at_or_before(ms) or found
        return found

    def next_solar_term(self, moment: datetime) -> Optional[SolarTermRecord]:
        """First solar term strictly after `moment`, or None."""
        self._require_year(kst_year(moment))
        ms = to_epoch_ms(moment)
        for shard in self.shards:
            if shard.solar_terms and shard.solar_terms[-1].timestamp_ms <= ms:
                continue
            rec = shard.first_after(ms)
            if rec is not None:
                return rec
        return None

    # ---- maintenance ----
    def statistics(self) -> Dict[str, Any]:
        return {
            "min_year": self.min_year,
            "max_year": self.max_year,
            "total_years": self.data_range.total_years,
            "shards": [
                {
                    "name": s.name,
                    "first_year": s.first_year,
                    "last_year": s.last_year,
                    "lunar_years": len(s.lunar_years),
                    "solar_terms": len(s.solar_terms),
                }
                for s in self.shards
            ],
            "lunar_years": sum(len(s.lunar_years) for s in self.shards),
            "solar_terms": sum(len(s.solar_terms) for s in self.shards),
            "lunar_cache": self._lunar_cache.stats().model_dump(),
            "solar_term_cache": self._term_cache.stats().model_dump(),
        }

    def clear_cache(self) -> None:
        self._lunar_cache.clear()
        self._term_cache.clear()


def shard_paths(directory: Path = SHARD_DIR) -> List[Path]:
    paths = sorted(directory.glob("shard_*.json"), key=lambda p: int(p.stem.split("_")[1]))
    if not paths:
        raise FileNotFoundError(f"no shard files under {directory}")
    return paths


def load_store(directory: Path, config: Optional[KCalConfig] = None) -> LocalFallbackStore:
    cfg = config or KCalConfig()
    shards = [Shard.load(p) for p in shard_paths(directory)]
    return LocalFallbackStore(
        shards,
        data_range=cfg.data_range,
        lunar_cache=cfg.lunar_cache,
        solar_term_cache=cfg.solar_term_cache,
    )


@lru_cache(maxsize=1)
def load_default_store() -> LocalFallbackStore:
    """Store over the packaged shards, loaded once per process."""
    return load_store(SHARD_DIR)
