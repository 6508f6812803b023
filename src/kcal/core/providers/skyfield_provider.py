from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from skyfield.api import Loader
from skyfield.framelib import ecliptic_frame

from kcal.core.astronomy import norm360

log = logging.getLogger(__name__)

ENV_EPHEMERIS_PATH = "KCAL_EPHEMERIS_PATH"
EPHEMERIS_CANDIDATES = ("de440s.bsp", "de421.bsp")


# ----------------------------
# Ephemeris path resolution
# ----------------------------
def _resolve_ephemeris_path(ephemeris: Optional[Union[str, Path]]) -> Path:
    """
    Resolution priority:
      1) ephemeris argument (str|Path)
      2) KCAL_EPHEMERIS_PATH environment variable
         - a file -> use as is
         - a directory -> prefer de440s (longer coverage) else de421 inside it
    """
    raw: Optional[Union[str, Path]] = ephemeris
    if raw is None:
        raw = os.environ.get(ENV_EPHEMERIS_PATH) or None
    if raw is None:
        raise FileNotFoundError(
            f"No ephemeris configured. Pass ephemeris=... or set {ENV_EPHEMERIS_PATH} "
            f"to one of: {', '.join(EPHEMERIS_CANDIDATES)}"
        )

    p = Path(raw).expanduser()
    if p.is_dir():
        for name in EPHEMERIS_CANDIDATES:
            if (p / name).exists():
                return p / name
        return p / EPHEMERIS_CANDIDATES[0]
    return p


@dataclass(frozen=True)
class SkyfieldSunModel:
    """
    High-precision solar longitude from a JPL ephemeris.

    Apparent geocentric longitude in the true ecliptic and equinox of date.
    Input Julian Days are treated as UT1 (civil time to well under a second).
    """

    ephemeris: Optional[Union[str, Path]] = None

    def __post_init__(self) -> None:
        path = _resolve_ephemeris_path(self.ephemeris)
        if not path.exists():
            raise FileNotFoundError(f"Ephemeris not found: {path}")
        object.__setattr__(self, "ephemeris", path)

        loader = Loader(str(path.parent))
        eph = loader(path.name)
        ts = loader.timescale()

        object.__setattr__(self, "_eph", eph)
        object.__setattr__(self, "_ts", ts)
        object.__setattr__(self, "_earth", eph["earth"])
        object.__setattr__(self, "_sun", eph["sun"])

        start_jd, end_jd = self._coverage_jd()
        object.__setattr__(self, "_start_jd", start_jd)
        object.__setattr__(self, "_end_jd", end_jd)
        log.debug("loaded ephemeris %s coverage jd=%.1f..%.1f", path, start_jd, end_jd)

    def _coverage_jd(self) -> Tuple[float, float]:
        segments = getattr(self._eph, "spk", None)
        if segments is None or not getattr(segments, "segments", None):
            return float("-inf"), float("inf")
        segs = segments.segments
        return min(s.start_jd for s in segs), max(s.end_jd for s in segs)

    def _check_coverage(self, jd: float) -> None:
        if not (self._start_jd <= jd <= self._end_jd):
            raise ValueError(
                "Requested Julian Day is outside ephemeris coverage.\n"
                f"  requested: {jd}\n"
                f"  ephemeris: {self.ephemeris}\n"
                f"  coverage : {self._start_jd} .. {self._end_jd}"
            )

    def sun_longitude_deg(self, jd: float) -> float:
        self._check_coverage(jd)
        t = self._ts.ut1_jd(jd)
        obs = self._earth.at(t).observe(self._sun).apparent()
        _lat, lon, _dist = obs.frame_latlon(ecliptic_frame)
        return norm360(float(lon.degrees))
