# src/kcal/core/astronomy.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .vsop87 import apparent_longitude_tt

J2000_JD = 2451545.0
DAYS_PER_JULIAN_CENTURY = 36525.0


def norm360(deg: float) -> float:
    x = deg % 360.0
    return x + 360.0 if x < 0 else x


def angdiff180(deg: float) -> float:
    """Map angle to (-180, 180]."""
    x = (deg + 180.0) % 360.0 - 180.0
    return 180.0 if x == -180.0 else x


def julian_centuries(jd: float) -> float:
    return (jd - J2000_JD) / DAYS_PER_JULIAN_CENTURY


@runtime_checkable
class SolarLongitudeModel(Protocol):
    def sun_longitude_deg(self, jd: float) -> float: ...


@dataclass(frozen=True)
class MeanElementsSunModel:
    """
    Low-precision solar ecliptic longitude from mean elements
    (Meeus, Astronomical Algorithms ch. 25).

    L0 is the geometric mean longitude, M the mean anomaly, C the three-term
    equation of center. No nutation, aberration or delta-T, so solar-term
    instants come out roughly 10-20 minutes early.
    """

    def sun_longitude_deg(self, jd: float) -> float:
        t = julian_centuries(jd)

        l0 = 280.46646 + 36000.76983 * t + 0.0003032 * t * t
        m = 357.52911 + 35999.05029 * t - 0.0001537 * t * t
        mr = math.radians(m)

        c = (
            (1.914602 - 0.004817 * t - 0.000014 * t * t) * math.sin(mr)
            + (0.019993 - 0.000101 * t) * math.sin(2 * mr)
            + 0.000289 * math.sin(3 * mr)
        )
        return norm360(l0 + c)


def delta_t_seconds(year: float) -> float:
    """
    TT - UT in seconds for a decimal year (Espenak & Meeus polynomials,
    long-term parabola outside 1860..2150).
    """
    y = year
    if y < 1860:
        u = (y - 1820) / 100
        return -20 + 32 * u * u
    if y < 1900:
        t = y - 1860
        return 7.62 + 0.5737 * t - 0.251754 * t * t + 0.01680668 * t ** 3 - 0.0004473624 * t ** 4 + t ** 5 / 233174
    if y < 1920:
        t = y - 1900
        return -2.79 + 1.494119 * t - 0.0598939 * t * t + 0.0061966 * t ** 3 - 0.000197 * t ** 4
    if y < 1941:
        t = y - 1920
        return 21.20 + 0.84493 * t - 0.076100 * t * t + 0.0020936 * t ** 3
    if y < 1961:
        t = y - 1950
        return 29.07 + 0.407 * t - t * t / 233 + t ** 3 / 2547
    if y < 1986:
        t = y - 1975
        return 45.45 + 1.067 * t - t * t / 260 - t ** 3 / 718
    if y < 2005:
        t = y - 2000
        return (
            63.86 + 0.3345 * t - 0.060374 * t * t + 0.0017275 * t ** 3
            + 0.000651814 * t ** 4 + 0.00002373599 * t ** 5
        )
    if y < 2050:
        t = y - 2000
        return 62.92 + 0.32217 * t + 0.005589 * t * t
    u = (y - 1820) / 100
    if y < 2150:
        return -20 + 32 * u * u - 0.5628 * (2150 - y)
    return -20 + 32 * u * u


def decimal_year(jd: float) -> float:
    return 2000 + (jd - J2000_JD) / 365.25


@dataclass(frozen=True)
class Vsop87SunModel:
    """
    Apparent solar longitude from the truncated VSOP87 Earth series with
    nutation, aberration and delta-T. Input Julian Days are UT; agrees with
    published equinox and solstice instants to about a minute.
    """

    def sun_longitude_deg(self, jd: float) -> float:
        jde = jd + delta_t_seconds(decimal_year(jd)) / 86400
        return norm360(apparent_longitude_tt(jde))


DEFAULT_SUN_MODEL = Vsop87SunModel()


def apparent_solar_longitude(jd: float, model: SolarLongitudeModel = DEFAULT_SUN_MODEL) -> float:
    """Solar ecliptic longitude in degrees [0, 360) at Julian Day jd."""
    return norm360(model.sun_longitude_deg(jd))
