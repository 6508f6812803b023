from __future__ import annotations

import math

import pytest

from kcal.core.astronomy import (
    DEFAULT_SUN_MODEL,
    MeanElementsSunModel,
    SolarLongitudeModel,
    Vsop87SunModel,
    angdiff180,
    apparent_solar_longitude,
    decimal_year,
    delta_t_seconds,
    norm360,
)
from kcal.core.julian import to_julian_day
from kcal.core.rootfind import newton_fixed_rate
from kcal.core.vsop87 import apparent_longitude_tt


def test_norm360():
    assert norm360(-30.0) == 330.0
    assert norm360(720.5) == pytest.approx(0.5)
    assert 0.0 <= norm360(-1e-12) < 360.0


def test_angdiff180_range():
    assert angdiff180(-180.0) == 180.0
    assert angdiff180(180.0) == 180.0
    assert angdiff180(190.0) == pytest.approx(-170.0)
    assert angdiff180(-190.0) == pytest.approx(170.0)
    assert angdiff180(15.0 - 345.0) == pytest.approx(30.0)


def test_mean_elements_at_j2000():
    lon = MeanElementsSunModel().sun_longitude_deg(2451545.0)
    assert 280.35 < lon < 280.42


def test_model_satisfies_protocol():
    assert isinstance(DEFAULT_SUN_MODEL, SolarLongitudeModel)


def test_longitude_near_equinox_and_solstice():
    # 2024-03-20 03:06 UTC (equinox), 2024-06-20 20:51 UTC (solstice)
    eq = apparent_solar_longitude(to_julian_day(2024, 3, 20, 3.1))
    sol = apparent_solar_longitude(to_julian_day(2024, 6, 20, 20.85))
    assert abs(angdiff180(eq - 0.0)) < 0.05
    assert abs(angdiff180(sol - 90.0)) < 0.05


def test_longitude_advances_about_one_degree_per_day():
    jd = to_julian_day(2024, 5, 1)
    step = angdiff180(apparent_solar_longitude(jd + 1) - apparent_solar_longitude(jd))
    assert 0.95 < step < 1.02


def test_newton_fixed_rate_converges_on_linear_function():
    r = newton_fixed_rate(lambda x: 10.0 - x, 0.0, rate=1.0, tol=1e-9, max_iter=10)
    assert r.converged
    assert r.x == pytest.approx(10.0)
    assert r.iterations == 2


def test_newton_fixed_rate_reports_non_convergence():
    # slope 2 with rate 1 overshoots back and forth
    r = newton_fixed_rate(lambda x: 10.0 - 2.0 * x, 0.0, rate=1.0, tol=1e-9, max_iter=5)
    assert not r.converged
    assert r.iterations == 5


def test_newton_fixed_rate_stops_on_nan():
    r = newton_fixed_rate(lambda x: math.nan, 1.0, rate=1.0, tol=1e-6, max_iter=10)
    assert not r.converged
    assert r.iterations == 1
    assert r.x == 1.0


def test_newton_fixed_rate_rejects_bad_arguments():
    with pytest.raises(ValueError):
        newton_fixed_rate(lambda x: x, 0.0, rate=0.0, tol=1e-6, max_iter=10)
    with pytest.raises(ValueError):
        newton_fixed_rate(lambda x: x, 0.0, rate=1.0, tol=0.0, max_iter=10)


def test_vsop87_apparent_longitude_meeus_example():
    # Meeus, Astronomical Algorithms, example 25.b: 1992 October 13.0 TD
    assert norm360(apparent_longitude_tt(2448908.5)) == pytest.approx(199.906, abs=5e-4)


def test_delta_t_seconds():
    assert delta_t_seconds(1900.0) == pytest.approx(-2.79)
    assert 63.0 < delta_t_seconds(2000.0) < 65.0
    assert 70.0 < delta_t_seconds(2024.0) < 76.0
    # polynomial segments join without jumps
    for year in (1900, 1920, 1941, 1961, 1986, 2005, 2050, 2150):
        assert abs(delta_t_seconds(year - 1e-6) - delta_t_seconds(year)) < 1.0, year


def test_default_model_includes_delta_t():
    jd = to_julian_day(2024, 2, 4, 8.45)
    tt = jd + delta_t_seconds(decimal_year(jd)) / 86400
    assert isinstance(DEFAULT_SUN_MODEL, Vsop87SunModel)
    assert DEFAULT_SUN_MODEL.sun_longitude_deg(jd) == pytest.approx(norm360(apparent_longitude_tt(tt)))
