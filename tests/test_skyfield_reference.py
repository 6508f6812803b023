from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from kcal.core.providers.skyfield_provider import ENV_EPHEMERIS_PATH, SkyfieldSunModel
from kcal.core.solarterms import SolarTermSolver
from kcal.features.terms import SolarTerm


def _find_ephemeris_path() -> Path | None:
    env = os.environ.get(ENV_EPHEMERIS_PATH)
    if env:
        p = Path(env).expanduser()
        if p.exists():
            return p

    repo = Path(__file__).resolve().parents[1]
    for name in ("de440s.bsp", "de421.bsp"):
        p = repo / "data" / name
        if p.exists():
            return p
    return None


def _require_ephemeris() -> Path:
    p = _find_ephemeris_path()
    if p is None:
        pytest.skip(f"ephemeris not found (set {ENV_EPHEMERIS_PATH} or place data/de440s.bsp)")
    return p


def test_missing_ephemeris_raises(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_EPHEMERIS_PATH, raising=False)
    with pytest.raises(FileNotFoundError):
        SkyfieldSunModel()
    with pytest.raises(FileNotFoundError):
        SkyfieldSunModel(tmp_path / "nope.bsp")
    # empty directory: no candidate file inside
    with pytest.raises(FileNotFoundError):
        SkyfieldSunModel(tmp_path)


def test_ipchun_2024_against_ephemeris():
    eph = _require_ephemeris()
    precise = SolarTermSolver(model=SkyfieldSunModel(eph))
    series = SolarTermSolver()

    t = precise.instant_utc(2024, SolarTerm.IPCHUN.longitude)
    expected = datetime(2024, 2, 4, 8, 27, tzinfo=timezone.utc)
    assert abs((t - expected).total_seconds()) <= 120

    # the default series model agrees with the ephemeris to the minute
    t_series = series.instant_utc(2024, SolarTerm.IPCHUN.longitude)
    assert abs((t - t_series).total_seconds()) <= 120


def test_year_records_are_ordered_with_ephemeris():
    eph = _require_ephemeris()
    records = SolarTermSolver(model=SkyfieldSunModel(eph)).year_records(2024)
    assert len(records) == 24
    assert records[0].term is SolarTerm.DAEHAN
    assert records[-1].term is SolarTerm.SOHAN
    assert all(b.timestamp_ms > a.timestamp_ms for a, b in zip(records, records[1:]))
