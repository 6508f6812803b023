# src/kcal/data/build.py
"""
Regenerate the solar-term arrays of the packaged shards.

Lunar-year records are copied from the source shards unchanged; solar terms
are recomputed with SolarTermSolver and written in timestamp order.

    python -m kcal.data.build --out /tmp/shards
    python -m kcal.data.build --check
    python -m kcal.data.build --model skyfield --ephemeris de440s.bsp --out /tmp/shards
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from kcal.core.astronomy import MeanElementsSunModel, SolarLongitudeModel, Vsop87SunModel
from kcal.core.config import SolarTermConfig
from kcal.core.providers.skyfield_provider import SkyfieldSunModel
from kcal.core.solarterms import SolarTermSolver
from kcal.data.records import SolarTermRecord
from kcal.data.store import SHARD_DIR, Shard, shard_paths

log = logging.getLogger(__name__)

MODELS = ("vsop87", "mean", "skyfield")


def make_model(name: str, ephemeris: Optional[Path] = None) -> SolarLongitudeModel:
    if name == "vsop87":
        return Vsop87SunModel()
    if name == "mean":
        return MeanElementsSunModel()
    if name == "skyfield":
        return SkyfieldSunModel(ephemeris)
    raise ValueError(f"unknown sun model: {name!r} (expected one of {', '.join(MODELS)})")


def rebuild_shard(shard: Shard, solver: SolarTermSolver) -> Shard:
    terms: List[SolarTermRecord] = []
    for year in range(shard.first_year, shard.last_year + 1):
        terms.extend(solver.year_records(year))
    terms.sort(key=lambda r: r.timestamp_ms)
    return Shard(
        first_year=shard.first_year,
        last_year=shard.last_year,
        lunar_years=shard.lunar_years,
        solar_terms=tuple(terms),
    )


def dump_shard(shard: Shard, fp: TextIO) -> None:
    """Write one record per line so diffs stay reviewable."""
    d = shard.to_json_dict()
    fp.write("{\n")
    fp.write(f'  "format": {d["format"]},\n')
    fp.write(f'  "first_year": {d["first_year"]},\n')
    fp.write(f'  "last_year": {d["last_year"]},\n')
    for key, trailer in (("lunar_years", ","), ("solar_terms", "")):
        fp.write(f'  "{key}": [\n')
        fp.write(",\n".join("    " + json.dumps(r, ensure_ascii=False) for r in d[key]))
        fp.write(f"\n  ]{trailer}\n")
    fp.write("}\n")


def diff_terms(old: Shard, new: Shard) -> List[str]:
    out: List[str] = []
    old_by_key = {(r.year, r.term): r.timestamp_ms for r in old.solar_terms}
    for r in new.solar_terms:
        prev = old_by_key.get((r.year, r.term))
        if prev != r.timestamp_ms:
            out.append(f"{old.name}: {r.year} {r.term.name} {prev} -> {r.timestamp_ms}")
    if len(old.solar_terms) != len(new.solar_terms):
        out.append(f"{old.name}: {len(old.solar_terms)} -> {len(new.solar_terms)} records")
    return out


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild solar-term shards")
    parser.add_argument("--src", type=Path, default=SHARD_DIR, help="directory with source shards")
    parser.add_argument("--out", type=Path, help="output directory for rebuilt shards")
    parser.add_argument("--check", action="store_true", help="compare only; exit 1 on differences")
    parser.add_argument("--model", choices=MODELS, default="vsop87", help="solar longitude model")
    parser.add_argument("--ephemeris", type=Path, help="ephemeris file or directory for --model skyfield")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    if args.out is None and not args.check:
        parser.error("one of --out or --check is required")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    solver = SolarTermSolver(model=make_model(args.model, args.ephemeris), config=SolarTermConfig())
    log.info("solar longitude model: %s", args.model)
    differences: List[str] = []

    for path in shard_paths(args.src):
        src = Shard.load(path)
        rebuilt = rebuild_shard(src, solver)
        diffs = diff_terms(src, rebuilt)
        differences.extend(diffs)
        log.info("%s: %d solar terms, %d differences", src.name, len(rebuilt.solar_terms), len(diffs))

        if args.out is not None:
            args.out.mkdir(parents=True, exist_ok=True)
            target = args.out / path.name
            with target.open("w", encoding="utf-8") as f:
                dump_shard(rebuilt, f)
            log.info("wrote %s", target)

    if args.check and differences:
        for line in differences:
            print(line)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
