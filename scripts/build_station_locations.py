#!/usr/bin/env python3
"""Build the station location lookup for stations sampled in the diet matrix."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

import pandas as pd

from dietmatrix.storage.derived_tables import build_station_locations
from dietmatrix.storage.matrix_writer import write_csv_atomic


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Average survey coordinates for every diet matrix station.")
    parser.add_argument("--matrix", required=True, help="Path to diet_matrix.csv.")
    parser.add_argument("--survey-stations", required=True, help="CSV with station, latitude and longitude columns.")
    parser.add_argument("--output", required=True, help="Destination CSV for the station lookup.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    matrix = pd.read_csv(args.matrix, dtype={"station": str})
    survey = pd.read_csv(args.survey_stations)
    try:
        locations = build_station_locations(matrix, survey)
    except KeyError as exc:
        print(f"Cannot build station locations: {exc}", file=sys.stderr)
        return 1
    written = write_csv_atomic(locations, Path(args.output))
    unlocated = int(locations["latitude"].isna().sum())
    print(json.dumps({"output": written, "stations": len(locations), "unlocated": unlocated}, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
