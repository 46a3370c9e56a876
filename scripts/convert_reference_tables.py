#!/usr/bin/env python3
"""Convert the raw lookup tables that accompany the diet logs."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Callable, Dict, Sequence, Tuple

import pandas as pd

from dietmatrix.paths import CONVERTED_DIRNAME, RAW_DIRNAME
from dietmatrix.storage.derived_tables import clean_reference_table, convert_station_regions
from dietmatrix.storage.matrix_writer import write_csv_atomic

# raw file name -> (converted file name, conversion)
REFERENCE_TABLES: Dict[str, Tuple[str, Callable[[pd.DataFrame], pd.DataFrame]]] = {
    "station regions.csv": ("stations.csv", convert_station_regions),
    "Zooplankton Weight Conversions.csv": ("zooplankton_weight_conversions.csv", clean_reference_table),
    "Zooplankton Length Weight Equations.csv": ("zooplankton_length_weight_equations.csv", clean_reference_table),
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clean headers of station and zooplankton lookup tables.")
    parser.add_argument("--raw-dir", default=RAW_DIRNAME, help="Directory holding the raw lookup CSVs.")
    parser.add_argument("--output-dir", default=CONVERTED_DIRNAME, help="Destination for converted CSVs.")
    parser.add_argument(
        "--allow-missing",
        action="store_true",
        help="Skip lookup tables that are not present instead of failing.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    raw_dir = Path(args.raw_dir).expanduser()
    output_dir = Path(args.output_dir).expanduser()
    missing = [name for name in REFERENCE_TABLES if not (raw_dir / name).exists()]
    if missing and not args.allow_missing:
        print(f"Missing lookup table(s) in {raw_dir}: {missing}", file=sys.stderr)
        return 1
    written = []
    for raw_name, (output_name, convert) in REFERENCE_TABLES.items():
        if raw_name in missing:
            continue
        converted = convert(pd.read_csv(raw_dir / raw_name))
        written.append(write_csv_atomic(converted, output_dir / output_name))
    print(json.dumps({"outputs": written, "skipped": missing}, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
