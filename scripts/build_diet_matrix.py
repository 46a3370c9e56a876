#!/usr/bin/env python3
"""CLI entrypoint building the reconciled diet matrix."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Sequence

from dietmatrix.normalization.diet_matrix_builder import DietMatrixBuilder
from dietmatrix.normalization.errors import DuplicateIdentityError, ReconciliationError, SchemaMismatch

UTC = timezone.utc


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile diet, empties and presence/absence logs into one matrix.")
    parser.add_argument(
        "--config",
        default="configs/diet_sources.yml",
        help="Path to the diet sources configuration file (YAML or JSON).",
    )
    parser.add_argument("--raw-root", help="Override the directory source table paths are relative to.")
    parser.add_argument("--output-dir", help="Override the output directory.")
    parser.add_argument(
        "--run-id",
        help="Deterministic run identifier; defaults to diet_matrix_{timestamp} if omitted.",
    )
    parser.add_argument("--parquet", action="store_true", help="Also write diet_matrix.parquet.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser.parse_args(argv)


def build_builder(args: argparse.Namespace) -> DietMatrixBuilder:
    kwargs: Dict[str, Any] = {}
    if args.raw_root:
        kwargs["raw_data_root"] = Path(args.raw_root).expanduser()
    if args.output_dir:
        kwargs["output_root"] = Path(args.output_dir).expanduser()
    return DietMatrixBuilder.from_config_file(args.config, **kwargs)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    run_id = args.run_id or datetime.now(tz=UTC).strftime("diet_matrix_%Y%m%dT%H%M%S")
    try:
        builder = build_builder(args)
        summary = builder.run(run_id=run_id, parquet=args.parquet)
    except SchemaMismatch as exc:
        print(f"Schema mismatch in '{exc.table}': {exc}", file=sys.stderr)
        return 1
    except DuplicateIdentityError as exc:
        print(f"Duplicate specimen identity: {exc}", file=sys.stderr)
        return 1
    except ReconciliationError as exc:
        print(f"Reconciliation failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(summary, indent=2, sort_keys=True))
    if summary["warning_count"]:
        print(
            f"Warning: {summary['warning_count']} item(s) need review; see {summary['lineage_path']}.",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
