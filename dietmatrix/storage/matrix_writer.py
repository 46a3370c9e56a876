"""Deterministic, atomic writers for the diet matrix and its side outputs."""

from __future__ import annotations

from datetime import date, datetime
import hashlib
import json
import numbers
import os
from pathlib import Path
from typing import Any, Mapping

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from dietmatrix.normalization.lineage import compute_file_hash

NA_REP = "NA"


def _tmp_path(destination: Path) -> Path:
    return destination.with_name(destination.name + ".tmp")


def compute_content_hash(frame: pd.DataFrame) -> str:
    """Hash of the CSV rendering, independent of file-system metadata."""

    csv_bytes = frame.to_csv(index=False, na_rep=NA_REP).encode("utf-8")
    return f"sha256:{hashlib.sha256(csv_bytes).hexdigest()}"


def write_csv_atomic(frame: pd.DataFrame, path: Path | str, *, na_rep: str = NA_REP) -> dict[str, Any]:
    """Write ``frame`` to CSV through a temporary file, returning deterministic metadata.

    Nulls are written as ``NA`` so that an unmeasured value stays distinct from
    a zero count when the file is read back.
    """

    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = _tmp_path(destination)
    try:
        frame.to_csv(tmp_path, index=False, na_rep=na_rep, date_format="%Y-%m-%d")
        os.replace(tmp_path, destination)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return {
        "path": str(destination),
        "file_hash": compute_file_hash(destination),
        "bytes_written": destination.stat().st_size,
        "records": len(frame),
    }


def write_parquet_atomic(frame: pd.DataFrame, path: Path | str, *, compression: str = "zstd") -> dict[str, Any]:
    """Write ``frame`` as Parquet and verify the row count before publishing it."""

    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = _tmp_path(destination)
    try:
        table = pa.Table.from_pandas(_parquet_ready(frame), preserve_index=False)
        pq.write_table(table, tmp_path, compression=compression)
        try:
            written_rows = pq.read_metadata(tmp_path).num_rows
        except Exception as exc:
            raise RuntimeError(f"Parquet verification failed for {destination}: {exc}") from exc
        if written_rows != len(frame):
            raise RuntimeError(
                f"Parquet verification failed for {destination}: wrote {written_rows} of {len(frame)} rows"
            )
        os.replace(tmp_path, destination)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return {
        "path": str(destination),
        "file_hash": compute_file_hash(destination),
        "bytes_written": destination.stat().st_size,
        "records": len(frame),
    }


def _parquet_ready(frame: pd.DataFrame) -> pd.DataFrame:
    # Object columns mixing dates, text and numbers cannot be typed by Arrow.
    ready = frame.copy()
    for column in ready.columns:
        if ready[column].dtype != object:
            continue
        kinds = {_kind(value) for value in ready[column] if value is not None and not pd.isna(value)}
        if kinds == {"number"}:
            ready[column] = pd.to_numeric(ready[column])
        elif len(kinds) > 1:
            ready[column] = [None if value is None or pd.isna(value) else str(value) for value in ready[column]]
    return ready


def _kind(value: Any) -> Any:
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        return "number"
    return type(value)


def write_json_atomic(payload: Mapping[str, Any], path: Path | str) -> Path:
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = _tmp_path(destination)
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True, default=_json_default), encoding="utf-8")
    os.replace(tmp_path, destination)
    return destination


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Unsupported type {type(value)} during serialization")


__all__ = [
    "NA_REP",
    "compute_content_hash",
    "write_csv_atomic",
    "write_json_atomic",
    "write_parquet_atomic",
]
