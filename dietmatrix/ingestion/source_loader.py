"""Load survey spreadsheets into source tables.

Loading is glue around the reconciliation core: read a CSV or Excel sheet,
clean column names, rename the study-specific log column to ``log_number``,
stamp the study code and any constant columns, and zero-pad log numbers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
from pathlib import Path
import re
from typing import Any, Dict, List, Mapping, Sequence

import pandas as pd

from dietmatrix.normalization.lineage import compute_file_hash
from dietmatrix.normalization.records import (
    DEFAULT_LOG_WIDTH,
    LOG_NUMBER_COLUMN,
    STUDY_COLUMN,
    SourceTable,
    normalize_log_number,
)
from dietmatrix.normalization.errors import SchemaMismatch
from dietmatrix.paths import resolve_input_path
from dietmatrix.validation.source_schemas import validate_source_table

LOGGER = logging.getLogger(__name__)

_EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}
_SYMBOL_WORDS = {"%": "_percent_", "#": "_number_"}


@dataclass(frozen=True)
class TableSpec:
    """One configured source table of a study."""

    name: str
    role: str
    path: str | None = None
    sheet: str | int | None = None
    log_column: str | None = None
    date_column: str | None = "date"
    rename: Mapping[str, str] = field(default_factory=dict)
    assign: Mapping[str, Any] = field(default_factory=dict)
    drop: Sequence[str] = ()

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "TableSpec":
        if "name" not in payload or "role" not in payload:
            raise ValueError(f"Table entries need 'name' and 'role': {dict(payload)}")
        return cls(
            name=str(payload["name"]),
            role=str(payload["role"]),
            path=payload.get("path"),
            sheet=payload.get("sheet"),
            log_column=payload.get("log_column"),
            date_column=payload.get("date_column", "date"),
            rename=dict(payload.get("rename") or {}),
            assign=dict(payload.get("assign") or {}),
            drop=tuple(payload.get("drop") or ()),
        )


@dataclass(frozen=True)
class LoadedTable:
    spec: TableSpec
    table: SourceTable
    path: Path | None = None
    file_hash: str | None = None


def clean_name(name: Any) -> str:
    """snake_case a column header the way janitor::clean_names does."""

    text = str(name).strip()
    for symbol, word in _SYMBOL_WORDS.items():
        text = text.replace(symbol, word)
    text = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", text)
    text = re.sub(r"[^0-9A-Za-z]+", "_", text).strip("_").lower()
    if not text:
        text = "x"
    if text[0].isdigit():
        text = f"x{text}"
    return text


def clean_names(columns: Sequence[Any]) -> List[str]:
    """Clean every header, suffixing repeats with ``_2``, ``_3``..."""

    seen: Dict[str, int] = {}
    cleaned: List[str] = []
    for column in columns:
        base = clean_name(column)
        count = seen.get(base, 0) + 1
        seen[base] = count
        cleaned.append(base if count == 1 else f"{base}_{count}")
    return cleaned


def read_table_file(path: Path | str, *, sheet: str | int | None = None) -> pd.DataFrame:
    """Read a CSV or Excel source file."""

    resolved = Path(path)
    if not resolved.exists():
        raise FileNotFoundError(f"Source table not found: {resolved}")
    if resolved.suffix.lower() in _EXCEL_SUFFIXES:
        return pd.read_excel(resolved, sheet_name=sheet if sheet is not None else 0, engine="openpyxl")
    return pd.read_csv(resolved, low_memory=False)


def prepare_frame(
    frame: pd.DataFrame,
    spec: TableSpec,
    *,
    study: str,
    log_column: str | None,
    log_width: int = DEFAULT_LOG_WIDTH,
) -> pd.DataFrame:
    """Clean names, rename the log column and stamp study and constant columns."""

    prepared = frame.copy()
    prepared.columns = clean_names(list(prepared.columns))
    if spec.rename:
        prepared = prepared.rename(columns={clean_name(old): new for old, new in spec.rename.items()})
    if spec.drop:
        prepared = prepared.drop(columns=[clean_name(column) for column in spec.drop], errors="ignore")
    source_log = clean_name(spec.log_column or log_column or LOG_NUMBER_COLUMN)
    if source_log not in prepared.columns:
        raise SchemaMismatch(
            f"Table '{spec.name}' has no log column '{source_log}'",
            table=spec.name,
            missing=[source_log],
        )
    if source_log != LOG_NUMBER_COLUMN:
        if LOG_NUMBER_COLUMN in prepared.columns:
            prepared = prepared.drop(columns=[LOG_NUMBER_COLUMN])
        prepared = prepared.rename(columns={source_log: LOG_NUMBER_COLUMN})
    prepared[LOG_NUMBER_COLUMN] = [normalize_log_number(value, log_width) for value in prepared[LOG_NUMBER_COLUMN]]
    prepared[STUDY_COLUMN] = study
    for column, value in spec.assign.items():
        prepared[column] = value
    if spec.date_column and spec.date_column in prepared.columns:
        prepared[spec.date_column] = _coerce_dates(prepared[spec.date_column])
    leading = [STUDY_COLUMN, LOG_NUMBER_COLUMN]
    return prepared[leading + [column for column in prepared.columns if column not in leading]]


def _coerce_dates(series: pd.Series) -> List[date | None]:
    parsed = pd.to_datetime(series, errors="coerce")
    return [value.date() if not pd.isna(value) else None for value in parsed]


def load_source_table(
    spec: TableSpec,
    *,
    study: str,
    log_column: str | None = None,
    log_width: int = DEFAULT_LOG_WIDTH,
    base_dir: Path | None = None,
) -> LoadedTable:
    """Read, prepare and validate one configured table."""

    if not spec.path:
        raise ValueError(f"Table '{spec.name}' has no path configured")
    path = resolve_input_path(spec.path, base=base_dir)
    frame = read_table_file(path, sheet=spec.sheet)
    prepared = prepare_frame(frame, spec, study=study, log_column=log_column, log_width=log_width)
    table = SourceTable.from_frame(spec.name, prepared)
    validate_source_table(table, spec.role)
    LOGGER.info("Loaded %s (%s) for %s: %d rows from %s", spec.name, spec.role, study, len(table), path)
    return LoadedTable(spec=spec, table=table, path=path, file_hash=compute_file_hash(path))


__all__ = [
    "LoadedTable",
    "TableSpec",
    "clean_name",
    "clean_names",
    "load_source_table",
    "prepare_frame",
    "read_table_file",
]
