"""Null out prey categories outside the log-number span they were recorded in."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

import pandas as pd

from .errors import SchemaMismatch
from .records import LOG_NUMBER_COLUMN, STUDY_COLUMN, SourceTable, is_missing, log_number_value

LOGGER = logging.getLogger(__name__)

WINDOW_COLUMNS = ("category", "study", "start", "end")


@dataclass(frozen=True)
class ValidityWindow:
    """Inclusive log-number span during which ``category`` was tracked for ``study``.

    A ``None`` bound is open on that side.
    """

    study: str
    category: str
    log_start: int | None = None
    log_end: int | None = None

    def __post_init__(self) -> None:
        if self.log_start is not None and self.log_end is not None and self.log_end < self.log_start:
            raise ValueError(
                f"Validity window for {self.study}/{self.category} ends ({self.log_end}) "
                f"before it starts ({self.log_start})"
            )

    def contains(self, log_value: int) -> bool:
        if self.log_start is not None and log_value < self.log_start:
            return False
        if self.log_end is not None and log_value > self.log_end:
            return False
        return True


def _coerce_bound(value: Any) -> int | None:
    if is_missing(value):
        return None
    return int(float(value))


def windows_from_rows(rows: Iterable[Mapping[str, Any]]) -> List[ValidityWindow]:
    windows: List[ValidityWindow] = []
    for index, row in enumerate(rows):
        missing = [column for column in ("category", "study") if is_missing(row.get(column))]
        if missing:
            raise SchemaMismatch(
                f"Validity window row {index} is missing {missing}",
                table="validity_windows",
                missing=missing,
            )
        windows.append(
            ValidityWindow(
                study=str(row["study"]).strip(),
                category=str(row["category"]).strip(),
                log_start=_coerce_bound(row.get("start")),
                log_end=_coerce_bound(row.get("end")),
            )
        )
    return windows


def load_validity_windows(path: Path | str) -> List[ValidityWindow]:
    """Read the ``category, study, start, end`` side table."""

    frame = pd.read_csv(path, dtype=str, keep_default_na=True)
    frame.columns = [str(column).strip().lower() for column in frame.columns]
    missing = [column for column in WINDOW_COLUMNS if column not in frame.columns]
    if missing:
        raise SchemaMismatch(
            f"Validity window table {path} is missing column(s) {missing}",
            table="validity_windows",
            missing=missing,
        )
    return windows_from_rows(frame.to_dict("records"))


def apply_validity_windows(
    table: SourceTable,
    windows: Sequence[ValidityWindow],
    *,
    study_column: str = STUDY_COLUMN,
    log_column: str = LOG_NUMBER_COLUMN,
) -> SourceTable:
    """Return a copy of ``table`` with out-of-window category values set to null.

    Must run after measurement defaulting: a zero outside the window becomes
    null because the category was never counted there. Windows naming
    categories that are not columns of ``table`` are ignored. A record is
    masked only when its log number falls outside every window given for its
    study and the category.
    """

    present = set(table.columns)
    grouped: Dict[Tuple[str, str], List[ValidityWindow]] = defaultdict(list)
    ignored = set()
    for window in windows:
        if window.category in present:
            grouped[(window.study, window.category)].append(window)
        else:
            ignored.add(window.category)
    if ignored:
        LOGGER.debug("Ignoring validity windows for absent categories: %s", sorted(ignored))
    if not grouped:
        return table
    table.require_columns((study_column, log_column))

    masked: Dict[str, int] = defaultdict(int)
    records = []
    for record in table.records:
        study = record.get(study_column)
        updates: Dict[str, Any] = {}
        position: int | None = None
        for (window_study, category), category_windows in grouped.items():
            if str(study) != window_study or record.is_missing(category):
                continue
            if position is None:
                position = _log_position(record.get(log_column), table.name, log_column)
            if not any(window.contains(position) for window in category_windows):
                updates[category] = None
                masked[category] += 1
        records.append(record.with_values(updates) if updates else record)

    for category, count in sorted(masked.items()):
        LOGGER.info("Masked %d %s value(s) outside their validity window", count, category)
    return table.with_records(records)


def _log_position(log_number: Any, table_name: str, log_column: str) -> int:
    try:
        return log_number_value(log_number)
    except ValueError as exc:
        raise SchemaMismatch(
            f"Table '{table_name}' has non-numeric {log_column} {log_number!r}",
            table=table_name,
            missing=[log_column],
        ) from exc


__all__ = [
    "ValidityWindow",
    "apply_validity_windows",
    "load_validity_windows",
    "windows_from_rows",
]
