"""Record model shared by every reconciliation stage.

A :class:`Record` is an immutable, ordered field map for one row of one
survey table, plus the names of the source tables that contributed to it.
Stages never mutate records; they build new ones with :meth:`Record.with_values`.
A :class:`SourceTable` pairs records with an explicit column schema so that an
empty table still knows its columns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
import math
import numbers
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Sequence, Tuple

import pandas as pd

from .errors import SchemaMismatch


STUDY_COLUMN = "study"
LOG_NUMBER_COLUMN = "log_number"
IDENTITY_KEY: Tuple[str, str] = (STUDY_COLUMN, LOG_NUMBER_COLUMN)
DEFAULT_LOG_WIDTH = 4


def is_missing(value: Any) -> bool:
    """Return True for the values treated as null: None, NaN, NA, NaT and blank text."""

    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    if not pd.api.types.is_scalar(value):
        return False
    return bool(pd.isna(value))


def normalize_value(value: Any) -> Any:
    """Collapse every null spelling to ``None`` and unwrap numpy/pandas scalars."""

    if is_missing(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        try:
            return value.item()
        except (TypeError, ValueError):
            return value
    return value


def normalize_log_number(value: Any, width: int = DEFAULT_LOG_WIDTH) -> str | None:
    """Render a log number as a zero-padded fixed-width string."""

    value = normalize_value(value)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"log number cannot be a boolean: {value!r}")
    if isinstance(value, numbers.Real):
        numeric = float(value)
        if not numeric.is_integer():
            raise ValueError(f"log number must be integral: {value!r}")
        return str(int(numeric)).zfill(width)
    text = str(value).strip()
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    if text.isdigit():
        return text.zfill(width)
    return text


def log_number_value(log_number: Any) -> int:
    """Numeric position of a log number, used for validity-window comparisons."""

    text = str(log_number).strip()
    if not text.isdigit():
        raise ValueError(f"log number {log_number!r} is not numeric")
    return int(text)


def make_unique_id(study: Any, log_number: Any) -> str:
    return f"{study}_{log_number}"


def values_equal(left: Any, right: Any) -> bool:
    """Null-aware equality; numbers compare numerically."""

    return comparable_key((left,)) == comparable_key((right,))


def comparable_key(values: Sequence[Any]) -> Tuple[Any, ...]:
    """Hashable key for join matching: nulls collapse together, numbers by value."""

    parts: List[Any] = []
    for value in values:
        if is_missing(value):
            parts.append(("null",))
        elif _is_number(value):
            parts.append(("num", float(value)))
        elif isinstance(value, datetime):
            parts.append(("date", value.date().isoformat() if _is_midnight(value) else value.isoformat()))
        elif isinstance(value, date):
            parts.append(("date", value.isoformat()))
        else:
            parts.append(("text", str(value)))
    return tuple(parts)


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_midnight(value: datetime) -> bool:
    return value.hour == value.minute == value.second == value.microsecond == 0


@dataclass(frozen=True)
class Record:
    """One immutable row with provenance."""

    values: Mapping[str, Any]
    sources: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", dict(self.values))
        object.__setattr__(self, "sources", frozenset(self.sources))

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(self.values.keys())

    @property
    def study(self) -> Any:
        return self.values.get(STUDY_COLUMN)

    @property
    def log_number(self) -> Any:
        return self.values.get(LOG_NUMBER_COLUMN)

    @property
    def identity(self) -> Tuple[Any, Any]:
        return (self.study, self.log_number)

    @property
    def unique_id(self) -> str:
        return make_unique_id(self.study, self.log_number)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def key(self, columns: Sequence[str]) -> Tuple[Any, ...]:
        return tuple(self.values.get(column) for column in columns)

    def is_missing(self, name: str) -> bool:
        return is_missing(self.values.get(name))

    def with_values(self, updates: Mapping[str, Any], *, sources: Iterable[str] = ()) -> "Record":
        merged = dict(self.values)
        merged.update(updates)
        return Record(merged, self.sources | frozenset(sources))

    def project(self, columns: Sequence[str], fill: Mapping[str, Any] | None = None) -> "Record":
        """Return a record holding exactly ``columns``; absent ones take ``fill`` or null."""

        fill = fill or {}
        projected = {
            column: self.values[column] if column in self.values else fill.get(column)
            for column in columns
        }
        return Record(projected, self.sources)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.values)


@dataclass(frozen=True)
class SourceTable:
    """Named collection of records sharing one ordered column schema."""

    name: str
    columns: Tuple[str, ...]
    records: Tuple[Record, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "records", tuple(self.records))

    @classmethod
    def from_rows(
        cls,
        name: str,
        rows: Iterable[Mapping[str, Any]],
        *,
        columns: Sequence[str] | None = None,
        sources: Iterable[str] | None = None,
    ) -> "SourceTable":
        materialized = [dict(row) for row in rows]
        if columns is None:
            ordered: List[str] = []
            for row in materialized:
                for column in row:
                    if column not in ordered:
                        ordered.append(column)
            columns = ordered
        provenance = frozenset(sources) if sources is not None else frozenset({name})
        records = tuple(
            Record({column: normalize_value(row.get(column)) for column in columns}, provenance)
            for row in materialized
        )
        return cls(name=name, columns=tuple(columns), records=records)

    @classmethod
    def from_frame(cls, name: str, frame: pd.DataFrame, *, sources: Iterable[str] | None = None) -> "SourceTable":
        columns = [str(column) for column in frame.columns]
        rows = frame.to_dict("records")
        return cls.from_rows(name, rows, columns=columns, sources=sources)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def missing_columns(self, required: Iterable[str]) -> List[str]:
        present = set(self.columns)
        return [column for column in required if column not in present]

    def require_columns(self, required: Iterable[str]) -> None:
        missing = self.missing_columns(required)
        if missing:
            raise SchemaMismatch(
                f"Table '{self.name}' is missing required column(s) {missing}",
                table=self.name,
                missing=missing,
            )

    def with_records(self, records: Iterable[Record], *, columns: Sequence[str] | None = None) -> "SourceTable":
        return SourceTable(name=self.name, columns=tuple(columns or self.columns), records=tuple(records))

    def to_frame(self) -> pd.DataFrame:
        # object dtype keeps integer counts integral next to nulls
        rows = [record.project(self.columns).as_dict() for record in self.records]
        return pd.DataFrame(rows, columns=list(self.columns), dtype=object)


__all__ = [
    "DEFAULT_LOG_WIDTH",
    "IDENTITY_KEY",
    "LOG_NUMBER_COLUMN",
    "Record",
    "STUDY_COLUMN",
    "SourceTable",
    "comparable_key",
    "is_missing",
    "log_number_value",
    "make_unique_id",
    "normalize_log_number",
    "normalize_value",
    "values_equal",
]
