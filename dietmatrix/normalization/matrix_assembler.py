"""Union reconciled study tables into the final diet matrix."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import numbers
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

import pandas as pd

from .duplicate_resolver import group_by_key
from .errors import DuplicateIdentityError, ReconciliationError, SchemaMismatch
from .records import IDENTITY_KEY, SourceTable, is_missing, make_unique_id
from .validity_mask import ValidityWindow, apply_validity_windows

LOGGER = logging.getLogger(__name__)

DEFAULT_METADATA_COLUMNS: Tuple[str, ...] = (
    "study",
    "log_number",
    "date",
    "station",
    "fork_length",
    "weight",
    "gut_contents",
    "total_prey_count",
    "gut_fullness",
    "total_prey_weight",
)
DEFAULT_SUMMARY_COLUMNS: Tuple[str, ...] = ("total_prey_count", "gut_fullness", "total_prey_weight")
DEFAULT_FLAG_COLUMNS: Tuple[str, ...] = ("gut_contents",)

_PRESENT_TEXT = {"present", "yes", "y", "true", "t", "1"}
_ABSENT_TEXT = {"absent", "no", "n", "false", "f", "0"}


@dataclass(frozen=True)
class MatrixSchema:
    """Ordered column layout and defaulting rules of the diet matrix.

    Every column not named here is a measurement (prey category) column.
    """

    metadata_columns: Tuple[str, ...] = DEFAULT_METADATA_COLUMNS
    identity_columns: Tuple[str, ...] = IDENTITY_KEY
    flag_columns: Tuple[str, ...] = DEFAULT_FLAG_COLUMNS
    summary_columns: Tuple[str, ...] = DEFAULT_SUMMARY_COLUMNS
    presence_only_categories: Tuple[str, ...] = ()
    gut_contents_column: str = "gut_contents"
    total_count_column: str = "total_prey_count"
    unique_id_column: str = "unique_id"
    present_symbol: str = "present"
    absent_symbol: str = "absent"

    def __post_init__(self) -> None:
        for name in ("metadata_columns", "identity_columns", "flag_columns", "summary_columns", "presence_only_categories"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        metadata = set(self.metadata_columns)
        for label, columns in (
            ("identity", self.identity_columns),
            ("flag", self.flag_columns),
            ("summary", self.summary_columns),
        ):
            stray = [column for column in columns if column not in metadata]
            if stray:
                raise ValueError(f"{label} column(s) {stray} must also be listed as metadata columns")
        if self.unique_id_column in metadata:
            raise ValueError(f"'{self.unique_id_column}' is derived and cannot be a metadata column")
        overlap = sorted(metadata & set(self.presence_only_categories))
        if overlap:
            raise ValueError(f"presence-only categories {overlap} cannot be metadata columns")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "MatrixSchema":
        if not payload:
            return cls()
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValueError(f"Unknown matrix schema option(s): {unknown}")
        kwargs: Dict[str, Any] = {}
        for key, value in payload.items():
            kwargs[key] = tuple(value) if isinstance(value, (list, tuple)) else value
        return cls(**kwargs)

    @property
    def reserved_columns(self) -> frozenset:
        return frozenset(self.metadata_columns) | {self.unique_id_column}

    def measurement_columns(self, columns: Iterable[str]) -> List[str]:
        reserved = self.reserved_columns
        return sorted({column for column in columns if column not in reserved})


TableStage = Callable[[SourceTable], SourceTable]


def _is_count(value: Any) -> bool:
    if is_missing(value) or isinstance(value, numbers.Real):
        return True
    try:
        float(str(value).strip())
    except ValueError:
        return False
    return True


class MatrixAssembler:
    """Builds the diet matrix from per-study reconciled tables.

    The stage order is fixed: measurement and summary defaulting come before
    flag conversion, and all three before validity masking, because masking
    turns a defaulted zero back into "not counted".
    """

    name = "diet_matrix"

    def __init__(self, schema: MatrixSchema | None = None) -> None:
        self.schema = schema or MatrixSchema()

    def stages(self, windows: Sequence[ValidityWindow] = ()) -> List[Tuple[str, TableStage]]:
        return [
            ("measurement_defaults", self.apply_measurement_defaults),
            ("summary_defaults", self.apply_summary_defaults),
            ("flags", self.convert_flags),
            ("validity_mask", lambda table: apply_validity_windows(table, windows)),
            ("unique_ids", self.assign_unique_ids),
            ("column_order", self.order_columns),
        ]

    def assemble(self, tables: Sequence[SourceTable], windows: Sequence[ValidityWindow] = ()) -> SourceTable:
        table = self.union(tables)
        for stage_name, stage in self.stages(windows):
            table = stage(table)
            LOGGER.debug("Stage %s produced %d rows x %d columns", stage_name, len(table), len(table.columns))
        LOGGER.info("Assembled %s with %d rows and %d columns", table.name, len(table), len(table.columns))
        return table

    def union(self, tables: Sequence[SourceTable]) -> SourceTable:
        """Row-concatenate ``tables``; columns absent from a table are null for its rows.

        Every column that is not metadata is counted as a prey category, so a
        stray text column (comments, observer initials) is rejected here
        rather than being zero-filled and summed.
        """

        columns: List[str] = list(self.schema.metadata_columns)
        for table in tables:
            table.require_columns(self.schema.identity_columns)
            stray = [
                column
                for column in self.schema.measurement_columns(table.columns)
                if not all(_is_count(record.get(column)) for record in table.records)
            ]
            if stray:
                raise SchemaMismatch(
                    f"Table '{table.name}' has non-numeric column(s) {stray}; "
                    "declare them as metadata columns or drop them when loading",
                    table=table.name,
                    missing=stray,
                )
            for column in table.columns:
                if column not in columns and column != self.schema.unique_id_column:
                    columns.append(column)
        records = [record.project(columns) for table in tables for record in table.records]
        return SourceTable(name=self.name, columns=tuple(columns), records=tuple(records))

    def apply_measurement_defaults(self, table: SourceTable) -> SourceTable:
        """Measurement null -> 0: a category missing for a specimen was not found in it."""

        return self._fill_zero(table, self.schema.measurement_columns(table.columns))

    def apply_summary_defaults(self, table: SourceTable) -> SourceTable:
        """Summary null -> 0: missing total count, fullness or weight counts as zero.

        The sum check against the total prey count relies on this.
        """

        return self._fill_zero(table, [column for column in self.schema.summary_columns if column in table.columns])

    def convert_flags(self, table: SourceTable) -> SourceTable:
        """Binary flag columns become present/absent; null reads as absent."""

        flags = [column for column in self.schema.flag_columns if column in table.columns]
        if not flags:
            return table
        records = [
            record.with_values({column: self._flag_symbol(record.get(column), column, record.unique_id) for column in flags})
            for record in table.records
        ]
        return table.with_records(records)

    def assign_unique_ids(self, table: SourceTable) -> SourceTable:
        """Derive ``study_lognumber`` identifiers; a collision is fatal."""

        study_column, log_column = self.schema.identity_columns[:2]
        table.require_columns((study_column, log_column))
        missing_identity = [
            index for index, record in enumerate(table.records)
            if record.is_missing(study_column) or record.is_missing(log_column)
        ]
        if missing_identity:
            raise SchemaMismatch(
                f"{len(missing_identity)} row(s) of '{table.name}' lack a study or log number "
                f"(first at row {missing_identity[0]})",
                table=table.name,
                missing=[study_column, log_column],
            )
        id_column = self.schema.unique_id_column
        records = [
            record.with_values({id_column: make_unique_id(record.get(study_column), record.get(log_column))})
            for record in table.records
        ]
        columns = tuple(table.columns) if id_column in table.columns else (id_column,) + tuple(table.columns)
        identified = table.with_records(records, columns=columns)
        collisions = [rows[0].key((id_column,)) for rows in group_by_key(identified.records, (id_column,)).values() if len(rows) > 1]
        if collisions:
            raise DuplicateIdentityError("Diet matrix contains duplicated unique ids", keys=collisions)
        return identified

    def order_columns(self, table: SourceTable) -> SourceTable:
        """``[unique_id] + metadata (fixed order) + measurements (sorted)``."""

        ordered = [self.schema.unique_id_column] if self.schema.unique_id_column in table.columns else []
        ordered.extend(column for column in self.schema.metadata_columns if column in table.columns)
        ordered.extend(self.schema.measurement_columns(table.columns))
        return table.with_records((record.project(ordered) for record in table.records), columns=ordered)

    def to_frame(self, table: SourceTable) -> pd.DataFrame:
        return table.to_frame()

    def _fill_zero(self, table: SourceTable, columns: Sequence[str]) -> SourceTable:
        if not columns:
            return table
        records = []
        for record in table.records:
            updates = {column: 0 for column in columns if record.is_missing(column)}
            records.append(record.with_values(updates) if updates else record)
        return table.with_records(records)

    def _flag_symbol(self, value: Any, column: str, unique_id: str) -> str:
        present, absent = self.schema.present_symbol, self.schema.absent_symbol
        if is_missing(value):
            return absent
        if isinstance(value, bool):
            return present if value else absent
        if isinstance(value, numbers.Real):
            return present if float(value) != 0 else absent
        text = str(value).strip().lower()
        if text in _PRESENT_TEXT or text == present.lower():
            return present
        if text in _ABSENT_TEXT or text == absent.lower():
            return absent
        try:
            return present if float(text) != 0 else absent
        except ValueError:
            raise ReconciliationError(
                f"Flag column '{column}' of {unique_id} holds unrecognised value {value!r}"
            ) from None


__all__ = [
    "DEFAULT_FLAG_COLUMNS",
    "DEFAULT_METADATA_COLUMNS",
    "DEFAULT_SUMMARY_COLUMNS",
    "MatrixAssembler",
    "MatrixSchema",
]
