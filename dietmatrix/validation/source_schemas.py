"""Column contracts for the survey tables feeding the diet matrix.

Each table role declares the identity and metadata columns it must carry once
the loader has cleaned names and renamed the study-specific log column.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from dietmatrix.normalization.duplicate_resolver import ensure_unique_keys
from dietmatrix.normalization.records import IDENTITY_KEY, SourceTable


@dataclass(frozen=True)
class SourceSchema:
    """Definition for a single source table role."""

    role: str
    required_columns: Tuple[str, ...]
    primary_side: bool = False
    unique_identity: bool = True


def _schema(role: str, extra: Tuple[str, ...] = (), **kwargs) -> SourceSchema:
    return SourceSchema(role=role, required_columns=IDENTITY_KEY + extra, **kwargs)


SOURCE_SCHEMAS: Dict[str, SourceSchema] = {
    "diet": _schema("diet", ("date", "station"), primary_side=True),
    "empties": _schema("empties", ("date", "station"), primary_side=True),
    "presence_absence": _schema("presence_absence"),
    "prey_lengths": _schema("prey_lengths", unique_identity=False),
}


def get_source_schema(role: str) -> SourceSchema:
    """Return the schema for a table role or raise KeyError."""

    try:
        return SOURCE_SCHEMAS[role]
    except KeyError as exc:
        raise KeyError(f"Unsupported table role '{role}'") from exc


def validate_source_table(table: SourceTable, role: str) -> SourceTable:
    """Check required columns and, where the role demands it, identity uniqueness."""

    schema = get_source_schema(role)
    table.require_columns(schema.required_columns)
    if schema.unique_identity:
        ensure_unique_keys(table, IDENTITY_KEY)
    return table


__all__ = [
    "SOURCE_SCHEMAS",
    "SourceSchema",
    "get_source_schema",
    "validate_source_table",
]
