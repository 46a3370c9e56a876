"""Full outer join over two source tables with an explicit fill policy."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from .errors import JoinCardinalityWarning, SchemaMismatch
from .records import Record, SourceTable, comparable_key, is_missing

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    """Joined table plus the cardinality warnings raised while building it."""

    table: SourceTable
    warnings: Tuple[JoinCardinalityWarning, ...] = ()


def resolve_join_key(primary: SourceTable, secondary: SourceTable, on: str | Sequence[str] | None) -> Tuple[str, ...]:
    """Return the join columns; ``None`` means every column the two tables share."""

    if on is None:
        secondary_columns = set(secondary.columns)
        keys = tuple(column for column in primary.columns if column in secondary_columns)
        if not keys:
            raise SchemaMismatch(
                f"Tables '{primary.name}' and '{secondary.name}' share no columns to join on",
                table=secondary.name,
            )
        return keys
    keys = (on,) if isinstance(on, str) else tuple(on)
    if not keys:
        raise ValueError("join key must name at least one column")
    primary.require_columns(keys)
    secondary.require_columns(keys)
    return keys


def merge_records(primary: Record, secondary: Record, columns: Sequence[str]) -> Record:
    """Combine a matched pair: primary values win unless missing there."""

    merged: Dict[str, Any] = {}
    for column in columns:
        value = primary.values.get(column)
        if is_missing(value) and column in secondary.values:
            value = secondary.values[column]
        merged[column] = value
    return Record(merged, primary.sources | secondary.sources)


def outer_join(
    primary: SourceTable,
    secondary: SourceTable,
    on: str | Sequence[str] | None = None,
    *,
    fill_value: Any | Mapping[str, Any] = None,
    name: str | None = None,
) -> JoinResult:
    """Full outer join of ``primary`` and ``secondary``.

    Rows are never dropped. The output schema is the primary's columns followed
    by the secondary-only columns. Unmatched primary rows receive ``fill_value``
    (a scalar, or a per-column mapping) in the secondary-only columns, so that a
    specimen absent from the secondary table reads as a zero count rather than
    an unmeasured one. Unmatched secondary rows keep nulls in primary-only
    columns. Many-to-many matches produce one row per matching pair.
    """

    keys = resolve_join_key(primary, secondary, on)
    primary_columns = set(primary.columns)
    secondary_only = [column for column in secondary.columns if column not in primary_columns]
    columns = tuple(primary.columns) + tuple(secondary_only)
    fill = _resolve_fill(fill_value, secondary_only)

    index: Dict[Tuple[Any, ...], List[int]] = defaultdict(list)
    for position, record in enumerate(secondary.records):
        index[comparable_key(record.key(keys))].append(position)

    matched: set[int] = set()
    rows: List[Record] = []
    for record in primary.records:
        partners = index.get(comparable_key(record.key(keys)), [])
        if not partners:
            rows.append(record.project(columns, fill))
            continue
        for position in partners:
            matched.add(position)
            rows.append(merge_records(record, secondary.records[position], columns))
    for position, record in enumerate(secondary.records):
        if position not in matched:
            rows.append(record.project(columns))

    table = SourceTable(name=name or f"{primary.name}+{secondary.name}", columns=columns, records=tuple(rows))
    warnings: List[JoinCardinalityWarning] = []
    if len(rows) > max(len(primary), len(secondary)):
        warning = JoinCardinalityWarning(
            table=table.name,
            primary_rows=len(primary),
            secondary_rows=len(secondary),
            result_rows=len(rows),
        )
        LOGGER.info(
            "Join %s produced %d rows from %d primary and %d secondary rows",
            table.name,
            warning.result_rows,
            warning.primary_rows,
            warning.secondary_rows,
        )
        warnings.append(warning)
    return JoinResult(table=table, warnings=tuple(warnings))


def _resolve_fill(fill_value: Any | Mapping[str, Any], columns: Sequence[str]) -> Dict[str, Any]:
    if isinstance(fill_value, Mapping):
        return {column: fill_value.get(column) for column in columns}
    return {column: fill_value for column in columns}


__all__ = ["JoinResult", "merge_records", "outer_join", "resolve_join_key"]
