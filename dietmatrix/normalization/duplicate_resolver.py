"""Collapse rows that share an identity key after an outer join.

A join on several metadata columns leaves two rows for one specimen whenever
those columns disagree between the tables (typically a presence/absence row
with most metadata empty). One row per key is chosen as primary with a
caller-supplied discriminator; every other row is a donor whose non-null
values fill the primary's null fields. The primary's own values are never
overwritten. Donors are folded in order and then discarded.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import reduce
import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Sequence, Tuple

from .errors import DonorConflictError, DonorConflictWarning, DuplicateIdentityError
from .records import IDENTITY_KEY, Record, SourceTable, comparable_key, is_missing, values_equal

LOGGER = logging.getLogger(__name__)

Discriminator = Callable[[Record], bool]


class DonorConflictPolicy(str, Enum):
    """How to settle two donors that disagree on a field the primary left null.

    ``last`` keeps the value of the last donor in row order and is the
    historical behaviour of the survey conversion. ``first`` keeps the first
    donor's value. ``error`` aborts the run.
    """

    LAST = "last"
    FIRST = "first"
    ERROR = "error"


@dataclass(frozen=True)
class ResolutionResult:
    table: SourceTable
    conflicts: Tuple[DonorConflictWarning, ...] = ()
    resolved_keys: int = 0
    donors_discarded: int = 0


@dataclass(frozen=True)
class _FoldState:
    record: Record
    donor_filled: FrozenSet[str]
    conflicts: Tuple[DonorConflictWarning, ...]


def came_from(*table_names: str) -> Discriminator:
    """Discriminator selecting rows that any of ``table_names`` contributed to."""

    wanted = frozenset(table_names)

    def _is_primary(record: Record) -> bool:
        return bool(record.sources & wanted)

    return _is_primary


def group_by_key(records: Iterable[Record], key: Sequence[str]) -> Dict[Tuple[Any, ...], List[Record]]:
    """Partition records by ``key`` preserving first-appearance order."""

    groups: Dict[Tuple[Any, ...], List[Record]] = {}
    for record in records:
        groups.setdefault(comparable_key(record.key(key)), []).append(record)
    return groups


def duplicate_keys(table: SourceTable, key: Sequence[str] = IDENTITY_KEY) -> List[Tuple[Any, ...]]:
    return [rows[0].key(key) for rows in group_by_key(table.records, key).values() if len(rows) > 1]


def ensure_unique_keys(table: SourceTable, key: Sequence[str] = IDENTITY_KEY) -> None:
    """Raise :class:`DuplicateIdentityError` when ``key`` repeats within ``table``."""

    table.require_columns(key)
    duplicates = duplicate_keys(table, key)
    if duplicates:
        raise DuplicateIdentityError(
            f"Table '{table.name}' repeats key {tuple(key)}",
            keys=duplicates,
        )


def absorb_donors(
    primary: Record,
    donors: Sequence[Record],
    *,
    key: Tuple[Any, ...],
    policy: DonorConflictPolicy = DonorConflictPolicy.LAST,
) -> Tuple[Record, Tuple[DonorConflictWarning, ...]]:
    """Fold ``donors`` into ``primary``; only fields null on the primary are filled."""

    policy = DonorConflictPolicy(policy)
    open_fields = frozenset(name for name, value in primary.values.items() if is_missing(value))

    def _step(state: _FoldState, donor: Record) -> _FoldState:
        updates: Dict[str, Any] = {}
        conflicts: List[DonorConflictWarning] = []
        for name, value in donor.values.items():
            if is_missing(value):
                continue
            if name not in open_fields and name in primary.values:
                continue
            if name in state.donor_filled:
                current = state.record.values.get(name)
                if values_equal(current, value):
                    continue
                if policy is DonorConflictPolicy.FIRST:
                    conflicts.append(DonorConflictWarning(key=key, field=name, kept=current, discarded=value))
                    continue
                conflicts.append(DonorConflictWarning(key=key, field=name, kept=value, discarded=current))
            updates[name] = value
        return _FoldState(
            record=state.record.with_values(updates, sources=donor.sources),
            donor_filled=state.donor_filled | frozenset(updates),
            conflicts=state.conflicts + tuple(conflicts),
        )

    final = reduce(_step, donors, _FoldState(record=primary, donor_filled=frozenset(), conflicts=()))
    return final.record, final.conflicts


def resolve_duplicates(
    table: SourceTable,
    is_primary: Discriminator,
    *,
    key: Sequence[str] = IDENTITY_KEY,
    conflict_policy: DonorConflictPolicy | str = DonorConflictPolicy.LAST,
) -> ResolutionResult:
    """Merge rows sharing ``key`` into one surviving row per key.

    Raises :class:`DuplicateIdentityError` for any key where the discriminator
    matches zero or several rows, and :class:`DonorConflictError` when the
    policy is ``error`` and donors disagree.
    """

    policy = DonorConflictPolicy(conflict_policy)
    key = tuple(key)
    table.require_columns(key)

    survivors: List[Record] = []
    unresolved: List[Tuple[Any, ...]] = []
    conflicts: List[DonorConflictWarning] = []
    resolved_keys = 0
    donors_discarded = 0
    for rows in group_by_key(table.records, key).values():
        if len(rows) == 1:
            survivors.append(rows[0])
            continue
        identity = rows[0].key(key)
        primaries = [record for record in rows if is_primary(record)]
        if len(primaries) != 1:
            LOGGER.error(
                "Key %s has %d rows and %d primary candidates",
                identity,
                len(rows),
                len(primaries),
            )
            unresolved.append(identity)
            continue
        primary = primaries[0]
        donors = [record for record in rows if record is not primary]
        survivor, group_conflicts = absorb_donors(primary, donors, key=identity, policy=policy)
        survivors.append(survivor.project(table.columns))
        conflicts.extend(group_conflicts)
        resolved_keys += 1
        donors_discarded += len(donors)

    if unresolved:
        raise DuplicateIdentityError(
            f"Table '{table.name}' could not select a single primary row per key",
            keys=unresolved,
        )
    if conflicts:
        for conflict in conflicts:
            LOGGER.warning(
                "Donor conflict on %s field %s: kept %r, discarded %r",
                conflict.key,
                conflict.field,
                conflict.kept,
                conflict.discarded,
            )
        if policy is DonorConflictPolicy.ERROR:
            raise DonorConflictError(
                f"Table '{table.name}' has {len(conflicts)} conflicting donor value(s)",
                conflicts=conflicts,
            )

    result = table.with_records(survivors)
    ensure_unique_keys(result, key)
    if resolved_keys:
        LOGGER.info(
            "Resolved %d duplicated key(s) in %s, discarded %d donor row(s)",
            resolved_keys,
            table.name,
            donors_discarded,
        )
    return ResolutionResult(
        table=result,
        conflicts=tuple(conflicts),
        resolved_keys=resolved_keys,
        donors_discarded=donors_discarded,
    )


def fill_absent_from_source(table: SourceTable, fills: Mapping[str, Mapping[str, Any]]) -> SourceTable:
    """Default the columns a source contributes on rows that source never supplied.

    ``fills`` maps a source table name to ``{column: default}``. Applied after
    resolution, so a specimen missing from a presence/absence sheet reads as
    zero only once no donor row is left to carry its real value.
    """

    if not any(fills.values()):
        return table
    records: List[Record] = []
    for record in table.records:
        updates: Dict[str, Any] = {}
        for source, defaults in fills.items():
            if source in record.sources:
                continue
            for column, default in defaults.items():
                if column in record.values and column not in updates and record.is_missing(column):
                    updates[column] = default
        records.append(record.with_values(updates) if updates else record)
    return table.with_records(records)


__all__ = [
    "DonorConflictPolicy",
    "Discriminator",
    "ResolutionResult",
    "absorb_donors",
    "came_from",
    "duplicate_keys",
    "ensure_unique_keys",
    "fill_absent_from_source",
    "group_by_key",
    "resolve_duplicates",
]
