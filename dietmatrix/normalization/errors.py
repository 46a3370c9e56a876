"""Integrity errors and reviewable warnings raised by diet matrix reconciliation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Sequence, Tuple


class ReconciliationError(RuntimeError):
    """Raised when deterministic reconciliation cannot continue."""


class SchemaMismatch(ReconciliationError):
    """A source table lacks a column the reconciliation needs."""

    def __init__(self, message: str, *, table: str, missing: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.table = table
        self.missing = list(missing)


class DuplicateIdentityError(ReconciliationError):
    """Identity keys are still duplicated after resolution."""

    def __init__(self, message: str, *, keys: Iterable[Tuple[Any, ...]]) -> None:
        self.keys = sorted({tuple(key) for key in keys}, key=lambda item: tuple(str(part) for part in item))
        preview = ", ".join("/".join(str(part) for part in key) for key in self.keys[:10])
        if len(self.keys) > 10:
            preview += f", ... ({len(self.keys)} total)"
        super().__init__(f"{message}: {preview}" if preview else message)


class DonorConflictError(ReconciliationError):
    """Two donors supplied different values for the same field of one specimen."""

    def __init__(self, message: str, *, conflicts: Sequence["DonorConflictWarning"]) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)


@dataclass(frozen=True)
class JoinCardinalityWarning:
    """An outer join produced more rows than either of its inputs."""

    table: str
    primary_rows: int
    secondary_rows: int
    result_rows: int

    kind = "join_cardinality"

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class DonorConflictWarning:
    """Donor rows disagreed on a field the primary row left empty."""

    key: Tuple[Any, ...]
    field: str
    kept: Any
    discarded: Any

    kind = "donor_conflict"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "key": list(self.key),
            "field": self.field,
            "kept": _jsonable(self.kept),
            "discarded": _jsonable(self.discarded),
        }


@dataclass(frozen=True)
class SumMismatchWarning:
    """Measured prey total differs from the recorded total prey count."""

    unique_id: str
    measured_total: float
    recorded_total: float

    kind = "sum_mismatch"

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class EmptyGutViolation:
    """A specimen without gut contents still carries non-zero prey values."""

    unique_id: str
    categories: Tuple[str, ...]

    kind = "empty_gut_nonzero"

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "unique_id": self.unique_id, "categories": list(self.categories)}


@dataclass(frozen=True)
class ToleratedSumException:
    """Sum disagreement explained entirely by presence/absence-only categories."""

    unique_id: str
    measured_total: float
    recorded_total: float
    categories: Tuple[str, ...]

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["categories"] = list(self.categories)
        return payload


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


__all__ = [
    "DonorConflictError",
    "DonorConflictWarning",
    "DuplicateIdentityError",
    "EmptyGutViolation",
    "JoinCardinalityWarning",
    "ReconciliationError",
    "SchemaMismatch",
    "SumMismatchWarning",
    "ToleratedSumException",
]
