"""Row-level QA on the assembled diet matrix.

Nothing here corrects data. Disagreements between prey counts and recorded
totals are returned for review because they usually trace back to entry
errors in the source logs.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import numbers
from typing import Any, Dict, List, Tuple

from dietmatrix.normalization.errors import (
    EmptyGutViolation,
    ReconciliationError,
    SumMismatchWarning,
    ToleratedSumException,
)
from dietmatrix.normalization.matrix_assembler import MatrixSchema
from dietmatrix.normalization.records import Record, SourceTable, is_missing

LOGGER = logging.getLogger(__name__)

SUM_TOLERANCE = 1e-6


@dataclass(frozen=True)
class QAReport:
    sum_mismatches: Tuple[SumMismatchWarning, ...] = ()
    tolerated_sum_exceptions: Tuple[ToleratedSumException, ...] = ()
    empty_gut_violations: Tuple[EmptyGutViolation, ...] = ()

    @property
    def warning_count(self) -> int:
        return len(self.sum_mismatches) + len(self.empty_gut_violations)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sum_mismatches": [item.as_dict() for item in self.sum_mismatches],
            "tolerated_sum_exceptions": [item.as_dict() for item in self.tolerated_sum_exceptions],
            "empty_gut_violations": [item.as_dict() for item in self.empty_gut_violations],
        }


def _numeric(record: Record, column: str) -> float | None:
    value = record.get(column)
    if is_missing(value):
        return None
    if isinstance(value, numbers.Real):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        raise ReconciliationError(
            f"Column '{column}' of {record.unique_id} is not numeric: {value!r}"
        ) from None


def check_prey_sums(
    table: SourceTable,
    schema: MatrixSchema,
    *,
    tolerance: float = SUM_TOLERANCE,
) -> Tuple[List[SumMismatchWarning], List[ToleratedSumException]]:
    """Compare measurement sums with the recorded total for specimens with gut contents.

    Rows whose disagreement disappears once presence/absence-only categories
    are left out are enumerated as tolerated exceptions instead of warnings.
    Masked (null) measurements do not contribute to the sum.
    """

    gut_column = schema.gut_contents_column
    if gut_column not in table.columns or schema.total_count_column not in table.columns:
        LOGGER.info("Skipping prey sum check: %s or %s not in matrix", gut_column, schema.total_count_column)
        return [], []
    measurements = schema.measurement_columns(table.columns)
    presence_only = [column for column in schema.presence_only_categories if column in measurements]
    mismatches: List[SumMismatchWarning] = []
    tolerated: List[ToleratedSumException] = []
    for record in table.records:
        if record.get(gut_column) != schema.present_symbol:
            continue
        recorded = _numeric(record, schema.total_count_column) or 0.0
        values = {column: _numeric(record, column) for column in measurements}
        measured = sum(value for value in values.values() if value is not None)
        if abs(measured - recorded) <= tolerance:
            continue
        contributing = tuple(column for column in presence_only if values.get(column))
        counted = measured - sum(values[column] for column in contributing)
        uid = str(record.get(schema.unique_id_column) or record.unique_id)
        if contributing and abs(counted - recorded) <= tolerance:
            tolerated.append(
                ToleratedSumException(
                    unique_id=uid,
                    measured_total=measured,
                    recorded_total=recorded,
                    categories=contributing,
                )
            )
            continue
        mismatches.append(SumMismatchWarning(unique_id=uid, measured_total=measured, recorded_total=recorded))
    return mismatches, tolerated


def check_empty_guts(table: SourceTable, schema: MatrixSchema) -> List[EmptyGutViolation]:
    """Specimens flagged without gut contents must have every counted category at zero."""

    gut_column = schema.gut_contents_column
    if gut_column not in table.columns:
        return []
    measurements = schema.measurement_columns(table.columns)
    violations: List[EmptyGutViolation] = []
    for record in table.records:
        if record.get(gut_column) != schema.absent_symbol:
            continue
        nonzero = tuple(column for column in measurements if _numeric(record, column))
        if nonzero:
            uid = str(record.get(schema.unique_id_column) or record.unique_id)
            violations.append(EmptyGutViolation(unique_id=uid, categories=nonzero))
    return violations


def run_qa_checks(table: SourceTable, schema: MatrixSchema) -> QAReport:
    mismatches, tolerated = check_prey_sums(table, schema)
    violations = check_empty_guts(table, schema)
    if mismatches:
        LOGGER.warning("%d specimen(s) disagree with their recorded total prey count", len(mismatches))
    if tolerated:
        LOGGER.info("%d sum disagreement(s) explained by presence/absence-only categories", len(tolerated))
    if violations:
        LOGGER.warning("%d empty-gut specimen(s) carry non-zero prey values", len(violations))
    return QAReport(
        sum_mismatches=tuple(mismatches),
        tolerated_sum_exceptions=tuple(tolerated),
        empty_gut_violations=tuple(violations),
    )


__all__ = ["QAReport", "SUM_TOLERANCE", "check_empty_guts", "check_prey_sums", "run_qa_checks"]
