"""Record reconciliation engine: joins, duplicate resolution, masking and assembly.

The run orchestration lives in :mod:`dietmatrix.normalization.diet_matrix_builder`.
"""

from .duplicate_resolver import DonorConflictPolicy, came_from, ensure_unique_keys, resolve_duplicates
from .errors import (
    DonorConflictError,
    DuplicateIdentityError,
    JoinCardinalityWarning,
    ReconciliationError,
    SchemaMismatch,
    SumMismatchWarning,
)
from .lineage import ManifestEntry, RunManifest, compute_file_hash
from .matrix_assembler import MatrixAssembler, MatrixSchema
from .outer_join import JoinResult, outer_join
from .records import Record, SourceTable
from .validity_mask import ValidityWindow, apply_validity_windows, load_validity_windows

__all__ = [
    "DonorConflictError",
    "DonorConflictPolicy",
    "DuplicateIdentityError",
    "JoinCardinalityWarning",
    "JoinResult",
    "ManifestEntry",
    "MatrixAssembler",
    "MatrixSchema",
    "Record",
    "ReconciliationError",
    "RunManifest",
    "SchemaMismatch",
    "SourceTable",
    "SumMismatchWarning",
    "ValidityWindow",
    "apply_validity_windows",
    "came_from",
    "compute_file_hash",
    "ensure_unique_keys",
    "load_validity_windows",
    "outer_join",
    "resolve_duplicates",
]
