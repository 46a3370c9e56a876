"""Builder orchestrating the diet matrix reconciliation run.

Stages run in a fixed order: load, per-study joins, per-study duplicate
resolution, assembly (union, defaulting, flags, validity masking, unique ids)
and QA. Integrity errors abort the run; warnings are collected into the
:class:`ReconciliationReport` returned with the matrix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import pandas as pd
import yaml

from dietmatrix.ingestion.source_loader import LoadedTable, TableSpec, load_source_table
from dietmatrix.paths import default_roots, resolve_input_path
from dietmatrix.storage.derived_tables import filter_prey_lengths
from dietmatrix.storage.matrix_writer import (
    compute_content_hash,
    write_csv_atomic,
    write_json_atomic,
    write_parquet_atomic,
)
from dietmatrix.validation.qa_checks import QAReport, run_qa_checks
from dietmatrix.validation.source_schemas import get_source_schema, validate_source_table

from .duplicate_resolver import (
    DonorConflictPolicy,
    ResolutionResult,
    came_from,
    fill_absent_from_source,
    resolve_duplicates,
)
from .errors import DonorConflictWarning, JoinCardinalityWarning, ReconciliationError
from .lineage import ManifestEntry, RunManifest
from .matrix_assembler import MatrixAssembler, MatrixSchema
from .outer_join import outer_join
from .records import DEFAULT_LOG_WIDTH, SourceTable
from .validity_mask import ValidityWindow, load_validity_windows, windows_from_rows

LOGGER = logging.getLogger(__name__)

UTC = timezone.utc
PIPELINE_STAGES: Tuple[str, ...] = ("load", "join", "resolve", "assemble", "qa")
PREY_LENGTHS_ROLE = "prey_lengths"


@dataclass(frozen=True)
class StudySpec:
    """Tables and join settings of one research program."""

    code: str
    tables: Tuple[TableSpec, ...]
    log_column: str | None = None
    log_width: int = DEFAULT_LOG_WIDTH
    join_key: Tuple[str, ...] | None = None
    fill_value: Any = 0

    @classmethod
    def from_mapping(cls, code: str, payload: Mapping[str, Any]) -> "StudySpec":
        tables = tuple(TableSpec.from_mapping(entry) for entry in payload.get("tables") or ())
        if not tables:
            raise ValueError(f"Study '{code}' has no tables configured")
        names = [spec.name for spec in tables]
        if len(set(names)) != len(names):
            raise ValueError(f"Study '{code}' repeats table names: {names}")
        for spec in tables:
            get_source_schema(spec.role)
        join_key = payload.get("join_key")
        if isinstance(join_key, str):
            join_key = (join_key,)
        return cls(
            code=str(code),
            tables=tables,
            log_column=payload.get("log_column"),
            log_width=int(payload.get("log_width", DEFAULT_LOG_WIDTH)),
            join_key=tuple(join_key) if join_key else None,
            fill_value=payload.get("fill_value", 0),
        )

    @property
    def primary_tables(self) -> Tuple[TableSpec, ...]:
        return tuple(spec for spec in self.tables if get_source_schema(spec.role).primary_side)

    @property
    def secondary_tables(self) -> Tuple[TableSpec, ...]:
        return tuple(
            spec
            for spec in self.tables
            if not get_source_schema(spec.role).primary_side and spec.role != PREY_LENGTHS_ROLE
        )

    @property
    def prey_length_tables(self) -> Tuple[TableSpec, ...]:
        return tuple(spec for spec in self.tables if spec.role == PREY_LENGTHS_ROLE)


@dataclass(frozen=True)
class StudyReconciliation:
    study: str
    table: SourceTable
    join_warnings: Tuple[JoinCardinalityWarning, ...]
    resolution: ResolutionResult


@dataclass
class ReconciliationReport:
    """Warnings collected during a run, kept for external review."""

    join_warnings: List[JoinCardinalityWarning] = field(default_factory=list)
    donor_conflicts: List[DonorConflictWarning] = field(default_factory=list)
    resolved_keys: Dict[str, int] = field(default_factory=dict)
    qa: QAReport = field(default_factory=QAReport)

    @property
    def warning_count(self) -> int:
        return len(self.join_warnings) + len(self.donor_conflicts) + self.qa.warning_count

    def as_dict(self) -> Dict[str, Any]:
        return {
            "join_warnings": [item.as_dict() for item in self.join_warnings],
            "donor_conflicts": [item.as_dict() for item in self.donor_conflicts],
            "resolved_keys": dict(self.resolved_keys),
            "qa": self.qa.as_dict(),
            "warning_count": self.warning_count,
        }


@dataclass(frozen=True)
class BuildResult:
    matrix: SourceTable
    frame: pd.DataFrame
    report: ReconciliationReport
    prey_lengths: pd.DataFrame | None = None
    inputs: Tuple[ManifestEntry, ...] = ()


class DietMatrixBuilder:
    """Reconciles every configured study into one diet matrix."""

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        raw_data_root: Path | str | None = None,
        output_root: Path | str | None = None,
        windows: Sequence[ValidityWindow] | None = None,
        now: datetime | None = None,
    ) -> None:
        cfg = dict(config.get("diet_matrix", config))
        studies_cfg = cfg.get("studies")
        if not studies_cfg:
            raise ValueError("No studies configured")
        self.studies: Tuple[StudySpec, ...] = tuple(
            StudySpec.from_mapping(code, payload) for code, payload in studies_cfg.items()
        )
        self.schema = MatrixSchema.from_mapping(cfg.get("matrix_schema"))
        self.assembler = MatrixAssembler(self.schema)
        self.conflict_policy = DonorConflictPolicy(cfg.get("conflict_policy", DonorConflictPolicy.LAST.value))
        default_raw, default_output = default_roots()
        self.raw_data_root = Path(raw_data_root).expanduser() if raw_data_root else default_raw
        self.output_root = Path(output_root).expanduser() if output_root else default_output
        self.windows_path = cfg.get("validity_windows")
        if windows is None and isinstance(self.windows_path, list):
            windows = windows_from_rows(self.windows_path)
            self.windows_path = None
        self._windows: List[ValidityWindow] | None = list(windows) if windows is not None else None
        self.run_timestamp = (now or datetime.now(tz=UTC)).astimezone(UTC).isoformat()

    @classmethod
    def from_config_file(cls, config_path: Path | str, **kwargs: Any) -> "DietMatrixBuilder":
        """Load a YAML or JSON config; relative roots resolve against the config's directory."""

        path = Path(config_path)
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in {".yml", ".yaml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
        if not isinstance(data, Mapping):
            raise ValueError(f"Config {path} must contain a mapping")
        cfg = data.get("diet_matrix", data)
        base = path.resolve().parent
        fallbacks = dict(zip(("raw_data_root", "output_root"), default_roots(base)))
        for option, key in (("raw_data_root", "raw_root"), ("output_root", "output_root")):
            if kwargs.get(option) is not None:
                continue
            kwargs[option] = resolve_input_path(cfg[key], base=base) if cfg.get(key) else fallbacks[option]
        return cls(data, **kwargs)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @property
    def windows(self) -> List[ValidityWindow]:
        if self._windows is None:
            if self.windows_path:
                self._windows = load_validity_windows(
                    resolve_input_path(self.windows_path, base=self.raw_data_root)
                )
            else:
                self._windows = []
        return self._windows

    def load_tables(self) -> Tuple[Dict[str, Dict[str, SourceTable]], List[ManifestEntry]]:
        tables: Dict[str, Dict[str, SourceTable]] = {}
        inputs: List[ManifestEntry] = []
        for study in self.studies:
            loaded: Dict[str, SourceTable] = {}
            for spec in study.tables:
                result: LoadedTable = load_source_table(
                    spec,
                    study=study.code,
                    log_column=study.log_column,
                    log_width=study.log_width,
                    base_dir=self.raw_data_root,
                )
                loaded[spec.name] = result.table
                inputs.append(
                    ManifestEntry(
                        path=str(result.path),
                        file_hash=result.file_hash or "",
                        record_count=len(result.table),
                        study=study.code,
                        table=spec.name,
                        role=spec.role,
                    )
                )
            tables[study.code] = loaded
        return tables, inputs

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_study(self, study: StudySpec, tables: Mapping[str, SourceTable]) -> StudyReconciliation:
        """Join a study's diet, empties and presence/absence tables and collapse duplicates."""

        ordered = list(study.primary_tables) + list(study.secondary_tables)
        if not study.primary_tables:
            raise ReconciliationError(f"Study '{study.code}' has no diet or empties table")
        for spec in ordered:
            if spec.name not in tables:
                raise ReconciliationError(f"Study '{study.code}' table '{spec.name}' was not provided")
            validate_source_table(tables[spec.name], spec.role)

        joined = tables[ordered[0].name]
        join_warnings: List[JoinCardinalityWarning] = []
        absent_fills: Dict[str, Dict[str, Any]] = {}
        for spec in ordered[1:]:
            secondary = tables[spec.name]
            absent_fills[spec.name] = {
                column: study.fill_value
                for column in secondary.columns
                if column not in joined.columns and column not in self.schema.reserved_columns
            }
            # unmatched rows stay null here so a donor can still fill them during resolution
            result = outer_join(joined, secondary, on=study.join_key, name=f"{study.code}_reconciled")
            joined = result.table
            join_warnings.extend(result.warnings)

        resolution = resolve_duplicates(
            joined,
            came_from(*(spec.name for spec in study.primary_tables)),
            conflict_policy=self.conflict_policy,
        )
        reconciled = fill_absent_from_source(resolution.table, absent_fills)
        LOGGER.info("Study %s reconciled to %d specimen(s)", study.code, len(reconciled))
        return StudyReconciliation(
            study=study.code,
            table=reconciled,
            join_warnings=tuple(join_warnings),
            resolution=resolution,
        )

    def build(self, tables: Mapping[str, Mapping[str, SourceTable]] | None = None) -> BuildResult:
        """Run every stage in memory. ``tables`` maps study code -> table name -> table."""

        inputs: List[ManifestEntry] = []
        if tables is None:
            tables, inputs = self.load_tables()

        report = ReconciliationReport()
        reconciled: List[SourceTable] = []
        for study in self.studies:
            outcome = self.reconcile_study(study, tables.get(study.code, {}))
            reconciled.append(outcome.table)
            report.join_warnings.extend(outcome.join_warnings)
            report.donor_conflicts.extend(outcome.resolution.conflicts)
            report.resolved_keys[study.code] = outcome.resolution.resolved_keys

        matrix = self.assembler.assemble(reconciled, self.windows)
        report.qa = run_qa_checks(matrix, self.schema)
        frame = self.assembler.to_frame(matrix)
        prey_lengths = self._collect_prey_lengths(tables, frame)
        return BuildResult(
            matrix=matrix,
            frame=frame,
            report=report,
            prey_lengths=prey_lengths,
            inputs=tuple(inputs),
        )

    def _collect_prey_lengths(
        self,
        tables: Mapping[str, Mapping[str, SourceTable]],
        frame: pd.DataFrame,
    ) -> pd.DataFrame | None:
        frames = [
            tables[study.code][spec.name].to_frame()
            for study in self.studies
            for spec in study.prey_length_tables
            if spec.name in tables.get(study.code, {})
        ]
        if not frames:
            return None
        combined = pd.concat(frames, ignore_index=True, sort=False)
        return filter_prey_lengths(combined, frame[self.schema.unique_id_column], unique_id_column=self.schema.unique_id_column)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def run(
        self,
        *,
        run_id: str,
        output_dir: Path | str | None = None,
        parquet: bool = False,
    ) -> Dict[str, Any]:
        """Build the matrix and write it with its side tables and lineage manifest."""

        target = Path(output_dir).expanduser() if output_dir else self.output_root
        result = self.build()

        written = [write_csv_atomic(result.frame, target / "diet_matrix.csv")]
        if parquet:
            written.append(write_parquet_atomic(result.frame, target / "diet_matrix.parquet"))
        if result.prey_lengths is not None:
            written.append(write_csv_atomic(result.prey_lengths, target / "prey_lengths.csv"))

        manifest = RunManifest(
            run_id=run_id,
            created_at=self.run_timestamp,
            inputs=list(result.inputs),
            outputs=[
                ManifestEntry(path=item["path"], file_hash=item["file_hash"], record_count=item["records"])
                for item in written
            ],
            metadata={
                "stages": list(PIPELINE_STAGES),
                "assembly_stages": ["union"] + [name for name, _ in self.assembler.stages()],
                "conflict_policy": self.conflict_policy.value,
                "matrix_content_hash": compute_content_hash(result.frame),
                "studies": [study.code for study in self.studies],
                "report": result.report.as_dict(),
            },
        )
        lineage_path = write_json_atomic(manifest.as_dict(), target / "lineage.json")
        return {
            "run_id": run_id,
            "records_written": len(result.frame),
            "columns": len(result.frame.columns),
            "outputs": [item["path"] for item in written],
            "lineage_path": str(lineage_path),
            "warning_count": result.report.warning_count,
            "sum_mismatches": len(result.report.qa.sum_mismatches),
            "tolerated_sum_exceptions": len(result.report.qa.tolerated_sum_exceptions),
        }


__all__ = [
    "BuildResult",
    "DietMatrixBuilder",
    "PIPELINE_STAGES",
    "ReconciliationReport",
    "StudyReconciliation",
    "StudySpec",
]
