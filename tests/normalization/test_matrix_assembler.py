from __future__ import annotations

import pytest

from dietmatrix.normalization.errors import DuplicateIdentityError, ReconciliationError, SchemaMismatch
from dietmatrix.normalization.matrix_assembler import MatrixAssembler, MatrixSchema
from dietmatrix.normalization.records import SourceTable
from dietmatrix.normalization.validity_mask import ValidityWindow

SCHEMA = MatrixSchema(
    metadata_columns=("study", "log_number", "station", "gut_contents", "total_prey_count", "gut_fullness", "total_prey_weight"),
    presence_only_categories=("plant_material",),
)


def _study_a():
    return SourceTable.from_rows(
        "A_reconciled",
        [
            {"study": "A", "log_number": "0001", "station": "S1", "gut_contents": 1, "total_prey_count": 3, "mysida": 3},
            {"study": "A", "log_number": "0002", "station": "S2", "gut_contents": 0, "total_prey_count": None, "mysida": None},
        ],
    )


def _study_b():
    return SourceTable.from_rows(
        "B_reconciled",
        [
            {"study": "B", "log_number": "0001", "station": "S1", "gut_contents": 1, "total_prey_count": 2, "amphipoda": 2, "plant_material": 1},
        ],
    )


def test_assemble_unions_studies_with_fixed_column_order():
    matrix = MatrixAssembler(SCHEMA).assemble([_study_a(), _study_b()])

    assert matrix.columns == (
        "unique_id",
        "study",
        "log_number",
        "station",
        "gut_contents",
        "total_prey_count",
        "gut_fullness",
        "total_prey_weight",
        "amphipoda",
        "mysida",
        "plant_material",
    )
    assert [record.get("unique_id") for record in matrix] == ["A_0001", "A_0002", "B_0001"]


def test_measurements_absent_from_a_study_default_to_zero():
    matrix = MatrixAssembler(SCHEMA).assemble([_study_a(), _study_b()])

    by_id = {record.get("unique_id"): record for record in matrix}
    assert by_id["A_0001"].get("amphipoda") == 0
    assert by_id["A_0002"].get("mysida") == 0
    assert by_id["B_0001"].get("mysida") == 0


def test_summary_fields_default_to_zero():
    matrix = MatrixAssembler(SCHEMA).assemble([_study_a(), _study_b()])

    empty = next(record for record in matrix if record.get("unique_id") == "A_0002")
    assert empty.get("total_prey_count") == 0
    assert empty.get("gut_fullness") == 0
    assert empty.get("total_prey_weight") == 0


def test_flags_convert_to_symbols_with_null_as_absent():
    table = SourceTable.from_rows(
        "A_reconciled",
        [
            {"study": "A", "log_number": "0001", "gut_contents": 1},
            {"study": "A", "log_number": "0002", "gut_contents": 0},
            {"study": "A", "log_number": "0003", "gut_contents": None},
            {"study": "A", "log_number": "0004", "gut_contents": "present"},
        ],
    )

    matrix = MatrixAssembler(SCHEMA).assemble([table])

    assert [record.get("gut_contents") for record in matrix] == ["present", "absent", "absent", "present"]


def test_unrecognised_flag_value_is_an_error():
    table = SourceTable.from_rows("A_reconciled", [{"study": "A", "log_number": "0001", "gut_contents": "maybe"}])

    with pytest.raises(ReconciliationError):
        MatrixAssembler(SCHEMA).assemble([table])


def test_masking_runs_after_defaulting():
    table = SourceTable.from_rows(
        "B_reconciled",
        [
            {"study": "B", "log_number": "0200", "gut_contents": 1, "mysida": None, "amphipoda": 1},
            {"study": "B", "log_number": "0060", "gut_contents": 1, "mysida": None, "amphipoda": 1},
        ],
    )
    windows = [ValidityWindow(study="B", category="mysida", log_start=50, log_end=120)]

    matrix = MatrixAssembler(SCHEMA).assemble([table], windows)

    assert [record.get("mysida") for record in matrix] == [None, 0]


def test_table_without_identity_columns_is_rejected():
    table = SourceTable.from_rows("broken", [{"study": "A", "fish_log": "0001"}])

    with pytest.raises(SchemaMismatch) as excinfo:
        MatrixAssembler(SCHEMA).assemble([table])

    assert excinfo.value.missing == ["log_number"]


def test_unique_id_collision_is_fatal():
    first = SourceTable.from_rows("A_one", [{"study": "A", "log_number": "0001"}])
    second = SourceTable.from_rows("A_two", [{"study": "A", "log_number": "0001"}])

    with pytest.raises(DuplicateIdentityError) as excinfo:
        MatrixAssembler(SCHEMA).assemble([first, second])

    assert excinfo.value.keys == [("A_0001",)]


def test_rows_without_log_number_are_rejected():
    table = SourceTable.from_rows("A", [{"study": "A", "log_number": None}])

    with pytest.raises(SchemaMismatch):
        MatrixAssembler(SCHEMA).assemble([table])


def test_output_has_one_row_per_study_and_log_number():
    matrix = MatrixAssembler(SCHEMA).assemble([_study_a(), _study_b()])

    identities = [(record.get("study"), record.get("log_number")) for record in matrix]
    assert sorted(identities) == [("A", "0001"), ("A", "0002"), ("B", "0001")]
    assert len({record.get("unique_id") for record in matrix}) == len(matrix)


def test_to_frame_keeps_column_order():
    assembler = MatrixAssembler(SCHEMA)
    frame = assembler.to_frame(assembler.assemble([_study_a()]))

    assert list(frame.columns)[:3] == ["unique_id", "study", "log_number"]
    assert list(frame["unique_id"]) == ["A_0001", "A_0002"]


def test_schema_rejects_flag_outside_metadata():
    with pytest.raises(ValueError):
        MatrixSchema(metadata_columns=("study", "log_number"), flag_columns=("gut_contents",), summary_columns=())


def test_schema_from_mapping_rejects_unknown_options():
    with pytest.raises(ValueError):
        MatrixSchema.from_mapping({"metadata_colums": ["study"]})


def test_text_column_outside_metadata_is_rejected_at_union():
    notes = SourceTable.from_rows(
        "A_reconciled",
        [
            {"study": "A", "log_number": "0001", "gut_contents": 1, "mysida": 2, "comments": "stomach torn"},
            {"study": "A", "log_number": "0002", "gut_contents": 0, "mysida": None, "comments": None},
        ],
    )

    with pytest.raises(SchemaMismatch) as excinfo:
        MatrixAssembler(SCHEMA).union([notes])

    assert excinfo.value.table == "A_reconciled"
    assert excinfo.value.missing == ["comments"]


def test_boolean_and_numeric_text_categories_are_counts():
    table = SourceTable.from_rows(
        "A_reconciled",
        [
            {"study": "A", "log_number": "0001", "gut_contents": 1, "total_prey_count": 3, "plant_material": True, "mysida": "3"},
        ],
    )

    matrix = MatrixAssembler(SCHEMA).assemble([table])

    assert matrix.records[0].get("plant_material") is True
    assert matrix.records[0].get("mysida") == "3"
