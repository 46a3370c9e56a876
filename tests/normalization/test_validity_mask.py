from __future__ import annotations

import pytest

from dietmatrix.normalization.errors import SchemaMismatch
from dietmatrix.normalization.records import SourceTable
from dietmatrix.normalization.validity_mask import (
    ValidityWindow,
    apply_validity_windows,
    load_validity_windows,
)


def _matrix(rows):
    return SourceTable.from_rows("diet_matrix", rows, columns=("study", "log_number", "mysida", "amphipoda"))


def test_value_outside_window_becomes_null_even_when_zero():
    table = _matrix([{"study": "B", "log_number": "0200", "mysida": 0, "amphipoda": 3}])
    windows = [ValidityWindow(study="B", category="mysida", log_start=50, log_end=120)]

    masked = apply_validity_windows(table, windows)

    record = masked.records[0]
    assert record.get("mysida") is None
    assert record.get("amphipoda") == 3


def test_value_inside_window_is_kept_and_bounds_are_inclusive():
    table = _matrix(
        [
            {"study": "B", "log_number": "0050", "mysida": 1, "amphipoda": 0},
            {"study": "B", "log_number": "0120", "mysida": 2, "amphipoda": 0},
            {"study": "B", "log_number": "0049", "mysida": 3, "amphipoda": 0},
        ]
    )
    windows = [ValidityWindow(study="B", category="mysida", log_start=50, log_end=120)]

    masked = apply_validity_windows(table, windows)

    assert [record.get("mysida") for record in masked] == [1, 2, None]


def test_other_studies_are_untouched():
    table = _matrix([{"study": "A", "log_number": "0200", "mysida": 0, "amphipoda": 0}])
    windows = [ValidityWindow(study="B", category="mysida", log_start=50, log_end=120)]

    masked = apply_validity_windows(table, windows)

    assert masked.records[0].get("mysida") == 0


def test_open_bounds_are_unbounded():
    table = _matrix(
        [
            {"study": "B", "log_number": "0001", "mysida": 0, "amphipoda": 0},
            {"study": "B", "log_number": "9000", "mysida": 0, "amphipoda": 0},
        ]
    )
    windows = [
        ValidityWindow(study="B", category="mysida", log_start=None, log_end=100),
        ValidityWindow(study="B", category="amphipoda", log_start=5000, log_end=None),
    ]

    masked = apply_validity_windows(table, windows)

    assert [record.get("mysida") for record in masked] == [0, None]
    assert [record.get("amphipoda") for record in masked] == [None, 0]


def test_record_inside_any_window_for_category_is_kept():
    table = _matrix(
        [
            {"study": "B", "log_number": "0010", "mysida": 1, "amphipoda": 0},
            {"study": "B", "log_number": "0300", "mysida": 1, "amphipoda": 0},
            {"study": "B", "log_number": "0150", "mysida": 1, "amphipoda": 0},
        ]
    )
    windows = [
        ValidityWindow(study="B", category="mysida", log_start=1, log_end=100),
        ValidityWindow(study="B", category="mysida", log_start=200, log_end=400),
    ]

    masked = apply_validity_windows(table, windows)

    assert [record.get("mysida") for record in masked] == [1, 1, None]


def test_windows_for_absent_categories_are_ignored():
    table = _matrix([{"study": "B", "log_number": "0200", "mysida": 0, "amphipoda": 0}])
    windows = [ValidityWindow(study="B", category="copepoda", log_start=1, log_end=2)]

    assert apply_validity_windows(table, windows) is table


def test_masking_is_idempotent():
    table = _matrix([{"study": "B", "log_number": "0200", "mysida": 0, "amphipoda": 4}])
    windows = [ValidityWindow(study="B", category="mysida", log_start=50, log_end=120)]

    once = apply_validity_windows(table, windows)
    twice = apply_validity_windows(once, windows)

    assert [record.as_dict() for record in twice] == [record.as_dict() for record in once]


def test_non_numeric_log_number_is_a_schema_error():
    table = _matrix([{"study": "B", "log_number": "X12", "mysida": 0, "amphipoda": 0}])
    windows = [ValidityWindow(study="B", category="mysida", log_start=1, log_end=10)]

    with pytest.raises(SchemaMismatch):
        apply_validity_windows(table, windows)


def test_inverted_window_is_rejected():
    with pytest.raises(ValueError):
        ValidityWindow(study="B", category="mysida", log_start=10, log_end=1)


def test_load_validity_windows_reads_side_table(tmp_path):
    path = tmp_path / "windows.csv"
    path.write_text(
        "Category,Study,Start,End\nmysida,B,50,120\namphipoda,A,,300\n",
        encoding="utf-8",
    )

    windows = load_validity_windows(path)

    assert windows == [
        ValidityWindow(study="B", category="mysida", log_start=50, log_end=120),
        ValidityWindow(study="A", category="amphipoda", log_start=None, log_end=300),
    ]


def test_load_validity_windows_requires_columns(tmp_path):
    path = tmp_path / "windows.csv"
    path.write_text("category,study,start\nmysida,B,50\n", encoding="utf-8")

    with pytest.raises(SchemaMismatch) as excinfo:
        load_validity_windows(path)

    assert excinfo.value.missing == ["end"]
