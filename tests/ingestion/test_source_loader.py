from __future__ import annotations

from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from dietmatrix.ingestion.source_loader import (
    TableSpec,
    clean_name,
    clean_names,
    load_source_table,
    prepare_frame,
)
from dietmatrix.normalization.errors import DuplicateIdentityError, SchemaMismatch


def test_clean_name_matches_snake_case_headers():
    assert clean_name("Fish Log #") == "fish_log_number"
    assert clean_name("Gut Fullness (%)") == "gut_fullness_percent"
    assert clean_name("forkLength") == "fork_length"
    assert clean_name("  Station ") == "station"
    assert clean_name("2nd Stomach") == "x2nd_stomach"


def test_clean_names_suffixes_repeats():
    assert clean_names(["Date", "date", "DATE"]) == ["date", "date_2", "date_3"]


def test_prepare_frame_renames_log_column_and_pads():
    frame = pd.DataFrame(
        {"FRP Log Number": [7, 12], "Date": ["2019-06-01", "2019-06-02"], "Station": ["S1", "S2"]}
    )
    spec = TableSpec(name="frp_diet", role="diet", assign={"gut_contents": 1})

    prepared = prepare_frame(frame, spec, study="FRP", log_column="frp_log_number")

    assert list(prepared.columns) == ["study", "log_number", "date", "station", "gut_contents"]
    assert list(prepared["log_number"]) == ["0007", "0012"]
    assert list(prepared["study"]) == ["FRP", "FRP"]
    assert list(prepared["date"]) == [date(2019, 6, 1), date(2019, 6, 2)]
    assert list(prepared["gut_contents"]) == [1, 1]


def test_prepare_frame_applies_rename_and_drop():
    frame = pd.DataFrame({"fish_log": [1], "Gut Fullness Index": [0.4], "Notes": ["x"]})
    spec = TableSpec(
        name="ucd_diet",
        role="diet",
        rename={"Gut Fullness Index": "gut_fullness"},
        drop=("Notes",),
    )

    prepared = prepare_frame(frame, spec, study="UCD", log_column="fish_log")

    assert list(prepared.columns) == ["study", "log_number", "gut_fullness"]


def test_table_log_column_overrides_study_default():
    frame = pd.DataFrame({"Specimen": [3]})
    spec = TableSpec(name="pa", role="presence_absence", log_column="Specimen")

    prepared = prepare_frame(frame, spec, study="UCD", log_column="fish_log", log_width=5)

    assert list(prepared["log_number"]) == ["00003"]


def test_missing_log_column_is_schema_mismatch():
    frame = pd.DataFrame({"station": ["S1"]})
    spec = TableSpec(name="frp_diet", role="diet")

    with pytest.raises(SchemaMismatch) as excinfo:
        prepare_frame(frame, spec, study="FRP", log_column="frp_log_number")

    assert excinfo.value.table == "frp_diet"
    assert excinfo.value.missing == ["frp_log_number"]


def test_table_spec_from_mapping_requires_name_and_role():
    spec = TableSpec.from_mapping({"name": "frp_pa", "role": "presence_absence", "drop": ["notes"]})

    assert spec.drop == ("notes",)
    with pytest.raises(ValueError):
        TableSpec.from_mapping({"name": "frp_pa"})


def test_load_source_table_reads_csv_relative_to_base(tmp_path: Path):
    source = tmp_path / "FRP" / "presence_absence.csv"
    source.parent.mkdir(parents=True)
    source.write_text("FRP Log Number,Plant Material,Sediment\n1,1,0\n2,,1\n", encoding="utf-8")
    spec = TableSpec(name="frp_pa", role="presence_absence", path="FRP/presence_absence.csv")

    loaded = load_source_table(spec, study="FRP", log_column="frp_log_number", base_dir=tmp_path)

    assert loaded.path == source
    assert loaded.file_hash.startswith("sha256:")
    assert loaded.table.columns == ("study", "log_number", "plant_material", "sediment")
    second = loaded.table.records[1]
    assert second.identity == ("FRP", "0002")
    assert second.get("plant_material") is None


def test_load_source_table_rejects_duplicate_logs(tmp_path: Path):
    source = tmp_path / "pa.csv"
    source.write_text("fish_log,sediment\n4,1\n4,0\n", encoding="utf-8")
    spec = TableSpec(name="ucd_pa", role="presence_absence", path=str(source))

    with pytest.raises(DuplicateIdentityError):
        load_source_table(spec, study="UCD", log_column="fish_log")


def test_load_source_table_missing_file(tmp_path: Path):
    spec = TableSpec(name="ucd_pa", role="presence_absence", path="missing.csv")

    with pytest.raises(FileNotFoundError):
        load_source_table(spec, study="UCD", base_dir=tmp_path)
