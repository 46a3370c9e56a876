from __future__ import annotations

import pandas as pd
import pytest

from dietmatrix.storage.derived_tables import (
    build_station_locations,
    clean_reference_table,
    convert_station_regions,
    filter_prey_lengths,
)


def test_filter_prey_lengths_derives_unique_id():
    lengths = pd.DataFrame(
        {"study": ["FRP", "FRP", "UCD"], "log_number": ["0001", "0002", "0001"], "length": [4.1, 2.0, 3.3]}
    )

    kept = filter_prey_lengths(lengths, ["FRP_0001", "UCD_0001"])

    assert list(kept.columns) == ["unique_id", "study", "log_number", "length"]
    assert list(kept["unique_id"]) == ["FRP_0001", "UCD_0001"]


def test_filter_prey_lengths_needs_identity():
    with pytest.raises(KeyError):
        filter_prey_lengths(pd.DataFrame({"length": [1.0]}), ["FRP_0001"])


def test_convert_station_regions_renames_start_coordinates():
    stations = pd.DataFrame({"Station": ["S1"], "StartX": [-121.5], "StartY": [38.1], "Region": ["Delta"]})

    converted = convert_station_regions(stations)

    assert list(converted.columns) == ["station", "lon", "lat", "region"]


def test_station_locations_average_survey_coordinates():
    matrix = pd.DataFrame({"station": ["S1", "S2", "S1", None, "S3"]})
    survey = pd.DataFrame(
        {
            "Station": ["S1", "S1", "S2"],
            "Latitude": [38.0, 38.2, 37.5],
            "Longitude": [-121.0, -121.2, -122.0],
        }
    )

    located = build_station_locations(matrix, survey)

    assert list(located["station"]) == ["S1", "S2", "S3"]
    assert located.loc[0, "latitude"] == pytest.approx(38.1)
    assert located.loc[0, "longitude"] == pytest.approx(-121.1)
    assert pd.isna(located.loc[2, "latitude"])


def test_clean_reference_table_keeps_rows_and_cleans_headers():
    conversions = pd.DataFrame({"Taxon": ["mysida"], "Dry Weight (ug)": [12.5]})

    cleaned = clean_reference_table(conversions)

    assert list(cleaned.columns) == ["taxon", "dry_weight_ug"]
    assert list(conversions.columns) == ["Taxon", "Dry Weight (ug)"]
    assert cleaned.loc[0, "dry_weight_ug"] == 12.5
