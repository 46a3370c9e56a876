"""Side tables derived from the finished diet matrix."""

from __future__ import annotations

from typing import Iterable

import pandas as pd

from dietmatrix.ingestion.source_loader import clean_names
from dietmatrix.normalization.records import LOG_NUMBER_COLUMN, STUDY_COLUMN, make_unique_id


def filter_prey_lengths(
    lengths: pd.DataFrame,
    unique_ids: Iterable[str],
    *,
    unique_id_column: str = "unique_id",
) -> pd.DataFrame:
    """Keep only prey-length rows whose specimen made it into the matrix."""

    frame = lengths.copy()
    if unique_id_column not in frame.columns:
        missing = [column for column in (STUDY_COLUMN, LOG_NUMBER_COLUMN) if column not in frame.columns]
        if missing:
            raise KeyError(f"Prey lengths table lacks {missing} needed to derive {unique_id_column}")
        frame.insert(
            0,
            unique_id_column,
            [make_unique_id(study, log) for study, log in zip(frame[STUDY_COLUMN], frame[LOG_NUMBER_COLUMN])],
        )
    wanted = set(unique_ids)
    return frame[frame[unique_id_column].isin(wanted)].reset_index(drop=True)


def clean_reference_table(frame: pd.DataFrame) -> pd.DataFrame:
    """Copy of a lookup table (zooplankton weight conversions, length-weight equations) with clean headers."""

    cleaned = frame.copy()
    cleaned.columns = clean_names(list(cleaned.columns))
    return cleaned


def convert_station_regions(stations: pd.DataFrame) -> pd.DataFrame:
    """Clean station-region headers and expose start coordinates as lon/lat."""

    renames = {"startx": "lon", "start_x": "lon", "starty": "lat", "start_y": "lat"}
    return clean_reference_table(stations).rename(columns=renames)


def build_station_locations(matrix: pd.DataFrame, survey_stations: pd.DataFrame) -> pd.DataFrame:
    """Mean survey coordinates for every station sampled in the matrix.

    Stations with no survey coordinates are kept with null longitude/latitude.
    """

    if "station" not in matrix.columns:
        raise KeyError("Diet matrix has no 'station' column")
    survey = survey_stations.copy()
    survey.columns = clean_names(list(survey.columns))
    missing = [column for column in ("station", "latitude", "longitude") if column not in survey.columns]
    if missing:
        raise KeyError(f"Survey station table lacks column(s) {missing}")

    diet_stations = matrix[["station"]].dropna().drop_duplicates()
    diet_stations["station"] = diet_stations["station"].astype(str)
    survey = survey[["station", "latitude", "longitude"]].drop_duplicates()
    survey["station"] = survey["station"].astype(str)
    joined = diet_stations.merge(survey, on="station", how="left")
    located = (
        joined.groupby("station", sort=True)
        .agg(longitude=("longitude", "mean"), latitude=("latitude", "mean"))
        .reset_index()
    )
    return located


__all__ = [
    "build_station_locations",
    "clean_reference_table",
    "convert_station_regions",
    "filter_prey_lengths",
]
