"""Writers for the diet matrix and the tables derived from it."""

from .derived_tables import (
    build_station_locations,
    clean_reference_table,
    convert_station_regions,
    filter_prey_lengths,
)
from .matrix_writer import write_csv_atomic, write_json_atomic, write_parquet_atomic

__all__ = [
    "build_station_locations",
    "clean_reference_table",
    "convert_station_regions",
    "filter_prey_lengths",
    "write_csv_atomic",
    "write_json_atomic",
    "write_parquet_atomic",
]
