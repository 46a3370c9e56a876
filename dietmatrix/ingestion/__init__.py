"""Source table loading."""

from .source_loader import TableSpec, clean_names, load_source_table

__all__ = ["TableSpec", "clean_names", "load_source_table"]
