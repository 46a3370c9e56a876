"""Public validation API."""

from .qa_checks import QAReport, run_qa_checks
from .source_schemas import get_source_schema, validate_source_table

__all__ = ["QAReport", "get_source_schema", "run_qa_checks", "validate_source_table"]
