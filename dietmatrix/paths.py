"""Default locations of raw survey files and reconciled outputs.

Configs usually name ``raw_root`` and ``output_root`` themselves, relative to
the config file. When they do not, both fall back to ``raw_files/`` and
``converted_files/`` under an anchor directory: ``DIETMATRIX_DATA_ROOT`` when
set, otherwise the config's directory (or the working directory).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Tuple

DATA_ROOT_ENV = "DIETMATRIX_DATA_ROOT"
RAW_DIRNAME = "raw_files"
CONVERTED_DIRNAME = "converted_files"


def default_roots(config_dir: Path | None = None) -> Tuple[Path, Path]:
    """``(raw_root, output_root)`` used when a config leaves them out."""

    override = os.environ.get(DATA_ROOT_ENV)
    if override:
        anchor = Path(override).expanduser()
    else:
        anchor = config_dir if config_dir is not None else Path.cwd()
    return anchor / RAW_DIRNAME, anchor / CONVERTED_DIRNAME


def resolve_input_path(path: Path | str, *, base: Path | None = None) -> Path:
    candidate = Path(path).expanduser()
    if candidate.is_absolute() or base is None:
        return candidate
    return base / candidate


__all__ = ["CONVERTED_DIRNAME", "DATA_ROOT_ENV", "RAW_DIRNAME", "default_roots", "resolve_input_path"]
