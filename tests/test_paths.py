from __future__ import annotations

from pathlib import Path

import pytest

from dietmatrix.paths import default_roots, resolve_input_path


def test_default_roots_sit_beside_the_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DIETMATRIX_DATA_ROOT", raising=False)

    assert default_roots(tmp_path) == (tmp_path / "raw_files", tmp_path / "converted_files")


def test_env_override_wins_over_config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIETMATRIX_DATA_ROOT", str(tmp_path / "shared"))

    raw, converted = default_roots(tmp_path / "configs")

    assert raw == tmp_path / "shared" / "raw_files"
    assert converted == tmp_path / "shared" / "converted_files"


def test_default_roots_without_config_use_working_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DIETMATRIX_DATA_ROOT", raising=False)
    monkeypatch.chdir(tmp_path)

    assert default_roots()[0] == Path.cwd() / "raw_files"


def test_resolve_input_path(tmp_path: Path) -> None:
    assert resolve_input_path("diet.csv", base=tmp_path / "x") == tmp_path / "x" / "diet.csv"
    assert resolve_input_path(tmp_path / "abs.csv", base=Path("ignored")) == tmp_path / "abs.csv"
    assert resolve_input_path("diet.csv") == Path("diet.csv")
