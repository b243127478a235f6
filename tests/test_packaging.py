"""Tests for project packaging metadata."""

import tomllib
from pathlib import Path

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


class TestPyproject:
    """Tests for pyproject.toml."""

    def test_python_floor_supports_extraction_filters(self) -> None:
        """The declared floor should include tarfile extraction filters (3.11.4)."""
        with PYPROJECT.open("rb") as f:
            project = tomllib.load(f)["project"]
        floor = project["requires-python"].removeprefix(">=")
        assert tuple(int(part) for part in floor.split(".")) >= (3, 11, 4)

    def test_console_script(self) -> None:
        """relc should point at the typer app."""
        with PYPROJECT.open("rb") as f:
            scripts = tomllib.load(f)["project"]["scripts"]
        assert scripts["relc"] == "release_compiler.cli:app"
