"""Fixtures for CLI interface tests."""

from __future__ import annotations

import json
import os
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from sonar_coord.cli import cli
from tests._factory import SCENARIO_BATCH


@pytest.fixture
def cli_in_project(tmp_path: Path, cli_runner: CliRunner) -> Generator[tuple[CliRunner, Path], None, None]:
    """Initialize a sonar-coord project in tmp_path and return (runner, project_root)."""
    original_cwd = os.getcwd()
    os.chdir(str(tmp_path))
    result = cli_runner.invoke(cli, ["init", "--project-key", "myproj"])
    assert result.exit_code == 0, result.output
    yield cli_runner, tmp_path
    os.chdir(original_cwd)


@pytest.fixture
def synced_project(cli_in_project: tuple[CliRunner, Path]) -> tuple[CliRunner, Path]:
    """A project with the two-rule scenario synced from a saved export."""
    runner, root = cli_in_project
    export = root / "export.json"
    export.write_text(json.dumps({"issues": SCENARIO_BATCH}))
    result = runner.invoke(cli, ["sync", "--from-file", str(export)])
    assert result.exit_code == 0, result.output
    return runner, root
