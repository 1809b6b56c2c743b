"""Shared pytest fixtures for sonar-coord tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from sonar_coord.core import COORD_DIR_NAME, DB_FILENAME, CoordDB, write_config
from tests._factory import SCENARIO_BATCH


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's server settings out of the tests."""
    monkeypatch.delenv("SONAR_HOST_URL", raising=False)
    monkeypatch.delenv("SONAR_TOKEN", raising=False)


@pytest.fixture
def db(tmp_path: Path) -> Generator[CoordDB, None, None]:
    """Fresh CoordDB for each test."""
    d = CoordDB(tmp_path / DB_FILENAME)
    d.initialize()
    yield d
    d.close()


@pytest.fixture
def seeded_db(db: CoordDB) -> CoordDB:
    """CoordDB with the two-rule scenario loaded.

    Creates:
    - java:S2095 on FileA.java:12 and FileB.java:40 (MAJOR, BUG)
    - java:S2699 on TestA.java:7 (BLOCKER, CODE_SMELL, tag "tests")
    """
    stats = db.reconcile(SCENARIO_BATCH)
    assert stats.added == 3
    return db


@pytest.fixture
def coord_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a sonar-coord project (.sonar-coord/ with config + db).

    Returns the project root (parent of .sonar-coord/).
    """
    coord_dir = tmp_path / COORD_DIR_NAME
    coord_dir.mkdir()
    write_config(coord_dir, {"project_key": "myproj", "server_url": "http://sonar.test", "version": 1})

    d = CoordDB(coord_dir / DB_FILENAME)
    d.initialize()
    d.close()
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
