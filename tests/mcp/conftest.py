"""Fixtures for MCP server tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from sonar_coord.core import COORD_DIR_NAME, DB_FILENAME, CoordDB, write_config
from tests._factory import SCENARIO_BATCH


@pytest.fixture
def mcp_db(tmp_path: Path) -> Generator[CoordDB, None, None]:
    """Set up a seeded CoordDB and patch the MCP module globals."""
    coord_dir = tmp_path / COORD_DIR_NAME
    coord_dir.mkdir()
    write_config(coord_dir, {"project_key": "mcp", "version": 1})

    d = CoordDB(coord_dir / DB_FILENAME)
    d.initialize()
    d.reconcile(SCENARIO_BATCH)

    import sonar_coord.mcp_server as mcp_mod

    original_db = mcp_mod.db
    mcp_mod.db = d

    yield d

    mcp_mod.db = original_db
    d.close()
