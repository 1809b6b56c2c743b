"""Shared CLI helpers for ``cli.py`` and the ``cli_commands/*`` modules.

Provides ``get_db()``, the shared filter options, and error reporting so
command modules can import them without circular imports.
"""

from __future__ import annotations

import json as json_mod
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click

from sonar_coord.core import COORD_DIR_NAME, DB_FILENAME, CoordDB, find_coord_root
from sonar_coord.db_base import StoreUnavailable
from sonar_coord.filters import VALID_SEVERITIES, IssueFilter
from sonar_coord.logging import setup_logging

F = TypeVar("F", bound=Callable[..., Any])


def fail(message: str, *, as_json: bool = False, code: str = "error") -> NoReturn:
    """Report an error in the requested format and exit 1."""
    if as_json:
        click.echo(json_mod.dumps({"error": message, "code": code}))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def get_coord_dir() -> Path:
    """Discover .sonar-coord/ or exit with a hint to run init."""
    try:
        return find_coord_root()
    except FileNotFoundError:
        click.echo(f"No {COORD_DIR_NAME}/ found. Run 'sonar-coord init' first.", err=True)
        sys.exit(1)


def get_db() -> CoordDB:
    """Discover .sonar-coord/ and return an initialized CoordDB."""
    coord_dir = get_coord_dir()
    setup_logging(coord_dir)
    db = CoordDB(coord_dir / DB_FILENAME)
    try:
        db.initialize()
    except StoreUnavailable as exc:
        db.close()
        fail(str(exc), code="store_unavailable")
    return db


def filter_options(func: F) -> F:
    """Attach the IssueFilter options shared by list/lock/unlock/resolve/..."""
    options = [
        click.option("--rule", default=None, help="Exact rule id (e.g. java:S2095)"),
        click.option(
            "--severity",
            "severities",
            multiple=True,
            type=click.Choice(VALID_SEVERITIES, case_sensitive=False),
            help="Severity (repeatable, ORed)",
        ),
        click.option("--type", "types", multiple=True, help="Issue type (repeatable, ORed)"),
        click.option("--path", default=None, help="Substring of the file path"),
        click.option("--exclude", default=None, help="Drop issues whose path contains this"),
        click.option("--tag", "tags", multiple=True, help="Required tag (repeatable, all must match)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_filter(
    *,
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    holder: str | None = None,
    include_resolved: bool = False,
) -> IssueFilter:
    return IssueFilter(
        severities=severities,
        types=types,
        rule=rule,
        path=path,
        exclude=exclude,
        tags=tags,
        holder=holder,
        include_resolved=include_resolved,
    )
