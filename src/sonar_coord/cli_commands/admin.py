"""CLI commands for admin: init, sync, purge."""

from __future__ import annotations

import json as json_mod
import os
from pathlib import Path

import click

from sonar_coord.cli_common import build_filter, fail, filter_options, get_coord_dir, get_db
from sonar_coord.core import (
    COORD_DIR_NAME,
    DB_FILENAME,
    DEFAULT_SERVER_URL,
    DEFAULT_TOKEN_ENV,
    CoordDB,
    read_config,
    write_config,
)
from sonar_coord.db_base import StoreUnavailable
from sonar_coord.remote import RemoteError, SonarClient, load_issues_file


@click.command()
@click.option("--project-key", default=None, help="Project key on the analysis server")
@click.option("--server-url", default=None, help=f"Analysis server URL (default: {DEFAULT_SERVER_URL})")
def init(project_key: str | None, server_url: str | None) -> None:
    """Initialize .sonar-coord/ in the current directory."""
    cwd = Path.cwd()
    coord_dir = cwd / COORD_DIR_NAME

    if coord_dir.exists():
        click.echo(f"{COORD_DIR_NAME}/ already exists in {cwd}")
        if project_key is not None or server_url is not None:
            config = read_config(coord_dir)
            if project_key is not None:
                config["project_key"] = project_key
            if server_url is not None:
                config["server_url"] = server_url
            write_config(coord_dir, config)
            click.echo("  Config updated")
        with CoordDB(coord_dir / DB_FILENAME) as db:
            db.initialize()
        return

    coord_dir.mkdir()
    # Local coordination state, never versioned.
    (coord_dir / ".gitignore").write_text("*\n")
    config: dict[str, object] = {
        "project_key": project_key or cwd.name,
        "server_url": server_url or DEFAULT_SERVER_URL,
        "token_env": DEFAULT_TOKEN_ENV,
        "version": 1,
    }
    write_config(coord_dir, config)
    with CoordDB(coord_dir / DB_FILENAME) as db:
        db.initialize()

    click.echo(f"Initialized {COORD_DIR_NAME}/ in {cwd}")
    click.echo(f"  Project key: {config['project_key']}")
    click.echo(f"  Server: {config['server_url']}")
    click.echo(f"  Database: {coord_dir / DB_FILENAME}")
    click.echo("\nNext: sonar-coord sync")


@click.command()
@click.option("--project-key", default=None, help="Override the configured project key")
@click.option(
    "--from-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Reconcile a saved JSON export instead of querying the server",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sync(project_key: str | None, from_file: Path | None, as_json: bool) -> None:
    """Fetch issues and merge them into the local store (never deletes)."""
    coord_dir = get_coord_dir()
    try:
        if from_file is not None:
            batch = load_issues_file(from_file)
        else:
            config = read_config(coord_dir)
            key = project_key or config.get("project_key")
            if not key:
                fail("No project key configured. Pass --project-key or run 'sonar-coord init --project-key'.", as_json=as_json)
            token = os.environ.get(config.get("token_env", DEFAULT_TOKEN_ENV))
            with SonarClient(config.get("server_url", DEFAULT_SERVER_URL), token=token) as client:
                batch = client.fetch_issues(key)
    except RemoteError as e:
        fail(str(e), as_json=as_json, code="remote_error")

    with get_db() as db:
        try:
            stats = db.reconcile(batch)
        except StoreUnavailable as e:
            fail(str(e), as_json=as_json, code="store_unavailable")

    if as_json:
        click.echo(json_mod.dumps(stats.to_dict(), indent=2))
        return
    click.echo(
        f"Synced {stats.total} issues: {stats.added} added, {stats.updated} updated, "
        f"{stats.unchanged} unchanged, {stats.skipped} skipped"
    )
    for err in stats.errors:
        click.echo(f"  skipped {err}", err=True)
    for warning in stats.warnings:
        click.echo(f"  warning: {warning}", err=True)


@click.command()
@filter_options
@click.option("--include-resolved", is_flag=True, help="Also delete resolved issues")
@click.option("--all", "purge_all", is_flag=True, help="Allow an empty filter (delete everything matched)")
@click.option("--force", is_flag=True, help="Delete locked issues too")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def purge(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    include_resolved: bool,
    purge_all: bool,
    force: bool,
    as_json: bool,
) -> None:
    """Delete matching issues from the local store."""
    flt = build_filter(
        rule=rule,
        severities=severities,
        types=types,
        path=path,
        exclude=exclude,
        tags=tags,
        include_resolved=include_resolved,
    )
    if not flt.group_fields() and not purge_all:
        fail("Refusing to purge without a filter; pass --all to confirm", as_json=as_json)
    with get_db() as db:
        try:
            deleted = db.purge(flt, force=force)
        except StoreUnavailable as e:
            fail(str(e), as_json=as_json, code="store_unavailable")
    if as_json:
        click.echo(json_mod.dumps({"deleted": deleted}))
    else:
        click.echo(f"Purged {deleted} issues")


def register(cli: click.Group) -> None:
    """Register admin commands with the CLI group."""
    cli.add_command(init)
    cli.add_command(sync)
    cli.add_command(purge)
