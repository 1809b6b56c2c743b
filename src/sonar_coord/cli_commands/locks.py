"""CLI commands for coordination: lock, unlock, clear-locks, locks, resolve, reopen."""

from __future__ import annotations

import json as json_mod
import sys

import click

from sonar_coord.cli_common import build_filter, fail, filter_options, get_db
from sonar_coord.db_base import StoreUnavailable
from sonar_coord.db_locks import parse_cutoff
from sonar_coord.filters import IssueFilter


def _group_filter(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
) -> IssueFilter:
    return build_filter(rule=rule, severities=severities, types=types, path=path, exclude=exclude, tags=tags)


@click.command()
@filter_options
@click.option("--holder", required=True, help="Identity claiming the group")
@click.option("--strict", is_flag=True, help="Exit 1 if any matching issue is held by someone else")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def lock(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    holder: str,
    strict: bool,
    as_json: bool,
) -> None:
    """Claim every unresolved, unlocked issue matching the filters."""
    flt = _group_filter(rule, severities, types, path, exclude, tags)
    with get_db() as db:
        try:
            result = db.lock(flt, holder)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
        except StoreUnavailable as e:
            fail(str(e), as_json=as_json, code="store_unavailable")

    if as_json:
        click.echo(json_mod.dumps(result.to_dict(), indent=2))
    else:
        click.echo(f"Locked {result.claimed} issues for {result.holder} ({flt.describe()})")
        if result.already_held:
            click.echo(f"  {result.already_held} already held by {result.holder}")
        if result.conflicts:
            click.echo(f"  {len(result.conflicts)} held by others:")
            for conflict in result.conflicts:
                click.echo(f"    {conflict.issue.key[:10]}  {conflict.issue.location}  [L:{conflict.holder}]")
    if strict and result.conflicts:
        sys.exit(1)


@click.command()
@filter_options
@click.option("--holder", required=True, help="Identity releasing its claims")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def unlock(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    holder: str,
    as_json: bool,
) -> None:
    """Release the holder's locks on matching issues. Other holders are untouched."""
    flt = _group_filter(rule, severities, types, path, exclude, tags)
    with get_db() as db:
        try:
            released = db.unlock(flt, holder)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
        except StoreUnavailable as e:
            fail(str(e), as_json=as_json, code="store_unavailable")

    if as_json:
        click.echo(json_mod.dumps({"released": released}))
    else:
        click.echo(f"Released {released} locks held by {holder.strip()}")


@click.command("clear-locks")
@click.option("--all", "clear_all", is_flag=True, help="Release every lock")
@click.option("--older-than", default=None, help="Release locks acquired before this age (30m, 2h, 1d) or ISO time")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def clear_locks(clear_all: bool, older_than: str | None, as_json: bool) -> None:
    """Force-release locks regardless of holder (crash recovery)."""
    if clear_all == (older_than is not None):
        fail("Pass exactly one of --all or --older-than", as_json=as_json)
    try:
        cutoff = parse_cutoff(older_than) if older_than is not None else None
    except ValueError as e:
        fail(str(e), as_json=as_json, code="validation_error")
    with get_db() as db:
        try:
            cleared = db.clear_locks(older_than=cutoff)
        except StoreUnavailable as e:
            fail(str(e), as_json=as_json, code="store_unavailable")

    if as_json:
        click.echo(json_mod.dumps({"cleared": cleared}))
    else:
        click.echo(f"Cleared {cleared} locks")


@click.command("locks")
@click.option("--holder", default=None, help="Only locks owned by this holder")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_locks(holder: str | None, as_json: bool) -> None:
    """List active locks with the number of issues each holds."""
    with get_db() as db:
        locks = db.list_locks(holder=holder)

    if as_json:
        click.echo(json_mod.dumps(locks, indent=2))
        return
    if not locks:
        click.echo("No active locks")
        return
    for lk in locks:
        group = IssueFilter.from_dict(json_mod.loads(lk["group_key"])).describe()
        click.echo(f"{lk['holder']:<20} {lk['issue_count']:>4} issues  since {lk['acquired_at']}  {group}")


@click.command()
@filter_options
@click.option("--holder", required=True, help="Identity recording the fix")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def resolve(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    holder: str,
    as_json: bool,
) -> None:
    """Mark matching issues resolved and release their locks."""
    flt = _group_filter(rule, severities, types, path, exclude, tags)
    with get_db() as db:
        try:
            result = db.resolve(flt, holder)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
        except StoreUnavailable as e:
            fail(str(e), as_json=as_json, code="store_unavailable")

    if as_json:
        click.echo(json_mod.dumps(result.to_dict(), indent=2))
        return
    click.echo(f"Resolved {result.count} issues ({flt.describe()})")
    if result.override:
        click.echo(f"  Warning: {len(result.override)} were locked by another holder; their locks were dropped", err=True)


@click.command()
@filter_options
@click.option("--holder", required=True, help="Identity reopening the issues")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def reopen(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    holder: str,
    as_json: bool,
) -> None:
    """Return resolved issues matching the filters to the open state."""
    flt = _group_filter(rule, severities, types, path, exclude, tags)
    with get_db() as db:
        try:
            reopened = db.reopen(flt, holder)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
        except StoreUnavailable as e:
            fail(str(e), as_json=as_json, code="store_unavailable")

    if as_json:
        click.echo(json_mod.dumps({"reopened": reopened}))
    else:
        click.echo(f"Reopened {reopened} issues")


def register(cli: click.Group) -> None:
    """Register coordination commands with the CLI group."""
    cli.add_command(lock)
    cli.add_command(unlock)
    cli.add_command(clear_locks)
    cli.add_command(list_locks)
    cli.add_command(resolve)
    cli.add_command(reopen)
