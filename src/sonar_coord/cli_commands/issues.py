"""CLI commands for reading the store: list, show, summary, events."""

from __future__ import annotations

import json as json_mod

import click

from sonar_coord.aggregate import DIMENSIONS, summarize
from sonar_coord.cli_common import build_filter, fail, filter_options, get_db
from sonar_coord.render import format_file_list, format_prompt, format_summary, format_table, markers


@click.command("list")
@filter_options
@click.option("--holder", default=None, help="Only issues locked by this holder")
@click.option("--include-resolved", is_flag=True, help="Show resolved issues too (marked [R])")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "files", "prompt"]),
    default="table",
    help="table (default), files (distinct paths), or prompt (markdown brief)",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_issues(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    holder: str | None,
    include_resolved: bool,
    output_format: str,
    as_json: bool,
) -> None:
    """List issues matching the filters, ordered by rule, path, line."""
    flt = build_filter(
        rule=rule,
        severities=severities,
        types=types,
        path=path,
        exclude=exclude,
        tags=tags,
        holder=holder,
        include_resolved=include_resolved,
    )
    with get_db() as db:
        issues = db.query(flt)

    if as_json:
        click.echo(json_mod.dumps([i.to_dict() for i in issues], indent=2))
        return
    if output_format == "files":
        for file_path in format_file_list(issues):
            click.echo(file_path)
    elif output_format == "prompt":
        click.echo(format_prompt(issues, flt), nl=False)
    else:
        for line in format_table(issues):
            click.echo(line)


@click.command()
@click.argument("key")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(key: str, as_json: bool) -> None:
    """Show one issue (full key or unique prefix) with its history."""
    with get_db() as db:
        full_key = db.find_key(key)
        issue = db.get(full_key) if full_key is not None else None
        if issue is None:
            fail(f"Not found: {key}", as_json=as_json, code="not_found")
        events = db.get_events(issue.key)

    if as_json:
        data = dict(issue.to_dict())
        data["events"] = events
        click.echo(json_mod.dumps(data, indent=2))
        return

    suffix = markers(issue)
    click.echo(f"{issue.key}  {issue.rule}  {issue.severity}  {issue.type}{'  ' + suffix if suffix else ''}")
    location = issue.location
    if issue.end_line is not None and issue.end_line != issue.line:
        location += f"-{issue.end_line}"
    click.echo(f"  Location:   {location}")
    click.echo(f"  Message:    {issue.message}")
    if issue.tags:
        click.echo(f"  Tags:       {', '.join(issue.tags)}")
    if issue.remote_key:
        click.echo(f"  Remote key: {issue.remote_key}")
    click.echo(f"  First seen: {issue.first_seen}")
    click.echo(f"  Updated:    {issue.updated_at}")
    if issue.lock is not None:
        click.echo(f"  Locked by:  {issue.lock.holder} since {issue.lock.acquired_at}")
        click.echo(f"  Group:      {issue.lock.group_key}")
    if issue.resolved:
        click.echo(f"  Resolved:   {issue.resolved_at} by {issue.resolved_by} ({issue.resolution})")
    if events:
        click.echo("  History:")
        for ev in events:
            actor = f" by {ev['actor']}" if ev["actor"] else ""
            detail = f" {ev['new_value']}" if ev["new_value"] else ""
            click.echo(f"    {ev['created_at']} {ev['event_type']}{detail}{actor}")


@click.command()
@filter_options
@click.option("--include-resolved", is_flag=True, help="Count resolved issues as well")
@click.option("--by", "dimension", type=click.Choice(DIMENSIONS), default="path", help="Second dimension (default path)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def summary(
    rule: str | None,
    severities: tuple[str, ...],
    types: tuple[str, ...],
    path: str | None,
    exclude: str | None,
    tags: tuple[str, ...],
    include_resolved: bool,
    dimension: str,
    as_json: bool,
) -> None:
    """Count issues per rule and path (or severity/type)."""
    flt = build_filter(
        rule=rule,
        severities=severities,
        types=types,
        path=path,
        exclude=exclude,
        tags=tags,
    )
    with get_db() as db:
        result = summarize(db, include_resolved=include_resolved, dimension=dimension, flt=flt)

    if as_json:
        click.echo(json_mod.dumps(result.to_dict(), indent=2))
        return
    for line in format_summary(result):
        click.echo(line)


_EVENT_TYPES = ("synced", "locked", "unlocked", "lock_cleared", "resolved", "reopened")


@click.command("events")
@click.option("--type", "event_type", type=click.Choice(_EVENT_TYPES), default=None, help="Only events of this type")
@click.option("--limit", default=20, type=click.IntRange(min=1), help="Max events (default 20)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def events_cmd(event_type: str | None, limit: int, as_json: bool) -> None:
    """Recent activity across all issues, newest first."""
    with get_db() as db:
        event_list = db.get_recent_events(limit=limit, event_type=event_type)

    if as_json:
        click.echo(json_mod.dumps(event_list, indent=2, default=str))
        return

    if not event_list:
        click.echo("No events.")
        return

    for ev in event_list:
        actor_str = f" by {ev['actor']}" if ev["actor"] else ""
        detail = f" {ev['new_value']}" if ev["new_value"] else ""
        click.echo(f"  {ev['created_at']}  {ev['event_type']:<12} {ev['issue_key']}{detail}{actor_str}")
    click.echo(f"\n{len(event_list)} events")


def register(cli: click.Group) -> None:
    """Register read commands with the CLI group."""
    cli.add_command(list_issues)
    cli.add_command(show)
    cli.add_command(summary)
    cli.add_command(events_cmd)
