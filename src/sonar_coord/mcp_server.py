"""MCP server for the sonar-coord issue coordinator.

Primary interface for remediation agents. Direct SQLite, no daemon.
Each tool call runs against the shared store, so any number of agent
processes can claim disjoint groups concurrently.

Usage:
    sonar-coord-mcp                              # Auto-discover .sonar-coord/ from cwd
    sonar-coord-mcp --project /path/to/project   # Explicit project root
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from sonar_coord.aggregate import DIMENSIONS, summarize
from sonar_coord.core import COORD_DIR_NAME, DB_FILENAME, CoordDB, find_coord_root
from sonar_coord.db_base import StoreUnavailable
from sonar_coord.db_locks import parse_cutoff
from sonar_coord.filters import VALID_SEVERITIES, IssueFilter
from sonar_coord.render import format_file_list, format_prompt

# Hard cap on query_issues results to keep MCP responses within token limits.
_MAX_LIST_RESULTS = 200

server = Server("sonar-coord")
db: CoordDB | None = None
_logger: logging.Logger | None = None


def _get_db() -> CoordDB:
    if db is None:
        msg = "Database not initialized"
        raise RuntimeError(msg)
    return db


def _text(content: Any) -> list[TextContent]:
    if isinstance(content, str):
        return [TextContent(type="text", text=content)]
    return [TextContent(type="text", text=json.dumps(content, indent=2, default=str))]


_FILTER_PROPERTIES: dict[str, Any] = {
    "rule": {"type": "string", "description": "Exact rule id, e.g. java:S2095"},
    "severities": {
        "type": "array",
        "items": {"type": "string", "enum": list(VALID_SEVERITIES)},
        "description": "Any of these severities",
    },
    "types": {"type": "array", "items": {"type": "string"}, "description": "Any of these issue types"},
    "path": {"type": "string", "description": "Substring of the file path"},
    "exclude": {"type": "string", "description": "Drop issues whose path contains this substring"},
    "tags": {"type": "array", "items": {"type": "string"}, "description": "All of these tags must be present"},
}

_HOLDER_PROPERTY: dict[str, Any] = {"type": "string", "description": "Your agent identity (e.g. worker-1)"}


def _group_schema(*, with_holder: bool) -> dict[str, Any]:
    properties = dict(_FILTER_PROPERTIES)
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if with_holder:
        properties["holder"] = _HOLDER_PROPERTY
        schema["required"] = ["holder"]
    return schema


def _group_filter(arguments: dict[str, Any], **overrides: Any) -> IssueFilter:
    """Build an IssueFilter from tool arguments, ignoring non-filter keys."""
    data = {k: arguments[k] for k in _FILTER_PROPERTIES if k in arguments}
    data.update(overrides)
    return IssueFilter.from_dict(data)


@server.list_tools()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_tools() -> list[Tool]:
    query_schema = _group_schema(with_holder=False)
    query_schema["properties"].update(
        {
            "holder": {"type": "string", "description": "Only issues locked by this holder"},
            "include_resolved": {"type": "boolean", "default": False, "description": "Include resolved issues"},
            "format": {
                "type": "string",
                "enum": ["json", "files", "prompt"],
                "default": "json",
                "description": "json records, distinct file paths, or a markdown remediation brief",
            },
            "limit": {
                "type": "integer",
                "default": _MAX_LIST_RESULTS,
                "minimum": 1,
                "description": f"Max records for format=json (capped at {_MAX_LIST_RESULTS})",
            },
        }
    )
    summary_schema = _group_schema(with_holder=False)
    summary_schema["properties"].update(
        {
            "include_resolved": {"type": "boolean", "default": False, "description": "Count resolved issues too"},
            "dimension": {"type": "string", "enum": list(DIMENSIONS), "default": "path"},
        }
    )
    return [
        Tool(
            name="query_issues",
            description="List issues matching a filter, ordered by rule, path, line. Use format=prompt for a remediation brief.",
            inputSchema=query_schema,
        ),
        Tool(
            name="lock_group",
            description=(
                "Claim every unresolved, unlocked issue matching the filter. Issues held by other agents "
                "are reported as conflicts and left alone. Re-run after a partial claim to pick up the rest."
            ),
            inputSchema=_group_schema(with_holder=True),
        ),
        Tool(
            name="unlock_group",
            description="Release your locks on issues matching the filter without resolving them.",
            inputSchema=_group_schema(with_holder=True),
        ),
        Tool(
            name="resolve_group",
            description="Mark issues matching the filter resolved and release their locks. Call after fixing the code.",
            inputSchema=_group_schema(with_holder=True),
        ),
        Tool(
            name="reopen_group",
            description="Return resolved issues matching the filter to the open, lockable state.",
            inputSchema=_group_schema(with_holder=True),
        ),
        Tool(
            name="get_summary",
            description="Rule x path (or severity/type) counts. With include_resolved, cells read 'N (M resolved)'.",
            inputSchema=summary_schema,
        ),
        Tool(
            name="list_locks",
            description="Active locks with holder, group, acquisition time and issue count.",
            inputSchema={
                "type": "object",
                "properties": {"holder": {"type": "string", "description": "Only locks owned by this holder"}},
            },
        ),
        Tool(
            name="clear_locks",
            description="Administrative: force-release locks regardless of holder. Omit older_than to clear all.",
            inputSchema={
                "type": "object",
                "properties": {
                    "older_than": {
                        "type": "string",
                        "description": "Only locks acquired before this age (30m, 2h, 1d) or ISO timestamp",
                    },
                },
            },
        ),
    ]


@server.call_tool()  # type: ignore[untyped-decorator]
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    tracker = _get_db()
    t0 = time.monotonic()
    log_extra = {"op": name, "holder": arguments.get("holder"), "args_data": arguments}

    try:
        result = await _dispatch(name, arguments, tracker)
    except Exception:
        if _logger:
            _logger.error("tool_error", extra=log_extra, exc_info=True)
        raise
    else:
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        if _logger:
            _logger.info("tool_call", extra={**log_extra, "duration_ms": duration_ms})
        return result
    finally:
        # Roll back anything a failed mutation left open so the next
        # write transaction starts clean.
        if tracker.conn.in_transaction:
            tracker.conn.rollback()


async def _dispatch(name: str, arguments: dict[str, Any], tracker: CoordDB) -> list[TextContent]:
    try:
        return _handle(name, arguments, tracker)
    except StoreUnavailable as e:
        return _text({"error": str(e), "code": "store_unavailable"})
    except ValueError as e:
        return _text({"error": str(e), "code": "validation_error"})


def _handle(name: str, arguments: dict[str, Any], tracker: CoordDB) -> list[TextContent]:
    match name:
        case "query_issues":
            flt = _group_filter(
                arguments,
                holder=arguments.get("holder"),
                include_resolved=arguments.get("include_resolved", False),
            )
            issues = tracker.query(flt)
            output_format = arguments.get("format", "json")
            if output_format == "files":
                return _text({"files": format_file_list(issues), "count": len(issues)})
            if output_format == "prompt":
                return _text(format_prompt(issues, flt))
            limit = int(arguments.get("limit", _MAX_LIST_RESULTS))
            if limit < 1:
                msg = f"limit must be at least 1, got {limit}"
                raise ValueError(msg)
            limit = min(limit, _MAX_LIST_RESULTS)
            return _text(
                {
                    "issues": [i.to_dict() for i in issues[:limit]],
                    "total": len(issues),
                    "has_more": len(issues) > limit,
                }
            )

        case "lock_group":
            return _text(tracker.lock(_group_filter(arguments), arguments.get("holder", "")).to_dict())

        case "unlock_group":
            released = tracker.unlock(_group_filter(arguments), arguments.get("holder", ""))
            return _text({"released": released})

        case "resolve_group":
            return _text(tracker.resolve(_group_filter(arguments), arguments.get("holder", "")).to_dict())

        case "reopen_group":
            reopened = tracker.reopen(_group_filter(arguments), arguments.get("holder", ""))
            return _text({"reopened": reopened})

        case "get_summary":
            result = summarize(
                tracker,
                include_resolved=bool(arguments.get("include_resolved", False)),
                dimension=arguments.get("dimension", "path"),
                flt=_group_filter(arguments),
            )
            return _text(result.to_dict())

        case "list_locks":
            return _text({"locks": tracker.list_locks(holder=arguments.get("holder"))})

        case "clear_locks":
            older_than = arguments.get("older_than")
            cutoff = parse_cutoff(older_than) if older_than else None
            return _text({"cleared": tracker.clear_locks(older_than=cutoff, actor="mcp")})

        case _:
            return _text({"error": f"Unknown tool: {name}", "code": "unknown_tool"})


async def _run(project_path: Path | None) -> None:
    global db, _logger

    if project_path:
        coord_dir = project_path / COORD_DIR_NAME
        if not coord_dir.is_dir():
            print(f"Error: {coord_dir} not found. Run 'sonar-coord init' first.", file=sys.stderr)
            sys.exit(1)
    else:
        try:
            coord_dir = find_coord_root()
        except FileNotFoundError:
            print(f"Error: No {COORD_DIR_NAME}/ found. Run 'sonar-coord init' first.", file=sys.stderr)
            sys.exit(1)

    db = CoordDB(coord_dir / DB_FILENAME)
    db.initialize()

    from sonar_coord.logging import setup_logging

    _logger = setup_logging(coord_dir)
    _logger.info("mcp_server_start", extra={"op": "server", "args_data": {"project": str(coord_dir.parent)}})

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    import asyncio

    parser = argparse.ArgumentParser(description="sonar-coord MCP server")
    parser.add_argument("--project", type=Path, default=None, help="Project root (auto-discovers .sonar-coord/ if omitted)")
    args = parser.parse_args()

    asyncio.run(_run(args.project))


if __name__ == "__main__":
    main()
