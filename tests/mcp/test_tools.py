"""MCP tool tests: query, lock, unlock, resolve, reopen, summary, locks."""

from __future__ import annotations

from sonar_coord.core import CoordDB
from sonar_coord.mcp_server import call_tool, list_tools
from tests.mcp._helpers import _parse


class TestToolListing:
    async def test_all_tools_exposed(self) -> None:
        names = {t.name for t in await list_tools()}
        assert names == {
            "query_issues",
            "lock_group",
            "unlock_group",
            "resolve_group",
            "reopen_group",
            "get_summary",
            "list_locks",
            "clear_locks",
        }

    async def test_holder_required_on_mutations(self) -> None:
        tools = {t.name: t for t in await list_tools()}
        for name in ("lock_group", "unlock_group", "resolve_group", "reopen_group"):
            assert tools[name].inputSchema["required"] == ["holder"]
        assert "required" not in tools["query_issues"].inputSchema


class TestQueryIssues:
    async def test_json(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("query_issues", {"rule": "java:S2095"}))
        assert data["total"] == 2
        assert data["has_more"] is False
        assert [i["path"] for i in data["issues"]] == ["src/main/java/FileA.java", "src/main/java/FileB.java"]

    async def test_limit(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("query_issues", {"limit": 1}))
        assert len(data["issues"]) == 1
        assert data["has_more"] is True

    async def test_non_positive_limit_rejected(self, mcp_db: CoordDB) -> None:
        for limit in (0, -1):
            data = _parse(await call_tool("query_issues", {"limit": limit}))
            assert data["code"] == "validation_error"

    async def test_limit_above_cap_is_clamped(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("query_issues", {"limit": 10_000}))
        assert len(data["issues"]) == 3
        assert data["has_more"] is False

    async def test_files(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("query_issues", {"tags": ["tests"], "format": "files"}))
        assert data == {"files": ["src/test/java/TestA.java"], "count": 1}

    async def test_prompt(self, mcp_db: CoordDB) -> None:
        text = _parse(await call_tool("query_issues", {"rule": "java:S2095", "format": "prompt"}))
        assert text.startswith("# Remediation: rule=java:S2095")

    async def test_invalid_severity(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("query_issues", {"severities": ["SEVERE"]}))
        assert data["code"] == "validation_error"


class TestLockTools:
    async def test_lock_then_conflict(self, mcp_db: CoordDB) -> None:
        first = _parse(await call_tool("lock_group", {"rule": "java:S2095", "holder": "agent-1"}))
        assert first["claimed"] == 2
        second = _parse(await call_tool("lock_group", {"rule": "java:S2095", "holder": "agent-2"}))
        assert second["claimed"] == 0
        assert {c["holder"] for c in second["conflicts"]} == {"agent-1"}

    async def test_missing_holder(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("lock_group", {"rule": "java:S2095"}))
        assert data["code"] == "validation_error"
        assert mcp_db.list_locks() == []

    async def test_unlock(self, mcp_db: CoordDB) -> None:
        await call_tool("lock_group", {"rule": "java:S2095", "holder": "agent-1"})
        data = _parse(await call_tool("unlock_group", {"rule": "java:S2095", "holder": "agent-1"}))
        assert data == {"released": 2}

    async def test_list_and_clear_locks(self, mcp_db: CoordDB) -> None:
        await call_tool("lock_group", {"rule": "java:S2095", "holder": "agent-1"})
        await call_tool("lock_group", {"rule": "java:S2699", "holder": "agent-2"})
        locks = _parse(await call_tool("list_locks", {"holder": "agent-2"}))["locks"]
        assert [lk["issue_count"] for lk in locks] == [1]

        assert _parse(await call_tool("clear_locks", {"older_than": "1h"})) == {"cleared": 0}
        assert _parse(await call_tool("clear_locks", {})) == {"cleared": 3}
        assert _parse(await call_tool("list_locks", {}))["locks"] == []

    async def test_clear_locks_bad_cutoff(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("clear_locks", {"older_than": "whenever"}))
        assert data["code"] == "validation_error"


class TestResolveTools:
    async def test_resolve_and_summary(self, mcp_db: CoordDB) -> None:
        await call_tool("lock_group", {"rule": "java:S2095", "holder": "agent-1"})
        result = _parse(await call_tool("resolve_group", {"rule": "java:S2095", "holder": "agent-1"}))
        assert result["count"] == 2
        assert len(result["via_lock"]) == 2

        summary = _parse(await call_tool("get_summary", {"include_resolved": True}))
        assert summary["rules"]["java:S2095"]["total"] == {"total": 2, "resolved": 2}
        open_only = _parse(await call_tool("get_summary", {}))
        assert list(open_only["rules"]) == ["java:S2699"]

    async def test_reopen(self, mcp_db: CoordDB) -> None:
        await call_tool("resolve_group", {"rule": "java:S2699", "holder": "agent-1"})
        data = _parse(await call_tool("reopen_group", {"rule": "java:S2699", "holder": "agent-1"}))
        assert data == {"reopened": 1}

    async def test_invalid_dimension(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("get_summary", {"dimension": "holder"}))
        assert data["code"] == "validation_error"


class TestErrors:
    async def test_unknown_tool(self, mcp_db: CoordDB) -> None:
        data = _parse(await call_tool("delete_everything", {}))
        assert data["code"] == "unknown_tool"

    async def test_no_dangling_transaction(self, mcp_db: CoordDB) -> None:
        await call_tool("lock_group", {"rule": "java:S2095", "holder": "agent-1"})
        assert not mcp_db.conn.in_transaction
