"""Tests for the analysis-server client and saved-export loader."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from sonar_coord.remote import RemoteError, SonarClient, load_issues_file
from tests._factory import sonar_issue


def _pages(total: int, page_size: int) -> Any:
    """Handler serving `total` synthetic issues, `page_size` per page."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        page = int(request.url.params["p"])
        start = (page - 1) * page_size
        issues = [
            sonar_issue(component=f"proj:src/F{n}.java", start_line=n + 1, key=f"K{n}")
            for n in range(start, min(start + page_size, total))
        ]
        return httpx.Response(200, json={"paging": {"pageIndex": page, "pageSize": page_size, "total": total}, "issues": issues})

    handler.seen = seen  # type: ignore[attr-defined]
    return handler


class TestSonarClient:
    def test_follows_pagination(self) -> None:
        handler = _pages(total=1203, page_size=500)
        with SonarClient("http://sonar.test", transport=httpx.MockTransport(handler)) as client:
            issues = client.fetch_issues("proj")
        assert len(issues) == 1203
        assert [int(r.url.params["p"]) for r in handler.seen] == [1, 2, 3]
        assert handler.seen[0].url.path == "/api/issues/search"
        assert handler.seen[0].url.params["componentKeys"] == "proj"
        assert handler.seen[0].url.params["resolved"] == "false"

    def test_empty_project(self) -> None:
        handler = _pages(total=0, page_size=500)
        with SonarClient("http://sonar.test", transport=httpx.MockTransport(handler)) as client:
            assert client.fetch_issues("proj") == []

    def test_token_sent_as_basic_auth_username(self) -> None:
        handler = _pages(total=1, page_size=500)
        with SonarClient("http://sonar.test/", token="squ_abc", transport=httpx.MockTransport(handler)) as client:
            client.fetch_issues("proj")
        expected = "Basic " + base64.b64encode(b"squ_abc:").decode()
        assert handler.seen[0].headers["authorization"] == expected

    def test_no_token_no_auth_header(self) -> None:
        handler = _pages(total=1, page_size=500)
        with SonarClient("http://sonar.test", transport=httpx.MockTransport(handler)) as client:
            client.fetch_issues("proj")
        assert "authorization" not in handler.seen[0].headers

    def test_http_error_becomes_remote_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="Unauthorized"))
        with SonarClient("http://sonar.test", transport=transport) as client, pytest.raises(RemoteError, match="401"):
            client.fetch_issues("proj")

    def test_connection_error_becomes_remote_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with (
            SonarClient("http://sonar.test", transport=httpx.MockTransport(handler)) as client,
            pytest.raises(RemoteError, match="Cannot reach"),
        ):
            client.fetch_issues("proj")

    def test_invalid_json_becomes_remote_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        with SonarClient("http://sonar.test", transport=transport) as client, pytest.raises(RemoteError, match="Invalid JSON"):
            client.fetch_issues("proj")


class TestLoadIssuesFile:
    def test_list(self, tmp_path: Path) -> None:
        path = tmp_path / "issues.json"
        path.write_text(json.dumps([sonar_issue()]))
        assert len(load_issues_file(path)) == 1

    def test_search_response(self, tmp_path: Path) -> None:
        path = tmp_path / "issues.json"
        path.write_text(json.dumps({"total": 2, "issues": [sonar_issue(key="a"), sonar_issue(key="b")]}))
        assert [r["key"] for r in load_issues_file(path)] == ["a", "b"]

    def test_bad_json(self, tmp_path: Path) -> None:
        path = tmp_path / "issues.json"
        path.write_text("{not json")
        with pytest.raises(RemoteError, match="Cannot read"):
            load_issues_file(path)

    def test_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "issues.json"
        path.write_text(json.dumps({"results": []}))
        with pytest.raises(RemoteError, match="must contain a list"):
            load_issues_file(path)
