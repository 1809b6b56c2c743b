"""Fetch issues from a SonarQube-compatible server.

Only ``fetch_issues(project_key)`` is needed by the coordinator; the raw
records it returns go straight into ``CoordDB.reconcile``, which does all
normalization and validation.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_SEARCH_PATH = "/api/issues/search"
_PAGE_SIZE = 500
# The server refuses to page beyond 10k results for one query.
_MAX_RESULTS = 10_000


class RemoteError(RuntimeError):
    """The analysis server could not be reached or answered with an error."""


class SonarClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        # Sonar tokens go in the basic-auth username with an empty password.
        auth = httpx.BasicAuth(token, "") if token else None
        self._client = httpx.Client(base_url=base_url.rstrip("/"), auth=auth, timeout=timeout, transport=transport)

    def __enter__(self) -> SonarClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _get_page(self, project_key: str, page: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "componentKeys": project_key,
            "resolved": "false",
            "p": page,
            "ps": _PAGE_SIZE,
        }
        try:
            response = self._client.get(_SEARCH_PATH, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            msg = f"{exc.response.status_code} from {exc.request.url}: {exc.response.text[:200]}"
            raise RemoteError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Cannot reach {self._client.base_url}: {exc}"
            raise RemoteError(msg) from exc
        try:
            data: dict[str, Any] = response.json()
        except json.JSONDecodeError as exc:
            msg = f"Invalid JSON from {response.request.url}"
            raise RemoteError(msg) from exc
        return data

    def fetch_issues(self, project_key: str) -> list[dict[str, Any]]:
        """Return every open issue for project_key, following pagination."""
        issues: list[dict[str, Any]] = []
        page = 1
        while True:
            data = self._get_page(project_key, page)
            batch = data.get("issues") or []
            issues.extend(batch)
            paging = data.get("paging") or {}
            total = int(paging.get("total", data.get("total", len(issues))))
            if not batch or len(issues) >= min(total, _MAX_RESULTS):
                break
            page += 1
        if total > _MAX_RESULTS:
            logger.warning("Server reports %d issues for %s; only the first %d can be fetched", total, project_key, _MAX_RESULTS)
        logger.info(
            "fetch_issues",
            extra={"op": "fetch_issues", "args_data": {"project_key": project_key, "fetched": len(issues), "pages": page}},
        )
        return issues


def load_issues_file(path: Path) -> list[Any]:
    """Read a saved export: a JSON list or a search response ``{"issues": [...]}``."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        msg = f"Cannot read issues from {path}: {exc}"
        raise RemoteError(msg) from exc
    if isinstance(data, dict):
        data = data.get("issues")
    if not isinstance(data, list):
        msg = f"{path} must contain a list of issues or an object with an 'issues' list"
        raise RemoteError(msg)
    return data
