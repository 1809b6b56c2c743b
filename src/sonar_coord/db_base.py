"""Shared utilities, errors, and Protocol for DB mixins."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from sonar_coord.core import Issue, LockRef, Resolution, UpsertOutcome
    from sonar_coord.filters import IssueFilter


class StoreUnavailable(RuntimeError):
    """The persistence file cannot be opened or its write lock cannot be taken."""


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


def _chunks(items: list[str], size: int = 500) -> Iterator[list[str]]:
    """Yield slices small enough for SQLITE_MAX_VARIABLE_NUMBER."""
    for i in range(0, len(items), size):
        yield items[i : i + size]


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.query(), etc. without ``type: ignore`` on every call.
    Actual implementations are provided by CoordDB at composition time.
    """

    db_path: Path
    _conn: sqlite3.Connection | None

    @property
    def conn(self) -> sqlite3.Connection: ...

    def _timestamp(self) -> str: ...

    def _write_txn(self) -> AbstractContextManager[sqlite3.Connection]: ...

    def get(self, key: str) -> Issue | None: ...

    def query(self, flt: IssueFilter | None = None) -> list[Issue]: ...

    def prune_locks(self) -> int: ...

    def clear_lock(
        self,
        keys: list[str],
        *,
        holder: str | None = None,
        actor: str = "",
        event_type: str = "unlocked",
    ) -> int: ...

    def mark_resolved(self, keys: list[str], *, holder: str, resolution: Resolution) -> int: ...

    def upsert(self, issue: Issue) -> UpsertOutcome: ...

    def _insert_lock(self, lock: LockRef) -> None: ...

    def _cas_lock(self, key: str, lock: LockRef) -> bool: ...

    def _record_event(
        self,
        issue_key: str,
        event_type: str,
        *,
        actor: str = "",
        old_value: str | None = None,
        new_value: str | None = None,
    ) -> None: ...
