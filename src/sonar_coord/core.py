"""Core database operations for the issue coordinator.

Single source of truth for all SQLite operations. Both CLI and MCP server
import from this module. No daemon: every call opens the store, runs its
own transaction, and closes it again, so concurrent worker processes
coordinate through the database file alone.

Convention-based discovery: each working directory has a `.sonar-coord/`
directory containing `issues.db` (SQLite), `config.json` (project key,
server URL) and `coord.log`.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import re
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from sonar_coord.db_base import StoreUnavailable, _chunks, _now_iso
from sonar_coord.db_events import EventsMixin
from sonar_coord.db_locks import LocksMixin
from sonar_coord.db_resolution import ResolutionMixin
from sonar_coord.db_sync import SyncMixin
from sonar_coord.filters import ORDER_BY_SQL, IssueFilter
from sonar_coord.types.core import ISOTimestamp, IssueDict, LockRefDict, ProjectConfig

logger = logging.getLogger(__name__)

Resolution = Literal["lock", "direct", "override"]
UpsertOutcome = Literal["added", "updated", "unchanged"]

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

COORD_DIR_NAME = ".sonar-coord"
DB_FILENAME = "issues.db"
CONFIG_FILENAME = "config.json"

DEFAULT_SERVER_URL = "http://localhost:9000"
DEFAULT_TOKEN_ENV = "SONAR_TOKEN"


def find_coord_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .sonar-coord/ directory.

    Returns the .sonar-coord/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / COORD_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {COORD_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(coord_dir: Path) -> ProjectConfig:
    """Read .sonar-coord/config.json. Returns defaults if missing or corrupt.

    ``SONAR_HOST_URL`` overrides the configured server URL.
    """
    config = ProjectConfig(server_url=DEFAULT_SERVER_URL, token_env=DEFAULT_TOKEN_ENV, version=1)
    config_path = coord_dir / CONFIG_FILENAME
    if config_path.exists():
        try:
            config.update(json.loads(config_path.read_text()))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
    env_url = os.environ.get("SONAR_HOST_URL")
    if env_url:
        config["server_url"] = env_url
    return config


def write_config(coord_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .sonar-coord/config.json."""
    write_atomic(coord_dir / CONFIG_FILENAME, json.dumps(config, indent=2) + "\n")


def write_atomic(path: Path, content: str) -> None:
    """Write content to path atomically via temp file + os.replace()."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

_DIGITS_RE = re.compile(r"\d+")


def message_fingerprint(message: str) -> str:
    """Normalize a message so numeric drift does not change identity."""
    text = _DIGITS_RE.sub("#", message.lower())
    return " ".join(text.split())


def compute_issue_key(
    rule: str,
    path: str,
    line: int | None,
    end_line: int | None,
    message: str,
    *,
    span: tuple[int, int] | None = None,
) -> str:
    """Stable identity for a finding, independent of the server's own issue id.

    ``span`` is the column range within the line range, when the remote
    record carries one.
    """
    parts = [rule, path, "" if line is None else str(line), "" if end_line is None else str(end_line), message_fingerprint(message)]
    if span is not None:
        parts.append(f"{span[0]}-{span[1]}")
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()[:16]


def occurrence_key(key: str, occurrence: int) -> str:
    """Key for the n-th repeat (1-based) of ``key`` within one batch.

    Findings that still collide after location and fingerprint (two
    "magic number" hits on one line with no column range) are told apart
    by their order in the batch. Occurrence 0 is the key itself.
    """
    if occurrence == 0:
        return key
    return hashlib.sha256(f"{key}\x1f#{occurrence}".encode()).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS locks (
    id          TEXT PRIMARY KEY,
    group_key   TEXT NOT NULL,
    holder      TEXT NOT NULL,
    acquired_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_locks_holder ON locks(holder);
CREATE INDEX IF NOT EXISTS idx_locks_acquired ON locks(acquired_at);

CREATE TABLE IF NOT EXISTS issues (
    key         TEXT PRIMARY KEY,
    rule        TEXT NOT NULL,
    severity    TEXT NOT NULL DEFAULT 'INFO',
    type        TEXT NOT NULL DEFAULT 'CODE_SMELL',
    path        TEXT NOT NULL,
    line        INTEGER,
    end_line    INTEGER,
    message     TEXT NOT NULL DEFAULT '',
    remote_key  TEXT DEFAULT '',
    first_seen  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    resolved    INTEGER NOT NULL DEFAULT 0,
    resolved_at TEXT,
    resolved_by TEXT,
    resolution  TEXT,
    lock_id     TEXT REFERENCES locks(id) ON DELETE SET NULL,

    CHECK (resolved IN (0, 1)),
    CHECK (resolution IS NULL OR resolution IN ('lock', 'direct', 'override')),
    CHECK (resolved = 0 OR lock_id IS NULL)
);

CREATE INDEX IF NOT EXISTS idx_issues_rule_path ON issues(rule, path, line);
CREATE INDEX IF NOT EXISTS idx_issues_lock ON issues(lock_id);
CREATE INDEX IF NOT EXISTS idx_issues_resolved ON issues(resolved);

CREATE TABLE IF NOT EXISTS issue_tags (
    issue_key TEXT NOT NULL REFERENCES issues(key) ON DELETE CASCADE,
    tag       TEXT NOT NULL,
    PRIMARY KEY (issue_key, tag)
);

CREATE INDEX IF NOT EXISTS idx_issue_tags_tag ON issue_tags(tag);

CREATE TABLE IF NOT EXISTS events (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_key  TEXT NOT NULL REFERENCES issues(key) ON DELETE CASCADE,
    event_type TEXT NOT NULL,
    actor      TEXT DEFAULT '',
    old_value  TEXT,
    new_value  TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_issue_time ON events(issue_key, created_at DESC);
"""

CURRENT_SCHEMA_VERSION = 1

_SELECT_ISSUES = "SELECT i.*, l.group_key, l.holder, l.acquired_at FROM issues i LEFT JOIN locks l ON l.id = i.lock_id"

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class LockRef:
    id: str
    group_key: str
    holder: str
    acquired_at: str

    def to_dict(self) -> LockRefDict:
        return {
            "id": self.id,
            "group_key": self.group_key,
            "holder": self.holder,
            "acquired_at": ISOTimestamp(self.acquired_at),
        }


@dataclass
class Issue:
    key: str
    rule: str
    path: str
    severity: str = "INFO"
    type: str = "CODE_SMELL"
    line: int | None = None
    end_line: int | None = None
    message: str = ""
    tags: list[str] = field(default_factory=list)
    first_seen: str = ""
    updated_at: str = ""
    remote_key: str = ""
    # Local state, never overwritten by sync
    resolved: bool = False
    resolved_at: str | None = None
    resolved_by: str | None = None
    resolution: str | None = None
    lock: LockRef | None = None

    @property
    def location(self) -> str:
        return f"{self.path}:{self.line}" if self.line is not None else self.path

    def to_dict(self) -> IssueDict:
        return {
            "key": self.key,
            "rule": self.rule,
            "severity": self.severity,
            "type": self.type,
            "path": self.path,
            "line": self.line,
            "end_line": self.end_line,
            "message": self.message,
            "tags": self.tags,
            "first_seen": ISOTimestamp(self.first_seen),
            "updated_at": ISOTimestamp(self.updated_at),
            "remote_key": self.remote_key,
            "resolved": self.resolved,
            "resolved_at": ISOTimestamp(self.resolved_at) if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "resolution": self.resolution,
            "lock": self.lock.to_dict() if self.lock else None,
        }


# ---------------------------------------------------------------------------
# CoordDB, the record store
# ---------------------------------------------------------------------------


class CoordDB(SyncMixin, LocksMixin, ResolutionMixin, EventsMixin):
    """Direct SQLite operations. Importable by CLI and MCP."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        check_same_thread: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread
        self._clock = clock

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> CoordDB:
        """Create a CoordDB by discovering .sonar-coord/ from project_path (or cwd)."""
        coord_dir = find_coord_root(project_path)
        db = cls(coord_dir / DB_FILENAME)
        db.initialize()
        return db

    def __enter__(self) -> CoordDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    isolation_level="DEFERRED",
                    check_same_thread=self._check_same_thread,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA busy_timeout=5000")
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=ON")
            except sqlite3.Error as exc:
                msg = f"Cannot open issue store {self.db_path}: {exc}"
                raise StoreUnavailable(msg) from exc
            self._conn = conn
        return self._conn

    def initialize(self) -> None:
        """Create tables for a fresh store; refuse stores from a newer version."""
        current_version = self.get_schema_version()
        if current_version > CURRENT_SCHEMA_VERSION:
            msg = f"{self.db_path} has schema v{current_version}; this sonar-coord supports v{CURRENT_SCHEMA_VERSION}"
            raise StoreUnavailable(msg)
        if current_version == 0:
            try:
                self.conn.executescript(SCHEMA_SQL)
                self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
                self.conn.commit()
            except sqlite3.OperationalError as exc:
                msg = f"Cannot initialize issue store {self.db_path}: {exc}"
                raise StoreUnavailable(msg) from exc

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        try:
            result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        except sqlite3.DatabaseError as exc:
            msg = f"Cannot read issue store {self.db_path}: {exc}"
            raise StoreUnavailable(msg) from exc
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _timestamp(self) -> str:
        if self._clock is None:
            return _now_iso()
        return self._clock().astimezone(UTC).isoformat(timespec="microseconds")

    @contextlib.contextmanager
    def _write_txn(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one ``BEGIN IMMEDIATE`` transaction.

        Taking the write lock up front means a read-then-write never has to
        upgrade its lock, so concurrent writers queue on busy_timeout instead
        of failing mid-transaction. Nested use joins the outer transaction.
        """
        conn = self.conn
        if conn.in_transaction:
            yield conn
            return
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            msg = f"Cannot acquire write lock on {self.db_path}: {exc}"
            raise StoreUnavailable(msg) from exc
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise

    # -- Reads ---------------------------------------------------------------

    def _build_issues(self, rows: list[sqlite3.Row]) -> list[Issue]:
        keys = [r["key"] for r in rows]
        tags: dict[str, list[str]] = {}
        for chunk in _chunks(keys):
            placeholders = ",".join("?" * len(chunk))
            for t in self.conn.execute(
                f"SELECT issue_key, tag FROM issue_tags WHERE issue_key IN ({placeholders}) ORDER BY tag",
                chunk,
            ):
                tags.setdefault(t["issue_key"], []).append(t["tag"])
        issues: list[Issue] = []
        for r in rows:
            lock = None
            if r["lock_id"] is not None and r["holder"] is not None:
                lock = LockRef(id=r["lock_id"], group_key=r["group_key"], holder=r["holder"], acquired_at=r["acquired_at"])
            issues.append(
                Issue(
                    key=r["key"],
                    rule=r["rule"],
                    path=r["path"],
                    severity=r["severity"],
                    type=r["type"],
                    line=r["line"],
                    end_line=r["end_line"],
                    message=r["message"],
                    tags=tags.get(r["key"], []),
                    first_seen=r["first_seen"],
                    updated_at=r["updated_at"],
                    remote_key=r["remote_key"] or "",
                    resolved=bool(r["resolved"]),
                    resolved_at=r["resolved_at"],
                    resolved_by=r["resolved_by"],
                    resolution=r["resolution"],
                    lock=lock,
                )
            )
        return issues

    def get(self, key: str) -> Issue | None:
        rows = self.conn.execute(f"{_SELECT_ISSUES} WHERE i.key = ?", (key,)).fetchall()
        if not rows:
            return None
        return self._build_issues(rows)[0]

    def find_key(self, prefix: str) -> str | None:
        """Resolve a full key or a unique key prefix. Returns None if absent or ambiguous."""
        rows = self.conn.execute(
            "SELECT key FROM issues WHERE substr(key, 1, ?) = ? LIMIT 2",
            (len(prefix), prefix),
        ).fetchall()
        if len(rows) != 1:
            return None
        key: str = rows[0]["key"]
        return key

    def query(self, flt: IssueFilter | None = None) -> list[Issue]:
        """Return the issues matching flt, ordered by rule, path, line, key."""
        where, params = (flt or IssueFilter()).where_sql()
        rows = self.conn.execute(f"{_SELECT_ISSUES}{where} {ORDER_BY_SQL}", params).fetchall()
        return self._build_issues(rows)

    def scan(self, predicate: Callable[[Issue], bool] | IssueFilter | None = None) -> list[Issue]:
        """Return every stored issue (resolved included) accepted by predicate."""
        if isinstance(predicate, IssueFilter):
            return self.query(predicate)
        issues = self.query(IssueFilter(include_resolved=True))
        if predicate is None:
            return issues
        return [i for i in issues if predicate(i)]

    def count(self, flt: IssueFilter | None = None) -> int:
        where, params = (flt or IssueFilter()).where_sql()
        row = self.conn.execute(
            f"SELECT COUNT(*) FROM issues i LEFT JOIN locks l ON l.id = i.lock_id{where}",
            params,
        ).fetchone()
        result: int = row[0]
        return result

    # -- Writes --------------------------------------------------------------

    def _replace_tags(self, key: str, tags: Iterable[str]) -> None:
        self.conn.execute("DELETE FROM issue_tags WHERE issue_key = ?", (key,))
        self.conn.executemany(
            "INSERT OR IGNORE INTO issue_tags (issue_key, tag) VALUES (?, ?)",
            [(key, t) for t in sorted(set(tags))],
        )

    def upsert(self, issue: Issue) -> UpsertOutcome:
        """Merge remote fields into the stored record with the same key.

        Local state (resolution and lock) is never touched. A new record
        starts unresolved and unlocked.
        """
        with self._write_txn():
            now = self._timestamp()
            row = self.conn.execute(
                "SELECT severity, type, message, remote_key FROM issues WHERE key = ?",
                (issue.key,),
            ).fetchone()
            if row is None:
                self.conn.execute(
                    "INSERT INTO issues (key, rule, severity, type, path, line, end_line, message, "
                    "remote_key, first_seen, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        issue.key,
                        issue.rule,
                        issue.severity,
                        issue.type,
                        issue.path,
                        issue.line,
                        issue.end_line,
                        issue.message,
                        issue.remote_key,
                        issue.first_seen or now,
                        now,
                    ),
                )
                self._replace_tags(issue.key, issue.tags)
                self._record_event(issue.key, "synced", new_value="added")
                return "added"

            old_tags = {
                t["tag"] for t in self.conn.execute("SELECT tag FROM issue_tags WHERE issue_key = ?", (issue.key,))
            }
            changed = [
                name
                for name, old, new in (
                    ("severity", row["severity"], issue.severity),
                    ("type", row["type"], issue.type),
                    ("message", row["message"], issue.message),
                    ("remote_key", row["remote_key"] or "", issue.remote_key),
                )
                if old != new
            ]
            if old_tags != set(issue.tags):
                changed.append("tags")
            if not changed:
                return "unchanged"

            self.conn.execute(
                "UPDATE issues SET severity = ?, type = ?, message = ?, remote_key = ?, updated_at = ? WHERE key = ?",
                (issue.severity, issue.type, issue.message, issue.remote_key, now, issue.key),
            )
            if "tags" in changed:
                self._replace_tags(issue.key, issue.tags)
            self._record_event(issue.key, "synced", old_value=",".join(changed), new_value="updated")
            return "updated"

    def _cas_lock(self, key: str, lock: LockRef) -> bool:
        """Claim one record iff it is unlocked and unresolved."""
        cursor = self.conn.execute(
            "UPDATE issues SET lock_id = ? WHERE key = ? AND lock_id IS NULL AND resolved = 0",
            (lock.id, key),
        )
        if cursor.rowcount == 0:
            return False
        self._record_event(key, "locked", actor=lock.holder, new_value=lock.group_key)
        return True

    def _insert_lock(self, lock: LockRef) -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO locks (id, group_key, holder, acquired_at) VALUES (?, ?, ?, ?)",
            (lock.id, lock.group_key, lock.holder, lock.acquired_at),
        )

    def set_lock(self, keys: list[str], lock: LockRef) -> int:
        """Compare-and-set ``lock`` onto each key. Records held elsewhere are skipped."""
        with self._write_txn():
            self._insert_lock(lock)
            claimed = sum(1 for key in keys if self._cas_lock(key, lock))
            self.prune_locks()
        return claimed

    def clear_lock(
        self,
        keys: list[str],
        *,
        holder: str | None = None,
        actor: str = "",
        event_type: str = "unlocked",
    ) -> int:
        """Release locks on keys; with holder, only locks that holder owns."""
        cleared = 0
        with self._write_txn():
            for key in keys:
                row = self.conn.execute(
                    "SELECT l.holder FROM issues i JOIN locks l ON l.id = i.lock_id WHERE i.key = ?",
                    (key,),
                ).fetchone()
                if row is None or (holder is not None and row["holder"] != holder):
                    continue
                self.conn.execute("UPDATE issues SET lock_id = NULL WHERE key = ?", (key,))
                self._record_event(key, event_type, actor=actor or row["holder"], old_value=row["holder"])
                cleared += 1
            self.prune_locks()
        return cleared

    def mark_resolved(self, keys: list[str], *, holder: str, resolution: Resolution) -> int:
        """Flag unresolved keys as resolved and drop their locks in the same write."""
        resolved = 0
        with self._write_txn():
            now = self._timestamp()
            for key in keys:
                row = self.conn.execute(
                    "SELECT l.holder FROM issues i LEFT JOIN locks l ON l.id = i.lock_id WHERE i.key = ? AND i.resolved = 0",
                    (key,),
                ).fetchone()
                if row is None:
                    continue
                self.conn.execute(
                    "UPDATE issues SET resolved = 1, resolved_at = ?, resolved_by = ?, resolution = ?, "
                    "lock_id = NULL WHERE key = ?",
                    (now, holder, resolution, key),
                )
                self._record_event(key, "resolved", actor=holder, old_value=row["holder"], new_value=resolution)
                resolved += 1
            self.prune_locks()
        return resolved

    def prune_locks(self) -> int:
        """Delete LockRefs that no issue references any more."""
        with self._write_txn():
            cursor = self.conn.execute(
                "DELETE FROM locks WHERE id NOT IN (SELECT lock_id FROM issues WHERE lock_id IS NOT NULL)"
            )
        return cursor.rowcount

    def purge(self, flt: IssueFilter, *, force: bool = False) -> int:
        """Delete matching records. Locked records survive unless force is set."""
        where, params = flt.where_sql()
        with self._write_txn():
            rows = self.conn.execute(
                f"SELECT i.key, i.lock_id FROM issues i LEFT JOIN locks l ON l.id = i.lock_id{where}",
                params,
            ).fetchall()
            keys = [r["key"] for r in rows if force or r["lock_id"] is None]
            for chunk in _chunks(keys):
                self.conn.execute(f"DELETE FROM issues WHERE key IN ({','.join('?' * len(chunk))})", chunk)
            self.prune_locks()
        if keys:
            logger.info("purge", extra={"op": "purge", "group": flt.canonical(), "args_data": {"force": force, "deleted": len(keys)}})
        return len(keys)
