"""EventsMixin: audit trail of sync, lock, and resolution transitions.

All methods access ``self.conn`` via Python's MRO when composed into
``CoordDB``.
"""

from __future__ import annotations

from typing import cast

from sonar_coord.db_base import DBMixinProtocol
from sonar_coord.types.core import EventRecord


class EventsMixin(DBMixinProtocol):
    """Event recording and retrieval.

    Every state transition on an issue (added/updated by sync, locked,
    unlocked, cleared, resolved, reopened) leaves one row here, so a
    resolution that went through a matching lock can be told apart from
    one that did not.
    """

    def _record_event(
        self,
        issue_key: str,
        event_type: str,
        *,
        actor: str = "",
        old_value: str | None = None,
        new_value: str | None = None,
    ) -> None:
        self.conn.execute(
            "INSERT INTO events (issue_key, event_type, actor, old_value, new_value, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (issue_key, event_type, actor, old_value, new_value, self._timestamp()),
        )

    def get_events(self, issue_key: str, *, limit: int = 50) -> list[EventRecord]:
        """Events for one issue, newest first."""
        rows = self.conn.execute(
            "SELECT * FROM events WHERE issue_key = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (issue_key, limit),
        ).fetchall()
        return cast(list[EventRecord], [dict(r) for r in rows])

    def get_recent_events(self, *, limit: int = 20, event_type: str | None = None) -> list[EventRecord]:
        if event_type is None:
            rows = self.conn.execute("SELECT * FROM events ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM events WHERE event_type = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (event_type, limit),
            ).fetchall()
        return cast(list[EventRecord], [dict(r) for r in rows])
