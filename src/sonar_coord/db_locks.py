"""LocksMixin: exclusive claims over filter-defined groups of issues.

State per issue: UNLOCKED -> LOCKED(group, holder) -> UNLOCKED.
A claim is a compare-and-set on each matching record, so a lock call
never overwrites another holder's claim; it reports a conflict instead.
Locks never expire on their own. Reclaiming a crashed holder's claims is
always an explicit ``clear_locks`` call.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sonar_coord.db_base import DBMixinProtocol
from sonar_coord.types.core import ISOTimestamp, LockSummaryDict
from sonar_coord.validation import require_holder

if TYPE_CHECKING:
    from sonar_coord.core import Issue
    from sonar_coord.filters import IssueFilter

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(\d+)\s*([smhd])$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


@dataclass
class LockConflict:
    """An issue the caller wanted but another holder already owns."""

    issue: Issue
    holder: str

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.issue.key, "location": self.issue.location, "rule": self.issue.rule, "holder": self.holder}


@dataclass
class LockResult:
    group_key: str
    holder: str
    claimed_keys: list[str] = field(default_factory=list)
    already_held: int = 0
    conflicts: list[LockConflict] = field(default_factory=list)

    @property
    def claimed(self) -> int:
        return len(self.claimed_keys)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_key": self.group_key,
            "holder": self.holder,
            "claimed": self.claimed,
            "claimed_keys": self.claimed_keys,
            "already_held": self.already_held,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


def to_utc_iso(value: datetime | str) -> str:
    """Normalize a cutoff to the timestamp format stored in ``locks``."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_cutoff(value: str, *, now: datetime | None = None) -> datetime:
    """Turn an age (``30m``, ``2h``, ``1d``) or an ISO timestamp into a UTC cutoff."""
    match = _DURATION_RE.match(value.strip().lower())
    if match:
        amount, unit = match.groups()
        return (now or datetime.now(UTC)) - timedelta(**{_DURATION_UNITS[unit]: int(amount)})
    try:
        cutoff = datetime.fromisoformat(value.strip())
    except ValueError:
        msg = f"Invalid cutoff {value!r}: use a duration like 30m, 2h, 1d or an ISO timestamp"
        raise ValueError(msg) from None
    return cutoff if cutoff.tzinfo is not None else cutoff.replace(tzinfo=UTC)


class LocksMixin(DBMixinProtocol):
    """Lock, unlock, and administrative reclamation."""

    def lock(self, flt: IssueFilter, holder: str) -> LockResult:
        """Claim every unresolved, unlocked issue matching flt for holder.

        Issues the holder already owns count as ``already_held``; issues owned
        by someone else come back as conflicts and are not touched. Re-running
        the same call after a partial claim picks up only the remainder.
        """
        from sonar_coord.core import LockRef

        holder = require_holder(holder)
        flt = flt.replace(include_resolved=False, holder=None)
        result = LockResult(group_key=flt.canonical(), holder=holder)
        candidates = self.query(flt)
        if not candidates:
            return result

        with self._write_txn():
            # acquired_at is taken under the write lock, not before queueing on it.
            lock_ref = LockRef(
                id=uuid.uuid4().hex,
                group_key=result.group_key,
                holder=holder,
                acquired_at=self._timestamp(),
            )
            self._insert_lock(lock_ref)
            for issue in candidates:
                if self._cas_lock(issue.key, lock_ref):
                    result.claimed_keys.append(issue.key)
                    continue
                # Lost the CAS: re-read under the write lock to see who won.
                current = self.get(issue.key)
                if current is None or current.resolved or current.lock is None:
                    continue
                if current.lock.holder == holder:
                    result.already_held += 1
                else:
                    result.conflicts.append(LockConflict(issue=current, holder=current.lock.holder))
            self.prune_locks()

        logger.info(
            "lock",
            extra={
                "op": "lock",
                "holder": holder,
                "group": result.group_key,
                "args_data": {
                    "claimed": result.claimed,
                    "already_held": result.already_held,
                    "conflicts": len(result.conflicts),
                },
            },
        )
        return result

    def unlock(self, flt: IssueFilter, holder: str) -> int:
        """Release holder's locks on issues matching flt. Other holders are untouched."""
        holder = require_holder(holder)
        keys = [i.key for i in self.query(flt.replace(include_resolved=False, holder=holder))]
        if not keys:
            return 0
        released = self.clear_lock(keys, holder=holder, actor=holder)
        logger.info("unlock", extra={"op": "unlock", "holder": holder, "group": flt.canonical(), "args_data": {"released": released}})
        return released

    def clear_locks(self, *, older_than: datetime | str | None = None, actor: str = "admin") -> int:
        """Force-release locks regardless of holder.

        With no cutoff every lock is released. With ``older_than`` only locks
        acquired strictly before the cutoff are released. This is the recovery path
        for a holder that died without unlocking.
        """
        with self._write_txn():
            if older_than is None:
                rows = self.conn.execute("SELECT key FROM issues WHERE lock_id IS NOT NULL").fetchall()
                cutoff = None
            else:
                cutoff = to_utc_iso(older_than)
                rows = self.conn.execute(
                    "SELECT i.key FROM issues i JOIN locks l ON l.id = i.lock_id WHERE l.acquired_at < ?",
                    (cutoff,),
                ).fetchall()
            cleared = self.clear_lock([r["key"] for r in rows], actor=actor, event_type="lock_cleared")
        logger.info("clear_locks", extra={"op": "clear_locks", "args_data": {"older_than": cutoff, "cleared": cleared}})
        return cleared

    def list_locks(self, *, holder: str | None = None) -> list[LockSummaryDict]:
        """Active LockRefs with the number of issues each one holds."""
        params: list[Any] = []
        where = ""
        if holder is not None:
            where = " WHERE l.holder = ?"
            params.append(holder)
        rows = self.conn.execute(
            "SELECT l.id, l.group_key, l.holder, l.acquired_at, COUNT(i.key) AS issue_count "
            f"FROM locks l JOIN issues i ON i.lock_id = l.id{where} "
            "GROUP BY l.id ORDER BY l.acquired_at, l.id",
            params,
        ).fetchall()
        return [
            LockSummaryDict(
                id=r["id"],
                group_key=r["group_key"],
                holder=r["holder"],
                acquired_at=ISOTimestamp(r["acquired_at"]),
                issue_count=r["issue_count"],
            )
            for r in rows
        ]
