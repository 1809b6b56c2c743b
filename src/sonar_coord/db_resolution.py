"""ResolutionMixin: record remediation outcomes.

Resolution is a statement of fact about the code, not part of the locking
discipline: any holder may resolve any matching issue. The path taken is
kept on the record (``resolution``) and in the event log:

- ``lock``      the caller held the issue's lock
- ``direct``    the issue was unlocked
- ``override``  another holder's lock was in place and is dropped

Resolved issues stay in the store and are hidden from default views.
They are not lock targets until ``reopen`` puts them back in play.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sonar_coord.db_base import DBMixinProtocol
from sonar_coord.validation import require_holder

if TYPE_CHECKING:
    from sonar_coord.filters import IssueFilter

logger = logging.getLogger(__name__)


@dataclass
class ResolveResult:
    via_lock: list[str] = field(default_factory=list)
    direct: list[str] = field(default_factory=list)
    override: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.via_lock) + len(self.direct) + len(self.override)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "via_lock": self.via_lock,
            "direct": self.direct,
            "override": self.override,
        }


class ResolutionMixin(DBMixinProtocol):
    def resolve(self, flt: IssueFilter, holder: str) -> ResolveResult:
        """Mark every unresolved issue matching flt as resolved, releasing its lock."""
        holder = require_holder(holder)
        result = ResolveResult()
        candidates = self.query(flt.replace(include_resolved=False))
        if not candidates:
            return result

        with self._write_txn():
            for issue in candidates:
                # Classify on the current row, not the pre-transaction read.
                current = self.get(issue.key)
                if current is None or current.resolved:
                    continue
                if current.lock is None:
                    result.direct.append(current.key)
                elif current.lock.holder == holder:
                    result.via_lock.append(current.key)
                else:
                    result.override.append(current.key)
            self.mark_resolved(result.via_lock, holder=holder, resolution="lock")
            self.mark_resolved(result.direct, holder=holder, resolution="direct")
            self.mark_resolved(result.override, holder=holder, resolution="override")

        if result.override:
            logger.warning(
                "resolve overrode %d lock(s) held by other holders",
                len(result.override),
                extra={"op": "resolve", "holder": holder, "group": flt.canonical(), "args_data": {"keys": result.override}},
            )
        logger.info(
            "resolve",
            extra={
                "op": "resolve",
                "holder": holder,
                "group": flt.canonical(),
                "args_data": {
                    "via_lock": len(result.via_lock),
                    "direct": len(result.direct),
                    "override": len(result.override),
                },
            },
        )
        return result

    def reopen(self, flt: IssueFilter, holder: str) -> int:
        """Return resolved issues matching flt to the open, lockable state."""
        holder = require_holder(holder)
        keys = [i.key for i in self.query(flt.replace(include_resolved=True, holder=None)) if i.resolved]
        if not keys:
            return 0
        reopened = 0
        with self._write_txn():
            for key in keys:
                cursor = self.conn.execute(
                    "UPDATE issues SET resolved = 0, resolved_at = NULL, resolved_by = NULL, resolution = NULL "
                    "WHERE key = ? AND resolved = 1",
                    (key,),
                )
                if cursor.rowcount:
                    self._record_event(key, "reopened", actor=holder)
                    reopened += 1
        logger.info("reopen", extra={"op": "reopen", "holder": holder, "group": flt.canonical(), "args_data": {"reopened": reopened}})
        return reopened
