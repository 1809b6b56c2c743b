"""SyncMixin: reconcile a fetched batch of remote issues into the store.

Reconciliation only ever adds or updates. Records present locally but
absent from the batch are left alone: a fetch may be a filtered page, and
silently deleting a record could drop a claim that is still being worked.
Deletion is the separate, explicit ``CoordDB.purge``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from sonar_coord.db_base import DBMixinProtocol
from sonar_coord.filters import KNOWN_TYPES, VALID_SEVERITIES

if TYPE_CHECKING:
    from sonar_coord.core import Issue

logger = logging.getLogger(__name__)


class SyncError(ValueError):
    """A remote record is missing or has malformed identity fields."""


@dataclass
class SyncStats:
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.added + self.updated + self.unchanged + self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "total": self.total,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def _required_str(raw: Mapping[str, Any], name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"{name} must be a non-empty string (remote key {raw.get('key', '?')!r})"
        raise SyncError(msg)
    return value.strip()


def _optional_int(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an integer or null, got {type(value).__name__}"
        raise SyncError(msg)
    return value


def _path_from_component(component: str) -> str:
    """Strip the ``projectKey:`` prefix from a Sonar component key."""
    _, sep, rest = component.partition(":")
    return rest if sep else component


def normalize_remote_issue(raw: Any, *, warnings: list[str] | None = None) -> Issue:
    """Turn one raw remote record into a keyed ``Issue``.

    Accepts either Sonar's ``/api/issues/search`` shape (``component``,
    ``textRange``, ``creationDate``, ``key``) or the flat shape used by
    saved exports (``path``, ``line``, ``end_line``, ``first_seen``,
    ``remote_key``). Raises ``SyncError`` when identity fields are missing.
    """
    from sonar_coord.core import Issue, compute_issue_key

    if not isinstance(raw, Mapping):
        msg = f"remote issue must be an object, got {type(raw).__name__}"
        raise SyncError(msg)

    rule = _required_str(raw, "rule", raw.get("rule"))
    path_value = raw.get("path")
    if path_value is None and isinstance(raw.get("component"), str):
        path_value = _path_from_component(raw["component"])
    path = _required_str(raw, "path", path_value).replace("\\", "/")
    message = _required_str(raw, "message", raw.get("message"))

    text_range = raw.get("textRange") if isinstance(raw.get("textRange"), Mapping) else {}
    line = _optional_int("line", raw.get("line", text_range.get("startLine")))
    end_line = _optional_int("end_line", raw.get("end_line", text_range.get("endLine")))
    if end_line is None:
        end_line = line
    start_offset = _optional_int("start_offset", raw.get("start_offset", text_range.get("startOffset")))
    end_offset = _optional_int("end_offset", raw.get("end_offset", text_range.get("endOffset")))
    span = (start_offset, end_offset) if start_offset is not None and end_offset is not None else None

    severity_value = raw.get("severity") or "INFO"
    if not isinstance(severity_value, str):
        msg = f"severity must be a string, got {type(severity_value).__name__}"
        raise SyncError(msg)
    severity = severity_value.strip().upper()
    if severity not in VALID_SEVERITIES:
        warn_msg = f"Unknown severity {severity_value!r} for {path} (rule={rule!r}), mapped to 'INFO'"
        logger.warning("Severity fallback: %r -> 'INFO' for %s (rule=%s)", severity_value, path, rule)
        if warnings is not None:
            warnings.append(warn_msg)
        severity = "INFO"

    issue_type = raw.get("type") or "CODE_SMELL"
    if not isinstance(issue_type, str):
        msg = f"type must be a string, got {type(issue_type).__name__}"
        raise SyncError(msg)
    issue_type = issue_type.strip().upper()
    if issue_type not in KNOWN_TYPES:
        logger.warning("Unknown issue type %r for %s (rule=%s), kept as-is", issue_type, path, rule)
        if warnings is not None:
            warnings.append(f"Unknown type {issue_type!r} for {path} (rule={rule!r}), kept as-is")

    tags = raw.get("tags") or []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        msg = "tags must be a list of strings"
        raise SyncError(msg)

    return Issue(
        key=compute_issue_key(rule, path, line, end_line, message, span=span),
        rule=rule,
        path=path,
        severity=severity,
        type=issue_type,
        line=line,
        end_line=end_line,
        message=message,
        tags=sorted({t.strip().lower() for t in tags if t.strip()}),
        first_seen=str(raw.get("first_seen") or raw.get("creationDate") or ""),
        remote_key=str(raw.get("remote_key") or raw.get("key") or ""),
    )


class SyncMixin(DBMixinProtocol):
    """Batch reconciliation on top of the store's ``upsert``."""

    def reconcile(self, batch: Iterable[Any]) -> SyncStats:
        """Upsert every well-formed record of batch; count and skip the rest.

        The whole batch is one write transaction: other workers see either
        none of it or all of it, and a concurrent lock never interleaves
        with a half-merged record.

        Records that share a key within the batch are distinct findings and
        get occurrence keys in batch order. A record whose remote key was
        already seen in the batch is a repeat (e.g. overlapping pages) and
        is skipped.
        """
        from sonar_coord.core import occurrence_key

        stats = SyncStats()
        occurrences: dict[str, int] = {}
        seen_remote: set[str] = set()
        t0 = time.monotonic()
        with self._write_txn():
            for index, raw in enumerate(batch):
                try:
                    issue = normalize_remote_issue(raw, warnings=stats.warnings)
                except SyncError as exc:
                    stats.skipped += 1
                    stats.errors.append(f"batch[{index}]: {exc}")
                    logger.warning("Skipping malformed remote issue batch[%d]: %s", index, exc)
                    continue
                if issue.remote_key:
                    if issue.remote_key in seen_remote:
                        stats.skipped += 1
                        stats.warnings.append(f"batch[{index}]: duplicate remote issue {issue.remote_key!r}")
                        continue
                    seen_remote.add(issue.remote_key)
                n = occurrences.get(issue.key, 0)
                occurrences[issue.key] = n + 1
                if n:
                    issue = replace(issue, key=occurrence_key(issue.key, n))
                outcome = self.upsert(issue)
                setattr(stats, outcome, getattr(stats, outcome) + 1)
        logger.info(
            "reconcile",
            extra={
                "op": "reconcile",
                "args_data": {k: v for k, v in stats.to_dict().items() if isinstance(v, int)},
                "duration_ms": round((time.monotonic() - t0) * 1000, 1),
            },
        )
        return stats
