"""Structured query filters for the issue store.

An ``IssueFilter`` is the single description of a *group* of issues. The same
object drives SQL queries, in-memory predicate checks, and (through
``canonical()``) the group key recorded on every lock, so two filters that
mean the same thing always claim under the same key.

Semantics: fields are ANDed together; multi-value fields (severities, types)
are ORed internally; ``tags`` requires *all* listed tags to be present.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sonar_coord.core import Issue

VALID_SEVERITIES: tuple[str, ...] = ("INFO", "MINOR", "MAJOR", "CRITICAL", "BLOCKER")
KNOWN_TYPES: frozenset[str] = frozenset({"BUG", "VULNERABILITY", "CODE_SMELL", "SECURITY_HOTSPOT"})

# Stable human-scannable order: rule, then path, then line, ties by key.
ORDER_BY_SQL = "ORDER BY i.rule, i.path, coalesce(i.line, 0), i.key"


def _norm_values(value: Iterable[str] | str | None, *, upper: bool = False, lower: bool = False) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    out: set[str] = set()
    for v in value:
        v = v.strip()
        if not v:
            continue
        if upper:
            v = v.upper()
        elif lower:
            v = v.lower()
        out.add(v)
    return tuple(sorted(out))


def _norm_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class IssueFilter:
    severities: tuple[str, ...] = ()
    types: tuple[str, ...] = ()
    rule: str | None = None
    path: str | None = None
    exclude: str | None = None
    tags: tuple[str, ...] = ()
    holder: str | None = None
    include_resolved: bool = False

    def __post_init__(self) -> None:
        severities = _norm_values(self.severities, upper=True)
        unknown = [s for s in severities if s not in VALID_SEVERITIES]
        if unknown:
            msg = f"Invalid severity {unknown[0]!r}. Must be one of: {', '.join(VALID_SEVERITIES)}"
            raise ValueError(msg)
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "severities", severities)
        object.__setattr__(self, "types", _norm_values(self.types, upper=True))
        object.__setattr__(self, "tags", _norm_values(self.tags, lower=True))
        object.__setattr__(self, "rule", _norm_text(self.rule))
        object.__setattr__(self, "path", _norm_text(self.path))
        object.__setattr__(self, "exclude", _norm_text(self.exclude))
        object.__setattr__(self, "holder", _norm_text(self.holder))
        object.__setattr__(self, "include_resolved", bool(self.include_resolved))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IssueFilter:
        """Build a filter from loosely-typed input (MCP arguments, JSON)."""
        return cls(
            severities=data.get("severities") or data.get("severity") or (),
            types=data.get("types") or data.get("type") or (),
            rule=data.get("rule"),
            path=data.get("path"),
            exclude=data.get("exclude"),
            tags=data.get("tags") or (),
            holder=data.get("holder"),
            include_resolved=bool(data.get("include_resolved", False)),
        )

    def group_fields(self) -> dict[str, Any]:
        """The fields that define a group, with unset fields omitted."""
        fields: dict[str, Any] = {}
        if self.rule:
            fields["rule"] = self.rule
        if self.severities:
            fields["severities"] = list(self.severities)
        if self.types:
            fields["types"] = list(self.types)
        if self.path:
            fields["path"] = self.path
        if self.exclude:
            fields["exclude"] = self.exclude
        if self.tags:
            fields["tags"] = list(self.tags)
        return fields

    def canonical(self) -> str:
        """Serialize to the lock group key.

        ``holder`` and ``include_resolved`` select *views* of a group and are
        not part of its identity.
        """
        return json.dumps(self.group_fields(), sort_keys=True, separators=(",", ":"))

    def describe(self) -> str:
        fields = self.group_fields()
        if not fields:
            return "all issues"
        return " ".join(f"{k}={','.join(v) if isinstance(v, list) else v}" for k, v in fields.items())

    def where_sql(self) -> tuple[str, list[Any]]:
        """Return (WHERE clause, params) against ``issues i LEFT JOIN locks l``."""
        conditions: list[str] = []
        params: list[Any] = []
        if not self.include_resolved:
            conditions.append("i.resolved = 0")
        if self.severities:
            conditions.append(f"i.severity IN ({','.join('?' * len(self.severities))})")
            params.extend(self.severities)
        if self.types:
            conditions.append(f"i.type IN ({','.join('?' * len(self.types))})")
            params.extend(self.types)
        if self.rule:
            conditions.append("i.rule = ?")
            params.append(self.rule)
        if self.path:
            conditions.append("instr(i.path, ?) > 0")
            params.append(self.path)
        if self.exclude:
            conditions.append("instr(i.path, ?) = 0")
            params.append(self.exclude)
        if self.tags:
            conditions.append(
                "i.key IN (SELECT issue_key FROM issue_tags "
                f"WHERE tag IN ({','.join('?' * len(self.tags))}) "
                "GROUP BY issue_key HAVING COUNT(DISTINCT tag) = ?)"
            )
            params.extend(self.tags)
            params.append(len(self.tags))
        if self.holder:
            conditions.append("l.holder = ?")
            params.append(self.holder)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        return where, params

    def matches(self, issue: Issue) -> bool:
        """In-memory equivalent of ``where_sql()``."""
        if issue.resolved and not self.include_resolved:
            return False
        if self.severities and issue.severity not in self.severities:
            return False
        if self.types and issue.type not in self.types:
            return False
        if self.rule and issue.rule != self.rule:
            return False
        if self.path and self.path not in issue.path:
            return False
        if self.exclude and self.exclude in issue.path:
            return False
        if self.tags and not set(self.tags) <= set(issue.tags):
            return False
        return not (self.holder and (issue.lock is None or issue.lock.holder != self.holder))

    def replace(self, **changes: Any) -> IssueFilter:
        data = {
            "severities": self.severities,
            "types": self.types,
            "rule": self.rule,
            "path": self.path,
            "exclude": self.exclude,
            "tags": self.tags,
            "holder": self.holder,
            "include_resolved": self.include_resolved,
        }
        data.update(changes)
        return IssueFilter(**data)
