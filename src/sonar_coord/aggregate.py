"""Rule x dimension count matrix over the filtered issue view.

Built in one pass over the same ordered sequence ``CoordDB.query`` returns,
so the summary can never disagree with a listing made with the same
``include_resolved`` setting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sonar_coord.filters import IssueFilter

if TYPE_CHECKING:
    from sonar_coord.core import CoordDB, Issue

DIMENSIONS: tuple[str, ...] = ("path", "severity", "type")


@dataclass
class Cell:
    total: int = 0
    resolved: int = 0

    def add(self, issue: Issue) -> None:
        self.total += 1
        if issue.resolved:
            self.resolved += 1

    def render(self, include_resolved: bool) -> str:
        if include_resolved:
            return f"{self.total} ({self.resolved} resolved)"
        return str(self.total)

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "resolved": self.resolved}


@dataclass
class Summary:
    dimension: str
    include_resolved: bool
    matrix: dict[str, dict[str, Cell]] = field(default_factory=dict)
    rule_totals: dict[str, Cell] = field(default_factory=dict)
    total: Cell = field(default_factory=Cell)

    def cell(self, rule: str, value: str) -> Cell:
        return self.matrix.get(rule, {}).get(value, Cell())

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension": self.dimension,
            "include_resolved": self.include_resolved,
            "total": self.total.to_dict(),
            "rules": {
                rule: {
                    "total": self.rule_totals[rule].to_dict(),
                    "cells": {value: cell.to_dict() for value, cell in row.items()},
                }
                for rule, row in self.matrix.items()
            },
        }


def summarize(
    db: CoordDB,
    *,
    include_resolved: bool = False,
    dimension: str = "path",
    flt: IssueFilter | None = None,
) -> Summary:
    """Count issues per (rule, dimension value); resolved sub-counts ride along."""
    if dimension not in DIMENSIONS:
        msg = f"Invalid dimension {dimension!r}. Must be one of: {', '.join(DIMENSIONS)}"
        raise ValueError(msg)
    view = (flt or IssueFilter()).replace(include_resolved=include_resolved)
    summary = Summary(dimension=dimension, include_resolved=include_resolved)
    for issue in db.query(view):
        value = str(getattr(issue, dimension))
        summary.matrix.setdefault(issue.rule, {}).setdefault(value, Cell()).add(issue)
        summary.rule_totals.setdefault(issue.rule, Cell()).add(issue)
        summary.total.add(issue)
    return summary
