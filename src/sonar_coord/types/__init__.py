# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, db_base.py, or any mixin to prevent circular imports.
"""Typed return-value contracts for sonar-coord core and API layers."""

from __future__ import annotations

from sonar_coord.types.core import (
    EventRecord,
    ISOTimestamp,
    IssueDict,
    LockRefDict,
    LockSummaryDict,
    ProjectConfig,
)

__all__ = [
    "EventRecord",
    "ISOTimestamp",
    "IssueDict",
    "LockRefDict",
    "LockSummaryDict",
    "ProjectConfig",
]
