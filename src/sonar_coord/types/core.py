"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class ProjectConfig(TypedDict, total=False):
    """Shape of .sonar-coord/config.json."""

    project_key: str
    server_url: str
    token_env: str
    version: int


class LockRefDict(TypedDict):
    id: str
    group_key: str
    holder: str
    acquired_at: ISOTimestamp


class IssueDict(TypedDict):
    key: str
    rule: str
    severity: str
    type: str
    path: str
    line: int | None
    end_line: int | None
    message: str
    tags: list[str]
    first_seen: ISOTimestamp
    updated_at: ISOTimestamp
    remote_key: str
    resolved: bool
    resolved_at: ISOTimestamp | None
    resolved_by: str | None
    resolution: str | None
    lock: LockRefDict | None


class LockSummaryDict(TypedDict):
    id: str
    group_key: str
    holder: str
    acquired_at: ISOTimestamp
    issue_count: int


class EventRecord(TypedDict):
    id: int
    issue_key: str
    event_type: str
    actor: str
    old_value: str | None
    new_value: str | None
    created_at: ISOTimestamp
