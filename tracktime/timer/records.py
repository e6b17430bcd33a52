"""Flat, read-only records handed to callers of the timer core.

They are built inside a database session and carry everything a caller
needs for display, so nothing lazy-loads after the session closes.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime

from ..database.models import Timer, TimeEntry, format_duration
from .machine import current_elapsed_seconds
from .trackables import ISSUE


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class TimerRecord:
    id: int
    user_id: int
    status: str
    description: str | None
    started_at: datetime | None
    paused_at: datetime | None
    stopped_at: datetime | None
    elapsed_seconds: int                  # computed at ``as_of``
    banked_seconds: int                   # stored accumulator
    trackable_type: str
    trackable_id: int
    trackable_name: str | None
    project_id: int | None
    project_name: str | None
    project_color: str | None
    issue_id: int | None
    issue_title: str | None
    issue_priority: str | None
    as_of: datetime

    @classmethod
    def from_timer(cls, timer: Timer, now: datetime) -> "TimerRecord":
        project = timer.project
        issue = timer.issue
        if timer.trackable_type == ISSUE:
            trackable_name = issue.title if issue is not None else None
        else:
            trackable_name = project.name if project is not None else None
        return cls(
            id=timer.id,
            user_id=timer.user_id,
            status=timer.status,
            description=timer.description,
            started_at=timer.started_at,
            paused_at=timer.paused_at,
            stopped_at=timer.stopped_at,
            elapsed_seconds=current_elapsed_seconds(timer, now),
            banked_seconds=timer.elapsed_seconds or 0,
            trackable_type=timer.trackable_type,
            trackable_id=timer.trackable_id,
            trackable_name=trackable_name,
            project_id=timer.project_id,
            project_name=project.name if project is not None else None,
            project_color=project.color if project is not None else None,
            issue_id=timer.issue_id,
            issue_title=issue.title if issue is not None else None,
            issue_priority=issue.priority if issue is not None else None,
            as_of=now,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("started_at", "paused_at", "stopped_at", "as_of"):
            data[key] = _iso(data[key])
        return data


@dataclass(frozen=True)
class TimeEntryRecord:
    id: int
    user_id: int
    trackable_type: str
    trackable_id: int
    project_id: int | None
    issue_id: int | None
    description: str | None
    started_at: datetime
    ended_at: datetime
    duration_seconds: int
    formatted_duration: str
    display_name: str
    created_at: datetime | None

    @classmethod
    def from_entry(cls, entry: TimeEntry) -> "TimeEntryRecord":
        if entry.issue is not None:
            display_name = entry.issue.title
        elif entry.project is not None:
            display_name = entry.project.name
        else:
            display_name = "Unknown"
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            trackable_type=entry.trackable_type,
            trackable_id=entry.trackable_id,
            project_id=entry.project_id,
            issue_id=entry.issue_id,
            description=entry.description,
            started_at=entry.started_at,
            ended_at=entry.ended_at,
            duration_seconds=entry.duration_seconds,
            formatted_duration=format_duration(entry.duration_seconds),
            display_name=display_name,
            created_at=entry.created_at,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("started_at", "ended_at", "created_at"):
            data[key] = _iso(data[key])
        return data
