"""The client's local copy of one timer."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, asdict, fields
from datetime import datetime

from ..timer.machine import ACTIVE_STATUSES, STATUS_VALUES, TimerStatus

_TIMESTAMPS = ("started_at", "paused_at", "stopped_at")
_LONG_RUNNING = 24 * 60 * 60


@dataclass
class TimerSnapshot:
    """Mutable mirror of a server timer.

    Carries the same attributes the state machine works on, so
    ``tracktime.timer.machine`` can drive it directly.
    """

    id: int | None = None
    status: str = TimerStatus.STOPPED.value
    description: str = ""
    trackable_type: str = ""
    trackable_id: int | None = None
    trackable_name: str | None = None
    project_id: int | None = None
    project_name: str | None = None
    issue_id: int | None = None
    issue_title: str | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    stopped_at: datetime | None = None
    elapsed_seconds: int = 0
    # set while the timer only exists as a queued offline start
    local_ref: str | None = None

    @classmethod
    def from_record(cls, record) -> "TimerSnapshot":
        return cls(
            id=record.id,
            status=record.status,
            description=record.description or "",
            trackable_type=record.trackable_type,
            trackable_id=record.trackable_id,
            trackable_name=record.trackable_name,
            project_id=record.project_id,
            project_name=record.project_name,
            issue_id=record.issue_id,
            issue_title=record.issue_title,
            started_at=record.started_at,
            paused_at=record.paused_at,
            stopped_at=record.stopped_at,
            elapsed_seconds=record.banked_seconds,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "TimerSnapshot":
        """Rebuild from :meth:`to_dict` output.

        Raises ``ValueError``/``TypeError`` on structurally broken input;
        semantic problems are left for :meth:`problems`.
        """
        if not isinstance(data, dict):
            raise TypeError("timer must be an object")
        for key in ("id", "status", "trackable_type", "trackable_id"):
            if key not in data:
                raise ValueError(f"missing field {key}")
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for key in _TIMESTAMPS:
            raw = values.get(key)
            values[key] = datetime.fromisoformat(raw) if raw else None
        elapsed = values.get("elapsed_seconds", 0)
        if isinstance(elapsed, bool) or not isinstance(elapsed, int):
            raise TypeError("elapsed_seconds must be an integer")
        if values.get("description") is None:
            values["description"] = ""
        return cls(**values)

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in _TIMESTAMPS:
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_provisional(self) -> bool:
        return self.id is None and bool(self.local_ref)

    def problems(
        self, now: datetime, cached_elapsed: int = 0, pending_starts: Iterable[str] = ()
    ) -> list[str]:
        """Everything structurally wrong with this snapshot.  Empty = sane.

        ``pending_starts`` are the ids of queued offline starts; a timer
        started offline is only valid while its start is still queued.
        """
        issues = []
        if self.status not in STATUS_VALUES:
            issues.append(f"Invalid status: {self.status!r}")
        if self.status == TimerStatus.RUNNING.value and self.started_at is None:
            issues.append("Running timer without start time")
        if self.elapsed_seconds < 0 or cached_elapsed < 0:
            issues.append("Negative elapsed seconds")
        for key in _TIMESTAMPS:
            value = getattr(self, key)
            if value is not None and value > now:
                issues.append(f"{key} is in the future")
        if self.status in ACTIVE_STATUSES:
            if self.id is None and not self.local_ref:
                issues.append("Active timer without id")
            elif self.id is None and self.local_ref not in set(pending_starts):
                issues.append("Offline timer without a queued start")
            if not self.trackable_type:
                issues.append("Active timer without trackable type")
        return issues

    def runs_long(self, elapsed: int) -> bool:
        return elapsed > _LONG_RUNNING
