"""Turning a finished timer into its TimeEntry."""

from __future__ import annotations

from ..database.models import Timer, TimeEntry
from .machine import TimerStatus


def entry_from_timer(timer: Timer) -> TimeEntry:
    """Build the (unsaved) entry for a timer that has just stopped.

    ``duration_seconds`` is the banked total, not ``ended_at - started_at``:
    paused stretches are not tracked time.
    """
    if timer.status != TimerStatus.STOPPED.value or timer.stopped_at is None:
        raise ValueError(f"timer {timer.id} is not stopped")
    return TimeEntry(
        user_id=timer.user_id,
        trackable_type=timer.trackable_type,
        trackable_id=timer.trackable_id,
        project_id=timer.project_id,
        issue_id=timer.issue_id,
        started_at=timer.started_at or timer.stopped_at,
        ended_at=timer.stopped_at,
        duration_seconds=timer.elapsed_seconds or 0,
        description=timer.description,
        created_at=timer.stopped_at,
    )
