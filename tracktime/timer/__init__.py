"""Timer package."""

from .machine import (
    TimerStatus,
    ACTIVE_STATUSES,
    current_elapsed_seconds,
)
from .records import TimerRecord, TimeEntryRecord
from .reconcile import SyncReport, reconcile
from .service import TimerService, find_active, find_running, find_paused
from .trackables import ProjectRef, IssueRef, make_ref

__all__ = [
    "TimerStatus",
    "ACTIVE_STATUSES",
    "current_elapsed_seconds",
    "TimerRecord",
    "TimeEntryRecord",
    "SyncReport",
    "reconcile",
    "TimerService",
    "find_active",
    "find_running",
    "find_paused",
    "ProjectRef",
    "IssueRef",
    "make_ref",
]
