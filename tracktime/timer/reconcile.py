"""Merging a client-reported timer snapshot into server state.

The server exposes exactly one sync primitive and it is biased towards the
client: the reported status drives the transition, and for a running timer
a reported elapsed value replaces the server's figure outright.  Smarter
strategies (local-wins, merge) live in the client mirror and are built on
top of this.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..errors import ValidationError
from . import machine
from .machine import TimerStatus

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncReport:
    timer_id: int
    status: TimerStatus
    elapsed_seconds: int | None = None

    @classmethod
    def parse(cls, timer_id, status, elapsed_seconds=None) -> "SyncReport":
        """Validate raw client input.  Nothing is looked up or touched."""
        if isinstance(timer_id, bool) or not isinstance(timer_id, int):
            raise ValidationError("timer_id must be an integer", field="timer_id")
        parsed_status = machine.parse_status(status)
        if elapsed_seconds is not None:
            if isinstance(elapsed_seconds, bool) or not isinstance(elapsed_seconds, int):
                raise ValidationError(
                    "elapsed_seconds must be an integer", field="elapsed_seconds"
                )
            if elapsed_seconds < 0:
                raise ValidationError(
                    "elapsed_seconds must be at least 0", field="elapsed_seconds"
                )
        return cls(timer_id, parsed_status, elapsed_seconds)

    @classmethod
    def from_dict(cls, data: dict) -> "SyncReport":
        if not isinstance(data, dict):
            raise ValidationError("sync payload must be an object")
        for key in ("timer_id", "status"):
            if key not in data:
                raise ValidationError(f"{key} is required", field=key)
        return cls.parse(data["timer_id"], data["status"], data.get("elapsed_seconds"))


@dataclass(frozen=True)
class ReconcileOutcome:
    transition: str | None    # "pause" | "resume" | "stop" | None
    rebaselined: bool

    @property
    def stopped(self) -> bool:
        return self.transition == "stop"


def reconcile(timer, report: SyncReport, now: datetime) -> ReconcileOutcome:
    """Apply ``report`` to ``timer`` in place.

    The caller owns persistence, including writing the TimeEntry when the
    outcome says the timer was stopped.

    * running vs paused  → resume
    * running vs stopped → nothing; a stopped timer never comes back
    * paused vs running  → pause
    * stopped vs active  → stop
    * afterwards, if running and an elapsed value came in, re-baseline
    """
    transition = None
    current = timer.status

    if report.status is TimerStatus.RUNNING:
        if current == TimerStatus.PAUSED.value and machine.resume(timer, now):
            transition = "resume"
    elif report.status is TimerStatus.PAUSED:
        if current == TimerStatus.RUNNING.value and machine.pause(timer, now):
            transition = "pause"
    elif report.status is TimerStatus.STOPPED:
        if machine.is_active(timer):
            machine.stop(timer, now)
            transition = "stop"

    rebaselined = False
    if report.elapsed_seconds is not None and machine.is_running(timer):
        before = machine.current_elapsed_seconds(timer, now)
        rebaselined = machine.rebaseline(timer, now, report.elapsed_seconds)
        if before != report.elapsed_seconds:
            log.info(
                "Timer %s re-baselined from %ss to client-reported %ss",
                timer.id, before, report.elapsed_seconds,
            )

    return ReconcileOutcome(transition, rebaselined)
