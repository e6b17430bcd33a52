"""Timer state machine for TrackTime.

States
------
STOPPED   Fresh (never started) or finished.  A finished timer is terminal:
          the next session gets a brand-new row.
RUNNING   Counting.  Live elapsed = banked + (now - started_at).
PAUSED    Frozen.  Live elapsed = banked.

Transitions
-----------
STOPPED (fresh) → RUNNING     (start)
RUNNING → PAUSED              (pause)    banks now - started_at
PAUSED → RUNNING              (resume)   started_at = now, bank kept
RUNNING | PAUSED → STOPPED    (stop)     banks if running

The functions here work on anything that carries the timer attributes
(``status``, ``started_at``, ``paused_at``, ``stopped_at``,
``elapsed_seconds``): the ORM ``Timer`` on the server and
``TimerSnapshot`` in the client mirror both go through them, so the two
sides can never disagree on the arithmetic.

Banking happens exactly once per RUNNING → not-RUNNING edge, always
together with the status change, so it can't double count.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from ..clock import whole_seconds
from ..errors import NotFoundError, ValidationError


class TimerStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


ACTIVE_STATUSES = (TimerStatus.RUNNING.value, TimerStatus.PAUSED.value)
STATUS_VALUES = tuple(s.value for s in TimerStatus)


def parse_status(value) -> TimerStatus:
    """``"running"`` → ``TimerStatus.RUNNING``; anything else is invalid."""
    if isinstance(value, TimerStatus):
        return value
    if not isinstance(value, str) or value not in STATUS_VALUES:
        raise ValidationError(
            f"status must be one of {', '.join(STATUS_VALUES)}", field="status"
        )
    return TimerStatus(value)


# ── reads ─────────────────────────────────────────────────────────────────


def is_active(timer) -> bool:
    return timer.status in ACTIVE_STATUSES


def is_running(timer) -> bool:
    return timer.status == TimerStatus.RUNNING.value


def current_elapsed_seconds(timer, now: datetime) -> int:
    """Banked seconds plus the live segment, if running.  Pure."""
    elapsed = timer.elapsed_seconds or 0
    if is_running(timer) and timer.started_at is not None:
        elapsed += whole_seconds(now - timer.started_at)
    return elapsed


# ── transitions ───────────────────────────────────────────────────────────


def start(timer, now: datetime) -> bool:
    """Begin counting.  Only valid on a fresh (never stopped) timer."""
    if timer.status != TimerStatus.STOPPED.value or timer.stopped_at is not None:
        return False
    timer.started_at = now
    timer.paused_at = None
    timer.stopped_at = None
    timer.elapsed_seconds = timer.elapsed_seconds or 0
    timer.status = TimerStatus.RUNNING.value
    return True


def pause(timer, now: datetime) -> bool:
    """Bank the running segment and freeze.  No-op unless running."""
    if not is_running(timer):
        return False
    _bank(timer, now)
    timer.paused_at = now
    timer.status = TimerStatus.PAUSED.value
    return True


def resume(timer, now: datetime) -> bool:
    """Restart the wall-clock baseline.  No-op unless paused."""
    if timer.status != TimerStatus.PAUSED.value:
        return False
    timer.started_at = now
    timer.paused_at = None
    timer.status = TimerStatus.RUNNING.value
    return True


def stop(timer, now: datetime) -> int:
    """Finish the session.  Returns the final banked seconds.

    Raises :class:`NotFoundError` when the timer is not active; there is
    nothing left to stop.
    """
    if not is_active(timer):
        raise NotFoundError("No active timer found")
    _bank(timer, now)
    timer.stopped_at = now
    timer.paused_at = None
    timer.status = TimerStatus.STOPPED.value
    return timer.elapsed_seconds


def rebaseline(timer, now: datetime, elapsed_seconds: int) -> bool:
    """Make a running timer read exactly ``elapsed_seconds`` right now.

    The reported value replaces whatever was banked, even when smaller.
    """
    if not is_running(timer):
        return False
    timer.started_at = now - timedelta(seconds=elapsed_seconds)
    timer.elapsed_seconds = 0
    return True


def _bank(timer, now: datetime) -> None:
    if is_running(timer) and timer.started_at is not None:
        timer.elapsed_seconds = (
            (timer.elapsed_seconds or 0) + whole_seconds(now - timer.started_at)
        )
