"""The timer core's public operations.

``TimerService`` is what the (out of tree) HTTP layer calls.  Every
operation is one short unit of work in its own database session and
returns plain records.  Nothing here ticks: elapsed time is recomputed
from stored timestamps on every read.

Operations that read-then-mutate a user's active timer are serialized per
user three ways:

1. an in-process lock per user id,
2. ``SELECT ... FOR UPDATE`` on the user's row (ignored by SQLite),
3. the partial unique index ``uq_timers_one_active_per_user``, which is
   the final word when two writers race anyway.

A writer that loses at (2) or (3) gets ``OperationalError`` /
``IntegrityError``; the operation is retried a few times and then
surfaces as :class:`ConflictError`.
"""

from __future__ import annotations

import logging
import threading
import time
import weakref
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session as OrmSession

from ..clock import SystemClock
from ..database.db import get_session
from ..database.models import User, Timer, TimeEntry
from ..errors import ConflictError, NotFoundError, ValidationError
from ..settings import Settings, load_settings
from . import machine
from .entries import entry_from_timer
from .machine import ACTIVE_STATUSES, TimerStatus
from .reconcile import SyncReport, reconcile
from .records import TimerRecord, TimeEntryRecord
from .trackables import TRACKABLE_TYPES, make_ref, resolve

log = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 1000
MAX_ENTRIES_LIMIT = 100

# ── per-user serialization ────────────────────────────────────────────────

class _UserLock:
    """Mutex for one user's timer.  Weak-referenceable, unlike a bare Lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> "_UserLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self._lock.release()


# an entry lives only while some caller still holds a reference to it
_user_locks: weakref.WeakValueDictionary[int, _UserLock] = weakref.WeakValueDictionary()
_user_locks_guard = threading.Lock()


def _user_lock(user_id: int) -> _UserLock:
    with _user_locks_guard:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = _user_locks[user_id] = _UserLock()
        return lock


# ── active-timer guard ────────────────────────────────────────────────────


def find_active(db: OrmSession, user_id: int) -> Timer | None:
    """The user's running or paused timer, if any."""
    return (
        db.query(Timer)
        .filter(Timer.user_id == user_id, Timer.status.in_(ACTIVE_STATUSES))
        .order_by(Timer.id.desc())
        .first()
    )


def find_running(db: OrmSession, user_id: int) -> Timer | None:
    return (
        db.query(Timer)
        .filter(Timer.user_id == user_id, Timer.status == TimerStatus.RUNNING.value)
        .order_by(Timer.id.desc())
        .first()
    )


def find_paused(db: OrmSession, user_id: int) -> Timer | None:
    return (
        db.query(Timer)
        .filter(Timer.user_id == user_id, Timer.status == TimerStatus.PAUSED.value)
        .order_by(Timer.id.desc())
        .first()
    )


# ── service ───────────────────────────────────────────────────────────────


class TimerService:
    """Start, pause, resume, stop and sync a user's timer.

    ::

        service = TimerService()
        timer = service.start(user_id, "issue", 7, "Fix the login form")
        service.pause(user_id)
        entry = service.stop(user_id)
    """

    def __init__(self, clock=None, settings: Settings | None = None) -> None:
        settings = settings or load_settings()
        self._clock = clock or SystemClock()
        self._lock_retries = max(1, settings.lock_retries)
        self._lock_retry_delay = settings.lock_retry_delay
        self._default_limit = settings.recent_entries_limit

    @property
    def clock(self):
        return self._clock

    # ══════════════════════════════════════════════════════════════════
    #  READS
    # ══════════════════════════════════════════════════════════════════

    def get_active(self, user_id: int) -> TimerRecord | None:
        """The active timer with its elapsed time computed now."""
        with get_session() as db:
            timer = find_active(db, user_id)
            if timer is None:
                return None
            return TimerRecord.from_timer(timer, self._clock.now())

    def status(self, user_id: int) -> dict:
        """Compact status for polling clients."""
        with get_session() as db:
            timer = find_active(db, user_id)
            if timer is None:
                return {"status": "none", "elapsed_seconds": 0}
            return {
                "status": timer.status,
                "elapsed_seconds": machine.current_elapsed_seconds(
                    timer, self._clock.now()
                ),
                "timer_id": timer.id,
            }

    def recent_entries(self, user_id: int, limit: int | None = None) -> list[TimeEntryRecord]:
        """Newest first."""
        limit = self._default_limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError("limit must be an integer", field="limit")
        if not 1 <= limit <= MAX_ENTRIES_LIMIT:
            raise ValidationError(
                f"limit must be between 1 and {MAX_ENTRIES_LIMIT}", field="limit"
            )
        with get_session() as db:
            entries = (
                db.query(TimeEntry)
                .filter(TimeEntry.user_id == user_id)
                .order_by(TimeEntry.created_at.desc(), TimeEntry.id.desc())
                .limit(limit)
                .all()
            )
            return [TimeEntryRecord.from_entry(e) for e in entries]

    def entries_between(
        self,
        user_id: int,
        start: datetime,
        end: datetime,
        trackable_type: str | None = None,
    ) -> list[TimeEntryRecord]:
        """Entries whose ``started_at`` falls in ``[start, end]``, oldest first."""
        if end < start:
            raise ValidationError("end must not be before start", field="end")
        if trackable_type is not None and trackable_type not in TRACKABLE_TYPES:
            raise ValidationError(
                "trackable_type must be 'project' or 'issue'", field="trackable_type"
            )
        with get_session() as db:
            query = db.query(TimeEntry).filter(
                TimeEntry.user_id == user_id,
                TimeEntry.started_at.between(start, end),
            )
            if trackable_type is not None:
                query = query.filter(TimeEntry.trackable_type == trackable_type)
            entries = query.order_by(TimeEntry.started_at, TimeEntry.id).all()
            return [TimeEntryRecord.from_entry(e) for e in entries]

    def entries_today(self, user_id: int) -> list[TimeEntryRecord]:
        now = self._clock.now()
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.entries_between(user_id, start, start + timedelta(days=1, microseconds=-1))

    def entries_this_week(self, user_id: int) -> list[TimeEntryRecord]:
        """Monday 00:00 through Sunday 23:59:59."""
        now = self._clock.now()
        start = (now - timedelta(days=now.weekday())).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return self.entries_between(user_id, start, start + timedelta(days=7, microseconds=-1))

    # ══════════════════════════════════════════════════════════════════
    #  MUTATIONS
    # ══════════════════════════════════════════════════════════════════

    def start(
        self,
        user_id: int,
        trackable_type: str,
        trackable_id: int,
        description: str | None = None,
    ) -> TimerRecord:
        """Start a new timer, stopping (and logging) any active one first."""
        ref = make_ref(trackable_type, trackable_id)
        if description is not None:
            if not isinstance(description, str):
                raise ValidationError("description must be text", field="description")
            if len(description) > MAX_DESCRIPTION_LENGTH:
                raise ValidationError(
                    f"description may be at most {MAX_DESCRIPTION_LENGTH} characters",
                    field="description",
                )

        def op(db: OrmSession) -> TimerRecord:
            now = self._clock.now()
            target = resolve(db, ref, user_id)

            previous = find_active(db, user_id)
            if previous is not None:
                entry = self._finish(db, previous, now)
                log.info(
                    "User %s: auto-stopped timer %s (%ss) before starting a new one",
                    user_id, previous.id, entry.duration_seconds,
                )

            timer = Timer(
                user_id=user_id,
                trackable_type=ref.type,
                trackable_id=ref.id,
                project_id=target.project_id,
                issue_id=target.issue_id,
                description=description,
                status=TimerStatus.STOPPED.value,
                elapsed_seconds=0,
            )
            machine.start(timer, now)
            db.add(timer)
            db.flush()
            log.info(
                "User %s: started timer %s on %s #%s",
                user_id, timer.id, ref.type, ref.id,
            )
            return TimerRecord.from_timer(timer, now)

        return self._serialized(user_id, op)

    def pause(self, user_id: int) -> TimerRecord:
        """Pause the active timer.  Already paused is a no-op, not an error."""

        def op(db: OrmSession) -> TimerRecord:
            now = self._clock.now()
            timer = find_active(db, user_id)
            if timer is None:
                raise NotFoundError("No running timer found")
            if machine.pause(timer, now):
                log.info("User %s: paused timer %s at %ss", user_id, timer.id, timer.elapsed_seconds)
            db.flush()
            return TimerRecord.from_timer(timer, now)

        return self._serialized(user_id, op)

    def resume(self, user_id: int) -> TimerRecord:
        """Resume the paused timer.  Already running is a no-op."""

        def op(db: OrmSession) -> TimerRecord:
            now = self._clock.now()
            timer = find_active(db, user_id)
            if timer is None:
                raise NotFoundError("No paused timer found")
            if machine.resume(timer, now):
                log.info("User %s: resumed timer %s", user_id, timer.id)
            db.flush()
            return TimerRecord.from_timer(timer, now)

        return self._serialized(user_id, op)

    def stop(self, user_id: int) -> TimeEntryRecord:
        """Stop the active timer and return the entry it produced."""

        def op(db: OrmSession) -> TimeEntryRecord:
            now = self._clock.now()
            timer = find_active(db, user_id)
            if timer is None:
                raise NotFoundError("No active timer found")
            entry = self._finish(db, timer, now)
            log.info(
                "User %s: stopped timer %s, entry %s (%ss)",
                user_id, timer.id, entry.id, entry.duration_seconds,
            )
            return TimeEntryRecord.from_entry(entry)

        return self._serialized(user_id, op)

    def sync(
        self,
        user_id: int,
        timer_id: int,
        status: str,
        elapsed_seconds: int | None = None,
    ) -> TimerRecord:
        """Reconcile a client snapshot into the stored timer."""
        report = SyncReport.parse(timer_id, status, elapsed_seconds)

        def op(db: OrmSession) -> TimerRecord:
            now = self._clock.now()
            timer = (
                db.query(Timer)
                .filter(Timer.id == report.timer_id, Timer.user_id == user_id)
                .first()
            )
            if timer is None:
                raise NotFoundError("Timer not found or access denied")

            outcome = reconcile(timer, report, now)
            if outcome.stopped:
                entry = entry_from_timer(timer)
                db.add(entry)
                log.info("User %s: sync stopped timer %s", user_id, timer.id)
            elif outcome.transition:
                log.info("User %s: sync %sd timer %s", user_id, outcome.transition, timer.id)
            db.flush()
            return TimerRecord.from_timer(timer, now)

        return self._serialized(user_id, op)

    # ══════════════════════════════════════════════════════════════════
    #  INTERNAL
    # ══════════════════════════════════════════════════════════════════

    def _finish(self, db: OrmSession, timer: Timer, now: datetime) -> TimeEntry:
        machine.stop(timer, now)
        entry = entry_from_timer(timer)
        db.add(entry)
        # flush now so the stopped row clears the unique index before any insert
        db.flush()
        return entry

    def _serialized(self, user_id: int, op):
        """Run ``op(db)`` as the only writer for ``user_id``."""
        lock = _user_lock(user_id)
        for attempt in range(1, self._lock_retries + 1):
            try:
                with lock, get_session() as db:
                    (
                        db.query(User.id)
                        .filter(User.id == user_id)
                        .with_for_update()
                        .first()
                    )
                    return op(db)
            except (IntegrityError, OperationalError) as exc:
                log.warning(
                    "User %s: timer write contended (attempt %s/%s): %s",
                    user_id, attempt, self._lock_retries, exc.orig,
                )
                if attempt == self._lock_retries:
                    raise ConflictError(
                        "Timer is being modified by another request, try again"
                    ) from exc
                time.sleep(self._lock_retry_delay * attempt)
