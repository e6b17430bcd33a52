"""Client-side mirror of the user's active timer.

The mirror keeps a local copy of the server timer so a UI can show a
ticking clock without asking the server every second.  The server stays
authoritative: every action goes to the server first and the local copy
only changes from the server's answer.  The exception is when the server
can't be reached; then actions are applied locally, queued, and replayed
in order once the connection comes back.  A timer started offline has no
server id until its start replays; actions on it are queued against the
start and pick the id up from it.

Timers
------
tick        every ``tick_interval_ms``: recompute elapsed from timestamps
sync        every ``sync_interval_ms`` while online: pull the server timer
health      every ``health_check_interval_ms`` while offline: ping
validation  every ``validation_interval_ms``: sanity-check the local copy

Offline replay
--------------
Queued pause/stop carry the elapsed figure from the moment they happened.
They replay as a re-baselining ``sync(running, elapsed)`` followed by the
real transition, so time spent offline is neither lost nor double counted.
A queued start/resume is followed by a re-baseline covering the time since
it was queued.  A replayed start keeps the new timer id in its payload, so
retrying it only repeats the re-baseline.
"""

from __future__ import annotations

import logging
from datetime import datetime

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from ..clock import SystemClock, whole_seconds
from ..errors import TrackTimeError, ValidationError
from ..settings import CONFLICT_STRATEGIES, Settings, load_settings
from ..timer import machine
from ..timer.machine import TimerStatus
from .queue import QueuedAction, check_payload, pending_starts
from .snapshot import TimerSnapshot
from .store import LocalStore
from .transport import Transport, TransportError

log = logging.getLogger(__name__)


# ── sync status ───────────────────────────────────────────────────────────

IDLE = "idle"
SYNCING = "syncing"
ERROR = "error"
OFFLINE = "offline"


def _last_activity(started_at: datetime | None, paused_at: datetime | None) -> datetime:
    marks = [m for m in (started_at, paused_at) if m is not None]
    return max(marks) if marks else datetime.min


# ── mirror ────────────────────────────────────────────────────────────────


class TimerMirror(QObject):
    """Local, ticking copy of the server timer.

    Signals
    -------
    tick(elapsed_seconds: int)
        Emitted every tick while the timer is running.
    state_changed(snapshot: TimerSnapshot)
        Emitted whenever the local copy changes status or identity.
    entry_recorded(entry: TimeEntryRecord)
        Emitted after a stop the server confirmed.
    error(message: str)
        The server refused an action.  Local state is left untouched.
    sync_status_changed(status: str)
        ``idle``, ``syncing``, ``error`` or ``offline``.
    network_changed(online: bool)
    drift_corrected(seconds: int)
        The displayed elapsed value was off by more than the threshold.
    state_repaired(problems: list)
        The local copy failed validation and was reset.
    queue_changed(pending: int)
    """

    tick = pyqtSignal(int)
    state_changed = pyqtSignal(object)
    entry_recorded = pyqtSignal(object)
    error = pyqtSignal(str)
    sync_status_changed = pyqtSignal(str)
    network_changed = pyqtSignal(bool)
    drift_corrected = pyqtSignal(int)
    state_repaired = pyqtSignal(list)
    queue_changed = pyqtSignal(int)

    def __init__(
        self,
        transport: Transport,
        store: LocalStore,
        parent: QObject | None = None,
        *,
        settings: Settings | None = None,
        clock=None,
    ) -> None:
        super().__init__(parent)
        settings = settings or load_settings()

        # ── collaborators ─────────────────────────────────────────────
        self._transport = transport
        self._store = store
        self._clock = clock or SystemClock()

        # ── configuration ─────────────────────────────────────────────
        self._conflict_resolution: str = settings.conflict_resolution
        self._drift_threshold: int = settings.drift_threshold_seconds
        self._drift_every: int = max(1, settings.drift_check_every_ticks)
        self._max_attempts: int = max(1, settings.max_action_attempts)
        self._max_queued: int = max(2, settings.max_queued_actions)

        # ── local state ───────────────────────────────────────────────
        loaded = store.load(self._clock.now())
        self._snapshot: TimerSnapshot = loaded.snapshot
        self._elapsed: int = loaded.elapsed_seconds
        self._queue: list[QueuedAction] = loaded.queue
        self._load_repairs: list[str] = loaded.repairs
        if loaded.repaired:
            self._save()

        # ── sync state ────────────────────────────────────────────────
        self._online: bool = True
        self._sync_status: str = IDLE
        self._sync_in_flight: bool = False
        self._last_sync_at: datetime | None = None
        self._tick_count: int = 0

        # ── Qt timers ─────────────────────────────────────────────────
        self._tick_timer = QTimer(self)
        self._tick_timer.setInterval(settings.tick_interval_ms)
        self._tick_timer.timeout.connect(self._on_tick)

        self._sync_timer = QTimer(self)
        self._sync_timer.setInterval(settings.sync_interval_ms)
        self._sync_timer.timeout.connect(self.sync_now)

        self._health_timer = QTimer(self)
        self._health_timer.setInterval(settings.health_check_interval_ms)
        self._health_timer.timeout.connect(self.check_connection)

        self._validation_timer = QTimer(self)
        self._validation_timer.setInterval(settings.validation_interval_ms)
        self._validation_timer.timeout.connect(self.validate_state)

    # ══════════════════════════════════════════════════════════════════
    #  PUBLIC PROPERTIES
    # ══════════════════════════════════════════════════════════════════

    @property
    def snapshot(self) -> TimerSnapshot:
        return self._snapshot

    @property
    def status(self) -> str:
        return self._snapshot.status

    @property
    def elapsed_seconds(self) -> int:
        """Elapsed seconds as last displayed."""
        return self._elapsed

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def sync_status(self) -> str:
        return self._sync_status

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    @property
    def pending_actions(self) -> tuple[QueuedAction, ...]:
        return tuple(self._queue)

    @property
    def load_repairs(self) -> list[str]:
        """Problems found (and reset) when the state file was loaded."""
        return list(self._load_repairs)

    @property
    def conflict_resolution(self) -> str:
        return self._conflict_resolution

    @conflict_resolution.setter
    def conflict_resolution(self, value: str) -> None:
        if value not in CONFLICT_STRATEGIES:
            raise ValidationError(
                f"conflict_resolution must be one of {', '.join(CONFLICT_STRATEGIES)}",
                field="conflict_resolution",
            )
        self._conflict_resolution = value

    # ══════════════════════════════════════════════════════════════════
    #  LIFECYCLE
    # ══════════════════════════════════════════════════════════════════

    def activate(self) -> None:
        """Start the timers and catch up with the server."""
        if self._load_repairs:
            self.state_repaired.emit(list(self._load_repairs))
        self._tick_timer.start()
        self._validation_timer.start()
        if self._queue:
            self._drain_queue()
        if self._online:
            self.sync_now()
            self._sync_timer.start()
        else:
            self._health_timer.start()

    def shutdown(self) -> None:
        for timer in (
            self._tick_timer, self._sync_timer, self._health_timer, self._validation_timer
        ):
            timer.stop()
        self._save()
        self._transport.close()

    # ══════════════════════════════════════════════════════════════════
    #  ACTIONS
    # ══════════════════════════════════════════════════════════════════

    def start(
        self, trackable_type: str, trackable_id: int, description: str | None = None
    ) -> bool:
        """Start tracking ``trackable_type`` #``trackable_id``.

        Returns False when the server refused; ``error`` carries the reason.
        """
        return self._perform(
            "start",
            trackable_type=trackable_type,
            trackable_id=trackable_id,
            description=description,
        )

    def pause(self) -> bool:
        return self._perform("pause")

    def resume(self) -> bool:
        return self._perform("resume")

    def stop(self) -> bool:
        return self._perform("stop")

    def recent_entries(self, limit: int | None = None) -> list:
        if not self._online:
            return []
        try:
            return self._transport.recent_entries(limit)
        except TransportError as exc:
            log.warning("Fetching entries failed: %s", exc)
            self._go_offline()
        except TrackTimeError as exc:
            self.error.emit(str(exc))
        return []

    def _perform(self, action: str, **payload) -> bool:
        if self._online:
            try:
                result = self._send(action, payload)
            except TransportError as exc:
                log.warning("%s failed, queueing for later: %s", action, exc)
                self._go_offline()
            except TrackTimeError as exc:
                log.info("%s refused: %s", action, exc)
                self.error.emit(str(exc))
                return False
            else:
                self._apply_result(action, result)
                return True
        return self._queue_offline(action, payload)

    def _send(self, action: str, payload: dict):
        if action == "start":
            return self._transport.start(
                payload["trackable_type"], payload["trackable_id"], payload.get("description")
            )
        if action == "pause":
            return self._transport.pause()
        if action == "resume":
            return self._transport.resume()
        if action == "stop":
            return self._transport.stop()
        raise ValueError(f"unknown action {action!r}")

    def _apply_result(self, action: str, result) -> None:
        if action == "stop":
            self._reset_local()
            self.entry_recorded.emit(result)
        else:
            self._adopt(result)

    # ══════════════════════════════════════════════════════════════════
    #  SYNC
    # ══════════════════════════════════════════════════════════════════

    def sync_now(self) -> bool:
        """Pull the server timer and reconcile.  Skipped while one is running."""
        if not self._online or self._sync_in_flight:
            return False
        self._sync_in_flight = True
        self._set_sync_status(SYNCING)
        try:
            server = self._transport.fetch_active()
            if self._conflicts_with(server):
                self._resolve_conflict(server)
            else:
                self._adopt(server)
        except TransportError as exc:
            log.warning("Sync failed: %s", exc)
            self._set_sync_status(ERROR)
            self._go_offline()
            return False
        except TrackTimeError as exc:
            log.warning("Sync refused: %s", exc)
            self._set_sync_status(ERROR)
            self.error.emit(str(exc))
            return False
        finally:
            self._sync_in_flight = False
        self._last_sync_at = self._clock.now()
        self._set_sync_status(IDLE)
        return True

    def _conflicts_with(self, server) -> bool:
        local = self._snapshot
        if not local.is_active:
            return False
        if server is None:
            return True
        return server.id != local.id or server.status != local.status

    def _resolve_conflict(self, server) -> None:
        strategy = self._conflict_resolution
        log.info(
            "Timer conflict (local %s/%s, server %s/%s), resolving %s",
            self._snapshot.id, self._snapshot.status,
            getattr(server, "id", None), getattr(server, "status", None),
            strategy,
        )
        if strategy == "local-wins":
            self._push_local(server)
        elif strategy == "merge":
            local = self._snapshot
            local_mark = _last_activity(local.started_at, local.paused_at)
            server_mark = (
                _last_activity(server.started_at, server.paused_at)
                if server is not None else datetime.min
            )
            if local_mark > server_mark:
                self._push_local(server)
            else:
                self._adopt(server)
        else:
            self._adopt(server)

    def _push_local(self, server) -> None:
        local = self._snapshot
        if local.id is None:
            self._adopt(server)
            return
        elapsed = None
        if machine.is_running(local):
            elapsed = machine.current_elapsed_seconds(local, self._clock.now())
        record = self._transport.sync(local.id, local.status, elapsed)
        if record.status == TimerStatus.STOPPED.value:
            # a stopped timer stays stopped; fall back to what the server has
            self._adopt(server)
        else:
            self._adopt(record)

    # ══════════════════════════════════════════════════════════════════
    #  CONNECTIVITY
    # ══════════════════════════════════════════════════════════════════

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        if online:
            log.info("Connection restored")
            self._online = True
            self._health_timer.stop()
            self._set_sync_status(IDLE)
            self.network_changed.emit(True)
            if self._drain_queue() and self._online:
                self.sync_now()
                self._sync_timer.start()
        else:
            self._go_offline()

    def check_connection(self) -> bool:
        if self._transport.ping():
            self.set_online(True)
            return True
        return False

    def _go_offline(self) -> None:
        if not self._online:
            return
        log.warning("Server unreachable, working offline")
        self._online = False
        self._sync_timer.stop()
        self._health_timer.start()
        self._set_sync_status(OFFLINE)
        self.network_changed.emit(False)

    # ══════════════════════════════════════════════════════════════════
    #  OFFLINE QUEUE
    # ══════════════════════════════════════════════════════════════════

    def _queue_offline(self, action: str, payload: dict) -> bool:
        now = self._clock.now()
        local = self._snapshot

        if action == "start":
            return self._start_offline(payload, now)

        if not local.is_active or (local.id is None and not local.is_provisional):
            self.error.emit("No active timer found")
            return False
        if action == "pause" and not machine.is_running(local):
            return True
        if action == "resume" and machine.is_running(local):
            return True

        target = (
            {"timer_id": local.id} if local.id is not None
            else {"timer_ref": local.local_ref}
        )
        superseded = self._superseded_tail(local.id or local.local_ref)
        if len(self._queue) - superseded >= self._max_queued:
            self.error.emit("Too many actions queued offline")
            return False
        if superseded:
            dropped = self._queue.pop()
            log.debug("Queued %s replaced by %s", dropped.action, action)

        elapsed = machine.current_elapsed_seconds(local, now)
        self._enqueue(QueuedAction(action, {**target, "elapsed_seconds": elapsed}, now))
        if action == "stop":
            self._reset_local()
            return True
        if action == "pause":
            machine.pause(local, now)
        else:
            machine.resume(local, now)
        self._elapsed = machine.current_elapsed_seconds(local, now)
        self._save()
        self.state_changed.emit(local)
        self.tick.emit(self._elapsed)
        return True

    def _start_offline(self, payload: dict, now: datetime) -> bool:
        """Queue a start and track it locally until the server assigns an id."""
        try:
            check_payload("start", payload)
        except ValueError as exc:
            self.error.emit(str(exc))
            return False
        needed = 2 if self._snapshot.is_active else 1
        if len(self._queue) + needed > self._max_queued:
            self.error.emit("Too many actions queued offline")
            return False
        if self._snapshot.is_active:
            self._queue_offline("stop", {})

        item = QueuedAction("start", payload, now)
        self._enqueue(item)
        self._snapshot = TimerSnapshot(
            status=TimerStatus.RUNNING.value,
            description=payload.get("description") or "",
            trackable_type=payload["trackable_type"],
            trackable_id=payload["trackable_id"],
            started_at=now,
            local_ref=item.id,
        )
        self._elapsed = 0
        self._save()
        self.state_changed.emit(self._snapshot)
        self.tick.emit(0)
        return True

    def _superseded_tail(self, timer_key) -> int:
        """1 if the last queued item is a pause/resume on the same timer."""
        if not self._queue:
            return 0
        last = self._queue[-1]
        if last.action in ("pause", "resume") and last.timer_key == timer_key:
            return 1
        return 0

    def _enqueue(self, item: QueuedAction) -> None:
        self._queue.append(item)
        log.info("Queued %s while offline (%s pending)", item.action, len(self._queue))
        self._save()
        self.queue_changed.emit(len(self._queue))

    def _drain_queue(self) -> bool:
        """Replay queued actions in order.  False if the server went away again.

        The head item stays in the queue until it has been replayed, so a
        crash mid-replay leaves it on disk.
        """
        while self._queue:
            item = self._queue[0]
            try:
                self._replay(item)
            except TransportError as exc:
                item.attempts += 1
                if item.attempts >= self._max_attempts:
                    log.warning(
                        "Dropping queued %s after %s attempts: %s",
                        item.action, item.attempts, exc,
                    )
                    self.error.emit(f"Could not {item.action} timer: {exc}")
                    self._discard_head()
                self._save()
                self.queue_changed.emit(len(self._queue))
                self._go_offline()
                return False
            except TrackTimeError as exc:
                log.warning("Dropping queued %s, server refused: %s", item.action, exc)
                self.error.emit(str(exc))
                self._discard_head()
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Dropping malformed queued %s: %s", item.action, exc)
                self.error.emit(f"Discarded unreadable queued {item.action}")
                self._discard_head()
            else:
                self._queue.pop(0)
            self._save()
        self.queue_changed.emit(0)
        return True

    def _discard_head(self) -> None:
        """Drop the head item, and everything waiting on it if it is a start."""
        item = self._queue.pop(0)
        if item.action != "start" or "timer_id" in item.payload:
            return
        followers = [a for a in self._queue if a.payload.get("timer_ref") == item.id]
        if followers:
            log.warning("Dropping %s queued actions for the discarded start", len(followers))
            self._queue = [a for a in self._queue if a not in followers]
        if self._snapshot.local_ref == item.id:
            self._reset_local()

    def _replay(self, item: QueuedAction) -> None:
        payload = item.payload
        since_queued = whole_seconds(self._clock.now() - item.queued_at)

        if item.action == "start":
            if "timer_id" not in payload:
                record = self._transport.start(
                    payload["trackable_type"], payload["trackable_id"], payload.get("description")
                )
                self._bind_start(item, record.id)
                if not since_queued:
                    self._adopt_replayed(record)
                    return
            # on a retry the timer already exists; only re-baseline it
            record = self._transport.sync(
                payload["timer_id"], TimerStatus.RUNNING.value, since_queued
            )
            self._adopt_replayed(record)
            return

        timer_id = payload.get("timer_id")
        if timer_id is None:
            raise ValueError(f"queued {item.action} has no timer to act on")
        elapsed = payload["elapsed_seconds"]
        if item.action == "resume":
            record = self._transport.sync(
                timer_id, TimerStatus.RUNNING.value, elapsed + since_queued
            )
        else:
            target = (
                TimerStatus.PAUSED.value if item.action == "pause"
                else TimerStatus.STOPPED.value
            )
            self._transport.sync(timer_id, TimerStatus.RUNNING.value, elapsed)
            record = self._transport.sync(timer_id, target)
        self._adopt_replayed(record)

    def _bind_start(self, item: QueuedAction, timer_id: int) -> None:
        """Hand the server id of a replayed start to everything waiting on it."""
        item.payload["timer_id"] = timer_id
        for other in self._queue:
            if other.payload.get("timer_ref") == item.id:
                other.payload["timer_id"] = timer_id
        if self._snapshot.local_ref == item.id:
            self._snapshot.id = timer_id
            self._snapshot.local_ref = None
        self._save()

    def _adopt_replayed(self, record) -> None:
        # the local copy may already be ahead of this record (a later
        # offline start); the sync after the drain settles it
        if record.id == self._snapshot.id:
            self._adopt(record)

    # ══════════════════════════════════════════════════════════════════
    #  LOCAL STATE
    # ══════════════════════════════════════════════════════════════════

    def validate_state(self) -> list[str]:
        """Reset the local copy if it has become inconsistent."""
        problems = self._snapshot.problems(
            self._clock.now(), self._elapsed, pending_starts(self._queue)
        )
        if problems:
            for problem in problems:
                log.warning("Local timer state: %s", problem)
            self._reset_local()
            self.state_repaired.emit(problems)
        elif self._snapshot.runs_long(self._elapsed):
            log.warning("Timer %s has been tracking for over 24 hours", self._snapshot.id)
        return problems

    def emergency_reset(self) -> None:
        """Stop the server timer if possible and forget everything local."""
        log.warning("Emergency reset of local timer state")
        if self._online:
            try:
                self._transport.stop()
            except TransportError as exc:
                log.warning("Emergency stop did not reach the server: %s", exc)
                self._go_offline()
            except TrackTimeError as exc:
                log.info("Emergency stop: %s", exc)
        self._queue = []
        self._store.clear()
        self._reset_local()
        self.queue_changed.emit(0)
        if self._online:
            self.sync_now()

    def _adopt(self, record) -> None:
        """Make the local copy match a server record (``None`` = no timer)."""
        if record is None or record.status == TimerStatus.STOPPED.value:
            if record is None or self._snapshot.id in (None, record.id):
                self._reset_local()
            return
        previous = (self._snapshot.id, self._snapshot.status)
        self._snapshot = TimerSnapshot.from_record(record)
        self._elapsed = machine.current_elapsed_seconds(self._snapshot, self._clock.now())
        self._save()
        if previous != (record.id, record.status):
            self.state_changed.emit(self._snapshot)
        self.tick.emit(self._elapsed)

    def _reset_local(self) -> None:
        changed = self._snapshot.is_active or self._snapshot.id is not None
        self._snapshot = TimerSnapshot()
        self._elapsed = 0
        self._save()
        if changed:
            self.state_changed.emit(self._snapshot)
            self.tick.emit(0)

    def _save(self) -> None:
        try:
            self._store.save(self._snapshot, self._elapsed, self._queue, self._clock.now())
        except OSError:
            log.exception("Could not write timer state to %s", self._store.path)

    def _set_sync_status(self, status: str) -> None:
        if status != self._sync_status:
            self._sync_status = status
            self.sync_status_changed.emit(status)

    # ══════════════════════════════════════════════════════════════════
    #  TICK
    # ══════════════════════════════════════════════════════════════════

    def _on_tick(self) -> None:
        self._tick_count += 1
        if not machine.is_running(self._snapshot):
            return
        if self._tick_count % self._drift_every == 0:
            self._check_drift()
        self._elapsed = machine.current_elapsed_seconds(self._snapshot, self._clock.now())
        self.tick.emit(self._elapsed)
        self._save()

    def _check_drift(self) -> int:
        """Compare the displayed value with a fresh computation."""
        fresh = machine.current_elapsed_seconds(self._snapshot, self._clock.now())
        drift = abs(fresh - self._elapsed)
        if drift > self._drift_threshold:
            log.warning(
                "Timer drift of %ss detected (shown %ss, actual %ss), correcting",
                drift, self._elapsed, fresh,
            )
            self._elapsed = fresh
            self.drift_corrected.emit(drift)
        return drift
