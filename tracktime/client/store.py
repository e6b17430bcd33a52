"""Persisting the mirror between runs.

The state file is a single JSON document::

    {
      "version": 1,
      "timestamp": "2025-07-23T09:00:00",
      "timer": {...TimerSnapshot...},
      "elapsed_seconds": 240,
      "offline_queue": [...]
    }

Anything that can't be trusted on load is thrown away: the mirror falls
back to a stopped timer and the next server sync fills it in again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from .queue import QueuedAction, load_queue, pending_starts
from .snapshot import TimerSnapshot

log = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class LoadedState:
    snapshot: TimerSnapshot = field(default_factory=TimerSnapshot)
    elapsed_seconds: int = 0
    queue: list[QueuedAction] = field(default_factory=list)
    repairs: list[str] = field(default_factory=list)

    @property
    def repaired(self) -> bool:
        return bool(self.repairs)


class LocalStore:
    """Reads and writes the mirror's state file."""

    def __init__(self, path, stale_after_seconds: int = 24 * 60 * 60) -> None:
        self.path = Path(path)
        self.stale_after = timedelta(seconds=stale_after_seconds)

    def save(
        self,
        snapshot: TimerSnapshot,
        elapsed_seconds: int,
        queue: list[QueuedAction],
        now: datetime,
    ) -> None:
        data = {
            "version": STATE_VERSION,
            "timestamp": now.isoformat(),
            "timer": snapshot.to_dict(),
            "elapsed_seconds": elapsed_seconds,
            "offline_queue": [action.to_dict() for action in queue],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        tmp.replace(self.path)

    def load(self, now: datetime) -> LoadedState:
        """Read the state file, repairing whatever is wrong with it."""
        if not self.path.exists():
            return LoadedState()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            log.warning("Unreadable timer state at %s, starting clean", self.path)
            return LoadedState(repairs=["Unreadable state file"])
        if not isinstance(data, dict):
            return LoadedState(repairs=["State file is not an object"])

        # queued actions survive a bad timer; they carry their own payload
        queue = load_queue(data.get("offline_queue"))

        try:
            snapshot = TimerSnapshot.from_dict(data.get("timer"))
            timestamp = datetime.fromisoformat(data["timestamp"])
            elapsed = data.get("elapsed_seconds", snapshot.elapsed_seconds)
            if isinstance(elapsed, bool) or not isinstance(elapsed, int):
                raise TypeError("elapsed_seconds must be an integer")
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("Corrupt timer state (%s), resetting", exc)
            return LoadedState(queue=queue, repairs=[f"Corrupt timer state: {exc}"])

        if now - timestamp > self.stale_after:
            log.info("Timer state from %s is stale, resetting", timestamp)
            return LoadedState(queue=queue, repairs=["Stale timer state"])
        if timestamp > now:
            return LoadedState(queue=queue, repairs=["State timestamp is in the future"])

        problems = snapshot.problems(now, elapsed, pending_starts(queue))
        if problems:
            for problem in problems:
                log.warning("Timer state: %s", problem)
            return LoadedState(queue=queue, repairs=problems)

        if snapshot.runs_long(elapsed):
            log.warning("Timer %s has been tracking for over 24 hours", snapshot.id)
        return LoadedState(snapshot, elapsed, queue)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
