"""Time sources.

All timestamps in TrackTime are naive UTC ``datetime`` objects, which is
what SQLite hands back for ``DateTime`` columns.  Code that needs "now"
takes a clock instead of calling ``datetime.now`` itself, so tests can
freeze and advance time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return utcnow()


class FrozenClock:
    """A clock that only moves when told to.

    ::

        clock = FrozenClock()
        clock.advance(seconds=120)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 7, 23, 9, 0, 0)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now


def whole_seconds(delta: timedelta) -> int:
    """Truncate a delta to whole seconds, never negative."""
    return max(0, int(delta.total_seconds()))
