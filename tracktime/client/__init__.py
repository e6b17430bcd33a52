"""Client-side timer mirror: local cache, offline queue and server sync."""

from .mirror import TimerMirror
from .queue import QueuedAction
from .snapshot import TimerSnapshot
from .store import LocalStore, LoadedState
from .transport import Transport, ServiceTransport, TransportError

__all__ = [
    "TimerMirror",
    "QueuedAction",
    "TimerSnapshot",
    "LocalStore",
    "LoadedState",
    "Transport",
    "ServiceTransport",
    "TransportError",
]
