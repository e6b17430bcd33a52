"""How the mirror reaches the timer service.

:class:`Transport` is the seam: the mirror only ever calls these methods.
:class:`ServiceTransport` binds it to an in-process :class:`TimerService`
for one user and puts a timeout on every call; an HTTP client would
implement the same interface.

Failures come back two ways.  A :class:`TransportError` means the request
didn't get an answer (unreachable, timed out, server fell over) and may be
retried.  A :class:`TrackTimeError` is the server's answer and is final.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from ..errors import ConflictError, TrackTimeError

log = logging.getLogger(__name__)


class TransportError(Exception):
    """The server could not be reached or did not answer in time."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class Transport:
    """What the mirror needs from a server."""

    def fetch_active(self):
        raise NotImplementedError

    def start(self, trackable_type: str, trackable_id: int, description: str | None = None):
        raise NotImplementedError

    def pause(self):
        raise NotImplementedError

    def resume(self):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError

    def sync(self, timer_id: int, status: str, elapsed_seconds: int | None = None):
        raise NotImplementedError

    def recent_entries(self, limit: int | None = None):
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass


class ServiceTransport(Transport):
    """Calls a :class:`TimerService` directly, on a worker thread."""

    def __init__(self, service, user_id: int, timeout: float = 10.0) -> None:
        self.service = service
        self.user_id = user_id
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="tracktime-transport"
        )

    def _call(self, fn, *args):
        future = self._executor.submit(fn, self.user_id, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            raise TransportError(f"Request timed out after {self.timeout}s") from None
        except ConflictError as exc:
            raise TransportError(str(exc)) from exc
        except TrackTimeError:
            raise
        except Exception as exc:
            log.exception("Timer service failed")
            raise TransportError(f"Server error: {exc}") from exc

    def fetch_active(self):
        return self._call(self.service.get_active)

    def start(self, trackable_type, trackable_id, description=None):
        return self._call(self.service.start, trackable_type, trackable_id, description)

    def pause(self):
        return self._call(self.service.pause)

    def resume(self):
        return self._call(self.service.resume)

    def stop(self):
        return self._call(self.service.stop)

    def sync(self, timer_id, status, elapsed_seconds=None):
        return self._call(self.service.sync, timer_id, status, elapsed_seconds)

    def recent_entries(self, limit=None):
        return self._call(self.service.recent_entries, limit)

    def ping(self) -> bool:
        try:
            self._call(self.service.status)
        except (TransportError, TrackTimeError):
            return False
        return True

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
