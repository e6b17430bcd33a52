"""Exception taxonomy for the timer core.

Every failure the core reports to its callers is one of these.  The HTTP
layer (out of tree) maps them onto status codes:

    ValidationError   422
    NotFoundError     404  (also used for "not yours", never 403)
    ConflictError     409
"""

from __future__ import annotations


class TrackTimeError(Exception):
    """Base class for all timer-core errors."""


class ValidationError(TrackTimeError):
    """Malformed input.  Raised before any state is touched."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(TrackTimeError):
    """Missing entity, foreign entity, or no active timer."""


class ConflictError(TrackTimeError):
    """The per-user serialization point stayed contended after retrying."""
