"""Database package."""

from .db import get_session, init_db, configure_engine
from .models import User, Project, Issue, Timer, TimeEntry

__all__ = [
    "get_session",
    "init_db",
    "configure_engine",
    "User",
    "Project",
    "Issue",
    "Timer",
    "TimeEntry",
]
