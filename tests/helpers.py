"""Shared test helpers for TrackTime."""

from tracktime.client.transport import ServiceTransport, TransportError
from tracktime.database.db import get_session
from tracktime.database.models import User, Project, Issue, TimeEntry, Timer


class SignalCollector:
    """Utility to capture pyqtSignal emissions into a list."""

    def __init__(self):
        self.items: list = []

    def slot(self, *args):
        self.items.append(args if len(args) > 1 else args[0] if args else None)

    def __call__(self, *args):
        self.slot(*args)

    def __len__(self):
        return len(self.items)

    def __getitem__(self, idx):
        return self.items[idx]

    @property
    def last(self):
        return self.items[-1] if self.items else None

    def clear(self):
        self.items.clear()


class FlakyTransport(ServiceTransport):
    """ServiceTransport whose network can be unplugged."""

    reachable = True

    def _call(self, fn, *args):
        if not self.reachable:
            raise TransportError("Server unreachable")
        return super()._call(fn, *args)


# ── factories ─────────────────────────────────────────────────────────────


def make_user(name: str = "Alice") -> int:
    with get_session() as db:
        user = User(name=name)
        db.add(user)
        db.flush()
        return user.id


def make_project(user_id: int, name: str = "Time Tracker App", id: int | None = None) -> int:
    with get_session() as db:
        project = Project(id=id, user_id=user_id, name=name, color="#3B82F6")
        db.add(project)
        db.flush()
        return project.id


def make_issue(
    user_id: int,
    project_id: int | None = None,
    title: str = "Implement timer widget",
    id: int | None = None,
) -> int:
    with get_session() as db:
        issue = Issue(id=id, user_id=user_id, project_id=project_id, title=title, priority="high")
        db.add(issue)
        db.flush()
        return issue.id


def all_entries(user_id: int) -> list[TimeEntry]:
    with get_session() as db:
        return (
            db.query(TimeEntry)
            .filter(TimeEntry.user_id == user_id)
            .order_by(TimeEntry.id)
            .all()
        )


def active_timers(user_id: int) -> list[Timer]:
    with get_session() as db:
        return (
            db.query(Timer)
            .filter(Timer.user_id == user_id, Timer.status != "stopped")
            .all()
        )
