"""SQLAlchemy ORM models for TrackTime."""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Index, text,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from ..clock import utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    """Owner of every project, issue, timer and entry below."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    projects = relationship(
        "Project", back_populates="user",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    issues = relationship(
        "Issue", back_populates="user",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    timers = relationship(
        "Timer", back_populates="user",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    time_entries = relationship(
        "TimeEntry", back_populates="user",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.name!r}>"


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    color = Column(String(7), nullable=False, default="#3B82F6")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="projects")
    issues = relationship("Issue", back_populates="project")

    @property
    def owner_id(self) -> int:
        return self.user_id

    @property
    def display_name(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<Project id={self.id} name={self.name!r}>"


class Issue(Base):
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    project_id = Column(
        Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    title = Column(String(255), nullable=False)
    priority = Column(String(10), nullable=False, default="medium")  # low | medium | high | urgent
    status = Column(String(20), nullable=False, default="open")      # open | in_progress | closed
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="issues")
    project = relationship("Project", back_populates="issues")

    @property
    def owner_id(self) -> int:
        return self.user_id

    @property
    def display_name(self) -> str:
        return self.title

    def __repr__(self) -> str:
        return f"<Issue id={self.id} title={self.title!r} project={self.project_id}>"


class Timer(Base):
    """One tracking session, from start until it is stopped.

    ``elapsed_seconds`` only holds time banked at pause/stop boundaries;
    while running, the live figure is computed from ``started_at``.
    """

    __tablename__ = "timers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    trackable_type = Column(String(20), nullable=False)  # project | issue
    trackable_id = Column(Integer, nullable=False)
    project_id = Column(
        Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    issue_id = Column(
        Integer, ForeignKey("issues.id", ondelete="SET NULL"), nullable=True
    )
    status = Column(String(10), nullable=False, default="stopped")  # running | paused | stopped
    started_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    stopped_at = Column(DateTime, nullable=True)
    elapsed_seconds = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="timers")
    project = relationship("Project")
    issue = relationship("Issue")

    __table_args__ = (
        Index("ix_timers_trackable", "trackable_type", "trackable_id"),
        Index("ix_timers_user_status", "user_id", "status"),
        Index("ix_timers_user_created", "user_id", "created_at"),
        # At most one running/paused timer per user, enforced by the store.
        Index(
            "uq_timers_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status != 'stopped'"),
            postgresql_where=text("status != 'stopped'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Timer id={self.id} user={self.user_id} status={self.status} "
            f"elapsed={self.elapsed_seconds}>"
        )


class TimeEntry(Base):
    """A finished session.  Written once when its timer stops."""

    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    trackable_type = Column(String(20), nullable=False)
    trackable_id = Column(Integer, nullable=False)
    project_id = Column(
        Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    issue_id = Column(
        Integer, ForeignKey("issues.id", ondelete="SET NULL"), nullable=True
    )
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=False)
    duration_seconds = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="time_entries")
    project = relationship("Project")
    issue = relationship("Issue")

    __table_args__ = (
        Index("ix_entries_trackable", "trackable_type", "trackable_id"),
        Index("ix_entries_user_started", "user_id", "started_at"),
        Index("ix_entries_user_created", "user_id", "created_at"),
        Index("ix_entries_user_project", "user_id", "project_id"),
        Index("ix_entries_user_issue", "user_id", "issue_id"),
    )

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration_seconds)

    @property
    def duration_hours(self) -> float:
        return round(self.duration_seconds / 3600, 2)

    def __repr__(self) -> str:
        return (
            f"<TimeEntry id={self.id} {self.trackable_type}#{self.trackable_id} "
            f"duration={self.duration_seconds}s>"
        )


def format_duration(seconds: int) -> str:
    """``M:SS`` under an hour, ``H:MM:SS`` from an hour up."""
    hours, rest = divmod(max(0, int(seconds)), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
