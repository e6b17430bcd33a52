"""Database connection and session management."""

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session as OrmSession
from sqlalchemy.pool import StaticPool

from ..settings import APP_SUPPORT_DIR, load_settings
from .models import Base

log = logging.getLogger(__name__)

# ── engine & session factory (created lazily) ─────────────────────────────

_engine = None
_SessionFactory = None


def _build_engine(url: str) -> Engine:
    kwargs = {"echo": False}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # one shared connection, or every thread sees its own empty db
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _get_engine():
    global _engine
    if _engine is None:
        url = load_settings().database_url
        if url.startswith("sqlite:///") and ":memory:" not in url:
            APP_SUPPORT_DIR.mkdir(parents=True, exist_ok=True)
        _engine = _build_engine(url)
    return _engine


def _get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=_get_engine(), expire_on_commit=False)
    return _SessionFactory


# ── public API ────────────────────────────────────────────────────────────


def configure_engine(url: str) -> None:
    """Override the database connection URL.  Used by tests to point at
    an in-memory SQLite database instead of the real one on disk."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _SessionFactory = None
    _engine = _build_engine(url)


def get_engine() -> Engine:
    return _get_engine()


def _run_migrations(engine) -> None:
    """Schema migrations for existing databases.

    Runs after ``create_all`` so new columns exist in fresh installs.
    Each migration is idempotent and safe to run repeatedly.
    """
    insp = inspect(engine)
    table_names = set(insp.get_table_names())

    with engine.connect() as conn:
        # ── M1: project/issue denormalization on time_entries ──────────
        if "time_entries" in table_names:
            columns = {c["name"] for c in insp.get_columns("time_entries")}
            for column in ("project_id", "issue_id"):
                if column not in columns:
                    log.info("Migrating: adding time_entries.%s", column)
                    conn.execute(text(
                        f"ALTER TABLE time_entries ADD COLUMN {column} INTEGER"
                    ))

        # ── M2: updated_at on timers ───────────────────────────────────
        if "timers" in table_names:
            columns = {c["name"] for c in insp.get_columns("timers")}
            if "updated_at" not in columns:
                log.info("Migrating: adding timers.updated_at")
                conn.execute(text(
                    "ALTER TABLE timers ADD COLUMN updated_at TIMESTAMP"
                ))
                conn.execute(text(
                    "UPDATE timers SET updated_at = created_at "
                    "WHERE updated_at IS NULL"
                ))

            # ── M3: one active timer per user ──────────────────────────
            indexes = {ix["name"] for ix in insp.get_indexes("timers")}
            if "uq_timers_one_active_per_user" not in indexes:
                log.info("Migrating: creating uq_timers_one_active_per_user")
                conn.execute(text(
                    "CREATE UNIQUE INDEX IF NOT EXISTS "
                    "uq_timers_one_active_per_user ON timers (user_id) "
                    "WHERE status != 'stopped'"
                ))

        conn.commit()


def init_db() -> None:
    """Create all tables and run migrations."""
    engine = _get_engine()
    Base.metadata.create_all(engine)
    _run_migrations(engine)


@contextmanager
def get_session():
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    factory = _get_session_factory()
    session: OrmSession = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
