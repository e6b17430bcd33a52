"""Tests for TimerService: the operations callers reach the timer core through.

Covers: start (including auto-stop), pause/resume no-ops, stop and the
TimeEntry it writes, sync/reconcile, reads, ownership checks, the single
active timer rule and per-user serialization under contention.
"""

import threading

import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError, OperationalError

from tracktime.database.db import configure_engine, get_session, init_db
from tracktime.database.models import Project, Timer
from tracktime.errors import ConflictError, NotFoundError, ValidationError
from tracktime.settings import Settings
from tracktime.timer import service as service_module
from tracktime.timer.service import TimerService

from helpers import active_timers, all_entries, make_issue, make_project, make_user


T0 = datetime(2025, 7, 23, 9, 0, 0)


# ═══════════════════════════════════════════════════════════════════════════
#  START
# ═══════════════════════════════════════════════════════════════════════════


class TestStart:

    def test_start_issue_denormalizes_project(self, service, user_id, issue_id):
        record = service.start(user_id, "issue", issue_id, "Fix the login form")
        assert record.status == "running"
        assert record.trackable_type == "issue"
        assert record.trackable_id == 7
        assert record.issue_id == 7
        assert record.project_id == 3
        assert record.trackable_name == "Fix timer accuracy bug"
        assert record.project_name == "Time Tracker App"
        assert record.started_at == T0
        assert record.elapsed_seconds == 0
        assert record.description == "Fix the login form"

    def test_start_project(self, service, user_id, project_id):
        record = service.start(user_id, "project", project_id)
        assert record.project_id == 3
        assert record.issue_id is None
        assert record.trackable_name == "Time Tracker App"
        assert record.project_color == "#3B82F6"

    def test_start_issue_without_project(self, service, user_id):
        loose = make_issue(user_id, None, "Inbox triage")
        record = service.start(user_id, "issue", loose)
        assert record.project_id is None
        assert record.issue_id == loose

    def test_unknown_type_rejected(self, service, user_id, project_id):
        with pytest.raises(ValidationError) as exc_info:
            service.start(user_id, "task", project_id)
        assert exc_info.value.field == "trackable_type"

    @pytest.mark.parametrize("bad_id", ["3", 3.0, None, True, 0, -1])
    def test_bad_trackable_id_rejected(self, service, user_id, project_id, bad_id):
        with pytest.raises(ValidationError):
            service.start(user_id, "project", bad_id)

    def test_description_length_limit(self, service, user_id, project_id):
        service.start(user_id, "project", project_id, "x" * 1000)
        with pytest.raises(ValidationError) as exc_info:
            service.start(user_id, "project", project_id, "x" * 1001)
        assert exc_info.value.field == "description"

    def test_missing_trackable_not_found(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.start(user_id, "issue", 999)

    def test_foreign_trackable_not_found(self, service, user_id, other_user_id):
        theirs = make_project(other_user_id, "Secret project")
        with pytest.raises(NotFoundError):
            service.start(user_id, "project", theirs)

    def test_failed_start_leaves_running_timer_alone(self, service, clock, user_id, project_id):
        running = service.start(user_id, "project", project_id)
        clock.advance(30)
        with pytest.raises(NotFoundError):
            service.start(user_id, "issue", 999)
        active = service.get_active(user_id)
        assert active.id == running.id
        assert active.elapsed_seconds == 30
        assert all_entries(user_id) == []

    def test_start_auto_stops_running_timer(self, service, clock, user_id, project_id, issue_id):
        first = service.start(user_id, "project", project_id)
        clock.advance(90)
        second = service.start(user_id, "issue", issue_id)

        assert second.id != first.id
        assert [t.id for t in active_timers(user_id)] == [second.id]
        entries = all_entries(user_id)
        assert len(entries) == 1
        assert entries[0].trackable_type == "project"
        assert entries[0].duration_seconds == 90

    def test_start_auto_stops_paused_timer(self, service, clock, user_id, project_id, issue_id):
        service.start(user_id, "project", project_id)
        clock.advance(40)
        service.pause(user_id)
        clock.advance(600)
        service.start(user_id, "issue", issue_id)

        entries = all_entries(user_id)
        assert len(entries) == 1
        assert entries[0].duration_seconds == 40


# ═══════════════════════════════════════════════════════════════════════════
#  PAUSE / RESUME
# ═══════════════════════════════════════════════════════════════════════════


class TestPauseResume:

    def test_pause_without_timer_not_found(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.pause(user_id)

    def test_resume_without_timer_not_found(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.resume(user_id)

    def test_pause_banks_elapsed(self, service, clock, user_id, project_id):
        service.start(user_id, "project", project_id)
        clock.advance(75)
        record = service.pause(user_id)
        assert record.status == "paused"
        assert record.elapsed_seconds == 75
        assert record.paused_at == clock.now()

    def test_second_pause_is_noop(self, service, clock, user_id, project_id):
        service.start(user_id, "project", project_id)
        clock.advance(10)
        first = service.pause(user_id)
        clock.advance(50)
        second = service.pause(user_id)
        assert second.status == "paused"
        assert second.elapsed_seconds == first.elapsed_seconds == 10
        assert second.paused_at == first.paused_at

    def test_resume_when_running_is_noop(self, service, clock, user_id, project_id):
        started = service.start(user_id, "project", project_id)
        clock.advance(10)
        record = service.resume(user_id)
        assert record.status == "running"
        assert record.started_at == started.started_at
        assert record.elapsed_seconds == 10

    def test_idle_pause_is_not_tracked(self, service, clock, user_id, project_id):
        service.start(user_id, "project", project_id)
        clock.advance(5)
        service.pause(user_id)
        clock.advance(3600)
        service.resume(user_id)
        clock.advance(3)
        entry = service.stop(user_id)
        assert entry.duration_seconds == 8


# ═══════════════════════════════════════════════════════════════════════════
#  STOP
# ═══════════════════════════════════════════════════════════════════════════


class TestStop:

    def test_issue_scenario(self, service, clock, user_id, issue_id):
        """Start, pause at +120, resume at +300, stop at +420."""
        service.start(user_id, "issue", issue_id, "Fix the login form")
        clock.set(T0 + timedelta(seconds=120))
        service.pause(user_id)
        clock.set(T0 + timedelta(seconds=300))
        service.resume(user_id)
        clock.set(T0 + timedelta(seconds=420))
        entry = service.stop(user_id)

        assert entry.duration_seconds == 240
        assert entry.formatted_duration == "4:00"
        assert entry.trackable_type == "issue"
        assert entry.trackable_id == 7
        assert entry.issue_id == 7
        assert entry.project_id == 3
        assert entry.description == "Fix the login form"
        assert entry.display_name == "Fix timer accuracy bug"
        assert entry.started_at == T0 + timedelta(seconds=300)
        assert entry.ended_at == T0 + timedelta(seconds=420)
        assert entry.created_at == entry.ended_at

    def test_stop_clears_active_timer(self, service, clock, user_id, project_id):
        service.start(user_id, "project", project_id)
        clock.advance(5)
        service.stop(user_id)
        assert service.get_active(user_id) is None
        with get_session() as db:
            timer = db.query(Timer).one()
            assert timer.status == "stopped"
            assert timer.stopped_at == clock.now()

    def test_stop_without_timer_not_found(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.stop(user_id)

    def test_stop_paused_timer(self, service, clock, user_id, project_id):
        service.start(user_id, "project", project_id)
        clock.advance(20)
        service.pause(user_id)
        clock.advance(100)
        assert service.stop(user_id).duration_seconds == 20

    def test_entry_survives_trackable_deletion(self, service, clock, user_id, project_id):
        service.start(user_id, "project", project_id)
        clock.advance(60)
        service.stop(user_id)
        with get_session() as db:
            db.delete(db.get(Project, project_id))
        entries = service.recent_entries(user_id)
        assert len(entries) == 1
        assert entries[0].trackable_id == project_id
        assert entries[0].display_name == "Unknown"


# ═══════════════════════════════════════════════════════════════════════════
#  SYNC
# ═══════════════════════════════════════════════════════════════════════════


class TestSync:

    def test_running_with_elapsed_rebaselines(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(10)
        record = service.sync(user_id, timer.id, "running", 600)
        assert record.elapsed_seconds == 600
        clock.advance(1)
        assert service.get_active(user_id).elapsed_seconds == 601

    def test_reported_elapsed_overwrites_banked_time(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(500)
        record = service.sync(user_id, timer.id, "running", 100)
        assert record.elapsed_seconds == 100

    def test_reported_pause_pauses(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(30)
        record = service.sync(user_id, timer.id, "paused")
        assert record.status == "paused"
        assert record.elapsed_seconds == 30

    def test_elapsed_ignored_for_paused_report(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(30)
        record = service.sync(user_id, timer.id, "paused", 999)
        assert record.elapsed_seconds == 30

    def test_reported_running_resumes(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(30)
        service.pause(user_id)
        clock.advance(30)
        record = service.sync(user_id, timer.id, "running")
        assert record.status == "running"
        assert record.started_at == clock.now()
        assert record.elapsed_seconds == 30

    def test_resume_then_rebaseline(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(30)
        service.pause(user_id)
        clock.advance(30)
        record = service.sync(user_id, timer.id, "running", 45)
        assert record.status == "running"
        assert record.elapsed_seconds == 45

    def test_reported_stop_writes_entry(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(12)
        record = service.sync(user_id, timer.id, "stopped")
        assert record.status == "stopped"
        entries = all_entries(user_id)
        assert len(entries) == 1
        assert entries[0].duration_seconds == 12

    def test_stopped_timer_stays_stopped(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(12)
        service.stop(user_id)
        record = service.sync(user_id, timer.id, "running", 500)
        assert record.status == "stopped"
        assert record.elapsed_seconds == 12
        assert len(all_entries(user_id)) == 1

    def test_foreign_timer_not_found(self, service, user_id, other_user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        with pytest.raises(NotFoundError) as exc_info:
            service.sync(other_user_id, timer.id, "stopped")
        assert "access denied" in str(exc_info.value)
        assert service.get_active(user_id).status == "running"

    def test_missing_timer_not_found(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.sync(user_id, 424242, "paused")

    def test_bad_status_rejected_before_lookup(self, service, user_id):
        with pytest.raises(ValidationError) as exc_info:
            service.sync(user_id, 424242, "finished")
        assert exc_info.value.field == "status"

    @pytest.mark.parametrize("elapsed", [-1, "10", 1.5, True])
    def test_bad_elapsed_rejected(self, service, user_id, project_id, elapsed):
        timer = service.start(user_id, "project", project_id)
        with pytest.raises(ValidationError) as exc_info:
            service.sync(user_id, timer.id, "running", elapsed)
        assert exc_info.value.field == "elapsed_seconds"

    def test_bad_timer_id_rejected(self, service, user_id):
        with pytest.raises(ValidationError) as exc_info:
            service.sync(user_id, "1", "running")
        assert exc_info.value.field == "timer_id"


# ═══════════════════════════════════════════════════════════════════════════
#  READS
# ═══════════════════════════════════════════════════════════════════════════


class TestReads:

    def test_no_active_timer(self, service, user_id):
        assert service.get_active(user_id) is None
        assert service.status(user_id) == {"status": "none", "elapsed_seconds": 0}

    def test_status_of_running_timer(self, service, clock, user_id, project_id):
        timer = service.start(user_id, "project", project_id)
        clock.advance(61)
        assert service.status(user_id) == {
            "status": "running", "elapsed_seconds": 61, "timer_id": timer.id,
        }

    def test_get_active_is_per_user(self, service, user_id, other_user_id, project_id):
        service.start(user_id, "project", project_id)
        assert service.get_active(other_user_id) is None

    def test_record_to_dict_is_json_ready(self, service, user_id, project_id):
        data = service.start(user_id, "project", project_id).to_dict()
        assert data["started_at"] == "2025-07-23T09:00:00"
        assert data["paused_at"] is None
        assert data["status"] == "running"

    def _log_entries(self, service, clock, user_id, project_id, count):
        for _ in range(count):
            service.start(user_id, "project", project_id)
            clock.advance(60)
            service.stop(user_id)
            clock.advance(1)

    def test_recent_entries_newest_first(self, service, clock, user_id, project_id):
        self._log_entries(service, clock, user_id, project_id, 3)
        entries = service.recent_entries(user_id)
        ended = [e.ended_at for e in entries]
        assert ended == sorted(ended, reverse=True)

    def test_recent_entries_default_limit(self, service, clock, user_id, project_id):
        self._log_entries(service, clock, user_id, project_id, 12)
        assert len(service.recent_entries(user_id)) == 10
        assert len(service.recent_entries(user_id, 3)) == 3

    @pytest.mark.parametrize("limit", [0, 101, -5, "10"])
    def test_recent_entries_limit_validated(self, service, user_id, limit):
        with pytest.raises(ValidationError) as exc_info:
            service.recent_entries(user_id, limit)
        assert exc_info.value.field == "limit"

    def test_recent_entries_are_per_user(self, service, clock, user_id, other_user_id, project_id):
        self._log_entries(service, clock, user_id, project_id, 2)
        assert service.recent_entries(other_user_id) == []

    def test_entries_today_and_week(self, service, clock, user_id, project_id, issue_id):
        # Wednesday 2025-07-23; an entry from Monday counts for the week only
        clock.set(datetime(2025, 7, 21, 10, 0, 0))
        service.start(user_id, "project", project_id)
        clock.advance(60)
        service.stop(user_id)

        clock.set(datetime(2025, 7, 23, 11, 0, 0))
        service.start(user_id, "issue", issue_id)
        clock.advance(120)
        service.stop(user_id)

        assert [e.duration_seconds for e in service.entries_today(user_id)] == [120]
        assert [e.duration_seconds for e in service.entries_this_week(user_id)] == [60, 120]

    def test_entries_between_filters_by_type(self, service, clock, user_id, project_id, issue_id):
        service.start(user_id, "project", project_id)
        clock.advance(60)
        service.start(user_id, "issue", issue_id)
        clock.advance(60)
        service.stop(user_id)
        window = (T0 - timedelta(hours=1), T0 + timedelta(hours=1))
        issues = service.entries_between(user_id, *window, trackable_type="issue")
        assert [e.trackable_type for e in issues] == ["issue"]
        assert len(service.entries_between(user_id, *window)) == 2

    def test_entries_between_rejects_reversed_window(self, service, user_id):
        with pytest.raises(ValidationError):
            service.entries_between(user_id, T0, T0 - timedelta(days=1))


# ═══════════════════════════════════════════════════════════════════════════
#  SINGLE ACTIVE TIMER / SERIALIZATION
# ═══════════════════════════════════════════════════════════════════════════


class TestSingleActiveTimer:

    def test_store_rejects_second_active_timer(self, user_id, project_id):
        with pytest.raises(IntegrityError):
            with get_session() as db:
                for _ in range(2):
                    db.add(Timer(
                        user_id=user_id, trackable_type="project",
                        trackable_id=project_id, project_id=project_id,
                        status="running", started_at=T0, elapsed_seconds=0,
                    ))
                    db.flush()

    def test_stopped_timers_do_not_count(self, service, clock, user_id, project_id):
        for _ in range(3):
            service.start(user_id, "project", project_id)
            clock.advance(5)
        assert len(active_timers(user_id)) == 1
        assert len(all_entries(user_id)) == 2

    def test_other_users_are_independent(self, service, user_id, other_user_id, project_id):
        theirs = make_project(other_user_id, "Their project")
        service.start(user_id, "project", project_id)
        service.start(other_user_id, "project", theirs)
        assert len(active_timers(user_id)) == 1
        assert len(active_timers(other_user_id)) == 1

    def test_contention_retries_then_conflicts(self, service, user_id):
        calls = []

        def op(db):
            calls.append(1)
            raise OperationalError("UPDATE timers", {}, Exception("database is locked"))

        with pytest.raises(ConflictError):
            service._serialized(user_id, op)
        assert len(calls) == 3

    def test_contention_recovers_on_retry(self, service, user_id):
        calls = []

        def op(db):
            calls.append(1)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO timers", {}, Exception("UNIQUE constraint failed"))
            return "ok"

        assert service._serialized(user_id, op) == "ok"
        assert len(calls) == 2


class TestConcurrency:

    @pytest.fixture(autouse=True)
    def file_db(self, tmp_path):
        """Threads need real connections, not the shared in-memory one."""
        configure_engine(f"sqlite:///{tmp_path / 'concurrent.db'}")
        init_db()
        yield

    def _run_threads(self, count, target):
        barrier = threading.Barrier(count)
        results, errors = [], []

        def worker():
            barrier.wait()
            try:
                results.append(target())
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        return results, errors

    def test_concurrent_starts_leave_one_active_timer(self, clock):
        service = TimerService(clock=clock, settings=Settings(lock_retry_delay=0))
        user = make_user("Racer")
        project = make_project(user, "Race")

        results, errors = self._run_threads(
            8, lambda: service.start(user, "project", project)
        )

        assert errors == []
        assert len(results) == 8
        assert len(active_timers(user)) == 1
        assert len(all_entries(user)) == 7

    def test_concurrent_pause_transitions_once(self, clock):
        service = TimerService(clock=clock, settings=Settings(lock_retry_delay=0))
        user = make_user("Racer")
        project = make_project(user, "Race")
        service.start(user, "project", project)
        clock.advance(30)

        results, errors = self._run_threads(2, lambda: service.pause(user))

        assert errors == []
        assert [r.status for r in results] == ["paused", "paused"]
        assert {r.elapsed_seconds for r in results} == {30}
        assert {r.paused_at for r in results} == {clock.now()}

    def test_user_lock_is_shared_while_held(self):
        first = service_module._user_lock(41)
        assert service_module._user_lock(41) is first
        assert service_module._user_lock(42) is not first

    def test_user_locks_are_released_after_use(self, clock):
        service = TimerService(clock=clock, settings=Settings(lock_retry_delay=0))
        users = [make_user(f"User {n}") for n in range(5)]
        for user in users:
            project = make_project(user, "Short lived")
            service.start(user, "project", project)
            service.stop(user)

        assert not any(user in service_module._user_locks for user in users)
