"""Tests for the timer state machine and elapsed-time arithmetic.

Covers: legal transitions, no-op transitions, banking on pause/stop,
the pure elapsed computation, and re-baselining.
"""

import pytest
from datetime import datetime, timedelta

from tracktime.database.models import Timer
from tracktime.errors import NotFoundError, ValidationError
from tracktime.timer import machine
from tracktime.timer.machine import TimerStatus, current_elapsed_seconds, parse_status


T0 = datetime(2025, 7, 23, 9, 0, 0)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def fresh_timer() -> Timer:
    return Timer(
        user_id=1, trackable_type="issue", trackable_id=7,
        status=TimerStatus.STOPPED.value, elapsed_seconds=0,
    )


def running_timer() -> Timer:
    timer = fresh_timer()
    machine.start(timer, T0)
    return timer


# ═══════════════════════════════════════════════════════════════════════════
#  TRANSITIONS
# ═══════════════════════════════════════════════════════════════════════════


class TestTransitions:

    def test_start_fresh_timer(self):
        timer = fresh_timer()
        assert machine.start(timer, T0) is True
        assert timer.status == "running"
        assert timer.started_at == T0
        assert timer.elapsed_seconds == 0
        assert timer.paused_at is None

    def test_start_refuses_running_timer(self):
        timer = running_timer()
        assert machine.start(timer, at(10)) is False
        assert timer.started_at == T0

    def test_finished_timer_never_restarts(self):
        timer = running_timer()
        machine.stop(timer, at(60))
        assert machine.start(timer, at(120)) is False
        assert timer.status == "stopped"

    def test_pause_banks_running_segment(self):
        timer = running_timer()
        assert machine.pause(timer, at(120)) is True
        assert timer.status == "paused"
        assert timer.elapsed_seconds == 120
        assert timer.paused_at == at(120)

    def test_pause_is_noop_when_paused(self):
        timer = running_timer()
        machine.pause(timer, at(120))
        assert machine.pause(timer, at(500)) is False
        assert timer.elapsed_seconds == 120
        assert timer.paused_at == at(120)

    def test_resume_moves_baseline_and_keeps_bank(self):
        timer = running_timer()
        machine.pause(timer, at(120))
        assert machine.resume(timer, at(300)) is True
        assert timer.status == "running"
        assert timer.started_at == at(300)
        assert timer.paused_at is None
        assert timer.elapsed_seconds == 120

    def test_resume_is_noop_when_running(self):
        timer = running_timer()
        assert machine.resume(timer, at(30)) is False
        assert timer.started_at == T0

    def test_stop_from_running_banks(self):
        timer = running_timer()
        assert machine.stop(timer, at(90)) == 90
        assert timer.status == "stopped"
        assert timer.stopped_at == at(90)

    def test_stop_from_paused_does_not_count_pause(self):
        timer = running_timer()
        machine.pause(timer, at(60))
        assert machine.stop(timer, at(600)) == 60
        assert timer.paused_at is None

    def test_stop_without_active_timer_raises(self):
        with pytest.raises(NotFoundError):
            machine.stop(fresh_timer(), T0)

    def test_stop_twice_raises(self):
        timer = running_timer()
        machine.stop(timer, at(10))
        with pytest.raises(NotFoundError):
            machine.stop(timer, at(20))


# ═══════════════════════════════════════════════════════════════════════════
#  ELAPSED TIME
# ═══════════════════════════════════════════════════════════════════════════


class TestElapsed:

    def test_pause_resume_scenario_counts_only_running_time(self):
        timer = running_timer()
        machine.pause(timer, at(120))
        machine.resume(timer, at(300))
        assert machine.stop(timer, at(420)) == 240

    def test_idle_while_paused_is_not_counted(self):
        timer = running_timer()
        machine.pause(timer, at(5))
        machine.resume(timer, at(5 + 3600))
        assert machine.stop(timer, at(5 + 3600 + 3)) == 8

    def test_live_elapsed_while_running(self):
        timer = running_timer()
        assert current_elapsed_seconds(timer, at(42)) == 42

    def test_paused_elapsed_is_frozen(self):
        timer = running_timer()
        machine.pause(timer, at(50))
        assert current_elapsed_seconds(timer, at(5000)) == 50

    def test_fractions_truncate(self):
        timer = running_timer()
        assert current_elapsed_seconds(timer, at(1.9)) == 1

    def test_clock_behind_start_never_goes_negative(self):
        timer = running_timer()
        assert current_elapsed_seconds(timer, at(-30)) == 0

    def test_elapsed_is_side_effect_free(self):
        timer = running_timer()
        machine.pause(timer, at(20))
        machine.resume(timer, at(40))
        before = (timer.status, timer.started_at, timer.paused_at, timer.elapsed_seconds)
        first = current_elapsed_seconds(timer, at(70))
        second = current_elapsed_seconds(timer, at(70))
        assert first == second == 50
        assert (timer.status, timer.started_at, timer.paused_at, timer.elapsed_seconds) == before

    def test_elapsed_is_non_decreasing(self):
        timer = running_timer()
        readings = [current_elapsed_seconds(timer, at(s)) for s in (0, 0.5, 1, 7, 7.2, 60)]
        assert readings == sorted(readings)


# ═══════════════════════════════════════════════════════════════════════════
#  RE-BASELINE
# ═══════════════════════════════════════════════════════════════════════════


class TestRebaseline:

    def test_running_timer_reads_reported_value(self):
        timer = running_timer()
        assert machine.rebaseline(timer, at(500), 42) is True
        assert timer.elapsed_seconds == 0
        assert current_elapsed_seconds(timer, at(500)) == 42
        assert current_elapsed_seconds(timer, at(501)) == 43

    def test_smaller_value_overwrites_bank(self):
        timer = running_timer()
        machine.pause(timer, at(100))
        machine.resume(timer, at(100))
        machine.rebaseline(timer, at(110), 30)
        assert current_elapsed_seconds(timer, at(110)) == 30

    def test_paused_timer_is_left_alone(self):
        timer = running_timer()
        machine.pause(timer, at(100))
        assert machine.rebaseline(timer, at(110), 5) is False
        assert timer.elapsed_seconds == 100


# ═══════════════════════════════════════════════════════════════════════════
#  STATUS PARSING
# ═══════════════════════════════════════════════════════════════════════════


class TestParseStatus:

    @pytest.mark.parametrize("value", ["running", "paused", "stopped"])
    def test_known_values(self, value):
        assert parse_status(value).value == value

    def test_enum_passes_through(self):
        assert parse_status(TimerStatus.PAUSED) is TimerStatus.PAUSED

    @pytest.mark.parametrize("value", ["RUNNING", "idle", "", None, 1])
    def test_unknown_values_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_status(value)
        assert exc_info.value.field == "status"
