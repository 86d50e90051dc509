"""
Tests for YieldScheduler: job state machine, statistics, failure events and
the APScheduler lifecycle.
"""
import pytest

from conftest import FixedClock
from agents.scheduler_agent import FAILED, IDLE, SUCCEEDED, JobState, YieldScheduler
from utils.events import JOB_FAILURE, CollectingEventSink
from utils.exceptions import UnknownJobError

JOB_CONFIG = {
    "ok_job": {"cron": {"minute": "0"}, "description": "Always works", "enabled": True},
    "bad_job": {"cron": {"minute": "30", "hour": "2"}, "description": "Always fails", "enabled": True},
    "off_job": {"cron": {"minute": "0", "hour": "4"}, "description": "Switched off", "enabled": False},
}


class FakeJobs:
    def __init__(self):
        self.sink = CollectingEventSink()
        self.clock = FixedClock()
        self.calls = []
        self.handlers = {
            "ok_job": self.ok_job,
            "bad_job": self.bad_job,
            "off_job": self.ok_job,
        }

    def handler(self, name):
        if name not in self.handlers:
            raise UnknownJobError(name, list(self.handlers))
        return self.handlers[name]

    def ok_job(self):
        self.calls.append("ok_job")
        return {"job": "ok_job", "hotels": 2, "errors": {"H2": "RuntimeError: boom"}}

    def bad_job(self):
        self.calls.append("bad_job")
        raise RuntimeError("database is locked")


@pytest.fixture
def fake_jobs():
    return FakeJobs()


@pytest.fixture
def scheduler(fake_jobs):
    s = YieldScheduler(fake_jobs, job_config=JOB_CONFIG, timezone="UTC")
    yield s
    s.stop()


class TestStateMachine:

    def test_illegal_transition(self):
        state = JobState("x", "", lambda: {})
        with pytest.raises(RuntimeError):
            state.transition(SUCCEEDED)

    def test_successful_run(self, scheduler, fake_jobs):
        run = scheduler.trigger("ok_job")

        assert run.status == SUCCEEDED
        assert run.manual
        assert run.result["hotels"] == 2
        # a hotel failure does not fail the job
        assert run.to_dict()["failed_hotels"] == {"H2": "RuntimeError: boom"}
        assert scheduler.states["ok_job"].state == IDLE
        stats = scheduler.states["ok_job"].stats.to_dict()
        assert stats["total_runs"] == 1
        assert stats["successful_runs"] == 1
        assert stats["last_run_time"] == fake_jobs.clock.now.isoformat()

    def test_failed_run_emits_job_failure(self, scheduler, fake_jobs):
        run = scheduler.run_job("bad_job")

        assert run.status == FAILED
        assert run.error == "RuntimeError: database is locked"
        assert scheduler.states["bad_job"].state == IDLE
        events = fake_jobs.sink.of_category(JOB_FAILURE)
        assert len(events) == 1
        assert events[0].payload["job_name"] == "bad_job"
        assert scheduler.stats.failed_runs == 1

    def test_overlapping_run_is_skipped(self, scheduler, fake_jobs):
        nested = []

        def reentrant():
            nested.append(scheduler.run_job("ok_job"))
            return {}

        scheduler.states["ok_job"].handler = reentrant
        run = scheduler.run_job("ok_job")
        assert run.status == SUCCEEDED
        assert nested == [None]
        assert scheduler.states["ok_job"].stats.total_runs == 1

    def test_aggregate_statistics(self, scheduler):
        scheduler.run_job("ok_job")
        scheduler.run_job("ok_job")
        scheduler.run_job("bad_job")
        stats = scheduler.get_status()["statistics"]
        assert stats["total_runs"] == 3
        assert stats["successful_runs"] == 2
        assert stats["failed_runs"] == 1
        assert stats["average_execution_ms"] >= 0

    def test_unknown_trigger(self, scheduler):
        with pytest.raises(UnknownJobError):
            scheduler.trigger("nightly_audit")


class TestLifecycle:

    def test_start_registers_enabled_jobs(self, scheduler):
        assert scheduler.get_active_jobs() == []
        scheduler.start()
        assert sorted(scheduler.get_active_jobs()) == ["bad_job", "ok_job"]
        assert set(scheduler.next_run_times()) == {"bad_job", "ok_job"}
        status = scheduler.get_status()
        assert status["is_running"]
        assert status["job_configuration"]["off_job"]["enabled"] is False

    def test_start_twice_is_harmless(self, scheduler):
        scheduler.start()
        scheduler.start()
        assert len(scheduler.get_active_jobs()) == 2

    def test_pause_resume_restart(self, scheduler):
        scheduler.start()
        scheduler.pause_all()
        assert scheduler.get_status()["is_paused"]
        scheduler.resume_all()
        assert not scheduler.get_status()["is_paused"]
        scheduler.restart_all()
        assert scheduler.is_running
        assert len(scheduler.get_active_jobs()) == 2

    def test_stop(self, scheduler):
        scheduler.start()
        scheduler.stop()
        status = scheduler.get_status()
        assert not status["is_running"]
        assert status["active_jobs"] == []

    def test_status_keys(self, scheduler):
        assert set(scheduler.get_status()) == {
            "is_running", "is_paused", "active_jobs", "next_run_times",
            "job_configuration", "jobs", "statistics",
        }


class TestWithRealJobs:

    def test_every_configured_job_has_a_handler(self, jobs):
        scheduler = YieldScheduler(jobs, timezone="UTC")
        assert set(scheduler.states) == {
            "hourly_price_update", "daily_yield_calculation", "weekly_demand_analysis",
            "monthly_seasonal_update", "real_time_adjustments", "performance_monitoring",
        }

    def test_trigger_hourly_update(self, jobs, hotel):
        scheduler = YieldScheduler(jobs, timezone="UTC")
        run = scheduler.trigger("hourly_price_update")
        assert run.status == SUCCEEDED
        assert run.result["adjustments"] == 2
