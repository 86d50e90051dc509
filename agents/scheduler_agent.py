"""
SCHEDULER AGENT - Cadence & Job Lifecycle
===========================================
Responsibilities:
  1. Register each enabled yield job with APScheduler on its cron cadence
  2. Run jobs through a per-job state machine
     (IDLE -> RUNNING -> SUCCEEDED | FAILED -> IDLE)
  3. Keep run statistics (totals, failures, rolling average duration)
  4. Expose admin controls: start, stop, pause/resume/restart all, trigger one
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config.scheduler_config import JOB_CONFIG, MISFIRE_GRACE_SECONDS, SCHEDULER_TIMEZONE
from agents.yield_jobs import YieldJobs
from utils.events import JOB_FAILURE, EventSink
from utils.exceptions import UnknownJobError

logger = logging.getLogger(__name__)

IDLE = "IDLE"
RUNNING = "RUNNING"
SUCCEEDED = "SUCCEEDED"
FAILED = "FAILED"

TRANSITIONS = {
    IDLE: (RUNNING,),
    RUNNING: (SUCCEEDED, FAILED),
    SUCCEEDED: (IDLE,),
    FAILED: (IDLE,),
}

RUN_HISTORY_LIMIT = 50


@dataclass
class RunStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_run_time: Optional[datetime] = None
    average_execution_ms: float = 0.0

    def record(self, success: bool, duration_ms: float, at: datetime):
        self.total_runs += 1
        self.last_run_time = at
        if success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
        self.average_execution_ms += (duration_ms - self.average_execution_ms) / self.total_runs

    def to_dict(self) -> Dict:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "average_execution_ms": round(self.average_execution_ms, 2),
        }


@dataclass
class YieldJobRun:
    job_name: str
    started_at: datetime
    status: str = RUNNING
    finished_at: Optional[datetime] = None
    duration_ms: float = 0.0
    result: Dict = field(default_factory=dict)
    error: Optional[str] = None
    manual: bool = False

    def to_dict(self) -> Dict:
        return {
            "job_name": self.job_name,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": round(self.duration_ms, 2),
            "manual": self.manual,
            "error": self.error,
            "hotels": self.result.get("hotels"),
            "failed_hotels": self.result.get("errors", {}),
        }


class JobState:
    """State machine and run bookkeeping for one named job."""

    def __init__(self, name: str, description: str, handler: Callable[[], Dict]):
        self.name = name
        self.description = description
        self.handler = handler
        self.state = IDLE
        self.last_run: Optional[YieldJobRun] = None
        self.history: List[YieldJobRun] = []
        self.stats = RunStats()

    def transition(self, new_state: str):
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Job {self.name}: illegal transition {self.state} -> {new_state}")
        self.state = new_state

    def to_dict(self) -> Dict:
        return {
            "state": self.state,
            "description": self.description,
            "last_run": self.last_run.to_dict() if self.last_run else None,
            "statistics": self.stats.to_dict(),
        }


class YieldScheduler:
    """
    Owns the table of {job name -> cadence, handler, state} and drives it
    with an APScheduler BackgroundScheduler.
    """

    def __init__(self, jobs: YieldJobs, job_config: Dict = None,
                 timezone: str = SCHEDULER_TIMEZONE, sink: EventSink = None,
                 clock: Callable[[], datetime] = None):
        self.jobs = jobs
        self.job_config = job_config or JOB_CONFIG
        self.timezone = timezone
        self.sink = sink or jobs.sink
        self.clock = clock or jobs.clock
        self.states: Dict[str, JobState] = {
            name: JobState(name, cfg["description"], jobs.handler(name))
            for name, cfg in self.job_config.items()
        }
        self.stats = RunStats()
        self._lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None
        self.is_running = False
        self.is_paused = False

    # ------------------------------------------------------------------
    # 1. Lifecycle
    # ------------------------------------------------------------------

    def _build_scheduler(self) -> BackgroundScheduler:
        scheduler = BackgroundScheduler(timezone=self.timezone)
        for name, cfg in self.job_config.items():
            if not cfg.get("enabled", True):
                logger.info(f"  Job {name} disabled by configuration")
                continue
            scheduler.add_job(
                self.run_job,
                CronTrigger(timezone=self.timezone, **cfg["cron"]),
                args=[name],
                id=name,
                name=cfg["description"],
                coalesce=True,
                max_instances=1,
                misfire_grace_time=MISFIRE_GRACE_SECONDS,
            )
        return scheduler

    def start(self):
        if self.is_running:
            logger.warning("Yield jobs are already running")
            return
        self._scheduler = self._build_scheduler()
        self._scheduler.start()
        self.is_running = True
        self.is_paused = False
        for name in self.get_active_jobs():
            logger.info(f"Started yield job: {name}")
        logger.info(f"Started {len(self.get_active_jobs())} yield management jobs")

    def stop(self):
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self.is_running = False
        self.is_paused = False
        logger.info("All yield management jobs stopped")

    def pause_all(self):
        if self._scheduler is None:
            logger.warning("Pause requested but the scheduler is not running")
            return
        self._scheduler.pause()
        self.is_paused = True
        logger.info("All yield jobs paused")

    def resume_all(self):
        if self._scheduler is None:
            logger.warning("Resume requested but the scheduler is not running")
            return
        self._scheduler.resume()
        self.is_paused = False
        logger.info("All yield jobs resumed")

    def restart_all(self):
        logger.info("Restarting all yield jobs")
        self.stop()
        self.start()

    # ------------------------------------------------------------------
    # 2. Running jobs
    # ------------------------------------------------------------------

    def _state(self, job_name: str) -> JobState:
        state = self.states.get(job_name)
        if state is None:
            raise UnknownJobError(job_name, list(self.states))
        return state

    def run_job(self, job_name: str, manual: bool = False) -> Optional[YieldJobRun]:
        """
        Run one job to completion. Returns the run record, or None if the
        job was already running. Job-level exceptions are caught here: the
        run is marked FAILED, a JOB_FAILURE event is emitted and the
        scheduler carries on.
        """
        job = self._state(job_name)
        with self._lock:
            if job.state != IDLE:
                logger.warning(f"Yield job {job_name} is already {job.state}; skipping this run")
                return None
            job.transition(RUNNING)

        run = YieldJobRun(job_name=job_name, started_at=self.clock(), manual=manual)
        t0 = time.time()
        logger.info(f"Starting yield job: {job_name}")
        try:
            run.result = job.handler() or {}
            status = SUCCEEDED
        except Exception as e:
            run.error = f"{type(e).__name__}: {e}"
            status = FAILED
        run.duration_ms = (time.time() - t0) * 1000
        run.finished_at = self.clock()
        run.status = status

        with self._lock:
            job.transition(status)
            job.stats.record(status == SUCCEEDED, run.duration_ms, run.started_at)
            self.stats.record(status == SUCCEEDED, run.duration_ms, run.started_at)
            job.last_run = run
            job.history = (job.history + [run])[-RUN_HISTORY_LIMIT:]
            job.transition(IDLE)

        if status == SUCCEEDED:
            logger.info(f"Completed yield job: {job_name} in {run.duration_ms:.0f}ms")
        else:
            logger.error(f"Failed yield job: {job_name} after {run.duration_ms:.0f}ms: {run.error}")
            self.sink.emit(JOB_FAILURE, {
                "alert_type": "YIELD_JOB_FAILURE",
                "job_name": job_name,
                "error": run.error,
                "timestamp": run.finished_at.isoformat(),
            })
        return run

    def trigger(self, job_name: str) -> Optional[YieldJobRun]:
        """Run a job now, outside its cadence. Raises UnknownJobError for unknown names."""
        self._state(job_name)
        logger.info(f"Manual trigger: {job_name}")
        return self.run_job(job_name, manual=True)

    # ------------------------------------------------------------------
    # 3. Status
    # ------------------------------------------------------------------

    def get_active_jobs(self) -> List[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    def next_run_times(self) -> Dict[str, Optional[str]]:
        if self._scheduler is None:
            return {}
        return {
            job.id: job.next_run_time.isoformat() if job.next_run_time else None
            for job in self._scheduler.get_jobs()
        }

    def get_status(self) -> Dict:
        return {
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "active_jobs": self.get_active_jobs(),
            "next_run_times": self.next_run_times(),
            "job_configuration": {
                name: {"cron": cfg["cron"], "description": cfg["description"],
                       "enabled": cfg.get("enabled", True)}
                for name, cfg in self.job_config.items()
            },
            "jobs": {name: state.to_dict() for name, state in self.states.items()},
            "statistics": self.stats.to_dict(),
        }
