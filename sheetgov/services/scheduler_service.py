"""
Background housekeeping jobs.

Jobs register under a name with ``register_job`` and always run inside an
app context of the application passed to ``SchedulerService.init_app``.
With SCHEDULER_ENABLED a daemon thread runs each job every N seconds, N
being read from the config key the job registered with. Any job can also
be run by hand: ``flask run-job lock_reaper``.

A job never overlaps itself; a tick that finds the previous run still
going is skipped.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from flask import Flask

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    fn: Callable[[Flask], Any]
    interval_config: str | None
    guard: threading.Lock


@dataclass
class JobRun:
    job_name: str
    status: str
    ran_at: str
    duration_ms: int = 0
    result: Any = None
    error: str | None = None


_jobs: dict[str, _Job] = {}


def register_job(name: str, interval_config: str | None = None):
    """Register the decorated ``fn(app)`` as background job ``name``.

    ``interval_config`` is the config key holding the interval in seconds.
    Jobs without one, or with a zero interval, only run on demand.
    """
    def decorator(fn):
        _jobs[name] = _Job(fn=fn, interval_config=interval_config, guard=threading.Lock())
        return fn
    return decorator


class SchedulerService:
    """Process-wide runner for registered jobs."""

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop: threading.Event | None = None
    _history: dict[str, JobRun] = {}

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        cls._history = {}
        app.extensions["scheduler"] = cls
        logger.debug("Scheduler bound with jobs: %s", ", ".join(sorted(_jobs)) or "none")
        if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
            cls.start()

    @classmethod
    def is_running(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Run ``job_name`` now and return its JobRun as a dict.

        status is "success", "failed" (the job raised), "skipped" (already
        running) or "error" (unknown job, or no app bound).
        """
        now = datetime.now(timezone.utc).isoformat()
        job = _jobs.get(job_name)
        if job is None:
            return asdict(JobRun(job_name, "error", now, error=f"Unknown job: {job_name}"))
        if cls._app is None:
            return asdict(JobRun(job_name, "error", now, error="Scheduler not initialised"))

        if not job.guard.acquire(blocking=False):
            logger.info("Job %s still running, skipped", job_name)
            return asdict(JobRun(job_name, "skipped", now))

        started = time.monotonic()
        try:
            with cls._app.app_context():
                run = JobRun(job_name, "success", now, result=job.fn(cls._app))
        except Exception as exc:
            # A failing job must not kill the scheduler thread
            logger.exception("Job %s failed", job_name)
            run = JobRun(job_name, "failed", now, error=str(exc))
        finally:
            job.guard.release()

        run.duration_ms = int((time.monotonic() - started) * 1000)
        cls._history[job_name] = run
        return asdict(run)

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Registered jobs with their interval key and latest run."""
        jobs = []
        for name, job in sorted(_jobs.items()):
            last = cls._history.get(name)
            jobs.append({
                "job_name": name,
                "interval_config": job.interval_config,
                "last_run": asdict(last) if last else None,
            })
        return jobs

    # ── Background thread ────────────────────────────────────────────────

    @classmethod
    def _interval_seconds(cls, job: _Job) -> int:
        if not job.interval_config or cls._app is None:
            return 0
        return int(cls._app.config.get(job.interval_config) or 0)

    @classmethod
    def start(cls) -> None:
        if cls.is_running() or cls._app is None:
            return
        cls._stop = threading.Event()
        cls._thread = threading.Thread(target=cls._tick_forever, name="sheetgov-scheduler", daemon=True)
        cls._thread.start()
        logger.info("Scheduler thread started")

    @classmethod
    def stop(cls) -> None:
        if not cls.is_running():
            return
        cls._stop.set()
        cls._thread.join(timeout=5)
        cls._thread = None
        logger.info("Scheduler thread stopped")

    @classmethod
    def _tick_forever(cls) -> None:
        due_at: dict[str, float] = {}
        while not cls._stop.is_set():
            now = time.monotonic()
            for name, job in list(_jobs.items()):
                every = cls._interval_seconds(job)
                if every <= 0:
                    continue
                if now >= due_at.setdefault(name, now + every):
                    cls.run_job(name)
                    due_at[name] = now + every
            cls._stop.wait(1.0)
