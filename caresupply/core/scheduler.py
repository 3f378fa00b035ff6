from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from caresupply.core.exceptions import ServiceError

logger = logging.getLogger(__name__)

_SCHEDULED_JOB_EXCEPTIONS = (OSError, RuntimeError, ValueError, SQLAlchemyError, ServiceError)


def parse_time(value: str) -> time:
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError("Scheduler run time must be in HH:MM format")
    hour = int(parts[0])
    minute = int(parts[1])
    second = int(parts[2]) if len(parts) > 2 else 0
    return time(hour=hour, minute=minute, second=second)


def _next_daily_run(run_time: time, *, now: datetime) -> datetime:
    candidate = now.replace(
        hour=run_time.hour,
        minute=run_time.minute,
        second=run_time.second,
        microsecond=0,
    )
    if candidate <= now:
        candidate = candidate + timedelta(days=1)
    return candidate


@dataclass
class ScheduledJob:
    name: str
    run_time: time
    func: Callable[[], object]
    run_in_thread: bool = False
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None


class Scheduler:
    """Once-per-day job runner owned by the process lifecycle.

    Jobs run serially on the scheduler thread unless ``run_in_thread`` is set.
    Only one process should own a running scheduler.
    """

    def __init__(self, *, timezone_mode: str = "local", poll_seconds: int = 1):
        self._jobs: list[ScheduledJob] = []
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._poll_seconds = max(1, int(poll_seconds))
        self._tz = timezone.utc if timezone_mode.lower() == "utc" else None

    @property
    def jobs(self) -> list[ScheduledJob]:
        with self._lock:
            return list(self._jobs)

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def now(self) -> datetime:
        return datetime.now(tz=self._tz)

    def add_daily_job(
        self,
        name: str,
        run_time: str,
        func: Callable[[], object],
        *,
        run_in_thread: bool = False,
    ) -> ScheduledJob:
        job = ScheduledJob(
            name=name,
            run_time=parse_time(run_time),
            func=func,
            run_in_thread=run_in_thread,
        )
        job.next_run = _next_daily_run(job.run_time, now=self.now())
        with self._lock:
            if any(existing.name == name for existing in self._jobs):
                raise ValueError("Job already registered: {}".format(name))
            self._jobs.append(job)
        logger.info("Registered daily job %s at %s (next run %s)", name, run_time, job.next_run)
        return job

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Scheduler started with %d job(s).", len(self.jobs))

    def stop(self) -> None:
        if not self._thread:
            return
        self._stop_event.set()
        self._thread.join(timeout=self._poll_seconds + 1)
        self._thread = None
        logger.info("Scheduler stopped.")

    def run_pending(self) -> int:
        now = self.now()
        ran = 0
        for job in self.jobs:
            if job.next_run and now >= job.next_run:
                self._run_job(job)
                job.last_run = now
                job.next_run = _next_daily_run(job.run_time, now=now)
                ran += 1
        return ran

    def run_job_now(self, name: str) -> None:
        for job in self.jobs:
            if job.name == name:
                self._safe_run(job)
                return
        raise KeyError(name)

    def _run_job(self, job: ScheduledJob) -> None:
        logger.info("Running scheduled job: %s", job.name)
        if job.run_in_thread:
            threading.Thread(
                target=self._safe_run,
                args=(job,),
                name=f"job-{job.name}",
                daemon=True,
            ).start()
        else:
            self._safe_run(job)

    @staticmethod
    def _safe_run(job: ScheduledJob) -> None:
        try:
            job.func()
        except _SCHEDULED_JOB_EXCEPTIONS:
            logger.exception("Scheduled job failed: %s", job.name)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.run_pending()
            self._stop_event.wait(self._poll_seconds)


__all__ = ["ScheduledJob", "Scheduler", "parse_time"]
