from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone as dt_timezone
from typing import Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    JobEvent,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.jobstores.base import ConflictingIdError, JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger

from geoindex.core.config import settings
from geoindex.scheduling.task_type import JobKey, JobSpec

logger = logging.getLogger(__name__)

# Textual reference so durable job stores can restore the job after a restart.
JOB_FUNC = "geoindex.scheduling.runner:run_scheduled_job"

JOBSTORE_TABLE = "scheduler_jobs"


def _log_job_event(event: JobEvent) -> None:
    if event.code == EVENT_JOB_EXECUTED:
        logger.info("Job %s executed (scheduled at %s)", event.job_id, event.scheduled_run_time)
    elif event.code == EVENT_JOB_ERROR:
        logger.error("Job %s failed: %s", event.job_id, getattr(event, "exception", None))
    elif event.code == EVENT_JOB_MISSED:
        logger.warning("Job %s missed its run at %s", event.job_id, event.scheduled_run_time)
    elif event.code == EVENT_JOB_MAX_INSTANCES:
        # submission events carry the list of coalesced run times
        logger.warning("Job %s is still running, fire at %s skipped", event.job_id, event.scheduled_run_times)


class SchedulerEngine:
    """APScheduler wrapper keyed by JobKey.

    Besides the job store it keeps, per job, a lease taken for the duration of
    a run and an interrupt flag the running task polls. Index jobs also take a
    lease on their search index, so two jobs never build the same index.
    """

    def __init__(
        self,
        *,
        jobstore: str | None = None,
        db_url: str | None = None,
        thread_count: int | None = None,
        misfire_grace_seconds: int | None = None,
        timezone: str | None = None,
    ):
        kind = (jobstore or settings.scheduler_jobstore or "memory").strip().lower()
        if kind == "sqlalchemy":
            store = SQLAlchemyJobStore(url=db_url or settings.db_url, tablename=JOBSTORE_TABLE)
        elif kind == "memory":
            store = MemoryJobStore()
        else:
            raise ValueError(f"unknown scheduler job store: {kind}")
        self.jobstore_kind = kind

        self.scheduler = BackgroundScheduler(
            jobstores={"default": store},
            executors={"default": ThreadPoolExecutor(thread_count or settings.scheduler_thread_count)},
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": misfire_grace_seconds or settings.scheduler_misfire_grace_seconds,
            },
            timezone=timezone or settings.scheduler_timezone,
        )
        self.scheduler.add_listener(
            _log_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES,
        )

        self._lock = threading.RLock()
        self._leases: dict[str, threading.Lock] = {}
        self._interrupts: dict[str, threading.Event] = {}
        self._deleted: set[str] = set()
        self._index_leases: dict[int, threading.Lock] = {}

    # -- lifecycle -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self, paused: bool = False) -> None:
        if self.running:
            return
        self.scheduler.start(paused=paused)
        logger.info("Scheduler started (job store: %s, paused: %s)", self.jobstore_kind, paused)

    def shutdown(self, wait: bool = False) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    # -- jobs ----------------------------------------------------------------

    def add_job(self, key: JobKey, spec: JobSpec, trigger: BaseTrigger | None) -> bool:
        """Add a job; `trigger=None` runs it once, now. False when the key is taken."""

        with self._lock:
            if self.get_job(key) is not None:
                return False
            try:
                self.scheduler.add_job(
                    JOB_FUNC,
                    trigger=trigger,
                    id=key.job_id,
                    name=spec.description,
                    kwargs={"group": key.group, "name": key.name, "spec": spec.to_kwargs()},
                    replace_existing=False,
                )
            except ConflictingIdError:
                return False
        return True

    def get_job(self, key: JobKey) -> Optional[Job]:
        return self.scheduler.get_job(key.job_id)

    def get_jobs(self, group: str | None = None) -> list[Job]:
        jobs = self.scheduler.get_jobs()
        if group is None:
            return jobs
        prefix = f"{group}:"
        return [j for j in jobs if j.id.startswith(prefix)]

    def get_spec(self, key: JobKey) -> Optional[JobSpec]:
        job = self.get_job(key)
        if job is None:
            return None
        return job_spec(job)

    def reschedule(self, key: JobKey, spec: JobSpec, trigger: BaseTrigger | None) -> bool:
        """Replace job data and trigger of an existing job together."""

        with self._lock:
            if self.get_job(key) is None:
                return False
            changes = {
                "name": spec.description,
                "kwargs": {"group": key.group, "name": key.name, "spec": spec.to_kwargs()},
            }
            self.scheduler.modify_job(key.job_id, **changes)
            if trigger is not None:
                self.scheduler.reschedule_job(key.job_id, trigger=trigger)
        return True

    def remove_job(self, key: JobKey) -> bool:
        with self._lock:
            try:
                self.scheduler.remove_job(key.job_id)
            except JobLookupError:
                return False
        return True

    def trigger_now(self, key: JobKey) -> bool:
        with self._lock:
            if self.get_job(key) is None:
                return False
            self.scheduler.modify_job(key.job_id, next_run_time=datetime.now(dt_timezone.utc))
        # wake the scheduler loop so the job does not wait for the next check
        if self.running:
            self.scheduler.wakeup()
        return True

    # -- leases and interruption ---------------------------------------------

    def acquire_lease(self, key: JobKey) -> bool:
        with self._lock:
            lease = self._leases.setdefault(key.job_id, threading.Lock())
            if not lease.acquire(blocking=False):
                return False
            self._interrupts[key.job_id] = threading.Event()
            return True

    def release_lease(self, key: JobKey) -> bool:
        """Release the run lease; True when the job was deleted while it ran."""

        with self._lock:
            self._interrupts.pop(key.job_id, None)
            lease = self._leases.get(key.job_id)
            if lease is not None and lease.locked():
                lease.release()
            if key.job_id in self._deleted:
                self._deleted.discard(key.job_id)
                return True
            return False

    def is_running(self, key: JobKey) -> bool:
        with self._lock:
            lease = self._leases.get(key.job_id)
            return lease is not None and lease.locked()

    def mark_deleted(self, key: JobKey) -> bool:
        """Flag a running job as deleted; False when it is not running."""

        with self._lock:
            if not self.is_running(key):
                return False
            self._deleted.add(key.job_id)
            return True

    # one build per search index, whatever job runs it
    def acquire_index_lease(self, index_id: int) -> bool:
        with self._lock:
            lease = self._index_leases.setdefault(index_id, threading.Lock())
            return lease.acquire(blocking=False)

    def release_index_lease(self, index_id: int) -> None:
        with self._lock:
            lease = self._index_leases.get(index_id)
            if lease is not None and lease.locked():
                lease.release()

    def interrupt_event(self, key: JobKey) -> threading.Event:
        with self._lock:
            return self._interrupts.setdefault(key.job_id, threading.Event())

    def request_interrupt(self, key: JobKey) -> bool:
        """Ask a running job to stop; False when it is not running."""

        with self._lock:
            if not self.is_running(key):
                return False
            self._interrupts.setdefault(key.job_id, threading.Event()).set()
        logger.info("Interrupt requested for job %s", key)
        return True


def job_spec(job: Job) -> Optional[JobSpec]:
    raw = (job.kwargs or {}).get("spec")
    if not isinstance(raw, dict):
        return None
    try:
        return JobSpec.model_validate(raw)
    except ValueError:
        logger.warning("Job %s has invalid job data: %r", job.id, raw)
        return None


_engine: Optional[SchedulerEngine] = None
_engine_lock = threading.Lock()


def get_scheduler_engine() -> SchedulerEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = SchedulerEngine()
        return _engine


def set_scheduler_engine(engine: Optional[SchedulerEngine]) -> None:
    global _engine
    with _engine_lock:
        _engine = engine
