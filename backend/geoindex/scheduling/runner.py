"""Execution of scheduled jobs.

APScheduler calls `run_scheduled_job` with the job identity and its job data.
The runner takes the per-job lease, runs the task for the job type and keeps
the run bookkeeping (`task_results`) separate from the job definition.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlmodel import Session, select

from geoindex.core.clock import now_utc
from geoindex.core.errors import JobExecutionError, TaskInterruptedError
from geoindex.db.engine import engine
from geoindex.models.task_result import TaskResult
from geoindex.scheduling.engine import SchedulerEngine, get_scheduler_engine
from geoindex.scheduling.index_task import IndexTask
from geoindex.scheduling.solr_ping_task import SolrPingTask
from geoindex.scheduling.task_type import JobKey, JobSpec, TaskType

logger = logging.getLogger(__name__)

STATE_RUNNING = "running"
STATE_SUCCESS = "success"
STATE_FAILED = "failed"
STATE_INTERRUPTED = "interrupted"
STATE_SKIPPED = "skipped"

TASK_FACTORIES: dict[TaskType, Callable[[], Any]] = {
    TaskType.INDEX: IndexTask,
    TaskType.SOLR_PING: SolrPingTask,
}


@dataclass
class TaskContext:
    key: JobKey
    spec: JobSpec
    interrupted: threading.Event = field(default_factory=threading.Event)
    started_at: datetime = field(default_factory=now_utc)


def _get_result(session: Session, key: JobKey) -> Optional[TaskResult]:
    return session.exec(
        select(TaskResult)
        .where(TaskResult.job_group == key.group)
        .where(TaskResult.job_name == key.name)
    ).first()


def get_task_result(key: JobKey) -> Optional[TaskResult]:
    with Session(engine) as session:
        return _get_result(session, key)


def delete_task_result(key: JobKey) -> None:
    with Session(engine) as session:
        r = _get_result(session, key)
        if r is not None:
            session.delete(r)
            session.commit()


def _record(
    key: JobKey,
    *,
    state: str,
    last_result: Optional[str] = None,
    finished_at: Optional[datetime] = None,
    runtime_ms: Optional[int] = None,
    count_execution: bool = False,
) -> None:
    with Session(engine) as session:
        r = _get_result(session, key)
        if r is None:
            r = TaskResult(job_group=key.group, job_name=key.name)
        r.state = state
        if state != STATE_RUNNING:
            r.last_result = last_result
            r.last_finished_at = finished_at
            r.last_runtime_ms = runtime_ms
        if count_execution:
            r.executions = int(r.executions or 0) + 1
        r.updated_at = now_utc()
        session.add(r)
        session.commit()


def run_task(key: JobKey, spec: JobSpec, interrupted: threading.Event | None = None, task: Any = None) -> str:
    """Run one task and record its result; returns the final run state.

    A failed run is raised as JobExecutionError so the scheduler marks it
    failed. An interrupted run is not a failure.
    """

    task_type = TaskType.parse(spec.type)
    if task is None:
        task = TASK_FACTORIES[task_type]()
    ctx = TaskContext(key=key, spec=spec, interrupted=interrupted or threading.Event())

    logger.info("Job %s about to be executed (%s)", key, spec.description)
    _record(key, state=STATE_RUNNING)
    t0 = time.monotonic()

    try:
        result = task.execute(ctx)
    except TaskInterruptedError as e:
        runtime_ms = int((time.monotonic() - t0) * 1000)
        logger.warning("Job %s was interrupted after %s ms", key, runtime_ms)
        _record(
            key,
            state=STATE_INTERRUPTED,
            last_result=f"{task.label} was interrupted: {e}",
            finished_at=now_utc(),
            runtime_ms=runtime_ms,
        )
        return STATE_INTERRUPTED
    except Exception as e:
        runtime_ms = int((time.monotonic() - t0) * 1000)
        logger.error("Job %s threw an exception after %s ms: %s", key, runtime_ms, e)
        _record(
            key,
            state=STATE_FAILED,
            last_result=f"{task.label} failed with {e}. Check logs for details",
            finished_at=None,
            runtime_ms=runtime_ms,
        )
        if isinstance(e, JobExecutionError):
            raise
        raise JobExecutionError(str(e)) from e

    runtime_ms = int((time.monotonic() - t0) * 1000)
    logger.info("Job %s was executed in: %s ms", key, runtime_ms)
    _record(
        key,
        state=STATE_SUCCESS,
        last_result=result or f"{task.label} executed successfully",
        finished_at=now_utc(),
        runtime_ms=runtime_ms,
        count_execution=True,
    )
    return STATE_SUCCESS


def run_scheduled_job(group: str, name: str, spec: dict, engine_: SchedulerEngine | None = None) -> str:
    key = JobKey(name=name, group=group)
    job_spec = JobSpec.model_validate(spec)
    sched = engine_ or get_scheduler_engine()

    if not sched.acquire_lease(key):
        logger.warning("Job %s is already running, this fire is skipped", key)
        return STATE_SKIPPED
    index_id = job_spec.index_id if TaskType.parse(job_spec.type) == TaskType.INDEX else None
    try:
        if index_id is not None and not sched.acquire_index_lease(index_id):
            logger.warning("Search index %s is being built by another job, %s is skipped", index_id, key)
            return STATE_SKIPPED
        try:
            return run_task(key, job_spec, sched.interrupt_event(key))
        finally:
            if index_id is not None:
                sched.release_index_lease(index_id)
    finally:
        if sched.release_lease(key):
            # deleted while running: drop the result the run just wrote
            delete_task_result(key)
