from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from apscheduler.job import Job

from geoindex.core.config import settings
from geoindex.core.errors import TaskValidationError
from geoindex.scheduling import runner
from geoindex.scheduling.cron import build_cron_trigger
from geoindex.scheduling.engine import SchedulerEngine, get_scheduler_engine, job_spec
from geoindex.scheduling.task_type import JobKey, JobSpec, TaskType

logger = logging.getLogger(__name__)

NEXT_FIRE_TIMES = 5


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _next_fire_times(job: Job, count: int = NEXT_FIRE_TIMES) -> list[datetime]:
    nxt = getattr(job, "next_run_time", None)
    out: list[datetime] = []
    while nxt is not None and len(out) < count:
        out.append(nxt)
        nxt = job.trigger.get_next_fire_time(nxt, nxt + timedelta(microseconds=1))
    return out


class TaskManagerService:
    """Create, update and inspect scheduled tasks."""

    def __init__(self, engine: SchedulerEngine | None = None):
        self._engine = engine

    @property
    def engine(self) -> SchedulerEngine:
        return self._engine or get_scheduler_engine()

    @staticmethod
    def _to_spec(task_type: TaskType, job_data: JobSpec | dict, cron_expression: Optional[str]) -> JobSpec:
        data = job_data.model_dump() if isinstance(job_data, JobSpec) else dict(job_data or {})
        if not str(data.get("type") or "").strip():
            raise TaskValidationError("Job data must contain a type")
        if not str(data.get("description") or "").strip():
            raise TaskValidationError("Job data must contain a description")
        if TaskType.parse(data["type"]) != task_type:
            raise TaskValidationError(f"Job data type {data['type']} does not match task type {task_type.value}")
        data["type"] = task_type.value
        data["cron_expression"] = cron_expression
        try:
            return JobSpec.model_validate(data)
        except ValueError as e:
            raise TaskValidationError(str(e)) from e

    def create_task(
        self,
        task_type: TaskType | str,
        job_data: JobSpec | dict,
        cron_expression: Optional[str],
    ) -> Optional[str]:
        """Schedule a task; returns its uuid, or None when a job with the same key exists.

        Without a cron expression the task runs once, immediately.
        """

        task_type = TaskType.parse(task_type)
        spec = self._to_spec(task_type, job_data, cron_expression)
        trigger = None
        if spec.cron_expression:
            trigger = build_cron_trigger(
                spec.cron_expression,
                start_delay_seconds=settings.task_start_delay_seconds,
            )

        key = JobKey(name=str(uuid.uuid4()), group=task_type.value)
        if not self.engine.add_job(key, spec, trigger):
            logger.warning("Job %s already exists, not scheduled again", key)
            return None

        logger.info(
            "Scheduled %s job %s (%s), cron: %s, priority: %s",
            task_type.value,
            key.name,
            spec.description,
            spec.cron_expression or "run once",
            spec.priority,
        )
        return key.name

    def update_task(self, job_key: JobKey, new_job_data: JobSpec | dict) -> None:
        """Apply a new cron expression, priority or description to an existing job."""

        current = self.engine.get_spec(job_key)
        if current is None:
            logger.warning("Job %s not found, nothing to update", job_key)
            return

        patch = new_job_data.model_dump() if isinstance(new_job_data, JobSpec) else dict(new_job_data or {})
        merged = current.model_dump()
        for k in ("cron_expression", "priority", "description"):
            v = patch.get(k)
            if v is not None and not (isinstance(v, str) and not v.strip()):
                merged[k] = v
        spec = JobSpec.model_validate(merged)

        trigger = None
        if spec.cron_expression and spec.cron_expression != current.cron_expression:
            trigger = build_cron_trigger(
                spec.cron_expression,
                start_delay_seconds=settings.task_start_delay_seconds,
            )

        self.engine.reschedule(job_key, spec, trigger)
        logger.info(
            "Updated job %s, cron: %s, priority: %s, description: %s",
            job_key,
            spec.cron_expression,
            spec.priority,
            spec.description,
        )

    def get_job_key(self, job_type: TaskType | str, uuid_: str) -> Optional[JobKey]:
        group = TaskType.parse(job_type).value
        for job in self.engine.get_jobs(group):
            key = JobKey.from_job_id(job.id)
            if key is not None and key.name == uuid_:
                return key
        return None

    def get_job_spec(self, job_key: JobKey) -> Optional[JobSpec]:
        return self.engine.get_spec(job_key)

    def find_job_for_index(self, index_id: int) -> Optional[JobKey]:
        for job in self.engine.get_jobs(TaskType.INDEX.value):
            spec = job_spec(job)
            if spec is not None and spec.index_id == index_id:
                return JobKey.from_job_id(job.id)
        return None

    # -- admin ---------------------------------------------------------------

    def _summary(self, job: Job) -> dict[str, Any]:
        key = JobKey.from_job_id(job.id)
        spec = job_spec(job)
        result = runner.get_task_result(key) if key else None
        return {
            "type": key.group if key else None,
            "uuid": key.name if key else None,
            "description": spec.description if spec else job.name,
            "cronExpression": spec.cron_expression if spec else None,
            "priority": spec.priority if spec else None,
            "indexId": spec.index_id if spec else None,
            "nextFireTime": _iso(getattr(job, "next_run_time", None)),
            "running": self.engine.is_running(key) if key else False,
            "state": result.state if result else None,
            "lastResult": result.last_result if result else None,
        }

    def list_tasks(self, task_type: TaskType | str | None = None) -> list[dict[str, Any]]:
        group = TaskType.parse(task_type).value if task_type else None
        return [self._summary(j) for j in self.engine.get_jobs(group)]

    def task_details(self, job_key: JobKey) -> Optional[dict[str, Any]]:
        job = self.engine.get_job(job_key)
        if job is None:
            return None
        details = self._summary(job)
        result = runner.get_task_result(job_key)
        spec = job_spec(job)
        details.update(
            {
                "nextFireTimes": [_iso(t) for t in _next_fire_times(job)],
                "executions": result.executions if result else 0,
                "lastExecutionFinished": _iso(result.last_finished_at) if result else None,
                "lastRuntimeMs": result.last_runtime_ms if result else None,
                "jobData": spec.model_dump() if spec else {},
            }
        )
        return details

    def trigger_task(self, job_key: JobKey) -> bool:
        ok = self.engine.trigger_now(job_key)
        if ok:
            logger.info("Job %s triggered to run now", job_key)
        return ok

    def interrupt_task(self, job_key: JobKey) -> bool:
        return self.engine.request_interrupt(job_key)

    def delete_task(self, job_key: JobKey) -> bool:
        if self.engine.mark_deleted(job_key):
            self.engine.request_interrupt(job_key)
        removed = self.engine.remove_job(job_key)
        runner.delete_task_result(job_key)
        if removed:
            logger.info("Job %s deleted", job_key)
        else:
            logger.warning("Job %s not found, nothing deleted", job_key)
        return removed


task_manager = TaskManagerService()
