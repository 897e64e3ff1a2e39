from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field, Index

from geoindex.core.clock import now_utc


class TaskResult(SQLModel, table=True):
    """Run bookkeeping of one scheduled job, kept apart from the job definition."""

    __tablename__ = "task_results"

    id: Optional[int] = Field(default=None, primary_key=True)

    job_group: str = Field(index=True)  # task type, e.g. index
    job_name: str = Field(index=True)  # uuid

    # running|success|failed|interrupted
    state: Optional[str] = None

    last_result: Optional[str] = None
    last_finished_at: Optional[datetime] = None
    executions: int = 0
    last_runtime_ms: Optional[int] = None

    updated_at: datetime = Field(default_factory=now_utc, index=True)


Index("idx_task_results_group_name", TaskResult.job_group, TaskResult.job_name, unique=True)
