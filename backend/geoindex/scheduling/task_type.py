from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from geoindex.core.config import settings


class TaskType(str, Enum):
    INDEX = "index"
    SOLR_PING = "solr_ping"

    @classmethod
    def parse(cls, value: Any) -> "TaskType":
        if isinstance(value, TaskType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown task type: {value}") from None


@dataclass(frozen=True)
class JobKey:
    """Identity of a scheduled job: a uuid name inside a task type group."""

    name: str
    group: str

    @property
    def job_id(self) -> str:
        return f"{self.group}:{self.name}"

    @classmethod
    def from_job_id(cls, job_id: str) -> Optional["JobKey"]:
        group, sep, name = (job_id or "").partition(":")
        if not sep or not group or not name:
            return None
        return cls(name=name, group=group)

    def __str__(self) -> str:
        return self.job_id


class JobSpec(BaseModel):
    """Job data stored with a scheduled job (APScheduler job kwargs)."""

    model_config = ConfigDict(frozen=True)

    type: str
    description: str
    cron_expression: Optional[str] = None
    priority: int = Field(default_factory=lambda: settings.task_default_priority)
    index_id: Optional[int] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, v: Any) -> int:
        if v is None or v == "":
            return settings.task_default_priority
        return max(0, int(v))

    @field_validator("cron_expression", mode="before")
    @classmethod
    def _blank_cron(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_kwargs(self) -> dict:
        return self.model_dump(mode="json")
