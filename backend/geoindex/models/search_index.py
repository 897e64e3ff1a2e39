from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field as PydanticField
from sqlmodel import SQLModel, Field

from geoindex.core.clock import now_utc


class SearchIndexStatus(str, Enum):
    INITIAL = "initial"
    INDEXING = "indexing"
    INDEXED = "indexed"
    ERROR = "error"


class TaskSchedule(BaseModel):
    """Schedule of a search index; `uuid` is the scheduled job name once assigned."""

    cron_expression: str
    description: str = ""
    priority: int = PydanticField(default=5, ge=0)
    uuid: Optional[str] = None


class SearchIndexSummary(BaseModel):
    """Outcome of the last build attempt."""

    started_at: Optional[datetime] = None
    duration: float = 0.0  # seconds
    total: int = 0
    skipped: int = 0
    error_message: Optional[str] = None


def _load_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        v = json.loads(raw)
    except Exception:
        return []
    if not isinstance(v, list):
        return []
    return [str(x) for x in v]


class SearchIndex(SQLModel, table=True):
    __tablename__ = "search_indexes"

    id: Optional[int] = Field(default=None, primary_key=True)

    name: str
    feature_type_id: Optional[int] = Field(default=None, index=True)

    # JSON arrays of attribute names (ordered)
    search_fields_json: str = Field(default="[]")
    display_fields_json: str = Field(default="[]")

    comment: Optional[str] = None

    # Completion time of the last successful build
    last_indexed: Optional[datetime] = None

    # JSON TaskSchedule (optional)
    schedule_json: Optional[str] = None

    # initial|indexing|indexed|error
    status: str = Field(default=SearchIndexStatus.INITIAL.value, index=True)

    # JSON SearchIndexSummary (written after each build attempt)
    summary_json: Optional[str] = None

    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)

    def get_search_fields(self) -> list[str]:
        return _load_list(self.search_fields_json)

    def set_search_fields(self, fields: list[str] | None) -> "SearchIndex":
        self.search_fields_json = json.dumps(list(fields or []), ensure_ascii=False)
        return self

    def get_display_fields(self) -> list[str]:
        return _load_list(self.display_fields_json)

    def set_display_fields(self, fields: list[str] | None) -> "SearchIndex":
        self.display_fields_json = json.dumps(list(fields or []), ensure_ascii=False)
        return self

    def get_schedule(self) -> Optional[TaskSchedule]:
        if not self.schedule_json:
            return None
        return TaskSchedule.model_validate_json(self.schedule_json)

    def set_schedule(self, schedule: Optional[TaskSchedule]) -> "SearchIndex":
        self.schedule_json = schedule.model_dump_json() if schedule else None
        return self

    def get_summary(self) -> Optional[SearchIndexSummary]:
        if not self.summary_json:
            return None
        return SearchIndexSummary.model_validate_json(self.summary_json)

    def set_summary(self, summary: Optional[SearchIndexSummary]) -> "SearchIndex":
        self.summary_json = summary.model_dump_json() if summary else None
        return self

    def set_status(self, status: SearchIndexStatus) -> "SearchIndex":
        self.status = status.value
        self.updated_at = now_utc()
        return self

    def to_dict(self) -> dict:
        summary = self.get_summary()
        schedule = self.get_schedule()
        return {
            "id": self.id,
            "name": self.name,
            "featureTypeId": self.feature_type_id,
            "searchFieldsUsed": self.get_search_fields(),
            "searchDisplayFieldsUsed": self.get_display_fields(),
            "comment": self.comment,
            "lastIndexed": self.last_indexed.isoformat() if self.last_indexed else None,
            "schedule": schedule.model_dump() if schedule else None,
            "status": self.status,
            "summary": summary.model_dump(mode="json") if summary else None,
        }
