from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field
from sqlmodel import Session, select

from geoindex.core.clock import now_utc
from geoindex.models.feature_type import FeatureType
from geoindex.models.search_index import SearchIndex, TaskSchedule
from geoindex.scheduling.task_manager import TaskManagerService
from geoindex.services import search_index_events as events

logger = logging.getLogger(__name__)


class SearchIndexIn(BaseModel):
    """Writable fields of a search index (admin payload)."""

    name: Optional[str] = None
    feature_type_id: Optional[int] = Field(default=None, alias="featureTypeId")
    search_fields: Optional[list[str]] = Field(default=None, alias="searchFieldsUsed")
    display_fields: Optional[list[str]] = Field(default=None, alias="searchDisplayFieldsUsed")
    comment: Optional[str] = None
    schedule: Optional[TaskSchedule] = None

    model_config = {"populate_by_name": True}


def list_search_indexes(session: Session) -> list[SearchIndex]:
    return list(session.exec(select(SearchIndex).order_by(SearchIndex.id.asc())).all())


def get_search_index(session: Session, index_id: int) -> Optional[SearchIndex]:
    return session.get(SearchIndex, index_id)


def _apply(search_index: SearchIndex, data: SearchIndexIn, fields: set[str]) -> None:
    if "name" in fields and data.name is not None:
        search_index.name = data.name
    if "feature_type_id" in fields:
        search_index.feature_type_id = data.feature_type_id
    if "search_fields" in fields:
        search_index.set_search_fields(data.search_fields)
    if "display_fields" in fields:
        search_index.set_display_fields(data.display_fields)
    if "comment" in fields:
        search_index.comment = data.comment
    if "schedule" in fields:
        current = search_index.get_schedule()
        schedule = data.schedule
        # the job uuid is owned by the scheduler, clients cannot change it
        if schedule is not None and current is not None and current.uuid:
            schedule = schedule.model_copy(update={"uuid": current.uuid})
        elif schedule is not None:
            schedule = schedule.model_copy(update={"uuid": None})
        search_index.set_schedule(schedule)


def create_search_index(
    session: Session,
    data: SearchIndexIn,
    task_manager: TaskManagerService | None = None,
) -> SearchIndex:
    if not (data.name or "").strip():
        raise ValueError("name is required")
    if data.feature_type_id is not None and session.get(FeatureType, data.feature_type_id) is None:
        raise LookupError(f"feature type {data.feature_type_id} not found")

    search_index = SearchIndex(name=data.name)
    _apply(search_index, data, data.model_fields_set - {"name"})

    # insert first: the scheduled task refers to the index id
    session.add(search_index)
    session.commit()
    session.refresh(search_index)

    try:
        events.before_save_search_index(session, search_index, task_manager)
    except Exception:
        session.delete(search_index)
        session.commit()
        raise

    search_index.updated_at = now_utc()
    session.add(search_index)
    session.commit()
    session.refresh(search_index)
    logger.info("Created search index %s (%s)", search_index.name, search_index.id)
    return search_index


def update_search_index(
    session: Session,
    search_index: SearchIndex,
    data: SearchIndexIn,
    task_manager: TaskManagerService | None = None,
) -> SearchIndex:
    if data.feature_type_id is not None and session.get(FeatureType, data.feature_type_id) is None:
        raise LookupError(f"feature type {data.feature_type_id} not found")

    _apply(search_index, data, data.model_fields_set)
    events.before_save_search_index(session, search_index, task_manager)

    search_index.updated_at = now_utc()
    session.add(search_index)
    session.commit()
    session.refresh(search_index)
    return search_index


def delete_search_index(
    session: Session,
    search_index: SearchIndex,
    task_manager: TaskManagerService | None = None,
) -> None:
    index_id = search_index.id
    deleted = events.detached_copy(search_index)
    session.delete(search_index)
    session.commit()

    events.after_delete_search_index(deleted, task_manager)
    events.clear_app_layer_references(session, index_id)
    logger.info("Deleted search index %s (%s)", deleted.name, index_id)
