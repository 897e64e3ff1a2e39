"""Hooks run around writes of search indexes and feature types.

They keep the scheduler in line with the stored schedules, rebuild an index
when its feature type changes and clean up Solr and layer references when a
feature type goes away.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlmodel import Session, select

from geoindex.core.errors import IndexingError, SchedulerError, TaskConflictError
from geoindex.features.source import FeatureSourceFactory
from geoindex.models.app_layer_setting import AppLayerSetting
from geoindex.models.feature_type import FeatureType
from geoindex.models.search_index import SearchIndex, SearchIndexStatus, SearchIndexSummary
from geoindex.scheduling import index_task
from geoindex.scheduling.task_manager import TaskManagerService, task_manager as default_task_manager
from geoindex.scheduling.task_type import JobSpec, TaskType
from geoindex.solr.client import SolrClient

logger = logging.getLogger(__name__)

INTERRUPTED_BY_RESTART = "Indexing was interrupted by a restart"


def detached_copy(search_index: SearchIndex) -> SearchIndex:
    """The fields the delete hooks need, readable after the row is gone."""
    return SearchIndex(
        id=search_index.id,
        name=search_index.name,
        feature_type_id=search_index.feature_type_id,
        schedule_json=search_index.schedule_json,
    )


def _validate_no_task_exists_for_index(search_index: SearchIndex, tm: TaskManagerService) -> None:
    if tm.find_job_for_index(search_index.id) is not None:
        logger.warning("A scheduled task already exists for search index: %s", search_index.name)
        raise TaskConflictError(
            f"A scheduled task already exists for search index: '{search_index.name}'"
        )


def before_save_search_index(
    session: Session,
    search_index: SearchIndex,
    task_manager: TaskManagerService | None = None,
) -> SearchIndex:
    """Create or update the scheduled task of a search index about to be saved.

    The record must have an id. A schedule without uuid gets a new task (the
    uuid is stored on the record); a schedule with uuid updates the cron
    expression, priority and description of its task. A removed schedule is
    not handled here; delete its task through the task admin instead.
    """

    tm = task_manager or default_task_manager
    schedule = search_index.get_schedule()
    if schedule is None:
        return search_index

    if not schedule.uuid:
        _validate_no_task_exists_for_index(search_index, tm)
        logger.info("Creating new task associated with search index: %s", search_index.name)
        job_data = JobSpec(
            type=TaskType.INDEX.value,
            description=schedule.description or f"Index {search_index.name}",
            priority=schedule.priority,
            index_id=search_index.id,
        )
        uuid = tm.create_task(TaskType.INDEX, job_data, schedule.cron_expression)
        if uuid is None:
            raise SchedulerError(f"Could not schedule a task for search index '{search_index.name}'")
        schedule.uuid = uuid
        search_index.set_schedule(schedule)
        return search_index

    logger.info("Updating task %s associated with search index: %s", schedule.uuid, search_index.name)
    key = tm.get_job_key(TaskType.INDEX, schedule.uuid)
    if key is None:
        logger.warning(
            "Task %s of search index %s does not exist, schedule not applied",
            schedule.uuid,
            search_index.name,
        )
        return search_index
    tm.update_task(
        key,
        {
            "description": schedule.description,
            "cron_expression": schedule.cron_expression,
            "priority": schedule.priority,
        },
    )
    return search_index


def after_delete_search_index(search_index: SearchIndex, task_manager: TaskManagerService | None = None) -> None:
    tm = task_manager or default_task_manager
    schedule = search_index.get_schedule()
    if schedule is None or not schedule.uuid:
        return
    try:
        key = tm.get_job_key(TaskType.INDEX, schedule.uuid)
        if key is None:
            return
        logger.info(
            "Deleting index task %s associated with search index: %s",
            schedule.uuid,
            search_index.name,
        )
        ok = tm.delete_task(key)
        logger.info("Task %s deletion %s", key, "succeeded" if ok else "failed")
    except Exception:
        logger.exception("Deleting task %s of search index %s failed", schedule.uuid, search_index.name)


def _indexes_for_feature_type(session: Session, feature_type_id: int) -> list[SearchIndex]:
    return list(
        session.exec(
            select(SearchIndex)
            .where(SearchIndex.feature_type_id == feature_type_id)
            .order_by(SearchIndex.id.asc())
        ).all()
    )


def before_save_feature_type(
    session: Session,
    feature_type: FeatureType,
    *,
    solr_client_factory: Callable[[], SolrClient] | None = None,
    feature_source_factory: FeatureSourceFactory | None = None,
) -> Optional[SearchIndex]:
    """Rebuild the search index of an updated feature type, synchronously.

    New feature types have no index. Build failures are recorded on the index
    and not raised to the caller.
    """

    if feature_type.id is None:
        logger.debug("New feature type %s, no index to update", feature_type.name)
        return None

    indexes = _indexes_for_feature_type(session, feature_type.id)
    if not indexes:
        return None
    search_index = indexes[0]

    hidden = set(feature_type.get_hide_attributes())
    if not [f for f in search_index.get_search_fields() if f not in hidden]:
        logger.debug("Search index %s has no usable search fields, not rebuilt", search_index.name)
        return search_index

    logger.info("Updating search index %s for feature type %s", search_index.name, feature_type.name)
    try:
        return index_task.build_search_index(
            session,
            search_index,
            feature_type,
            solr_client_factory=solr_client_factory,
            feature_source_factory=feature_source_factory,
        )
    except IndexingError:
        logger.exception("Error re-indexing search index %s", search_index.name)
        # status and error message were saved by the build
        session.refresh(search_index)
        if search_index.status != SearchIndexStatus.ERROR.value:
            search_index.set_status(SearchIndexStatus.ERROR)
            session.add(search_index)
            session.commit()
        return search_index


def clear_app_layer_references(session: Session, search_index_id: int) -> int:
    settings_ = session.exec(
        select(AppLayerSetting).where(AppLayerSetting.search_index_id == search_index_id)
    ).all()
    for s in settings_:
        s.search_index_id = None
        session.add(s)
    if settings_:
        session.commit()
    return len(settings_)


def after_delete_feature_type(
    session: Session,
    feature_type: FeatureType,
    *,
    solr_client_factory: Callable[[], SolrClient] | None = None,
    task_manager: TaskManagerService | None = None,
) -> None:
    """Drop the index of a deleted feature type: Solr documents, record and references."""

    if feature_type.id is None:
        return
    for search_index in _indexes_for_feature_type(session, feature_type.id):
        logger.info("Deleting search index %s for feature type %s", search_index.name, feature_type.name)
        make_client = solr_client_factory or index_task.get_solr_client_for_indexing
        try:
            with index_task.configured_helper(make_client()) as helper:
                helper.clear_index_for_layer(search_index.id)
        except IndexingError:
            logger.exception("Error clearing index for %s", search_index.name)
            continue

        index_id = search_index.id
        deleted = detached_copy(search_index)
        session.delete(search_index)
        session.commit()
        after_delete_search_index(deleted, task_manager)
        n = clear_app_layer_references(session, index_id)
        if n:
            logger.info("Cleared search index %s from %s app layer settings", index_id, n)


def recover_orphaned_indexes(session: Session, running_index_ids: set[int] | None = None) -> int:
    """Mark INDEXING records without a running build as ERROR (after a restart)."""

    running_index_ids = running_index_ids or set()
    stuck = session.exec(
        select(SearchIndex).where(SearchIndex.status == SearchIndexStatus.INDEXING.value)
    ).all()
    n = 0
    for search_index in stuck:
        if search_index.id in running_index_ids:
            continue
        summary = search_index.get_summary() or SearchIndexSummary()
        summary.error_message = INTERRUPTED_BY_RESTART
        search_index.set_summary(summary)
        search_index.comment = INTERRUPTED_BY_RESTART
        search_index.set_status(SearchIndexStatus.ERROR)
        session.add(search_index)
        n += 1
    if n:
        session.commit()
        logger.warning("%s search index(es) were left in indexing state and are marked as error", n)
    return n
