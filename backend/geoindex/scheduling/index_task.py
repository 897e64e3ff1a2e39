from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from sqlmodel import Session

from geoindex.core.config import settings
from geoindex.core.errors import IndexingError, JobExecutionError, TaskInterruptedError
from geoindex.db.engine import engine
from geoindex.features.source import FeatureSourceFactory
from geoindex.features.sql_source import SqlFeatureSourceFactory
from geoindex.models.feature_type import FeatureType
from geoindex.models.search_index import SearchIndex
from geoindex.scheduling.task_type import TaskType
from geoindex.services.progress_events import JobProgressEvent, ProgressEventBus, progress_event_bus
from geoindex.solr.client import SolrClient, get_solr_client_for_indexing
from geoindex.solr.helper import IndexProgress, ProgressListener, SolrHelper

logger = logging.getLogger(__name__)

default_feature_source_factory: FeatureSourceFactory = SqlFeatureSourceFactory()


def configured_helper(client: SolrClient) -> SolrHelper:
    return (
        SolrHelper(client)
        .with_query_timeout(settings.solr_query_timeout_seconds)
        .with_batch_size(settings.solr_batch_size)
        .with_geometry_validation_rule(settings.solr_geometry_validation_rule)
    )


def build_search_index(
    session: Session,
    search_index: SearchIndex,
    feature_type: FeatureType,
    *,
    solr_client_factory: Callable[[], SolrClient] | None = None,
    feature_source_factory: FeatureSourceFactory | None = None,
    progress_listener: ProgressListener | None = None,
    interrupted: threading.Event | None = None,
) -> SearchIndex:
    """Rebuild one search index synchronously.

    Used by the scheduled index task, the feature type save hook and the
    reindex script. Errors are recorded on the search index and raised.
    """

    make_client = solr_client_factory or get_solr_client_for_indexing
    factory = feature_source_factory or default_feature_source_factory
    deadline = settings.feature_source_deadline_seconds or None

    with configured_helper(make_client()) as helper:
        return helper.add_feature_type_index(
            search_index,
            feature_type,
            session,
            factory,
            progress_listener=progress_listener,
            interrupted=interrupted,
            deadline_seconds=deadline,
        )


class IndexTask:
    """Scheduled (re)build of one search index."""

    task_type = TaskType.INDEX
    label = "Index task"

    def __init__(
        self,
        *,
        solr_client_factory: Callable[[], SolrClient] | None = None,
        feature_source_factory: FeatureSourceFactory | None = None,
        event_bus: ProgressEventBus | None = None,
    ):
        self.solr_client_factory = solr_client_factory
        self.feature_source_factory = feature_source_factory
        self.event_bus = event_bus or progress_event_bus

    def _publish(self, ctx, search_index: SearchIndex, progress: IndexProgress | None, **kw) -> None:
        event = JobProgressEvent(
            type=self.task_type.value,
            instance_id=ctx.key.name,
            started_at=(progress.started_at if progress else ctx.started_at),
            progress=(progress.progress if progress else 0),
            total=(progress.total if progress else None),
            task_data={
                "description": ctx.spec.description,
                "indexId": search_index.id,
                "objectName": search_index.name,
            },
            **kw,
        )
        self.event_bus.publish(event)

    def execute(self, ctx) -> None:
        index_id: Optional[int] = ctx.spec.index_id
        if index_id is None:
            raise JobExecutionError(f"Job {ctx.key} has no search index id")

        with Session(engine) as session:
            search_index = session.get(SearchIndex, index_id)
            if search_index is None:
                raise JobExecutionError(f"Search index {index_id} not found")
            if search_index.feature_type_id is None:
                raise JobExecutionError(f"Search index {index_id} has no feature type")
            feature_type = session.get(FeatureType, search_index.feature_type_id)
            if feature_type is None:
                raise JobExecutionError(
                    f"Feature type {search_index.feature_type_id} of search index {index_id} not found"
                )

            logger.info("Start indexing for search index %s (%s)", search_index.name, index_id)
            last: dict[str, IndexProgress] = {}

            def _on_progress(p: IndexProgress) -> None:
                last["p"] = p
                self._publish(ctx, search_index, p)

            try:
                search_index = build_search_index(
                    session,
                    search_index,
                    feature_type,
                    solr_client_factory=self.solr_client_factory,
                    feature_source_factory=self.feature_source_factory,
                    progress_listener=_on_progress,
                    interrupted=ctx.interrupted,
                )
            except TaskInterruptedError:
                self._publish(ctx, search_index, last.get("p"), finished=True, failed=True)
                raise
            except IndexingError as e:
                self._publish(ctx, search_index, last.get("p"), finished=True, failed=True)
                raise JobExecutionError(str(e)) from e

            summary = search_index.get_summary()
            done = IndexProgress(
                index_id=index_id,
                progress=summary.total if summary else 0,
                total=summary.total if summary else 0,
                started_at=summary.started_at if summary else ctx.started_at,
            )
            self._publish(ctx, search_index, done, finished=True, failed=search_index.status == "error")
            logger.info("Indexing of %s finished with status %s", search_index.name, search_index.status)
