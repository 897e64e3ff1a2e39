from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session

from geoindex.core.clock import now_utc
from geoindex.core.config import settings
from geoindex.core.errors import SolrError
from geoindex.db.engine import engine
from geoindex.models.search_index import SearchIndex, SearchIndexStatus
from geoindex.scheduling import index_task
from geoindex.scheduling.task_manager import task_manager
from geoindex.scheduling.task_type import JobSpec, TaskType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/index", tags=["admin-index"])


def _require_admin(request: Request) -> None:
    token = (settings.admin_token or "").strip()
    if not token:
        return
    got = (request.headers.get("x-admin-token") or "").strip()
    if got != token:
        raise HTTPException(status_code=401, detail="admin token required")


def get_session():
    with Session(engine) as session:
        yield session


def _indexing_in_progress(search_index: SearchIndex) -> bool:
    if search_index.status != SearchIndexStatus.INDEXING.value:
        return False
    stale_before = now_utc() - timedelta(hours=settings.indexing_stale_after_hours)
    return bool(search_index.updated_at and search_index.updated_at > stale_before)


@router.get("/ping")
def api_ping(request: Request):
    _require_admin(request)
    try:
        with index_task.get_solr_client_for_indexing() as client:
            res = client.ping()
    except SolrError as e:
        logger.error("Solr ping failed: %s", e)
        return JSONResponse(status_code=500, content={"message": str(e)})
    return {
        "status": res.get("status"),
        "timeElapsed": (res.get("responseHeader") or {}).get("QTime"),
    }


@router.put("/{index_id}", status_code=202)
def api_run_index(index_id: int, request: Request, session: Session = Depends(get_session)):
    """Build an index now, through its scheduled task or a one-time task."""

    _require_admin(request)
    search_index = session.get(SearchIndex, index_id)
    if not search_index:
        raise HTTPException(status_code=404, detail="search index not found")

    if _indexing_in_progress(search_index):
        raise HTTPException(
            status_code=409,
            detail="Indexing already in progress, check tasks overview before retrying",
        )

    key = None
    schedule = search_index.get_schedule()
    if schedule is not None and schedule.uuid:
        key = task_manager.get_job_key(TaskType.INDEX, schedule.uuid)
    if key is None:
        key = task_manager.find_job_for_index(search_index.id)
        spec = task_manager.get_job_spec(key) if key is not None else None
        if spec is not None and not spec.cron_expression:
            raise HTTPException(
                status_code=409,
                detail="Indexing already scheduled, check tasks overview before retrying",
            )
    if key is not None and task_manager.trigger_task(key):
        return {"message": "Indexing started", "taskType": key.group, "taskUuid": key.name}

    job_data = JobSpec(
        type=TaskType.INDEX.value,
        description=f"One-time indexing of {search_index.name}",
        priority=0,
        index_id=search_index.id,
    )
    uuid = task_manager.create_task(TaskType.INDEX, job_data, None)
    if uuid is None:
        raise HTTPException(status_code=500, detail="could not schedule indexing task")
    return {"message": "Indexing scheduled", "taskType": TaskType.INDEX.value, "taskUuid": uuid}


@router.delete("/{index_id}", status_code=204)
def api_clear_index(index_id: int, request: Request, session: Session = Depends(get_session)):
    _require_admin(request)
    search_index = session.get(SearchIndex, index_id)
    if not search_index:
        raise HTTPException(status_code=404, detail="search index not found")

    try:
        with index_task.configured_helper(index_task.get_solr_client_for_indexing()) as helper:
            helper.clear_index_for_layer(search_index.id)
    except SolrError as e:
        logger.error("Clearing index %s failed: %s", index_id, e)
        raise HTTPException(status_code=500, detail=f"Error clearing index: {e}")

    search_index.last_indexed = None
    search_index.comment = "Index cleared"
    search_index.set_summary(None)
    search_index.set_status(SearchIndexStatus.INITIAL)
    session.add(search_index)
    session.commit()
    return Response(status_code=204)
