import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from geoindex.core.config import settings
from geoindex.core.logging import setup_logging
from geoindex.db.engine import engine
from geoindex.db.init_db import init_db
from geoindex.api.events import router as events_router
from geoindex.api.index_admin import router as index_admin_router
from geoindex.api.search import router as search_router
from geoindex.api.search_indexes import router as search_indexes_router
from geoindex.api.tasks import router as tasks_router
from geoindex.scheduling.engine import get_scheduler_engine
from geoindex.scheduling.solr_ping_task import SolrPingTask
from geoindex.scheduling.task_manager import task_manager
from geoindex.scheduling.task_type import JobSpec, TaskType
from geoindex.services.search_index_events import recover_orphaned_indexes

logger = logging.getLogger(__name__)

app = FastAPI(title="geoindex API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    # No cookies; disabling credentials allows wildcard origins.
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _schedule_solr_ping() -> None:
    cron = (settings.solr_ping_cron or "").strip()
    if not cron:
        return
    if task_manager.list_tasks(TaskType.SOLR_PING):
        return
    task_manager.create_task(
        TaskType.SOLR_PING,
        JobSpec(type=TaskType.SOLR_PING.value, description=SolrPingTask.description),
        cron,
    )


@app.on_event("startup")
def _startup():
    setup_logging()
    init_db()

    # nothing can be indexing before the scheduler runs
    with Session(engine) as session:
        recover_orphaned_indexes(session)

    if settings.scheduler_enabled:
        get_scheduler_engine().start()
        _schedule_solr_ping()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=0)")


@app.on_event("shutdown")
def _shutdown():
    if settings.scheduler_enabled:
        get_scheduler_engine().shutdown(wait=False)


@app.get("/healthz")
def healthz():
    return {"ok": True}


app.include_router(index_admin_router)
app.include_router(tasks_router)
app.include_router(events_router)
app.include_router(search_indexes_router)
app.include_router(search_router)
