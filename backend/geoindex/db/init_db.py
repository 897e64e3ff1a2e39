import logging

from sqlmodel import SQLModel

from geoindex.db.engine import engine
from geoindex.db.migrate import migrate_db

# Ensure models are registered in SQLModel metadata
from geoindex.models.search_index import SearchIndex  # noqa: F401
from geoindex.models.feature_type import FeatureType  # noqa: F401
from geoindex.models.app_layer_setting import AppLayerSetting  # noqa: F401
from geoindex.models.task_result import TaskResult  # noqa: F401

logger = logging.getLogger(__name__)


def init_db() -> None:
    # Alembic migrations (authoritative)
    migrated = False
    try:
        migrate_db()
        migrated = True
    except Exception as e:
        # Fallback: do not brick the service when migrations cannot run.
        logger.warning("migrate_db failed, falling back to create_all: %s", e)

    # IMPORTANT: When migrations are working, do NOT create tables from metadata here;
    # otherwise new models may create tables outside Alembic.
    if not migrated:
        SQLModel.metadata.create_all(engine)
