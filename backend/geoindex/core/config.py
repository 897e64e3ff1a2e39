from pydantic import BaseModel
from dotenv import load_dotenv
import os
from pathlib import Path

# Repo root (the directory holding backend/)
_GEOINDEX_ROOT = Path(__file__).resolve().parents[3]

# Load env from project root (single source of truth): <root>/.env
load_dotenv(dotenv_path=_GEOINDEX_ROOT / ".env", override=False)


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    db_url: str = os.getenv(
        "DB_URL",
        f"sqlite:////{_GEOINDEX_ROOT / 'data' / 'db' / 'geoindex.sqlite'}",
    )

    # Solr (search engine). The core name is appended to the base url.
    solr_url: str = os.getenv("SOLR_URL", "http://localhost:8983/solr/")
    solr_core_name: str = os.getenv("SOLR_CORE_NAME", "geoindex")
    # Per-query timeout for searching and batch submission (seconds)
    solr_query_timeout_seconds: int = int(os.getenv("SOLR_QUERY_TIMEOUT_SECONDS", "7"))
    solr_connect_timeout_seconds: int = int(os.getenv("SOLR_CONNECT_TIMEOUT_SECONDS", "10"))
    solr_request_timeout_seconds: int = int(os.getenv("SOLR_REQUEST_TIMEOUT_SECONDS", "60"))
    solr_batch_size: int = int(os.getenv("SOLR_BATCH_SIZE", "1000"))
    # How Solr repairs invalid geometries: error|none|repairBuffer0|repairConvexHull
    solr_geometry_validation_rule: str = os.getenv("SOLR_GEOMETRY_VALIDATION_RULE", "repairBuffer0")

    # Max number of documents returned by the search endpoint
    search_page_size: int = int(os.getenv("SEARCH_PAGE_SIZE", "100"))

    # Scheduler
    scheduler_enabled: bool = _env_flag("SCHEDULER_ENABLED", "1")
    # sqlalchemy (durable, stored in DB_URL) | memory
    scheduler_jobstore: str = os.getenv("SCHEDULER_JOBSTORE", "sqlalchemy")
    scheduler_thread_count: int = int(os.getenv("SCHEDULER_THREAD_COUNT", "10"))
    scheduler_misfire_grace_seconds: int = int(os.getenv("SCHEDULER_MISFIRE_GRACE_SECONDS", "600"))
    scheduler_timezone: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")

    # New cron triggers fire no sooner than this after creation, so the first
    # run does not race the transaction that created the search index.
    task_start_delay_seconds: int = int(os.getenv("TASK_START_DELAY_SECONDS", "90"))
    task_default_priority: int = int(os.getenv("TASK_DEFAULT_PRIORITY", "5"))

    # Optional: periodic Solr availability check (empty = not scheduled)
    solr_ping_cron: str = os.getenv("SOLR_PING_CRON", "")

    # An index stuck in INDEXING for longer than this may be re-triggered manually.
    indexing_stale_after_hours: int = int(os.getenv("INDEXING_STALE_AFTER_HOURS", "12"))
    # Deadline for consuming a feature source during a build (0 = no deadline)
    feature_source_deadline_seconds: int = int(os.getenv("FEATURE_SOURCE_DEADLINE_SECONDS", "0"))

    # Per-subscriber buffer of the progress event channel
    progress_queue_size: int = int(os.getenv("PROGRESS_QUEUE_SIZE", "100"))

    # Optional admin token for /api/admin/* (if set, client must send X-Admin-Token)
    admin_token: str = os.getenv("GEOINDEX_ADMIN_TOKEN", "")

    cors_allow_origins: list[str] = (
        os.getenv("CORS_ALLOW_ORIGINS", "").split(",")
        if os.getenv("CORS_ALLOW_ORIGINS")
        else ["*"]
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    # Logs directory; empty disables the file handler
    log_dir: str = os.getenv("GEOINDEX_LOG_DIR", "")


settings = Settings()
