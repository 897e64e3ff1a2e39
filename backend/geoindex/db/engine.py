from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlmodel import create_engine

from geoindex.core.config import settings


def _make_engine(db_url: str):
    url = make_url(db_url)
    connect_args: dict = {}
    if url.get_backend_name() == "sqlite":
        # Scheduler threads share the engine with request threads.
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)


engine = _make_engine(settings.db_url)
