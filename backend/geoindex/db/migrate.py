from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config

from geoindex.core.config import settings


GEOINDEX_ROOT = Path(__file__).resolve().parents[3]  # repo root
BACKEND_DIR = GEOINDEX_ROOT / "backend"
ALEMBIC_INI = BACKEND_DIR / "alembic.ini"
LOCK_PATH = GEOINDEX_ROOT / "data" / ".db_migrate.lock"


@contextmanager
def _file_lock(path: Path):
    import fcntl

    path.parent.mkdir(parents=True, exist_ok=True)
    f = path.open("w")
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        yield
    finally:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError:
            pass
        f.close()


def _alembic_cfg() -> Config:
    cfg = Config(str(ALEMBIC_INI))
    cfg.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    # env.py will override to settings.db_url anyway, but keep consistent.
    cfg.set_main_option("sqlalchemy.url", settings.db_url)
    return cfg


def migrate_db() -> None:
    """Migrate to Alembic head.

    Safe to call from the API process and from scripts; concurrent callers
    serialize on a file lock.
    """

    with _file_lock(LOCK_PATH):
        command.upgrade(_alembic_cfg(), "head")
