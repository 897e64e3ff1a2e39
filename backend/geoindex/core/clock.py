from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    # Keep naive UTC for SQLite compatibility.
    return datetime.now(timezone.utc).replace(tzinfo=None)
