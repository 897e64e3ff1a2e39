from __future__ import annotations

import logging
from typing import Iterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from geoindex.core.config import settings
from geoindex.services.progress_events import TASK_PROGRESS_EVENT, ProgressEventBus, progress_event_bus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/events", tags=["admin-events"])

KEEPALIVE_SECONDS = 15.0


def _require_admin(request: Request) -> None:
    token = (settings.admin_token or "").strip()
    if not token:
        return
    got = (request.headers.get("x-admin-token") or "").strip()
    if got != token:
        raise HTTPException(status_code=401, detail="admin token required")


def event_stream(
    client_id: str,
    bus: ProgressEventBus | None = None,
    keepalive_s: float = KEEPALIVE_SECONDS,
    max_events: int | None = None,
) -> Iterator[str]:
    """Server-sent events for one client; a comment line is sent while idle."""

    bus = bus or progress_event_bus
    sub = bus.subscribe(client_id)
    sent = 0
    try:
        yield ": connected\n\n"
        while max_events is None or sent < max_events:
            payload = sub.get(timeout=keepalive_s)
            if payload is None:
                yield ": keep-alive\n\n"
                continue
            yield f"event: {TASK_PROGRESS_EVENT}\ndata: {payload}\n\n"
            sent += 1
    finally:
        bus.unsubscribe(sub)


@router.get("/{client_id}")
def api_events(client_id: str, request: Request):
    _require_admin(request)
    return StreamingResponse(
        event_stream(client_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
