from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from geoindex.core.config import settings

logger = logging.getLogger(__name__)

TASK_PROGRESS_EVENT = "task-progress"


class JobProgressEvent(BaseModel):
    """Progress of one task run, as pushed to admin clients."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    instance_id: Optional[str] = Field(default=None, alias="instanceId")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    progress: int = 0
    total: Optional[int] = None
    task_data: dict[str, Any] = Field(default_factory=dict, alias="taskData")
    finished: bool = False
    failed: Optional[bool] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class Subscription:
    def __init__(self, client_id: str, maxsize: int):
        self.client_id = client_id
        self.queue: "queue.Queue[str]" = queue.Queue(maxsize=max(1, maxsize))

    def get(self, timeout: float) -> Optional[str]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None


class ProgressEventBus:
    """In-process fan-out of progress events.

    Publishing never blocks and never raises: events for a subscriber whose
    buffer is full are dropped.
    """

    def __init__(self, queue_size: int | None = None):
        self._queue_size = queue_size or settings.progress_queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[str, Subscription] = {}

    def subscribe(self, client_id: str) -> Subscription:
        sub = Subscription(client_id, self._queue_size)
        with self._lock:
            # a reconnecting client replaces its previous stream
            self._subscribers[client_id] = sub
        logger.debug("Progress subscriber %s added", client_id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if self._subscribers.get(sub.client_id) is sub:
                del self._subscribers[sub.client_id]
        logger.debug("Progress subscriber %s removed", sub.client_id)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: JobProgressEvent) -> None:
        try:
            with self._lock:
                subs = list(self._subscribers.values())
            if not subs:
                logger.debug("No subscribers for progress event of %s", event.instance_id)
                return
            payload = event.to_json()
            for sub in subs:
                try:
                    sub.queue.put_nowait(payload)
                except queue.Full:
                    logger.warning("Progress event for %s dropped, subscriber %s is not keeping up",
                                   event.instance_id, sub.client_id)
        except Exception:
            logger.exception("Publishing progress event failed")


progress_event_bus = ProgressEventBus()
