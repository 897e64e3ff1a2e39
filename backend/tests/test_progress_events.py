from __future__ import annotations

import json
from datetime import datetime, timezone

from geoindex.api.events import event_stream
from geoindex.services.progress_events import JobProgressEvent, ProgressEventBus


def _event(progress: int = 1, **kw) -> JobProgressEvent:
    return JobProgressEvent(
        type="index",
        instance_id="abc",
        started_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        progress=progress,
        total=10,
        task_data={"indexId": 4, "objectName": "roads"},
        **kw,
    )


def test_event_json_uses_camel_case():
    data = json.loads(_event(finished=True, failed=False).to_json())
    assert data["instanceId"] == "abc"
    assert data["taskData"] == {"indexId": 4, "objectName": "roads"}
    assert data["startedAt"].startswith("2030-01-01T00:00:00")
    assert data["finished"] is True
    assert data["failed"] is False
    assert "instance_id" not in data


def test_publish_without_subscribers_is_a_noop():
    bus = ProgressEventBus(queue_size=2)
    bus.publish(_event())
    assert bus.subscriber_count() == 0


def test_each_subscriber_gets_every_event():
    bus = ProgressEventBus(queue_size=10)
    a = bus.subscribe("a")
    b = bus.subscribe("b")

    bus.publish(_event(1))
    bus.publish(_event(2))

    for sub in (a, b):
        assert [json.loads(sub.get(0.01))["progress"] for _ in range(2)] == [1, 2]
        assert sub.get(0.01) is None


def test_slow_subscriber_drops_events():
    bus = ProgressEventBus(queue_size=2)
    sub = bus.subscribe("slow")

    for i in range(5):
        bus.publish(_event(i))

    assert [json.loads(sub.get(0.01))["progress"] for _ in range(2)] == [0, 1]
    assert sub.get(0.01) is None


def test_reconnecting_client_replaces_its_subscription():
    bus = ProgressEventBus(queue_size=2)
    old = bus.subscribe("admin")
    new = bus.subscribe("admin")
    assert bus.subscriber_count() == 1

    bus.unsubscribe(old)
    assert bus.subscriber_count() == 1
    bus.unsubscribe(new)
    assert bus.subscriber_count() == 0


def test_event_stream_frames():
    bus = ProgressEventBus(queue_size=10)
    stream = event_stream("admin", bus=bus, keepalive_s=0.01, max_events=1)

    assert next(stream) == ": connected\n\n"
    assert bus.subscriber_count() == 1
    assert next(stream) == ": keep-alive\n\n"

    bus.publish(_event(3))
    frame = next(stream)
    assert frame.startswith("event: task-progress\ndata: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame.split("data: ", 1)[1])["progress"] == 3

    assert list(stream) == []
    assert bus.subscriber_count() == 0


def test_closed_stream_unsubscribes():
    bus = ProgressEventBus(queue_size=10)
    stream = event_stream("admin", bus=bus, keepalive_s=0.01)
    next(stream)
    stream.close()
    assert bus.subscriber_count() == 0
