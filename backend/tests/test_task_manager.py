from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from geoindex.core.errors import TaskValidationError
from geoindex.scheduling import runner
from geoindex.scheduling.task_manager import TaskManagerService
from geoindex.scheduling.task_type import JobKey, JobSpec, TaskType


def _spec(**kw) -> JobSpec:
    data = {"type": "index", "description": "nightly roads", "index_id": 1}
    data.update(kw)
    return JobSpec(**data)


def test_create_task_schedules_cron_job(sched):
    tm = TaskManagerService(sched)
    name = tm.create_task(TaskType.INDEX, _spec(), "0 0 2 * * ?")

    assert name is not None
    key = tm.get_job_key(TaskType.INDEX, name)
    assert key == JobKey(name=name, group="index")

    job = sched.get_job(key)
    assert isinstance(job.trigger, CronTrigger)
    assert job.next_run_time >= datetime.now(timezone.utc) + timedelta(seconds=80)

    spec = tm.get_job_spec(key)
    assert spec.priority == 5
    assert spec.cron_expression == "0 0 2 * * ?"
    assert spec.index_id == 1


def test_create_task_accepts_plain_dict(sched):
    tm = TaskManagerService(sched)
    name = tm.create_task("index", {"type": "index", "description": "d", "index_id": 7, "priority": -3}, "0 3 * * *")
    spec = tm.get_job_spec(JobKey(name=name, group="index"))
    assert spec.priority == 0
    assert spec.index_id == 7


@pytest.mark.parametrize(
    "job_data",
    [
        {"type": "index"},
        {"type": "index", "description": "  "},
        {"description": "no type"},
        {"type": "solr_ping", "description": "wrong group"},
    ],
)
def test_create_task_rejects_incomplete_job_data(sched, job_data):
    with pytest.raises(TaskValidationError):
        TaskManagerService(sched).create_task(TaskType.INDEX, job_data, "0 3 * * *")


def test_create_task_rejects_invalid_cron(sched):
    with pytest.raises(TaskValidationError):
        TaskManagerService(sched).create_task(TaskType.INDEX, _spec(), "not a cron")
    assert sched.get_jobs() == []


def test_create_task_without_cron_runs_once(sched):
    tm = TaskManagerService(sched)
    name = tm.create_task(TaskType.INDEX, _spec(description="One-time indexing of roads"), None)
    job = sched.get_job(JobKey(name=name, group="index"))
    assert isinstance(job.trigger, DateTrigger)


def test_duplicate_job_key_returns_none(sched, monkeypatch):
    fixed = uuid.UUID("00000000-0000-4000-8000-000000000001")
    monkeypatch.setattr("geoindex.scheduling.task_manager.uuid.uuid4", lambda: fixed)
    tm = TaskManagerService(sched)

    assert tm.create_task(TaskType.INDEX, _spec(), "0 3 * * *") == str(fixed)
    assert tm.create_task(TaskType.INDEX, _spec(), "0 4 * * *") is None
    assert len(sched.get_jobs()) == 1


def test_update_task_replaces_cron_priority_and_description(sched):
    tm = TaskManagerService(sched)
    key = JobKey(name=tm.create_task(TaskType.INDEX, _spec(), "0 3 * * *"), group="index")

    update = {"cron_expression": "0 5 * * *", "priority": 8, "description": "morning roads"}
    tm.update_task(key, update)
    tm.update_task(key, update)

    spec = tm.get_job_spec(key)
    assert spec.cron_expression == "0 5 * * *"
    assert spec.priority == 8
    assert spec.description == "morning roads"
    assert spec.index_id == 1
    assert str(sched.get_job(key).trigger.fields[5]) == "5"  # hour


def test_update_missing_task_is_a_noop(sched):
    TaskManagerService(sched).update_task(JobKey(name="missing", group="index"), {"priority": 1})
    assert sched.get_jobs() == []


def test_find_job_for_index(sched):
    tm = TaskManagerService(sched)
    name = tm.create_task(TaskType.INDEX, _spec(index_id=12), "0 3 * * *")
    tm.create_task(TaskType.INDEX, _spec(index_id=13), "0 3 * * *")

    assert tm.find_job_for_index(12) == JobKey(name=name, group="index")
    assert tm.find_job_for_index(99) is None


def test_list_and_details(sched):
    tm = TaskManagerService(sched)
    name = tm.create_task(TaskType.INDEX, _spec(), "0 3 * * *")
    tm.create_task(TaskType.SOLR_PING, {"type": "solr_ping", "description": "ping"}, "*/5 * * * *")

    assert len(tm.list_tasks()) == 2
    tasks = tm.list_tasks(TaskType.INDEX)
    assert [t["uuid"] for t in tasks] == [name]
    assert tasks[0]["state"] is None

    details = tm.task_details(JobKey(name=name, group="index"))
    assert details["description"] == "nightly roads"
    assert details["cronExpression"] == "0 3 * * *"
    assert len(details["nextFireTimes"]) == 5
    assert details["nextFireTimes"] == sorted(details["nextFireTimes"])
    assert details["executions"] == 0
    assert details["jobData"]["index_id"] == 1


def test_trigger_task_moves_next_run_to_now(sched):
    tm = TaskManagerService(sched)
    key = JobKey(name=tm.create_task(TaskType.INDEX, _spec(), "0 3 * * *"), group="index")

    assert tm.trigger_task(key) is True
    assert sched.get_job(key).next_run_time <= datetime.now(timezone.utc) + timedelta(seconds=1)
    assert tm.trigger_task(JobKey(name="missing", group="index")) is False


def test_interrupt_only_running_tasks(sched):
    tm = TaskManagerService(sched)
    key = JobKey(name=tm.create_task(TaskType.INDEX, _spec(), "0 3 * * *"), group="index")

    assert tm.interrupt_task(key) is False
    assert sched.acquire_lease(key)
    try:
        assert tm.interrupt_task(key) is True
        assert sched.interrupt_event(key).is_set()
    finally:
        sched.release_lease(key)


def test_lease_is_exclusive(sched):
    key = JobKey(name="a", group="index")
    assert sched.acquire_lease(key)
    assert not sched.acquire_lease(key)
    sched.release_lease(key)
    assert sched.acquire_lease(key)
    sched.release_lease(key)


def test_delete_task_drops_job_and_run_result(sched):
    tm = TaskManagerService(sched)
    key = JobKey(name=tm.create_task(TaskType.SOLR_PING, {"type": "solr_ping", "description": "ping"}, "*/5 * * * *"), group="solr_ping")
    runner._record(key, state=runner.STATE_SUCCESS, last_result="ok")
    assert runner.get_task_result(key) is not None

    assert tm.delete_task(key) is True
    assert sched.get_job(key) is None
    assert runner.get_task_result(key) is None
    assert tm.delete_task(key) is False
