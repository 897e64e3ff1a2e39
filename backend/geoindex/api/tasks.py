from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from geoindex.core.config import settings
from geoindex.scheduling.task_manager import task_manager
from geoindex.scheduling.task_type import JobKey, TaskType

router = APIRouter(prefix="/api/admin/tasks", tags=["admin-tasks"])


def _require_admin(request: Request) -> None:
    token = (settings.admin_token or "").strip()
    if not token:
        return
    got = (request.headers.get("x-admin-token") or "").strip()
    if got != token:
        raise HTTPException(status_code=401, detail="admin token required")


def _task_type(value: str) -> TaskType:
    try:
        return TaskType.parse(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"unsupported task type: {value}")


def _job_key(task_type: str, uuid: str) -> JobKey:
    key = task_manager.get_job_key(_task_type(task_type), uuid)
    if key is None:
        raise HTTPException(status_code=404, detail="task not found")
    return key


@router.get("")
def api_list_tasks(request: Request, type: Optional[str] = None):
    _require_admin(request)
    task_type = _task_type(type) if type else None
    return {"tasks": task_manager.list_tasks(task_type)}


@router.get("/{task_type}/{uuid}")
def api_task_details(task_type: str, uuid: str, request: Request):
    _require_admin(request)
    details = task_manager.task_details(_job_key(task_type, uuid))
    if details is None:
        raise HTTPException(status_code=404, detail="task not found")
    return details


@router.put("/{task_type}/{uuid}/start", status_code=202)
def api_start_task(task_type: str, uuid: str, request: Request):
    _require_admin(request)
    key = _job_key(task_type, uuid)
    if task_manager.engine.is_running(key):
        raise HTTPException(status_code=409, detail="task is already running")
    if not task_manager.trigger_task(key):
        raise HTTPException(status_code=404, detail="task not found")
    return {"message": "Task started"}


@router.put("/{task_type}/{uuid}/stop", status_code=202)
def api_stop_task(task_type: str, uuid: str, request: Request):
    _require_admin(request)
    key = _job_key(task_type, uuid)
    if not task_manager.interrupt_task(key):
        raise HTTPException(status_code=409, detail="task is not running")
    return {"message": "Task stop requested"}


@router.delete("/{task_type}/{uuid}", status_code=204)
def api_delete_task(task_type: str, uuid: str, request: Request):
    _require_admin(request)
    key = _job_key(task_type, uuid)
    if not task_manager.delete_task(key):
        raise HTTPException(status_code=404, detail="task not found")
    return Response(status_code=204)
