from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlmodel import Session

from geoindex.core.config import settings
from geoindex.core.errors import SchedulerError, TaskConflictError, TaskValidationError
from geoindex.db.engine import engine
from geoindex.services import search_indexes as svc

router = APIRouter(prefix="/api/admin/search-indexes", tags=["admin-search-indexes"])


def _require_admin(request: Request) -> None:
    token = (settings.admin_token or "").strip()
    if not token:
        return
    got = (request.headers.get("x-admin-token") or "").strip()
    if got != token:
        raise HTTPException(status_code=401, detail="admin token required")


def get_session():
    with Session(engine) as session:
        yield session


def _get_or_404(session: Session, index_id: int):
    search_index = svc.get_search_index(session, index_id)
    if not search_index:
        raise HTTPException(status_code=404, detail="search index not found")
    return search_index


@router.get("")
def api_list_search_indexes(request: Request, session: Session = Depends(get_session)):
    _require_admin(request)
    return {"searchIndexes": [s.to_dict() for s in svc.list_search_indexes(session)]}


@router.post("", status_code=201)
def api_create_search_index(payload: svc.SearchIndexIn, request: Request, session: Session = Depends(get_session)):
    _require_admin(request)
    try:
        search_index = svc.create_search_index(session, payload)
    except TaskConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (TaskValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SchedulerError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return search_index.to_dict()


@router.get("/{index_id}")
def api_get_search_index(index_id: int, request: Request, session: Session = Depends(get_session)):
    _require_admin(request)
    return _get_or_404(session, index_id).to_dict()


@router.put("/{index_id}")
def api_update_search_index(
    index_id: int,
    payload: svc.SearchIndexIn,
    request: Request,
    session: Session = Depends(get_session),
):
    _require_admin(request)
    search_index = _get_or_404(session, index_id)
    try:
        search_index = svc.update_search_index(session, search_index, payload)
    except TaskConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (TaskValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SchedulerError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return search_index.to_dict()


@router.delete("/{index_id}", status_code=204)
def api_delete_search_index(index_id: int, request: Request, session: Session = Depends(get_session)):
    _require_admin(request)
    svc.delete_search_index(session, _get_or_404(session, index_id))
    return Response(status_code=204)
