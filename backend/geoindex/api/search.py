from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlmodel import Session

from geoindex.core.config import settings
from geoindex.core.errors import SolrConnectionError, SolrError
from geoindex.db.engine import engine
from geoindex.models.search_index import SearchIndex
from geoindex.solr import client as solr_client
from geoindex.solr.helper import SolrHelper

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


def get_session():
    with Session(engine) as session:
        yield session


@router.get("/{index_id}")
def api_search(
    index_id: int,
    q: Optional[str] = None,
    fq: Optional[str] = None,
    point: Optional[str] = None,
    distance: Optional[float] = None,
    start: int = 0,
    session: Session = Depends(get_session),
):
    search_index = session.get(SearchIndex, index_id)
    if not search_index:
        raise HTTPException(status_code=404, detail="search index not found")

    start = max(0, int(start or 0))
    try:
        with SolrHelper(solr_client.get_solr_client_for_searching()).with_query_timeout(
            settings.solr_query_timeout_seconds
        ) as helper:
            res = helper.find_in_index(
                search_index,
                q,
                filter_query=fq,
                point=point,
                distance=distance,
                start=start,
                rows=settings.search_page_size,
            )
    except SolrConnectionError as e:
        logger.error("Error searching index %s: %s", index_id, e)
        raise HTTPException(status_code=500, detail="Error while searching")
    except SolrError as e:
        logger.warning("Solr rejected query on index %s: %s", index_id, e)
        if e.code is not None and 400 <= e.code < 500:
            raise HTTPException(status_code=400, detail=f"Error while searching with given query: {e}")
        raise HTTPException(status_code=500, detail="Error while searching")

    if res.total == 0 or not res.documents:
        return Response(status_code=204)
    return res.to_dict()
