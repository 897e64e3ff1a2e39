"""Rebuild search indexes synchronously, outside the scheduler.

Without arguments every search index with a feature type is rebuilt;
otherwise only the given ids.

Run:
  PYTHONPATH=backend python -m scripts.reindex [index_id ...]
"""

from __future__ import annotations

import logging
import sys

from sqlmodel import Session, select

from geoindex.core.errors import IndexingError
from geoindex.core.logging import setup_logging
from geoindex.db.engine import engine
from geoindex.db.init_db import init_db
from geoindex.models.feature_type import FeatureType
from geoindex.models.search_index import SearchIndex
from geoindex.scheduling.index_task import build_search_index

logger = logging.getLogger("geoindex.scripts.reindex")


def main(index_ids: list[int] | None = None) -> int:
    setup_logging()
    init_db()

    failed = 0
    with Session(engine) as session:
        q = select(SearchIndex).where(SearchIndex.feature_type_id.is_not(None)).order_by(SearchIndex.id.asc())
        if index_ids:
            q = q.where(SearchIndex.id.in_(index_ids))
        rows = session.exec(q).all()
        print(f"search indexes: {len(rows)}")

        for idx in rows:
            ft = session.get(FeatureType, idx.feature_type_id)
            if ft is None:
                logger.warning("Feature type %s of search index %s not found", idx.feature_type_id, idx.id)
                failed += 1
                continue
            try:
                idx = build_search_index(session, idx, ft)
            except IndexingError as e:
                print(f"[{idx.id}] {idx.name}: failed: {e}")
                failed += 1
                continue
            print(f"[{idx.id}] {idx.name}: {idx.status} ({idx.comment})")

    return 1 if failed else 0


if __name__ == "__main__":
    ids = [int(a) for a in sys.argv[1:]]
    raise SystemExit(main(ids or None))
