from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path

# Settings are read at import time: point them at a throwaway database first.
_TMP = Path(tempfile.mkdtemp(prefix="geoindex-tests-"))
os.environ["DB_URL"] = f"sqlite:///{_TMP / 'test.sqlite'}"
os.environ["SCHEDULER_JOBSTORE"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ["GEOINDEX_ADMIN_TOKEN"] = ""
os.environ["SOLR_PING_CRON"] = ""
os.environ["FEATURE_SOURCE_DEADLINE_SECONDS"] = "0"

import httpx  # noqa: E402
import pytest  # noqa: E402
from shapely.geometry import Point  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

from geoindex.db.engine import engine  # noqa: E402
from geoindex.features.source import (  # noqa: E402
    Feature,
    FeatureSource,
    FeatureSourceFactory,
    ListFeatureCollection,
)
from geoindex.models.app_layer_setting import AppLayerSetting  # noqa: E402,F401
from geoindex.models.feature_type import FeatureType  # noqa: E402
from geoindex.models.search_index import SearchIndex, TaskSchedule  # noqa: E402
from geoindex.models.task_result import TaskResult  # noqa: E402,F401
from geoindex.scheduling import engine as scheduler_engine  # noqa: E402
from geoindex.scheduling.engine import SchedulerEngine  # noqa: E402
from geoindex.solr.client import SolrClient  # noqa: E402

SOLR_BASE = "http://solr.test/solr/"
CORE = "geoindex"


class FakeSolr:
    """Just enough of a Solr core for the schema, update, select and ping calls."""

    def __init__(self):
        self.fields: dict[str, dict] = {}
        self.field_types: dict[str, dict] = {}
        self.docs: dict[str, dict] = {}
        self.commits = 0
        self.batches: list[int] = []
        self.requests: list[tuple[str, str]] = []
        self.select_params: list[list[tuple[str, str]]] = []
        self.down = False
        self.fail_updates_with: str | None = None

    # -- helpers ---------------------------------------------------------------

    @staticmethod
    def _json(status: int, payload: dict) -> httpx.Response:
        return httpx.Response(status, json=payload)

    @staticmethod
    def _error(status: int, msg: str) -> httpx.Response:
        return httpx.Response(status, json={"error": {"msg": msg, "code": status}})

    def docs_for_layer(self, layer_id: int) -> list[dict]:
        return [d for d in self.docs.values() if str(d.get("searchLayer")) == str(layer_id)]

    def client(self) -> SolrClient:
        return SolrClient(SOLR_BASE, CORE, transport=httpx.MockTransport(self.handler))

    # -- transport -------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path.split(f"/solr/{CORE}", 1)[1]
        self.requests.append((request.method, path))

        if path.startswith("/schema/fields/"):
            name = path.rsplit("/", 1)[1]
            if name in self.fields:
                return self._json(200, {"field": self.fields[name]})
            return self._error(404, f"No such path /schema/fields/{name}")

        if path.startswith("/schema/fieldtypes/"):
            name = path.rsplit("/", 1)[1]
            if name in self.field_types:
                return self._json(200, {"fieldType": self.field_types[name]})
            return self._error(404, f"No such path /schema/fieldtypes/{name}")

        if path == "/schema" and request.method == "POST":
            body = json.loads(request.content)
            for command, definition in body.items():
                store = self.fields if command == "add-field" else self.field_types
                if definition["name"] in store:
                    return self._json(
                        400,
                        {
                            "error": {
                                "msg": "error processing commands",
                                "details": [
                                    {
                                        command: definition,
                                        "errorMessages": [f"Field '{definition['name']}' already exists."],
                                    }
                                ],
                            }
                        },
                    )
                store[definition["name"]] = definition
            return self._json(200, {"responseHeader": {"status": 0}})

        if path == "/update" and request.method == "POST":
            body = json.loads(request.content)
            if isinstance(body, list):
                if self.fail_updates_with:
                    return self._error(500, self.fail_updates_with)
                for doc in body:
                    self.docs[doc["id"]] = doc
                self.batches.append(len(body))
            elif "delete" in body:
                m = re.fullmatch(r"searchLayer:(\S+)", body["delete"]["query"])
                if m:
                    for d in self.docs_for_layer(m.group(1)):
                        self.docs.pop(d["id"], None)
            elif "commit" in body:
                self.commits += 1
            return self._json(200, {"responseHeader": {"status": 0}})

        if path == "/select":
            return self._select(request)

        if path == "/admin/ping":
            return self._json(200, {"responseHeader": {"QTime": 1}, "status": "OK"})

        return self._error(404, f"unexpected path {path}")

    def _select(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        self.select_params.append(list(params.multi_items()))
        q = params.get("q", "")

        m = re.fullmatch(r"exists\(query\(searchLayer:(\S+)\)\)", q)
        if m:
            n = len(self.docs_for_layer(m.group(1)))
            return self._json(200, {"response": {"numFound": n, "start": 0, "docs": []}})

        if "syntax_error" in q:
            return self._error(400, "org.apache.solr.search.SyntaxError: Cannot parse")

        docs = list(self.docs.values())
        for fq in params.get_list("fq"):
            lm = re.fullmatch(r"searchLayer:(\S+)", fq)
            if lm:
                docs = [d for d in docs if str(d.get("searchLayer")) == lm.group(1)]

        term = q.split(":", 1)[1] if ":" in q else q
        if term != "*":
            needle = term.strip("*").lower()
            docs = [d for d in docs if any(needle in str(v).lower() for v in d.get("searchFields", []))]

        docs.sort(key=lambda d: d["id"])
        start = int(params.get("start", 0))
        rows = int(params.get("rows", 10))
        page = [
            {"id": d["id"], "displayFields": d.get("displayFields", []), "geometry": d.get("geometry")}
            for d in docs[start : start + rows]
        ]
        return self._json(
            200,
            {"response": {"numFound": len(docs), "start": start, "maxScore": 1.0, "docs": page}},
        )


class FakeFeatureSource(FeatureSource):
    name = "fake"

    def __init__(self, features: list[Feature], size_known: bool = True):
        self._features = features
        self._size_known = size_known
        self.requested: list[str] | None = None
        self.disposed = False

    def get_features(self, property_names, max_features=None):
        self.requested = list(property_names)
        return ListFeatureCollection(self._features, size_known=self._size_known)

    def dispose(self) -> None:
        self.disposed = True


class FakeFeatureSourceFactory(FeatureSourceFactory):
    def __init__(self, source: FeatureSource | None = None, error: Exception | None = None):
        self.source = source
        self.error = error
        self.opened = 0

    def open_feature_source(self, feature_type):
        self.opened += 1
        if self.error is not None:
            raise self.error
        return self.source


def make_features(n: int, *, name_prefix: str = "road") -> list[Feature]:
    return [
        Feature(
            id=f"roads.{i}",
            attributes={"id": i, "geom": Point(i, i), "name": f"{name_prefix} {i}", "kind": "main"},
        )
        for i in range(1, n + 1)
    ]


@pytest.fixture(autouse=True)
def _db():
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def sched():
    e = SchedulerEngine(jobstore="memory")
    e.start(paused=True)
    scheduler_engine.set_scheduler_engine(e)
    yield e
    e.shutdown(wait=False)
    scheduler_engine.set_scheduler_engine(None)


@pytest.fixture
def fake_solr(monkeypatch):
    solr = FakeSolr()
    monkeypatch.setattr("geoindex.scheduling.index_task.get_solr_client_for_indexing", solr.client)
    monkeypatch.setattr("geoindex.solr.client.get_solr_client_for_searching", solr.client)
    return solr


@pytest.fixture
def feature_source(monkeypatch):
    source = FakeFeatureSource(make_features(3))
    factory = FakeFeatureSourceFactory(source)
    monkeypatch.setattr("geoindex.scheduling.index_task.default_feature_source_factory", factory)
    return source


@pytest.fixture
def feature_type(session) -> FeatureType:
    ft = FeatureType(name="roads", protocol="jdbc", source_url="sqlite://", table_name="roads")
    session.add(ft)
    session.commit()
    session.refresh(ft)
    return ft


def add_search_index(
    session: Session,
    feature_type: FeatureType,
    *,
    search_fields=("name",),
    display_fields=("name", "kind"),
    schedule: TaskSchedule | None = None,
    name: str = "roads index",
) -> SearchIndex:
    idx = SearchIndex(name=name, feature_type_id=feature_type.id)
    idx.set_search_fields(list(search_fields))
    idx.set_display_fields(list(display_fields))
    idx.set_schedule(schedule)
    session.add(idx)
    session.commit()
    session.refresh(idx)
    return idx
