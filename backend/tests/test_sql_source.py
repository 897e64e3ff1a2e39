from __future__ import annotations

import pytest
import sqlalchemy as sa
from shapely.geometry import Point

from conftest import add_search_index
from geoindex.core.errors import FeatureSourceError, UnsupportedFeatureSourceError
from geoindex.features.sql_source import SqlFeatureSourceFactory
from geoindex.models.feature_type import FeatureType
from geoindex.scheduling import index_task


@pytest.fixture
def roads_db(tmp_path) -> str:
    url = f"sqlite:///{tmp_path / 'features.sqlite'}"
    eng = sa.create_engine(url)
    with eng.begin() as conn:
        conn.execute(sa.text("CREATE TABLE roads (id INTEGER PRIMARY KEY, geom TEXT, name TEXT, kind TEXT)"))
        conn.execute(
            sa.text("INSERT INTO roads (id, geom, name, kind) VALUES (:id, :geom, :name, :kind)"),
            [
                {"id": 2, "geom": "POINT (2 2)", "name": "Main street", "kind": "main"},
                {"id": 1, "geom": "LINESTRING (0 0, 1 1)", "name": "Side street", "kind": None},
                {"id": 3, "geom": None, "name": "Unmapped lane", "kind": "lane"},
            ],
        )
    eng.dispose()
    return url


def _ft(url: str, **kw) -> FeatureType:
    data = {"name": "roads", "protocol": "jdbc", "source_url": url, "table_name": "roads"}
    data.update(kw)
    return FeatureType(**data)


def test_reads_projected_features_in_key_order(roads_db):
    source = SqlFeatureSourceFactory().open_feature_source(_ft(roads_db))
    try:
        collection = source.get_features(["id", "geom", "name"])
        assert collection.size() == 3
        features = list(collection.features())
    finally:
        source.dispose()

    assert [f.id for f in features] == ["roads.1", "roads.2", "roads.3"]
    assert set(features[0].attributes) == {"id", "geom", "name"}
    assert features[1].get_attribute("geom").equals(Point(2, 2))
    assert features[1].get_attribute("name") == "Main street"
    assert features[2].get_attribute("geom") is None


def test_max_features(roads_db):
    source = SqlFeatureSourceFactory().open_feature_source(_ft(roads_db))
    collection = source.get_features(["id", "name"], max_features=2)
    assert collection.size() == 2
    assert [f.id for f in collection.features()] == ["roads.1", "roads.2"]
    source.dispose()


def test_wfs_feature_types_are_not_indexable(roads_db):
    with pytest.raises(UnsupportedFeatureSourceError, match="wfs"):
        SqlFeatureSourceFactory().open_feature_source(_ft(roads_db, protocol="wfs"))


def test_feature_type_without_table_is_not_indexable():
    with pytest.raises(UnsupportedFeatureSourceError):
        SqlFeatureSourceFactory().open_feature_source(_ft("sqlite://", table_name=None))


def test_missing_table(roads_db):
    source = SqlFeatureSourceFactory().open_feature_source(_ft(roads_db, table_name="rivers"))
    collection = source.get_features(["id", "name"])
    assert collection.size() is None
    with pytest.raises(FeatureSourceError):
        list(collection.features())
    source.dispose()


def test_build_from_sql_source(session, fake_solr, roads_db):
    ft = _ft(roads_db)
    session.add(ft)
    session.commit()
    session.refresh(ft)
    idx = add_search_index(session, ft)

    idx = index_task.build_search_index(session, idx, ft, feature_source_factory=SqlFeatureSourceFactory())

    assert idx.status == "indexed"
    docs = {d["id"]: d for d in fake_solr.docs_for_layer(idx.id)}
    assert sorted(docs) == ["roads.1", "roads.2", "roads.3"]
    assert docs["roads.1"]["geometry"] == "LINESTRING (0 0, 1 1)"
    assert docs["roads.1"]["displayFields"] == ["Side street"]
    assert "geometry" not in docs["roads.3"]
