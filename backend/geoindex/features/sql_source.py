from __future__ import annotations

import logging
from typing import Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from geoindex.core.errors import FeatureSourceError, UnsupportedFeatureSourceError
from geoindex.features.source import Feature, FeatureCollection, FeatureSource, FeatureSourceFactory
from geoindex.models.feature_type import FeatureType
from geoindex.solr.geometry import wkt_to_geometry

logger = logging.getLogger(__name__)

INDEXABLE_PROTOCOLS = {"jdbc"}


class SqlFeatureCollection(FeatureCollection):
    def __init__(self, source: "SqlFeatureSource", property_names: list[str], max_features: Optional[int]):
        self._source = source
        self._property_names = property_names
        self._max_features = max_features

    def size(self) -> Optional[int]:
        q = sa.select(sa.func.count()).select_from(self._source.table)
        try:
            with self._source.engine.connect() as conn:
                n = int(conn.execute(q).scalar() or 0)
        except SQLAlchemyError as e:
            # best-effort; the build continues without a known total
            logger.warning("Could not count features of %s: %s", self._source.name, e)
            return None
        if self._max_features is not None:
            n = min(n, self._max_features)
        return n

    def _columns(self):
        ft = self._source.feature_type
        dialect = self._source.engine.dialect.name
        cols = []
        for name in self._property_names:
            col = sa.column(name)
            if name == ft.default_geometry_attribute and dialect == "postgresql":
                col = sa.func.ST_AsText(col).label(name)
            cols.append(col)
        return cols

    def features(self) -> Iterator[Feature]:
        ft = self._source.feature_type
        q = sa.select(*self._columns()).select_from(self._source.table)
        q = q.order_by(sa.column(ft.primary_key_attribute))
        if self._max_features is not None:
            q = q.limit(self._max_features)

        try:
            with self._source.engine.connect() as conn:
                result = conn.execution_options(stream_results=True).execute(q)
                for row in result.mappings():
                    attrs = dict(row)
                    geom = attrs.get(ft.default_geometry_attribute)
                    if isinstance(geom, str):
                        attrs[ft.default_geometry_attribute] = wkt_to_geometry(geom) or geom
                    fid = f"{ft.name}.{attrs.get(ft.primary_key_attribute)}"
                    yield Feature(id=fid, attributes=attrs)
        except SQLAlchemyError as e:
            raise FeatureSourceError(f"Error reading features of {ft.name}: {e}") from e


class SqlFeatureSource(FeatureSource):
    """Features stored in a database table, geometries as WKT (or PostGIS geometry)."""

    def __init__(self, feature_type: FeatureType):
        if not feature_type.source_url or not feature_type.table_name:
            raise UnsupportedFeatureSourceError(
                f"Feature type {feature_type.name} has no source url or table name"
            )
        self.feature_type = feature_type
        self.name = feature_type.name
        try:
            self.engine = sa.create_engine(feature_type.source_url)
        except (SQLAlchemyError, ValueError) as e:
            raise FeatureSourceError(f"Cannot open feature source for {feature_type.name}: {e}") from e

        schema = None
        table_name = feature_type.table_name
        if "." in table_name:
            schema, table_name = table_name.split(".", 1)
        self.table = sa.table(table_name, schema=schema)

    def get_features(self, property_names: list[str], max_features: Optional[int] = None) -> FeatureCollection:
        return SqlFeatureCollection(self, list(property_names), max_features)

    def dispose(self) -> None:
        self.engine.dispose()


class SqlFeatureSourceFactory(FeatureSourceFactory):
    def open_feature_source(self, feature_type: FeatureType) -> FeatureSource:
        protocol = (feature_type.protocol or "").strip().lower()
        if protocol not in INDEXABLE_PROTOCOLS:
            raise UnsupportedFeatureSourceError(
                f"Indexing {protocol or 'unknown'} feature types is not supported"
            )
        return SqlFeatureSource(feature_type)
