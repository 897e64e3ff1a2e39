"""Build, clear and query the full-text index of a feature type.

`SolrHelper` wraps a `SolrClient`. It creates the Solr schema on demand,
streams the features of a feature type into the index in batches, and runs
the layer-scoped search used by the search endpoint. Closing the helper
closes the wrapped client.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, Field
from shapely.geometry.base import BaseGeometry
from sqlmodel import Session

from geoindex.core.clock import now_utc
from geoindex.core.errors import (
    ExtractionTimeoutError,
    FeatureSourceError,
    IndexingError,
    TaskInterruptedError,
)
from geoindex.features.source import FeatureSource, FeatureSourceFactory
from geoindex.models.feature_type import FeatureType
from geoindex.models.search_index import SearchIndex, SearchIndexStatus, SearchIndexSummary
from geoindex.solr.client import SolrClient
from geoindex.solr.documents import (
    FeatureIndexingDocument,
    INDEX_DISPLAY_FIELD,
    INDEX_GEOM_FIELD,
    INDEX_SEARCH_FIELD,
    SEARCH_ID_FIELD,
    SEARCH_LAYER,
)
from geoindex.solr.geometry import process_geometry

logger = logging.getLogger(__name__)

SOLR_SPATIAL_FIELDNAME = "tm_geometry_rpt"

VALIDATION_RULES = ("error", "none", "repairBuffer0", "repairConvexHull")

NO_SEARCH_FIELDS = "No search fields configured"
INTERRUPTED = "Indexing was interrupted"

# creation order matters: the geometry field needs the spatial field type
SOLR_SEARCH_FIELDS: dict[str, dict] = {
    SEARCH_LAYER: {
        "name": SEARCH_LAYER,
        "type": "string",
        "indexed": True,
        "stored": True,
        "multiValued": False,
        "required": True,
        "uninvertible": False,
    },
    INDEX_GEOM_FIELD: {
        "name": INDEX_GEOM_FIELD,
        "type": SOLR_SPATIAL_FIELDNAME,
        "stored": True,
    },
    INDEX_SEARCH_FIELD: {
        "name": INDEX_SEARCH_FIELD,
        "type": "text_general",
        "indexed": True,
        "stored": True,
        "multiValued": True,
        "required": True,
        "uninvertible": False,
    },
    INDEX_DISPLAY_FIELD: {
        "name": INDEX_DISPLAY_FIELD,
        "type": "text_general",
        "indexed": False,
        "stored": True,
        "multiValued": True,
        "required": True,
        "uninvertible": False,
    },
}


class IndexProgress(BaseModel):
    """Progress of a running build, handed to the progress listener."""

    index_id: int
    progress: int = 0
    total: Optional[int] = None
    started_at: Optional[datetime] = None


ProgressListener = Callable[[IndexProgress], None]


class SearchDocument(BaseModel):
    fid: str
    geometry: Optional[str] = None
    display_values: list[str] = Field(default_factory=list, serialization_alias="displayValues")


class SearchResponse(BaseModel):
    total: int = 0
    start: int = 0
    max_score: Optional[float] = Field(default=None, serialization_alias="maxScore")
    documents: list[SearchDocument] = Field(default_factory=list)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


def spatial_field_type_definition(validation_rule: str) -> dict:
    return {
        "name": SOLR_SPATIAL_FIELDNAME,
        "class": "solr.SpatialRecursivePrefixTreeFieldType",
        "spatialContextFactory": "JTS",
        "geo": False,
        "distanceUnits": "kilometers",
        "distCalculator": "cartesian",
        "format": "WKT",
        "autoIndex": True,
        "distErrPct": "0.025",
        "maxDistErr": "0.001",
        "prefixTree": "packedQuad",
        "validationRule": validation_rule,
        # ENVELOPE(minX, maxX, maxY, minY) of EPSG:3857
        "worldBounds": "ENVELOPE(-20037508.34, 20037508.34, 20048966.1, -20048966.1)",
    }


def _format_duration(seconds: float) -> str:
    whole = int(seconds)
    return f"{whole}.{int(round((seconds - whole) * 1_000_000_000))}"


def _save(session: Session, search_index: SearchIndex) -> SearchIndex:
    search_index.updated_at = now_utc()
    session.add(search_index)
    session.commit()
    session.refresh(search_index)
    return search_index


class SolrHelper:
    def __init__(self, client: SolrClient):
        self.client = client
        self.query_timeout_s: float = 7
        self.batch_size: int = 1000
        self.geometry_validation_rule: str = "repairBuffer0"

    def __enter__(self) -> "SolrHelper":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    # -- configuration -------------------------------------------------------

    def with_query_timeout(self, seconds: float) -> "SolrHelper":
        if seconds <= 0:
            raise ValueError("Must use a positive number for query timeout")
        self.query_timeout_s = seconds
        return self

    def with_batch_size(self, batch_size: int) -> "SolrHelper":
        if batch_size <= 0:
            raise ValueError("Must use a positive integer for batching")
        self.batch_size = int(batch_size)
        return self

    def with_geometry_validation_rule(self, rule: str) -> "SolrHelper":
        if rule in VALIDATION_RULES:
            logger.debug("Setting geometry validation rule for Solr geometry field to %s", rule)
            self.geometry_validation_rule = rule
        else:
            logger.warning("Ignoring unknown geometry validation rule %r", rule)
        return self

    # -- schema --------------------------------------------------------------

    def create_schema_if_not_exists(self) -> None:
        for name, definition in SOLR_SEARCH_FIELDS.items():
            if name == INDEX_GEOM_FIELD:
                self._create_geometry_field_type_if_not_exists()
            if self.client.field_exists(name):
                logger.debug("Field %s exists", name)
                continue
            logger.info("Creating Solr field %s", name)
            self.client.add_field(definition)

    def _create_geometry_field_type_if_not_exists(self) -> None:
        if self.client.field_type_exists(SOLR_SPATIAL_FIELDNAME):
            logger.debug("Field type %s exists", SOLR_SPATIAL_FIELDNAME)
            return
        logger.info(
            "Creating Solr field type for %s with validation rule %s",
            SOLR_SPATIAL_FIELDNAME,
            self.geometry_validation_rule,
        )
        self.client.add_field_type(spatial_field_type_definition(self.geometry_validation_rule))

    # -- index maintenance ---------------------------------------------------

    def clear_index_for_layer(self, search_layer_id: int) -> bool:
        """Delete all documents of a layer; returns False when there was nothing to delete."""

        res = self.client.query(
            [("q", f"exists(query({SEARCH_LAYER}:{search_layer_id}))"), ("rows", 0)],
            timeout_s=self.query_timeout_s,
        )
        found = int(((res.get("response") or {}).get("numFound")) or 0)
        if found <= 0:
            logger.info("No index to clear for layer %s", search_layer_id)
            return False

        logger.info("Clearing index for searchLayer %s", search_layer_id)
        self.client.delete_by_query(f"{SEARCH_LAYER}:{search_layer_id}")
        self.client.commit()
        return True

    def add_feature_type_index(
        self,
        search_index: SearchIndex,
        feature_type: FeatureType,
        session: Session,
        feature_source_factory: FeatureSourceFactory,
        *,
        progress_listener: ProgressListener | None = None,
        interrupted: threading.Event | None = None,
        deadline_seconds: float | None = None,
    ) -> SearchIndex:
        """Rebuild the index of `search_index` from the features of `feature_type`.

        The record is saved in `session` as the build moves through its states.
        On a Solr or feature source failure the record is saved with status
        ERROR and the error message in its summary, then the error is raised.
        """

        started_at = now_utc()
        t0 = time.monotonic()

        hidden = set(feature_type.get_hide_attributes())
        search_fields = [f for f in search_index.get_search_fields() if f not in hidden]
        display_fields = [f for f in search_index.get_display_fields() if f not in hidden]

        if not search_fields:
            logger.warning(
                "No valid search fields configured for search index %s (%s), bailing out",
                search_index.id,
                feature_type.name,
            )
            search_index.set_status(SearchIndexStatus.ERROR)
            search_index.set_summary(
                SearchIndexSummary(started_at=started_at, error_message=NO_SEARCH_FIELDS)
            )
            search_index.comment = NO_SEARCH_FIELDS
            return _save(session, search_index)

        # primary key and default geometry always, hidden attributes never
        property_names: list[str] = []
        for name in [
            feature_type.primary_key_attribute,
            feature_type.default_geometry_attribute,
            *search_fields,
            *display_fields,
        ]:
            if name and name not in hidden and name not in property_names:
                property_names.append(name)

        source: FeatureSource | None = None
        try:
            self.create_schema_if_not_exists()
            self.clear_index_for_layer(search_index.id)

            logger.info(
                "Indexing started for index id: %s, feature type: %s",
                search_index.id,
                feature_type.name,
            )
            search_index.set_status(SearchIndexStatus.INDEXING)
            search_index = _save(session, search_index)

            source = feature_source_factory.open_feature_source(feature_type)
            collection = source.get_features(property_names)
            total = collection.size()

            seen = 0
            skipped = 0
            batch: list[dict] = []
            deadline = (t0 + deadline_seconds) if deadline_seconds else None

            def _submit(docs: list[dict], indexed: int) -> None:
                if interrupted is not None and interrupted.is_set():
                    raise TaskInterruptedError(INTERRUPTED)
                self.client.add_documents(docs, timeout_s=self.query_timeout_s)
                logger.info("Added %s documents of %s to index", indexed, total if total is not None else "?")
                if progress_listener is not None:
                    progress_listener(
                        IndexProgress(
                            index_id=search_index.id,
                            progress=indexed,
                            total=total,
                            started_at=started_at,
                        )
                    )

            for feature in collection.features():
                if interrupted is not None and interrupted.is_set():
                    raise TaskInterruptedError(INTERRUPTED)
                if deadline is not None and time.monotonic() > deadline:
                    raise ExtractionTimeoutError(
                        f"Reading features of {feature_type.name} took longer than {deadline_seconds} seconds"
                    )

                seen += 1
                doc = FeatureIndexingDocument(fid=feature.id, search_layer=search_index.id)
                search_values: list[str] = []
                display_values: list[str] = []
                for name in property_names:
                    value = feature.get_attribute(name)
                    if value is None:
                        continue
                    if name == feature_type.default_geometry_attribute and isinstance(value, BaseGeometry):
                        doc.geometry = process_geometry(value, simplify_geometry=True)
                        continue
                    if name in search_fields:
                        search_values.append(str(value))
                    if name in display_fields:
                        display_values.append(str(value))

                if not search_values or not display_values:
                    logger.debug(
                        "No search or display values found for feature %s in feature type %s, skipped",
                        feature.id,
                        feature_type.name,
                    )
                    skipped += 1
                    continue

                doc.search_fields = search_values
                doc.display_fields = display_values
                batch.append(doc.to_solr())

                if len(batch) >= self.batch_size:
                    _submit(batch, seen - skipped)
                    batch = []

            if batch:
                _submit(batch, seen - skipped)

            self.client.commit()
        except TaskInterruptedError:
            logger.warning("Indexing of search index %s was interrupted", search_index.id)
            self._record_failure(session, search_index, started_at, t0, INTERRUPTED)
            raise
        except IndexingError as e:
            logger.error("Indexing of search index %s failed: %s", search_index.id, e)
            self._record_failure(session, search_index, started_at, t0, str(e))
            raise
        except OSError as e:
            logger.error("Reading features for search index %s failed: %s", search_index.id, e)
            self._record_failure(session, search_index, started_at, t0, str(e))
            raise FeatureSourceError(f"Error reading features of {feature_type.name}: {e}") from e
        except Exception as e:
            logger.exception("Unexpected error indexing search index %s", search_index.id)
            self._record_failure(session, search_index, started_at, t0, str(e) or type(e).__name__)
            raise IndexingError(f"Indexing of {feature_type.name} failed: {e}") from e
        finally:
            if source is not None:
                source.dispose()

        duration = time.monotonic() - t0
        finished_at = now_utc()
        logger.info(
            "Indexing finished for index id: %s, feature type: %s at %s in %.3fs",
            search_index.id,
            feature_type.name,
            finished_at,
            duration,
        )

        comment = "Indexed %s features in %s seconds, started at %s." % (
            seen - skipped,
            _format_duration(duration),
            started_at.isoformat(),
        )
        if skipped > 0:
            logger.warning(
                "%s features were skipped because no search or display values were found", skipped
            )
            comment += " %s features were skipped because no search or display values were found." % skipped

        search_index.comment = comment
        search_index.last_indexed = finished_at
        search_index.set_summary(
            SearchIndexSummary(
                started_at=started_at,
                duration=duration,
                total=seen - skipped,
                skipped=skipped,
                error_message=None,
            )
        )
        search_index.set_status(SearchIndexStatus.INDEXED)
        return _save(session, search_index)

    def _record_failure(
        self,
        session: Session,
        search_index: SearchIndex,
        started_at: datetime,
        t0: float,
        message: str,
    ) -> None:
        search_index.set_status(SearchIndexStatus.ERROR)
        search_index.set_summary(
            SearchIndexSummary(
                started_at=started_at,
                duration=time.monotonic() - t0,
                error_message=message,
            )
        )
        search_index.comment = message
        _save(session, search_index)

    # -- search --------------------------------------------------------------

    def find_in_index(
        self,
        search_index: SearchIndex,
        query: str | None,
        filter_query: str | None = None,
        point: str | None = None,
        distance: float | None = None,
        start: int = 0,
        rows: int = 100,
    ) -> SearchResponse:
        """Search the documents of one layer.

        An empty query matches everything. With `point` ("x y") and `distance`
        (kilometers) the results are limited to the surrounding circle, unless
        `filter_query` already is a geofilt or bbox filter.
        """

        logger.info("Find in index for %s", search_index.id)
        if not query or not query.strip():
            query = "*"

        params: list[tuple[str, object]] = [
            ("q", f"{INDEX_SEARCH_FIELD}:{query}"),
            ("fq", f"{SEARCH_LAYER}:{search_index.id}"),
            ("fl", f"{SEARCH_ID_FIELD},{INDEX_DISPLAY_FIELD},{INDEX_GEOM_FIELD},score"),
            ("sort", f"score desc,{SEARCH_ID_FIELD} asc"),
            ("rows", rows),
            ("start", start),
            ("timeAllowed", int(self.query_timeout_s * 1000)),
            ("q.op", "AND"),
        ]
        if filter_query and filter_query.strip():
            params.append(("fq", filter_query))
        if point is not None and distance is not None:
            if not filter_query or not (
                filter_query.startswith("{!geofilt") or filter_query.startswith("{!bbox")
            ):
                params.append(("fq", f"{{!geofilt sfield={INDEX_GEOM_FIELD}}}"))
            params.append(("pt", point))
            params.append(("d", str(distance)))

        logger.debug("Solr query: %s", params)
        res = self.client.query(params, timeout_s=self.query_timeout_s)
        result = res.get("response") or {}

        documents = []
        for d in result.get("docs") or []:
            display = d.get(INDEX_DISPLAY_FIELD) or []
            if not isinstance(display, list):
                display = [display]
            geom = d.get(INDEX_GEOM_FIELD)
            if isinstance(geom, list):
                geom = geom[0] if geom else None
            documents.append(
                SearchDocument(
                    fid=str(d.get(SEARCH_ID_FIELD)),
                    geometry=str(geom) if geom is not None else None,
                    display_values=[str(v) for v in display],
                )
            )

        logger.debug("Found %s solr documents", result.get("numFound"))
        return SearchResponse(
            total=int(result.get("numFound") or 0),
            start=int(result.get("start") or 0),
            max_score=result.get("maxScore"),
            documents=documents,
        )
