from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# Solr field names used by the index
ID = "id"
SEARCH_ID_FIELD = ID
SEARCH_LAYER = "searchLayer"
INDEX_SEARCH_FIELD = "searchFields"
INDEX_DISPLAY_FIELD = "displayFields"
INDEX_GEOM_FIELD = "geometry"


@dataclass
class FeatureIndexingDocument:
    fid: str
    search_layer: int
    search_fields: list[str] = field(default_factory=list)
    display_fields: list[str] = field(default_factory=list)
    geometry: Optional[str] = None

    def to_solr(self) -> dict:
        doc: dict = {
            ID: self.fid,
            SEARCH_LAYER: self.search_layer,
            INDEX_SEARCH_FIELD: list(self.search_fields),
            INDEX_DISPLAY_FIELD: list(self.display_fields),
        }
        if self.geometry is not None:
            doc[INDEX_GEOM_FIELD] = self.geometry
        return doc
