from __future__ import annotations

import json
from typing import Optional

from sqlmodel import SQLModel, Field


class FeatureType(SQLModel, table=True):
    __tablename__ = "feature_types"

    id: Optional[int] = Field(default=None, primary_key=True)

    name: str = Field(index=True)

    # jdbc|wfs (only jdbc sources can be indexed)
    protocol: str = Field(default="jdbc")

    # SQLAlchemy url of the database holding the features
    source_url: Optional[str] = None
    table_name: Optional[str] = None

    primary_key_attribute: str = "id"
    default_geometry_attribute: str = "geom"

    # JSON array of attribute names that must never be exposed
    hide_attributes_json: str = Field(default="[]")

    def get_hide_attributes(self) -> list[str]:
        try:
            v = json.loads(self.hide_attributes_json or "[]")
        except Exception:
            return []
        return [str(x) for x in v] if isinstance(v, list) else []

    def set_hide_attributes(self, names: list[str] | None) -> "FeatureType":
        self.hide_attributes_json = json.dumps(list(names or []), ensure_ascii=False)
        return self
