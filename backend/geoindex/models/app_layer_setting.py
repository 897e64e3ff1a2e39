from __future__ import annotations

from typing import Optional

from sqlmodel import SQLModel, Field, Index


class AppLayerSetting(SQLModel, table=True):
    """Per application layer settings; only the search index reference is managed here."""

    __tablename__ = "app_layer_settings"

    id: Optional[int] = Field(default=None, primary_key=True)

    application_name: str = Field(index=True)
    layer_name: str

    search_index_id: Optional[int] = Field(default=None, index=True)


Index("idx_app_layer_settings_app_layer", AppLayerSetting.application_name, AppLayerSetting.layer_name, unique=True)
