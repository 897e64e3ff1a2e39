"""Feature source boundary.

A feature source yields typed feature records for a feature type. The indexer
only needs: a property-name projection, a best-effort total count, forward-only
iteration, and disposal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from geoindex.models.feature_type import FeatureType


@dataclass
class Feature:
    id: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def get_attribute(self, name: str) -> Any:
        return self.attributes.get(name)


class FeatureCollection(ABC):
    @abstractmethod
    def size(self) -> Optional[int]:
        """Total number of features, or None when the source cannot tell."""

    @abstractmethod
    def features(self) -> Iterator[Feature]:
        """Iterate the features once, in source order."""


class FeatureSource(ABC):
    name: str = ""

    @abstractmethod
    def get_features(self, property_names: list[str], max_features: Optional[int] = None) -> FeatureCollection:
        ...

    def dispose(self) -> None:
        """Release connections held by this source."""


class FeatureSourceFactory(ABC):
    @abstractmethod
    def open_feature_source(self, feature_type: FeatureType) -> FeatureSource:
        """Open the source of `feature_type`; raises UnsupportedFeatureSourceError when it cannot be indexed."""


class ListFeatureCollection(FeatureCollection):
    def __init__(self, features: list[Feature], size_known: bool = True):
        self._features = features
        self._size_known = size_known

    def size(self) -> Optional[int]:
        return len(self._features) if self._size_known else None

    def features(self) -> Iterator[Feature]:
        return iter(self._features)
