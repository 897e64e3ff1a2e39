from __future__ import annotations

import logging
from typing import Any, Optional

from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import LinearRing, LineString
from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)

# Stay below a 2MB request body once the geometry is embedded in a response.
MAX_WKT_BYTES = 2097152 - 100 * 1024
MAX_COORDINATES = 600
MAX_TOLERANCE = 9999


def _coordinate_count(geom: BaseGeometry) -> int:
    if hasattr(geom, "geoms"):
        return sum(_coordinate_count(g) for g in geom.geoms)
    if geom.geom_type == "Polygon":
        return len(geom.exterior.coords) + sum(len(r.coords) for r in geom.interiors)
    return len(geom.coords)


def geometry_to_wkt(geom: BaseGeometry) -> str:
    """2D WKT; a linear ring is written as LINESTRING (LINEARRING is not standard WKT)."""
    if isinstance(geom, LinearRing):
        geom = LineString(geom.coords)
    return wkt.dumps(geom, trim=True, output_dimension=2)


def wkt_to_geometry(text: Optional[str]) -> Optional[BaseGeometry]:
    if not text or len(text) <= 1:
        return None
    try:
        return wkt.loads(text)
    except ShapelyError:
        return None


def _too_large(geom: BaseGeometry, text: str) -> bool:
    return len(text.encode("utf-8")) > MAX_WKT_BYTES or _coordinate_count(geom) > MAX_COORDINATES


def simplify(geom: BaseGeometry) -> str:
    """Simplify a geometry to limit its size.

    Tolerance starts at 1 and is multiplied by 10 each step (1, 10, 100, 1000);
    if the geometry is still too large the bounding box is returned. The
    tolerances assume a projected CRS in meters.
    """

    bbox = geom.envelope
    text = geometry_to_wkt(geom)
    tolerance = 1.0

    while _too_large(geom, text) and tolerance < MAX_TOLERANCE:
        logger.debug("Simplify geometry with distance of: %s", tolerance)
        geom = geom.simplify(tolerance, preserve_topology=True)
        text = geometry_to_wkt(geom)
        tolerance *= 10

    if tolerance > MAX_TOLERANCE and _too_large(geom, text):
        logger.debug("Maximum number of simplify cycles reached, returning bounding box instead")
        return geometry_to_wkt(bbox)
    return text


def process_geometry(value: Any, simplify_geometry: bool = True) -> Optional[str]:
    """Render a feature geometry value as (optionally simplified) WKT.

    Values that are not shapely geometries are returned as their string form.
    """

    if value is None:
        return None
    if isinstance(value, BaseGeometry):
        if simplify_geometry:
            return simplify(value)
        return geometry_to_wkt(value)
    return str(value)
