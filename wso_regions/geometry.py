"""
Region geometry and point-in-polygon testing.

All coordinates are (longitude, latitude), matching GeoJSON. Records that
store latitude/longitude columns must go through ``point_from_lat_lon`` so the
order is swapped in exactly one place.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.geometry.base import BaseGeometry

Point = Tuple[float, float]
Ring = List[Point]
PolygonRings = List[Ring]


def point_from_lat_lon(latitude: Any, longitude: Any) -> Optional[Point]:
    """
    Build a (lon, lat) point from latitude/longitude values.

    Returns None for missing, non-numeric or non-finite values.
    """
    if latitude is None or longitude is None or latitude == "" or longitude == "":
        return None
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return (lon, lat)


def point_in_ring(point: Point, ring: Sequence[Sequence[float]]) -> bool:
    """Crossing-number test for a single ring. Rings with fewer than 3 vertices never contain."""
    if len(ring) < 3:
        return False

    x, y = point
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def point_in_polygon_rings(point: Point, rings: Sequence[Sequence[Sequence[float]]]) -> bool:
    """Even-odd test across a polygon's exterior and interior rings."""
    inside = False
    for ring in rings:
        if point_in_ring(point, ring):
            inside = not inside
    return inside


@dataclass
class Region:
    """
    A region boundary: one or more polygon parts, each a list of rings.

    ``states`` is the ordered member-state list (may be empty for
    boundary-only regions).
    """

    name: str
    parts: List[PolygonRings]
    states: Tuple[str, ...] = ()
    geometry: Optional[BaseGeometry] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        xs = [p[0] for part in self.parts for ring in part for p in ring]
        ys = [p[1] for part in self.parts for ring in part for p in ring]
        self.bbox: Optional[Tuple[float, float, float, float]] = (
            (min(xs), min(ys), max(xs), max(ys)) if xs else None
        )

        if self.geometry is None and self.parts:
            polygons = []
            for part in self.parts:
                if not part or len(part[0]) < 3:
                    continue
                try:
                    polygons.append(Polygon(part[0], [r for r in part[1:] if len(r) >= 3]))
                except ValueError as e:
                    logger.debug(f"   ⚠️ Skipping malformed part of {self.name}: {e}")
            if polygons:
                self.geometry = polygons[0] if len(polygons) == 1 else MultiPolygon(polygons)

    @property
    def is_empty(self) -> bool:
        return self.bbox is None

    @property
    def centroid(self) -> Optional[Point]:
        """Centroid of the boundary, falling back to the bbox centre for invalid geometry."""
        if self.geometry is not None and not self.geometry.is_empty:
            c = self.geometry.centroid
            if not c.is_empty and math.isfinite(c.x) and math.isfinite(c.y):
                return (c.x, c.y)
        if self.bbox is None:
            return None
        min_x, min_y, max_x, max_y = self.bbox
        return ((min_x + max_x) / 2, (min_y + max_y) / 2)

    def bbox_contains(self, point: Point) -> bool:
        if self.bbox is None:
            return False
        min_x, min_y, max_x, max_y = self.bbox
        x, y = point
        return min_x <= x <= max_x and min_y <= y <= max_y

    def distance_to_centroid(self, point: Point) -> float:
        centroid = self.centroid
        if centroid is None:
            return math.inf
        return math.hypot(point[0] - centroid[0], point[1] - centroid[1])

    @classmethod
    def from_geojson(
        cls, name: str, geojson: Dict[str, Any], states: Sequence[str] = ()
    ) -> Optional["Region"]:
        """
        Build a Region from a GeoJSON Feature or bare Polygon/MultiPolygon geometry.

        Returns None when the GeoJSON carries no usable polygon.
        """
        geometry = geojson.get("geometry") if geojson.get("type") == "Feature" else geojson
        if not geometry or not geometry.get("coordinates"):
            return None

        geom_type = geometry.get("type")
        if geom_type == "Polygon":
            raw_parts = [geometry["coordinates"]]
        elif geom_type == "MultiPolygon":
            raw_parts = geometry["coordinates"]
        else:
            logger.warning(f"   ⚠️ Unsupported boundary geometry type for {name}: {geom_type}")
            return None

        parts = [
            [[(float(p[0]), float(p[1])) for p in ring] for ring in part] for part in raw_parts
        ]

        try:
            geom = shape(geometry)
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"   ⚠️ Could not build shapely geometry for {name}: {e}")
            geom = None

        region = cls(name=name, parts=parts, states=tuple(states), geometry=geom)
        return None if region.is_empty else region

    @classmethod
    def from_shapely(
        cls, name: str, geom: BaseGeometry, states: Sequence[str] = ()
    ) -> Optional["Region"]:
        """Build a Region from a shapely Polygon or MultiPolygon."""
        if geom is None or geom.is_empty:
            return None
        polygons = list(geom.geoms) if isinstance(geom, MultiPolygon) else [geom]
        parts: List[PolygonRings] = []
        for poly in polygons:
            if not isinstance(poly, Polygon):
                continue
            rings = [list(poly.exterior.coords)] + [list(r.coords) for r in poly.interiors]
            parts.append([[(float(x), float(y)) for x, y, *_ in ring] for ring in rings])
        region = cls(name=name, parts=parts, states=tuple(states), geometry=geom)
        return None if region.is_empty else region


def point_in_region(point: Point, region: Optional[Region]) -> bool:
    """
    Ray-casting containment test of a (lon, lat) point against a region.

    True if any polygon part contains the point. Points on an edge may go
    either way. Missing or empty boundaries never contain.
    """
    if region is None:
        return False
    return any(point_in_polygon_rings(point, part) for part in region.parts if part)


def regions_containing(point: Point, regions: Sequence[Region]) -> List[Region]:
    """Bounding-box pre-filter followed by the full polygon test."""
    return [r for r in regions if r.bbox_contains(point) and point_in_region(point, r)]


def nearest_by_centroid(point: Point, regions: Sequence[Region]) -> Optional[Region]:
    """Deterministic tie-break: nearest centroid, then region name."""
    if not regions:
        return None
    return min(regions, key=lambda r: (r.distance_to_centroid(point), r.name))
