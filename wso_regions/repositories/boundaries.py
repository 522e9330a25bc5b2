"""Region boundary polygons, loaded once per run and read-only afterwards."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import geopandas as gpd
from loguru import logger

from ..config_loader import Config
from ..errors import BoundaryMissing
from ..geography import GeographyCatalog
from ..geometry import Region
from .pagination import PaginatedAggregator


def _parse_states(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return [str(s) for s in value]


def _parse_geojson(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


class RegionBoundaryStore:
    """
    Lookup of region name to boundary polygon.

    A region without a boundary is valid: ``get_boundary`` returns None and
    callers must treat the region as unclassifiable geometrically.
    """

    def __init__(self, regions: Iterable[Region] = (), catalog: Optional[GeographyCatalog] = None):
        self._regions: Dict[str, Region] = {}
        self.catalog = catalog
        for region in regions:
            self._regions[region.name] = region

    @classmethod
    def from_regions(
        cls, regions: Iterable[Region], catalog: Optional[GeographyCatalog] = None
    ) -> "RegionBoundaryStore":
        return cls(regions, catalog)

    def get_boundary(self, name: str) -> Optional[Region]:
        return self._regions.get(name)

    def require_boundary(self, name: str) -> Region:
        """Like get_boundary, but raises BoundaryMissing."""
        region = self.get_boundary(name)
        if region is None:
            raise BoundaryMissing(name)
        return region

    def names(self) -> List[str]:
        return sorted(self._regions)

    def regions_with_boundaries(self) -> List[Region]:
        """Regions that have a polygon, in name order."""
        return [self._regions[name] for name in self.names()]

    def missing(self) -> List[str]:
        """Catalog regions without a boundary polygon."""
        if self.catalog is None:
            return []
        return [name for name in self.catalog.region_names if name not in self._regions]

    def __len__(self) -> int:
        return len(self._regions)

    def _states_for(self, name: str, states: Sequence[str]) -> Sequence[str]:
        if states:
            return states
        if self.catalog is not None:
            definition = self.catalog.get_region(name)
            if definition is not None:
                return definition.states
        return ()

    @classmethod
    def load_from_database(
        cls,
        db: Any,
        catalog: Optional[GeographyCatalog] = None,
        config: Optional[Config] = None,
        aggregator: Optional[PaginatedAggregator] = None,
    ) -> "RegionBoundaryStore":
        """
        Load boundaries from the regions table.

        The boundary column may hold a GeoJSON Feature or a bare geometry,
        either as JSON or as a string.
        """
        config = config or Config()
        aggregator = aggregator or PaginatedAggregator.from_config(db, config)
        table = config.get("regions_table.table")
        name_column = config.get("regions_table.name_column")
        states_column = config.get("regions_table.states_column")
        boundary_column = config.get("regions_table.boundary_column")

        logger.info(f"🗺️ Loading region boundaries from {table}...")
        rows = aggregator.fetch_all(
            table, [name_column, states_column, boundary_column], order_by=name_column
        )

        store = cls(catalog=catalog)
        for row in rows:
            name = row.get(name_column)
            if not name:
                continue
            geojson = _parse_geojson(row.get(boundary_column))
            if geojson is None:
                logger.debug(f"   ⚠️ No boundary for {name}")
                continue
            states = store._states_for(name, _parse_states(row.get(states_column)))
            region = Region.from_geojson(name, geojson, states)
            if region is None:
                logger.warning(f"   ⚠️ Unusable boundary for {name}")
                continue
            store._regions[name] = region

        store._log_loaded()
        return store

    @classmethod
    def load_from_geojson(
        cls, path: Union[str, Path], catalog: Optional[GeographyCatalog] = None
    ) -> "RegionBoundaryStore":
        """Load boundaries from a GeoJSON FeatureCollection with a ``name`` property."""
        path = Path(path)
        logger.info(f"🗺️ Loading region boundaries from {path}...")
        gdf = gpd.read_file(path)
        if "name" not in gdf.columns:
            raise ValueError(f"Boundary file {path} has no 'name' property")
        if gdf.crs is not None and gdf.crs.to_epsg() != 4326:
            logger.debug(f"   🔄 Reprojecting boundaries from {gdf.crs} to EPSG:4326")
            gdf = gdf.to_crs("EPSG:4326")

        store = cls(catalog=catalog)
        for _, feature in gdf.iterrows():
            name = feature["name"]
            if not name or feature.geometry is None:
                continue
            region = Region.from_shapely(name, feature.geometry, store._states_for(name, ()))
            if region is None:
                logger.warning(f"   ⚠️ Unusable boundary for {name}")
                continue
            store._regions[name] = region

        store._log_loaded()
        return store

    def _log_loaded(self) -> None:
        logger.success(f"   ✅ Loaded {len(self._regions)} region boundaries")
        missing = self.missing()
        if missing:
            logger.warning(f"   ⚠️ {len(missing)} region(s) without a boundary: {', '.join(missing)}")
