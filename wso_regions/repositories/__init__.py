"""Data access for region boundaries, spatial queries and paginated reads."""

from .boundaries import RegionBoundaryStore
from .pagination import PaginatedAggregator
from .spatial import SpatialQueryManager

__all__ = ["PaginatedAggregator", "RegionBoundaryStore", "SpatialQueryManager"]
