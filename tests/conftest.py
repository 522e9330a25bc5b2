import re
from typing import Any, Dict, List, Optional, Tuple

import pytest

from wso_regions.config_loader import Config
from wso_regions.geography import load_catalog
from wso_regions.geometry import Region
from wso_regions.repositories.boundaries import RegionBoundaryStore
from wso_regions.repositories.pagination import PaginatedAggregator
from wso_regions.repositories.spatial import SpatialQueryManager

# ---------- IN-MEMORY BACKING STORE ----------


def _like_to_regex(pattern: str) -> re.Pattern:
    return re.compile(
        "^" + ".*".join(re.escape(part) for part in pattern.split("%")) + "$", re.IGNORECASE
    )


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for key, condition in (filters or {}).items():
        value = row.get(key)
        if not isinstance(condition, dict):
            condition = {"eq": condition}
        for op, operand in condition.items():
            if op == "eq" and value != operand:
                return False
            if op == "neq" and value == operand:
                return False
            if op == "in" and value not in operand:
                return False
            if op in ("gt", "gte", "lt", "lte"):
                if value is None:
                    return False
                if op == "gt" and not value > operand:
                    return False
                if op == "gte" and not value >= operand:
                    return False
                if op == "lt" and not value < operand:
                    return False
                if op == "lte" and not value <= operand:
                    return False
            if op == "is" and value is not operand:
                return False
            if op == "not_is" and value is operand:
                return False
            if op == "ilike" and (value is None or not _like_to_regex(operand).match(str(value))):
                return False
    return True


class FakeDatabase:
    """
    Minimal stand-in for SupabaseDatabase with the same filter grammar.

    ``max_rows_per_request`` mimics the store's silent per-request cap.
    ``failures`` maps a table to the number of select_range calls that raise
    before requests start succeeding.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None, max_rows_per_request: int = 1000):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.max_rows_per_request = max_rows_per_request
        self.failures: Dict[str, int] = {}
        self.range_calls: List[Tuple[str, int, int]] = []
        self.updates: List[Tuple[str, Dict[str, Any], Dict[str, Any]]] = []
        self.upserts: List[Tuple[str, Dict[str, Any]]] = []

    def _query(self, table, filters, order_by):
        rows = [row for row in self.tables.get(table, []) if _matches(row, filters)]
        if order_by:
            parts = order_by.split()
            descending = len(parts) > 1 and parts[1].lower() == "desc"
            rows.sort(key=lambda r: (r.get(parts[0]) is None, r.get(parts[0])), reverse=descending)
        return rows

    @staticmethod
    def _project(rows, columns):
        if not columns:
            return [dict(row) for row in rows]
        return [{c: row.get(c) for c in columns} for row in rows]

    def select_range(self, table, columns, filters, start, end, order_by=None, count=False):
        self.range_calls.append((table, start, end))
        if self.failures.get(table, 0) > 0:
            self.failures[table] -= 1
            raise ConnectionError(f"simulated failure reading {table}")

        rows = self._query(table, filters, order_by)
        page = rows[start : end + 1][: self.max_rows_per_request]
        return self._project(page, columns), (len(rows) if count else None)

    def update(self, table, data, filters):
        self.updates.append((table, dict(data), dict(filters)))
        updated = []
        for row in self.tables.get(table, []):
            if _matches(row, filters):
                row.update(data)
                updated.append(dict(row))
        return updated

    def upsert(self, table, data, on_conflict):
        records = data if isinstance(data, list) else [data]
        rows = self.tables.setdefault(table, [])
        for record in records:
            self.upserts.append((table, dict(record)))
            existing = next((r for r in rows if r.get(on_conflict) == record[on_conflict]), None)
            if existing is None:
                rows.append(dict(record))
            else:
                existing.update(record)
        return [dict(r) for r in records]


# ---------- FIXTURES ----------


def rectangle(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> List[List[Tuple[float, float]]]:
    """A single-part polygon (one closed ring) covering a lon/lat rectangle."""
    ring = [
        (min_lon, min_lat),
        (max_lon, min_lat),
        (max_lon, max_lat),
        (min_lon, max_lat),
        (min_lon, min_lat),
    ]
    return [ring]


@pytest.fixture(scope="session")
def catalog():
    return load_catalog()


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def sleeps():
    delays: List[float] = []
    return delays


@pytest.fixture
def make_aggregator(sleeps):
    def factory(db, **overrides):
        settings = {"retry_delay": 0.5, "sleep": sleeps.append}
        settings.update(overrides)
        return PaginatedAggregator(db, **settings)

    return factory


@pytest.fixture
def make_spatial(config, make_aggregator):
    def factory(db, **overrides):
        return SpatialQueryManager(db, make_aggregator(db, **overrides), config)

    return factory


@pytest.fixture
def boundaries(catalog) -> RegionBoundaryStore:
    """Coarse rectangles: one box over all of California, plus Maryland and Alabama boxes."""
    return RegionBoundaryStore.from_regions(
        [
            Region("California North Central", [rectangle(-124.5, 32.5, -114.0, 42.0)], ("California",)),
            Region("DMV", [rectangle(-79.5, 37.9, -75.0, 39.7)], ("Maryland",)),
            Region("Alabama", [rectangle(-88.5, 30.2, -84.9, 35.0)], ("Alabama",)),
        ],
        catalog,
    )
