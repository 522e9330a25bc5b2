"""
Per-region activity metrics from point-in-polygon filtering.

For each region: clubs inside its boundary, meets inside its boundary over
the trailing window, the distinct lifters and total results at those meets,
an estimated population and the resulting activity factor. Every read goes
through the paginated repositories; every write overwrites the region's
previous values.
"""

import warnings
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from loguru import logger

from .config_loader import Config
from .errors import StaleTruncationSignature
from .geography import GeographyCatalog
from .geometry import Region, point_from_lat_lon, point_in_region
from .repositories.boundaries import RegionBoundaryStore
from .repositories.spatial import SpatialQueryManager

STATUS_OK = "ok"
STATUS_UNCLASSIFIABLE = "unclassifiable"

# RegionMetrics field -> regions table column
METRIC_COLUMNS = {
    "entity_count": "barbell_clubs_count",
    "recent_event_count": "recent_meets_count",
    "active_participants": "active_lifters_count",
    "total_participations": "total_participations",
    "estimated_population": "estimated_population",
    "activity_ratio": "activity_factor",
    "status": "metrics_status",
}

COUNT_FIELDS = ("entity_count", "recent_event_count", "active_participants", "total_participations")


@dataclass
class RegionMetrics:
    region: str
    entity_count: int = 0
    recent_event_count: int = 0
    active_participants: int = 0
    total_participations: int = 0
    estimated_population: int = 0
    activity_ratio: float = 0.0
    status: str = STATUS_OK
    truncation_flags: List[str] = field(default_factory=list, compare=False)

    @property
    def is_unclassifiable(self) -> bool:
        return self.status == STATUS_UNCLASSIFIABLE

    def to_record(self, key_column: str = "name") -> Dict[str, Any]:
        record: Dict[str, Any] = {key_column: self.region}
        for attribute, column in METRIC_COLUMNS.items():
            record[column] = getattr(self, attribute)
        return record


def activity_ratio(total_participations: int, active_participants: int) -> float:
    """Participations per active participant, rounded to 2 decimals (0 without participants)."""
    if active_participants <= 0:
        return 0.0
    return round(total_participations / active_participants, 2)


def window_start(as_of: date, months: int) -> date:
    return (pd.Timestamp(as_of) - pd.DateOffset(months=months)).date()


@dataclass
class MetricsRunSummary:
    results: Dict[str, RegionMetrics] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    persisted: List[str] = field(default_factory=list)

    @property
    def unclassifiable(self) -> List[str]:
        return [name for name, m in self.results.items() if m.is_unclassifiable]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


class RegionMetricsCalculator:
    """
    Compute and persist RegionMetrics.

    Candidate meets and clubs are the same for every region in a run, so they
    are fetched once and filtered per region. Pass ``as_of`` to pin the
    trailing window; two runs with the same ``as_of`` over unchanged data give
    identical results.
    """

    def __init__(
        self,
        spatial: SpatialQueryManager,
        boundaries: RegionBoundaryStore,
        catalog: GeographyCatalog,
        config: Optional[Config] = None,
        as_of: Optional[date] = None,
    ):
        self.spatial = spatial
        self.boundaries = boundaries
        self.catalog = catalog
        self.config = config or spatial.config
        self.as_of = as_of or date.today()
        self.window_months = int(self.config.get_analytics_setting("window_months"))
        self.legacy_limits = {int(v) for v in self.config.get_analytics_setting("legacy_page_limits") or []}
        self._events: Optional[List[Dict[str, Any]]] = None
        self._entities: Optional[List[Dict[str, Any]]] = None

    @property
    def since(self) -> date:
        return window_start(self.as_of, self.window_months)

    def reset(self) -> None:
        """Drop cached candidate rows so the next calculation re-reads them."""
        self._events = None
        self._entities = None

    def _recent_events(self) -> List[Dict[str, Any]]:
        if self._events is None:
            logger.info(f"📅 Fetching meets since {self.since.isoformat()} with coordinates...")
            self._events = self.spatial.get_recent_events_with_coordinates(self.since)
            logger.info(f"   Found {len(self._events)} recent meets with coordinates")
        return self._events

    def _entities_with_coordinates(self) -> List[Dict[str, Any]]:
        if self._entities is None:
            logger.info("🏋️ Fetching clubs with coordinates...")
            self._entities = self.spatial.get_entities_with_coordinates()
            logger.info(f"   Found {len(self._entities)} clubs with coordinates")
        return self._entities

    def _inside(self, rows: Sequence[Dict[str, Any]], region: Region) -> List[Dict[str, Any]]:
        lat_column = self.config.get_analytics_setting("latitude_column")
        lon_column = self.config.get_analytics_setting("longitude_column")
        inside = []
        for row in rows:
            point = point_from_lat_lon(row.get(lat_column), row.get(lon_column))
            if point is not None and region.bbox_contains(point) and point_in_region(point, region):
                inside.append(row)
        return inside

    def _check_truncation(self, metrics: RegionMetrics) -> None:
        for attribute in COUNT_FIELDS:
            value = getattr(metrics, attribute)
            if value in self.legacy_limits:
                message = (
                    f"{metrics.region}: {attribute} = {value} equals a legacy page-size limit; "
                    f"check for a truncated fetch"
                )
                logger.warning(f"   ⚠️ {message}")
                warnings.warn(message, StaleTruncationSignature, stacklevel=2)
                metrics.truncation_flags.append(attribute)

    def calculate(self, region_name: str) -> RegionMetrics:
        """
        Compute metrics for one region.

        A region without a boundary gets all-zero metrics flagged
        ``unclassifiable``, never a plain zero.
        """
        logger.info(f"📊 Calculating metrics for {region_name}...")
        boundary = self.boundaries.get_boundary(region_name)
        if boundary is None:
            logger.warning(f"   ⚠️ No boundary for {region_name}; metrics marked unclassifiable")
            return RegionMetrics(region=region_name, status=STATUS_UNCLASSIFIABLE)

        clubs = self._inside(self._entities_with_coordinates(), boundary)
        logger.debug(f"   Found {len(clubs)} clubs in {region_name}")

        meets = self._inside(self._recent_events(), boundary)
        logger.debug(f"   Found {len(meets)} recent meets in {region_name}")

        event_column = self.config.get_analytics_setting("event_id_column")
        participant_column = self.config.get_analytics_setting("participant_column")
        event_ids = [row[event_column] for row in meets if row.get(event_column) is not None]
        participations = self.spatial.get_participations_for_events(event_ids) if event_ids else []

        participants = {
            row[participant_column]
            for row in participations
            if row.get(participant_column) is not None
        }

        metrics = RegionMetrics(
            region=region_name,
            entity_count=len(clubs),
            recent_event_count=len(meets),
            active_participants=len(participants),
            total_participations=len(participations),
            estimated_population=self.catalog.estimated_population(region_name),
        )
        metrics.activity_ratio = activity_ratio(
            metrics.total_participations, metrics.active_participants
        )
        self._check_truncation(metrics)

        logger.debug(
            f"   {region_name}: {metrics.entity_count} clubs, {metrics.recent_event_count} meets, "
            f"{metrics.active_participants} lifters, {metrics.total_participations} participations, "
            f"{metrics.estimated_population} population, {metrics.activity_ratio} activity factor"
        )
        return metrics

    def persist(self, metrics: RegionMetrics) -> None:
        key_column = self.config.get_analytics_setting("metrics_key_column")
        self.spatial.upsert_region_metrics(metrics.to_record(key_column))
        logger.success(f"   ✅ Updated metrics for {metrics.region}")

    def run(self, regions: Optional[Sequence[str]] = None, dry_run: bool = False) -> MetricsRunSummary:
        """
        Calculate (and unless dry_run, persist) metrics for each region.

        A failing region is recorded and the run moves on to the next one.
        """
        names = list(regions) if regions else self.catalog.region_names
        summary = MetricsRunSummary()
        self.reset()

        logger.info(f"🚀 Calculating metrics for {len(names)} regions (as of {self.as_of.isoformat()})")
        for name in names:
            try:
                metrics = self.calculate(name)
                if not dry_run:
                    self.persist(metrics)
                    summary.persisted.append(name)
                summary.results[name] = metrics
            except Exception as e:
                logger.error(f"   ❌ Failed to process {name}: {e}")
                summary.failed[name] = str(e)

        logger.info("=" * 60)
        logger.info(
            f"📈 Metrics complete: {len(summary.results) - len(summary.unclassifiable)} calculated, "
            f"{len(summary.unclassifiable)} unclassifiable, {len(summary.failed)} failed"
        )
        if summary.failed:
            logger.error(f"   Failed regions: {', '.join(summary.failed)}")
        return summary
