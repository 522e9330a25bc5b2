"""Batch region assignment and validation for a configured entity table."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from .assignment import (
    Assignment,
    AssignmentContext,
    AssignmentEngine,
    CoordinateStrategy,
    LocationRecord,
)
from .geography import GeographyCatalog
from .history import HistoricalAssignmentIndex
from .repositories.boundaries import RegionBoundaryStore
from .repositories.spatial import SpatialQueryManager


def confidence_band(confidence: float) -> str:
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.6:
        return "medium"
    return "low"


@dataclass
class AssignmentRunSummary:
    entity: str
    dry_run: bool = False
    processed: int = 0
    assigned: int = 0
    unassigned: int = 0
    written: int = 0
    write_failures: int = 0
    by_method: Counter = field(default_factory=Counter)
    by_confidence: Counter = field(default_factory=Counter)
    by_region: Counter = field(default_factory=Counter)
    assignments: List[Assignment] = field(default_factory=list)

    def record(self, assignment: Assignment) -> None:
        self.processed += 1
        self.assignments.append(assignment)
        self.by_method[assignment.method.value] += 1
        if assignment.assigned:
            self.assigned += 1
            self.by_region[assignment.region] += 1
            self.by_confidence[confidence_band(assignment.confidence)] += 1
        else:
            self.unassigned += 1

    @property
    def exit_code(self) -> int:
        return 1 if self.write_failures else 0

    def log(self) -> None:
        logger.info("=" * 60)
        logger.info(f"📊 {self.entity} assignment summary{' (dry run)' if self.dry_run else ''}")
        logger.info(f"   Processed: {self.processed}")
        if self.processed:
            logger.info(
                f"   Assigned: {self.assigned} ({self.assigned / self.processed * 100:.1f}%)"
            )
        logger.info(f"   Unassigned: {self.unassigned}")
        if not self.dry_run:
            logger.info(f"   Written: {self.written}, failed writes: {self.write_failures}")

        logger.info("   By method:")
        for method, count in self.by_method.most_common():
            logger.info(f"      {method}: {count}")
        logger.info("   By confidence:")
        for band in ("high", "medium", "low"):
            logger.info(f"      {band}: {self.by_confidence.get(band, 0)}")
        logger.info("   By region:")
        for region, count in sorted(self.by_region.items(), key=lambda kv: (-kv[1], kv[0])):
            logger.info(f"      {region}: {count}")


@dataclass
class RegionMismatch:
    """A stored region that disagrees with the region its coordinates fall in."""

    record_id: Any
    name: Optional[str]
    current_region: str
    expected_region: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "name": self.name,
            "current_region": self.current_region,
            "expected_region": self.expected_region,
            "reason": self.reason,
        }


@dataclass
class ValidationRunSummary:
    entity: str
    checked: int = 0
    valid: int = 0
    unverifiable: int = 0
    mismatches: List[RegionMismatch] = field(default_factory=list)
    by_transition: Counter = field(default_factory=Counter)

    @property
    def mismatched(self) -> int:
        return len(self.mismatches)

    @property
    def mismatch_rate(self) -> float:
        return round(self.mismatched / self.checked * 100, 2) if self.checked else 0.0

    @property
    def exit_code(self) -> int:
        return 1 if self.mismatches else 0

    def log(self) -> None:
        logger.info("=" * 60)
        logger.info(f"🔎 {self.entity} validation summary")
        logger.info(f"   Checked: {self.checked}")
        logger.info(f"   Valid: {self.valid}")
        logger.info(f"   Mismatched: {self.mismatched} ({self.mismatch_rate:.2f}%)")
        logger.info(f"   Outside every boundary: {self.unverifiable}")
        for (current, expected), count in self.by_transition.most_common():
            logger.info(f"      {current} → {expected}: {count}")


class AssignmentRunner:
    """
    Fetch records without a region, classify each and write the region back.

    Unassigned records are left untouched. A failed write is counted and
    logged; the run continues with the next record. ``validate`` audits
    already assigned records without writing.
    """

    def __init__(
        self,
        spatial: SpatialQueryManager,
        catalog: GeographyCatalog,
        boundaries: Optional[RegionBoundaryStore] = None,
    ):
        self.spatial = spatial
        self.catalog = catalog
        self.boundaries = boundaries

    def build_history(self, entity: str) -> HistoricalAssignmentIndex:
        history = self.spatial.config.get_history_settings(entity)
        if not history:
            return HistoricalAssignmentIndex()
        logger.info(f"📚 Loading historical {entity} assignments...")
        rows = self.spatial.get_historical_assignments(entity)
        return HistoricalAssignmentIndex.build(
            rows, history["name_column"], history["region_column"], self.catalog
        )

    def build_engine(self, entity: str) -> AssignmentEngine:
        context = AssignmentContext(
            catalog=self.catalog,
            boundaries=self.boundaries,
            history=self.build_history(entity),
        )
        return AssignmentEngine(context)

    def run(
        self,
        entity: str,
        dry_run: bool = False,
        reassign: bool = False,
        limit: Optional[int] = None,
    ) -> AssignmentRunSummary:
        settings: Dict[str, Any] = self.spatial.config.get_entity_settings(entity)
        summary = AssignmentRunSummary(entity=entity, dry_run=dry_run)

        logger.info(f"🎯 Assigning regions to {entity}{' (dry run)' if dry_run else ''}")
        rows = self.spatial.get_records_needing_assignment(entity, reassign=reassign)
        if limit is not None:
            rows = rows[:limit]
        if not rows:
            logger.success(f"✅ No {entity} need assignment")
            return summary

        engine = self.build_engine(entity)
        for index, row in enumerate(rows, start=1):
            record = LocationRecord.from_row(row, settings)
            assignment = engine.assign(record)
            summary.record(assignment)

            if assignment.assigned and not dry_run:
                try:
                    self.spatial.update_region(entity, record.record_id, assignment.region)
                    summary.written += 1
                except Exception as e:
                    logger.error(f"   ❌ Failed to write region for {record.record_id}: {e}")
                    summary.write_failures += 1

            if index % 100 == 0:
                logger.info(f"   📈 Progress: {index}/{len(rows)} processed")

        summary.log()
        return summary

    def validate(self, entity: str, limit: Optional[int] = None) -> ValidationRunSummary:
        """
        Check stored regions against the boundary each record's coordinates fall in.

        Read-only: nothing is written back. Records outside every boundary
        cannot be checked and are counted as unverifiable.
        """
        settings: Dict[str, Any] = self.spatial.config.get_entity_settings(entity)
        summary = ValidationRunSummary(entity=entity)

        logger.info(f"🔎 Validating stored {entity} regions against boundaries")
        rows = self.spatial.get_assigned_records_with_coordinates(entity)
        if limit is not None:
            rows = rows[:limit]

        context = AssignmentContext(catalog=self.catalog, boundaries=self.boundaries)
        engine = AssignmentEngine(context, strategies=[CoordinateStrategy()])
        for row in rows:
            record = LocationRecord.from_row(row, settings)
            current = row[settings["region_column"]]
            expected = engine.assign(record)
            summary.checked += 1

            if not expected.assigned:
                summary.unverifiable += 1
            elif expected.region == current:
                summary.valid += 1
            else:
                summary.mismatches.append(
                    RegionMismatch(
                        record_id=record.record_id,
                        name=record.name,
                        current_region=current,
                        expected_region=expected.region,
                        reason=expected.rationale[-1],
                    )
                )
                summary.by_transition[(current, expected.region)] += 1
                logger.debug(
                    f"   ⚠️ {record.record_id}: stored {current}, coordinates say {expected.region}"
                )

        summary.log()
        return summary
