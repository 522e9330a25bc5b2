"""
Region assignment cascade.

The engine tries a fixed list of strategies in priority order and keeps the
first match:

1. Coordinates inside a region boundary (0.95)
2. State found in an address field (0.85)
3. Region (0.90) or state (0.80) found in the entity name
4. Historical majority vote for the same name (0.85)

Confidence gets a single +0.05 (capped at 1.0) when another independent
input signal points to the same region. The value ranks assignments against
each other; it is not a probability.

Everything the engine reads arrives through an AssignmentContext, so one
engine never shares state with another.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger

from .extraction import AddressStateExtractor, NameLocation, NameLocationExtractor
from .geography import GeographyCatalog, SplitRule
from .geometry import Point, nearest_by_centroid, point_from_lat_lon, regions_containing
from .history import HistoricalAssignmentIndex
from .repositories.boundaries import RegionBoundaryStore

STANDARD_ADDRESS_FIELDS = ("address", "city", "state", "location_text", "street_address")

AGREEMENT_BOOST = 0.05


class AssignmentMethod(str, Enum):
    COORDINATES = "coordinates"
    ADDRESS_STATE = "address_state"
    NAME_REGION = "name_region"
    NAME_STATE = "name_state"
    HISTORICAL = "historical_data"
    NONE = "none"


METHOD_CONFIDENCE: Dict[AssignmentMethod, float] = {
    AssignmentMethod.COORDINATES: 0.95,
    AssignmentMethod.ADDRESS_STATE: 0.85,
    AssignmentMethod.NAME_REGION: 0.90,
    AssignmentMethod.NAME_STATE: 0.80,
    AssignmentMethod.HISTORICAL: 0.85,
    AssignmentMethod.NONE: 0.0,
}


@dataclass(frozen=True)
class LocationRecord:
    """One meet or club as seen by the engine."""

    record_id: Any = None
    name: Optional[str] = None
    latitude: Any = None
    longitude: Any = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    location_text: Optional[str] = None
    street_address: Optional[str] = None
    extra_fields: Tuple[Tuple[str, str], ...] = ()

    @property
    def point(self) -> Optional[Point]:
        return point_from_lat_lon(self.latitude, self.longitude)

    @property
    def has_coordinates(self) -> bool:
        return self.point is not None

    @property
    def has_address(self) -> bool:
        return bool(self.text_fields())

    def text_fields(self) -> List[Tuple[str, str]]:
        """Non-blank (field, text) pairs in priority order."""
        fields = [(name, getattr(self, name)) for name in STANDARD_ADDRESS_FIELDS]
        fields.extend(self.extra_fields)
        return [(name, str(value)) for name, value in fields if value and str(value).strip()]

    @classmethod
    def from_row(cls, row: Mapping[str, Any], settings: Mapping[str, Any]) -> "LocationRecord":
        """Build a record from a table row using an entity's column settings."""
        standard: Dict[str, Any] = {}
        extra: List[Tuple[str, str]] = []
        for column in settings.get("address_fields", STANDARD_ADDRESS_FIELDS):
            value = row.get(column)
            if column in STANDARD_ADDRESS_FIELDS:
                standard[column] = value
            elif value:
                extra.append((column, str(value)))

        return cls(
            record_id=row.get(settings["id_column"]),
            name=row.get(settings["name_column"]),
            latitude=row.get(settings.get("latitude_column", "latitude")),
            longitude=row.get(settings.get("longitude_column", "longitude")),
            extra_fields=tuple(extra),
            **standard,
        )


@dataclass
class Assignment:
    region: Optional[str]
    method: AssignmentMethod
    confidence: float
    rationale: List[str] = field(default_factory=list)
    has_coordinates: bool = False
    has_address: bool = False
    extracted_state: Optional[str] = None
    name_location: Optional[NameLocation] = None
    record_id: Any = None

    @property
    def assigned(self) -> bool:
        return self.region is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "region": self.region,
            "method": self.method.value,
            "confidence": self.confidence,
            "extracted_state": self.extracted_state,
            "name_location": self.name_location.value if self.name_location else None,
            "has_coordinates": self.has_coordinates,
            "has_address": self.has_address,
            "rationale": list(self.rationale),
        }


@dataclass(frozen=True)
class StrategyMatch:
    region: str
    method: AssignmentMethod
    reason: str
    extracted_state: Optional[str] = None
    name_location: Optional[NameLocation] = None


class _NoMatch:
    """Returned by a strategy that found nothing; not an error."""

    _instance: Optional["_NoMatch"] = None

    def __new__(cls) -> "_NoMatch":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH = _NoMatch()

StrategyResult = Union[StrategyMatch, _NoMatch]


@dataclass
class AssignmentContext:
    """Read-only inputs shared by every assignment in a run."""

    catalog: GeographyCatalog
    boundaries: Optional[RegionBoundaryStore] = None
    history: Optional[HistoricalAssignmentIndex] = None
    address_extractor: AddressStateExtractor = field(init=False, repr=False)
    name_extractor: NameLocationExtractor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.address_extractor = AddressStateExtractor(self.catalog)
        self.name_extractor = NameLocationExtractor(self.catalog)

    def resolve_state(
        self, state: str, record: LocationRecord, texts: Sequence[str] = ()
    ) -> Optional[Tuple[str, str]]:
        """
        Map a state to its region, returning (region, how).

        A split state resolves by latitude when the record has one, then by
        the legacy city keywords found in ``texts``, then by the split's
        default sub-region.
        """
        split = self.catalog.split_for_state(state)
        if split is None:
            region = self.catalog.region_for_state(state)
            return (region, f"{state} → {region}") if region else None

        point = record.point
        if point is not None:
            return split.resolve_latitude(point[1]), _latitude_reason(split, point[1])

        for text in texts:
            found = split.resolve_keywords(text)
            if found:
                region, keyword = found
                return region, f"{state} split by keyword '{keyword}' → {region}"

        return split.default, f"{state} split, no latitude or keyword → default {split.default}"


def _latitude_reason(split: SplitRule, latitude: float) -> str:
    side = "≥" if latitude >= split.latitude_threshold else "<"
    region = split.resolve_latitude(latitude)
    return f"{split.state} split: latitude {latitude} {side} {split.latitude_threshold} → {region}"


class CoordinateStrategy:
    """Point-in-polygon test against every region with a boundary."""

    signal = "coordinates"

    def attempt(self, record: LocationRecord, context: AssignmentContext) -> StrategyResult:
        point = record.point
        if point is None or context.boundaries is None:
            return NO_MATCH

        matches = regions_containing(point, context.boundaries.regions_with_boundaries())
        if not matches:
            return NO_MATCH

        chosen = matches[0] if len(matches) == 1 else nearest_by_centroid(point, matches)
        if chosen is None:
            return NO_MATCH
        lon, lat = point
        reason = f"Coordinates ({lat}, {lon}) inside {chosen.name}"
        if len(matches) > 1:
            reason += f" (nearest centroid of {len(matches)} matches)"

        # A split region (or a boundary drawn for the whole split state) resolves by latitude
        split = context.catalog.split_for_region(chosen.name) or context.catalog.split_for_state(
            chosen.name
        )
        if split is not None:
            region = split.resolve_latitude(lat)
            return StrategyMatch(
                region,
                AssignmentMethod.COORDINATES,
                f"{reason}; {_latitude_reason(split, lat)}",
                extracted_state=split.state,
            )

        state = chosen.states[0] if len(chosen.states) == 1 else None
        return StrategyMatch(chosen.name, AssignmentMethod.COORDINATES, reason, extracted_state=state)


class AddressStrategy:
    """State names and abbreviations in the record's address fields."""

    signal = "address"

    def attempt(self, record: LocationRecord, context: AssignmentContext) -> StrategyResult:
        fields = record.text_fields()
        for field_name, text in fields:
            match = context.address_extractor.extract(text, field_name)
            if match is None:
                continue
            # The matched field is searched for split keywords first
            texts = [text] + [t for name, t in fields if name != field_name]
            resolved = context.resolve_state(match.state, record, texts)
            if resolved is None:
                return NO_MATCH
            region, how = resolved
            return StrategyMatch(
                region,
                AssignmentMethod.ADDRESS_STATE,
                f"Extracted state {match.state} ('{match.token}') from {field_name}: {how}",
                extracted_state=match.state,
            )
        return NO_MATCH


class NameStrategy:
    """Regional then state patterns in the entity name."""

    signal = "name"

    def attempt(self, record: LocationRecord, context: AssignmentContext) -> StrategyResult:
        location = context.name_extractor.extract(record.name)
        if location is None:
            return NO_MATCH

        if location.kind == "region":
            if not context.catalog.is_region(location.value):
                return NO_MATCH
            return StrategyMatch(
                location.value,
                AssignmentMethod.NAME_REGION,
                f"Name '{record.name}' matches regional pattern '{location.token}' → {location.value}",
                name_location=location,
            )

        texts = [record.name or ""] + [text for _, text in record.text_fields()]
        resolved = context.resolve_state(location.value, record, texts)
        if resolved is None:
            return NO_MATCH
        region, how = resolved
        return StrategyMatch(
            region,
            AssignmentMethod.NAME_STATE,
            f"Name '{record.name}' mentions {location.value}: {how}",
            extracted_state=location.value,
            name_location=location,
        )


class HistoricalStrategy:
    """Modal region previously assigned to the same name."""

    signal = "history"

    def attempt(self, record: LocationRecord, context: AssignmentContext) -> StrategyResult:
        if context.history is None or not record.name:
            return NO_MATCH
        result = context.history.lookup_with_votes(record.name)
        if result is None:
            return NO_MATCH
        region, count, total = result
        return StrategyMatch(
            region,
            AssignmentMethod.HISTORICAL,
            f"Historical data: '{record.name}' → {region} ({count}/{total} votes)",
        )


DEFAULT_STRATEGIES = (CoordinateStrategy, AddressStrategy, NameStrategy, HistoricalStrategy)

# Input signals that count towards the agreement boost
INDEPENDENT_SIGNALS = ("coordinates", "address", "name")


class AssignmentEngine:
    """
    Classify LocationRecords into regions.

    ``assign`` has no side effects: the same record and context always
    produce the same region, method and confidence.

    Example:
        context = AssignmentContext(catalog, boundaries, history)
        engine = AssignmentEngine(context)
        assignment = engine.assign(LocationRecord(name="NorCal Open"))
    """

    def __init__(self, context: AssignmentContext, strategies: Optional[Sequence[Any]] = None):
        self.context = context
        self.strategies = (
            list(strategies) if strategies is not None else [s() for s in DEFAULT_STRATEGIES]
        )

    def assign(self, record: LocationRecord) -> Assignment:
        assignment = Assignment(
            region=None,
            method=AssignmentMethod.NONE,
            confidence=METHOD_CONFIDENCE[AssignmentMethod.NONE],
            has_coordinates=record.has_coordinates,
            has_address=record.has_address,
            record_id=record.record_id,
        )

        results: Dict[int, StrategyResult] = {}
        for index, strategy in enumerate(self.strategies):
            result = strategy.attempt(record, self.context)
            results[index] = result
            if result is NO_MATCH:
                assignment.rationale.append(f"{type(strategy).__name__}: no match")
                continue

            assignment.region = result.region
            assignment.method = result.method
            assignment.confidence = METHOD_CONFIDENCE[result.method]
            assignment.extracted_state = result.extracted_state
            assignment.name_location = result.name_location
            assignment.rationale.append(result.reason)
            self._apply_agreement_boost(record, assignment, index, strategy, results)
            logger.trace(
                f"   🎯 {record.record_id}: {assignment.region} "
                f"({assignment.method.value}, {assignment.confidence:.2f})"
            )
            return assignment

        assignment.rationale.append("No region assignment method succeeded")
        logger.trace(f"   ❓ {record.record_id}: no region")
        return assignment

    def _apply_agreement_boost(
        self,
        record: LocationRecord,
        assignment: Assignment,
        winner_index: int,
        winner: Any,
        results: Dict[int, StrategyResult],
    ) -> None:
        if winner.signal not in INDEPENDENT_SIGNALS:
            return
        for index, strategy in enumerate(self.strategies):
            if index == winner_index or strategy.signal not in INDEPENDENT_SIGNALS:
                continue
            if strategy.signal == winner.signal:
                continue
            result = results.get(index)
            if result is None:
                result = strategy.attempt(record, self.context)
            if result is not NO_MATCH and result.region == assignment.region:
                assignment.confidence = round(min(1.0, assignment.confidence + AGREEMENT_BOOST), 2)
                assignment.rationale.append(
                    f"{strategy.signal.capitalize()} signal agrees on {assignment.region} "
                    f"(+{AGREEMENT_BOOST:.2f})"
                )
                if assignment.extracted_state is None:
                    assignment.extracted_state = result.extracted_state
                if assignment.name_location is None:
                    assignment.name_location = result.name_location
                return
