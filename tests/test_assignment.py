import pytest

from wso_regions.assignment import (
    NO_MATCH,
    AssignmentContext,
    AssignmentEngine,
    AssignmentMethod,
    CoordinateStrategy,
    LocationRecord,
)
from wso_regions.history import HistoricalAssignmentIndex

ANNAPOLIS = "1789 McGuckian St, Annapolis, Maryland, United States of America, 21401"


@pytest.fixture
def history() -> HistoricalAssignmentIndex:
    return HistoricalAssignmentIndex.build(
        [
            {"name": "Spring Classic", "region": "Georgia"},
            {"name": "Spring Classic", "region": "Georgia"},
            {"name": "Spring Classic", "region": "Florida"},
        ]
    )


@pytest.fixture
def engine(catalog, boundaries, history) -> AssignmentEngine:
    return AssignmentEngine(AssignmentContext(catalog, boundaries, history))


def test_maryland_address_assigns_dmv(catalog):
    engine = AssignmentEngine(AssignmentContext(catalog))

    assignment = engine.assign(LocationRecord(record_id=1, address=ANNAPOLIS))

    assert assignment.extracted_state == "Maryland"
    assert assignment.region == "DMV"
    assert assignment.method == AssignmentMethod.ADDRESS_STATE
    assert assignment.confidence == pytest.approx(0.85)
    assert assignment.has_address
    assert not assignment.has_coordinates


def test_coordinates_south_of_split_threshold_assign_southern_region(engine):
    assignment = engine.assign(LocationRecord(latitude=34.0, longitude=-118.2))

    assert assignment.region == "California South"
    assert assignment.method == AssignmentMethod.COORDINATES
    assert assignment.confidence == pytest.approx(0.95)
    assert any("35.5" in line for line in assignment.rationale)


def test_coordinates_north_of_split_threshold_assign_northern_region(engine):
    assignment = engine.assign(LocationRecord(latitude=37.77, longitude=-122.42))

    assert assignment.region == "California North Central"
    assert assignment.method == AssignmentMethod.COORDINATES


def test_regional_name_pattern(engine):
    assignment = engine.assign(LocationRecord(name="NorCal Open"))

    assert assignment.region == "California North Central"
    assert assignment.method == AssignmentMethod.NAME_REGION
    assert assignment.confidence >= 0.90
    assert assignment.name_location.kind == "region"


def test_state_name_pattern(engine):
    assignment = engine.assign(LocationRecord(name="Ohio State Championships"))

    assert assignment.region == "Ohio"
    assert assignment.method == AssignmentMethod.NAME_STATE
    assert assignment.confidence == pytest.approx(0.80)


def test_coordinates_take_priority_over_a_disagreeing_address(engine):
    record = LocationRecord(latitude=38.97, longitude=-76.49, address="Austin, TX 78701")

    assignment = engine.assign(record)

    assert assignment.region == "DMV"
    assert assignment.method == AssignmentMethod.COORDINATES
    assert assignment.confidence == pytest.approx(0.95)


def test_agreeing_signals_boost_confidence_once(engine):
    record = LocationRecord(latitude=38.97, longitude=-76.49, address=ANNAPOLIS, name="Maryland Open")

    assignment = engine.assign(record)

    assert assignment.method == AssignmentMethod.COORDINATES
    assert assignment.confidence == pytest.approx(1.0)
    assert sum("agrees" in line for line in assignment.rationale) == 1


def test_boost_applies_to_address_matches(catalog):
    engine = AssignmentEngine(AssignmentContext(catalog))

    assignment = engine.assign(LocationRecord(address=ANNAPOLIS, name="Maryland Open"))

    assert assignment.method == AssignmentMethod.ADDRESS_STATE
    assert assignment.confidence == pytest.approx(0.90)


def test_assignment_is_deterministic(catalog, boundaries, history):
    records = [
        LocationRecord(record_id=1, latitude=34.0, longitude=-118.2),
        LocationRecord(record_id=2, address=ANNAPOLIS, name="Maryland Open"),
        LocationRecord(record_id=3, name="Spring Classic"),
        LocationRecord(record_id=4, city="Nowhere"),
    ]
    first = AssignmentEngine(AssignmentContext(catalog, boundaries, history))
    second = AssignmentEngine(AssignmentContext(catalog, boundaries, history))

    results = [first.assign(r).to_dict() for r in records]

    assert results == [first.assign(r).to_dict() for r in records]
    assert results == [second.assign(r).to_dict() for r in records]


def test_historical_majority_vote(engine):
    assignment = engine.assign(LocationRecord(name="Spring Classic"))

    assert assignment.region == "Georgia"
    assert assignment.method == AssignmentMethod.HISTORICAL
    assert assignment.confidence == pytest.approx(0.85)
    assert "2/3 votes" in assignment.rationale[-1]


def test_no_match_keeps_rationale(engine):
    assignment = engine.assign(LocationRecord(record_id=9, name="Garage Gym Classic", city="Nowhere"))

    assert assignment.region is None
    assert assignment.method == AssignmentMethod.NONE
    assert assignment.confidence == 0.0
    assert not assignment.assigned
    assert len(assignment.rationale) == 5


def test_split_state_address_uses_latitude_when_present(catalog):
    engine = AssignmentEngine(AssignmentContext(catalog))

    assignment = engine.assign(LocationRecord(address="Somewhere, California", latitude=34.0, longitude=-118.2))

    assert assignment.method == AssignmentMethod.ADDRESS_STATE
    assert assignment.region == "California South"


@pytest.mark.parametrize(
    "address, region",
    [
        ("San Diego, California", "California South"),
        ("West Hollywood, California", "California South"),
        ("Sacramento, California", "California North Central"),
        ("Barstow, California", "California North Central"),
    ],
)
def test_split_state_address_falls_back_to_keywords_then_default(catalog, address, region):
    engine = AssignmentEngine(AssignmentContext(catalog))

    assert engine.assign(LocationRecord(address=address)).region == region


def test_boundary_without_split_reports_single_state(catalog, boundaries):
    match = CoordinateStrategy().attempt(
        LocationRecord(latitude=33.5, longitude=-86.8), AssignmentContext(catalog, boundaries)
    )

    assert match.region == "Alabama"
    assert match.extracted_state == "Alabama"


def test_coordinate_strategy_without_boundaries_is_no_match(catalog):
    match = CoordinateStrategy().attempt(LocationRecord(latitude=34.0, longitude=-118.2), AssignmentContext(catalog))

    assert match is NO_MATCH
    assert not match


def test_record_from_row_uses_entity_settings(config):
    settings = config.get_entity_settings("clubs")
    row = {
        "club_name": "Iron Temple",
        "latitude": "38.97",
        "longitude": "-76.49",
        "address": None,
        "geocode_display_name": "Annapolis, Anne Arundel County, Maryland, 21401, United States",
    }

    record = LocationRecord.from_row(row, settings)

    assert record.record_id == "Iron Temple"
    assert record.name == "Iron Temple"
    assert record.point == (-76.49, 38.97)
    assert record.text_fields() == [
        ("geocode_display_name", "Annapolis, Anne Arundel County, Maryland, 21401, United States")
    ]
