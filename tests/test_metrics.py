from datetime import date

import pytest

from conftest import FakeDatabase
from wso_regions.errors import StaleTruncationSignature
from wso_regions.metrics import (
    STATUS_UNCLASSIFIABLE,
    RegionMetrics,
    RegionMetricsCalculator,
    activity_ratio,
    window_start,
)

AS_OF = date(2025, 6, 30)


@pytest.fixture
def tables():
    return {
        "meets": [
            {"meet_id": 1, "Date": "2025-03-01", "latitude": 33.5, "longitude": -86.8},
            {"meet_id": 2, "Date": "2024-12-01", "latitude": 32.4, "longitude": -86.3},
            {"meet_id": 3, "Date": "2023-01-01", "latitude": 33.5, "longitude": -86.8},
            {"meet_id": 4, "Date": "2025-01-01", "latitude": None, "longitude": None},
            {"meet_id": 5, "Date": "2025-02-01", "latitude": 38.97, "longitude": -76.49},
        ],
        "meet_results": [
            {"result_id": 1, "meet_id": 1, "lifter_id": "A"},
            {"result_id": 2, "meet_id": 1, "lifter_id": "B"},
            {"result_id": 3, "meet_id": 1, "lifter_id": "C"},
            {"result_id": 4, "meet_id": 2, "lifter_id": "A"},
            {"result_id": 5, "meet_id": 2, "lifter_id": "B"},
            {"result_id": 6, "meet_id": 3, "lifter_id": "D"},
            {"result_id": 7, "meet_id": 5, "lifter_id": "E"},
            {"result_id": 8, "meet_id": 4, "lifter_id": "F"},
        ],
        "clubs": [
            {"club_name": "Birmingham Barbell", "latitude": 33.52, "longitude": -86.81},
            {"club_name": "Mobile Iron", "latitude": 30.69, "longitude": -88.04},
            {"club_name": "Annapolis Strength", "latitude": 38.97, "longitude": -76.49},
            {"club_name": "Somewhere Gym", "latitude": None, "longitude": None},
        ],
        "wso_information": [],
    }


@pytest.fixture
def db(tables):
    return FakeDatabase(tables)


@pytest.fixture
def calculator(db, boundaries, catalog, config, make_spatial):
    return RegionMetricsCalculator(make_spatial(db), boundaries, catalog, config, as_of=AS_OF)


def test_region_metrics_from_polygon_filtering(calculator):
    metrics = calculator.calculate("Alabama")

    assert metrics.status == "ok"
    assert metrics.entity_count == 2
    assert metrics.recent_event_count == 2
    assert metrics.active_participants == 3
    assert metrics.total_participations == 5
    assert metrics.estimated_population == 5108000
    assert metrics.activity_ratio == 1.67


def test_missing_boundary_is_unclassifiable_not_zero(calculator):
    metrics = calculator.calculate("Florida")

    assert metrics.is_unclassifiable
    assert metrics == RegionMetrics(region="Florida", status=STATUS_UNCLASSIFIABLE)
    assert metrics.to_record()["metrics_status"] == "unclassifiable"


def test_split_region_population_uses_override(calculator):
    metrics = calculator.calculate("California North Central")

    assert metrics.estimated_population == 15000000
    assert metrics.entity_count == 0
    assert metrics.activity_ratio == 0.0


def test_run_persists_keyed_by_region_name(calculator, db):
    summary = calculator.run(["Alabama", "DMV", "Florida"])

    assert summary.exit_code == 0
    assert summary.persisted == ["Alabama", "DMV", "Florida"]
    assert summary.unclassifiable == ["Florida"]

    stored = {row["name"]: row for row in db.tables["wso_information"]}
    assert stored["Alabama"]["barbell_clubs_count"] == 2
    assert stored["Alabama"]["recent_meets_count"] == 2
    assert stored["Alabama"]["active_lifters_count"] == 3
    assert stored["Alabama"]["total_participations"] == 5
    assert stored["Alabama"]["activity_factor"] == 1.67
    assert stored["DMV"]["active_lifters_count"] == 1
    assert stored["Florida"]["metrics_status"] == "unclassifiable"


def test_consecutive_runs_are_identical(calculator, db):
    first = calculator.run(["Alabama", "DMV"])
    stored_first = [dict(row) for row in db.tables["wso_information"]]

    second = calculator.run(["Alabama", "DMV"])

    assert first.results == second.results
    assert db.tables["wso_information"] == stored_first
    assert len(db.tables["wso_information"]) == 2


def test_dry_run_writes_nothing(calculator, db):
    summary = calculator.run(["Alabama"], dry_run=True)

    assert summary.results["Alabama"].recent_event_count == 2
    assert summary.persisted == []
    assert db.upserts == []


def test_a_failing_region_does_not_stop_the_run(db, boundaries, catalog, config, make_spatial):
    calculator = RegionMetricsCalculator(
        make_spatial(db, max_retries=2), boundaries, catalog, config, as_of=AS_OF
    )
    db.failures["meet_results"] = 2

    summary = calculator.run(["Alabama", "DMV"])

    assert list(summary.failed) == ["Alabama"]
    assert summary.results["DMV"].total_participations == 1
    assert summary.exit_code == 1


def test_failed_write_is_not_reported_as_calculated(calculator, db):
    def failing_upsert(table, data, on_conflict):
        raise ConnectionError("write refused")

    db.upsert = failing_upsert

    summary = calculator.run(["Alabama"])

    assert summary.results == {}
    assert summary.persisted == []
    assert list(summary.failed) == ["Alabama"]
    assert summary.exit_code == 1


def test_total_equal_to_legacy_page_limit_is_flagged(boundaries, catalog, config, make_spatial):
    db = FakeDatabase(
        {
            "meets": [{"meet_id": 1, "Date": "2025-03-01", "latitude": 33.5, "longitude": -86.8}],
            "meet_results": [{"result_id": i, "meet_id": 1, "lifter_id": i % 250} for i in range(1000)],
            "clubs": [],
        }
    )
    calculator = RegionMetricsCalculator(make_spatial(db), boundaries, catalog, config, as_of=AS_OF)

    with pytest.warns(StaleTruncationSignature):
        metrics = calculator.calculate("Alabama")

    # Flagged, never corrected
    assert metrics.total_participations == 1000
    assert metrics.truncation_flags == ["total_participations"]
    assert metrics.activity_ratio == 4.0


def test_activity_ratio_and_window():
    assert activity_ratio(5, 3) == 1.67
    assert activity_ratio(10, 0) == 0.0
    assert window_start(date(2025, 6, 30), 12) == date(2024, 6, 30)
    assert window_start(date(2024, 2, 29), 12) == date(2023, 2, 28)
