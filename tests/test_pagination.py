import pytest

from conftest import FakeDatabase
from wso_regions.errors import PageFetchFailure
from wso_regions.repositories.pagination import PaginatedAggregator, chunked


def rows(n, table_offset=0):
    return [{"id": table_offset + i, "value": i % 7} for i in range(n)]


def test_2500_rows_come_back_in_three_pages(make_aggregator):
    db = FakeDatabase({"meets": rows(2500)})

    result = make_aggregator(db).fetch_all("meets", ["id"], order_by="id")

    assert len(result) == 2500
    assert [r["id"] for r in result] == list(range(2500))
    assert db.range_calls == [("meets", 0, 999), ("meets", 1000, 1999), ("meets", 2000, 2999)]


def test_exactly_one_page_costs_one_request(make_aggregator):
    db = FakeDatabase({"meets": rows(1000)})

    result = make_aggregator(db).fetch_all("meets", order_by="id")

    assert len(result) == 1000
    assert len(db.range_calls) == 1


def test_empty_result(make_aggregator):
    db = FakeDatabase({"meets": []})

    assert make_aggregator(db).fetch_all("meets", order_by="id") == []
    assert len(db.range_calls) == 1


def test_filters_apply_to_every_page(make_aggregator):
    db = FakeDatabase({"meets": rows(3000)})

    result = make_aggregator(db, page_size=500).fetch_all(
        "meets", ["id", "value"], {"value": 3}, order_by="id"
    )

    assert len(result) == len([i for i in range(3000) if i % 7 == 3])
    assert all(r["value"] == 3 for r in result)


def test_without_a_total_a_full_page_triggers_another_request(make_aggregator):
    db = FakeDatabase({"meets": rows(1000)})
    # Stores that do not report counts still stop on the next (empty) page
    db.select_range = _without_count(db.select_range)

    result = make_aggregator(db).fetch_all("meets", order_by="id")

    assert len(result) == 1000
    assert len(db.range_calls) == 2


def _without_count(select_range):
    def wrapper(*args, **kwargs):
        data, _ = select_range(*args, **kwargs)
        return data, None

    return wrapper


def test_store_ceiling_below_page_size_still_reads_every_row(make_aggregator):
    db = FakeDatabase({"meets": rows(2500)}, max_rows_per_request=1000)

    result = make_aggregator(db, page_size=2000).fetch_all("meets", order_by="id")

    assert len(result) == 2500
    assert [r["id"] for r in result] == list(range(2500))
    assert db.range_calls == [("meets", 0, 1999), ("meets", 1000, 2999), ("meets", 2000, 3999)]


def test_empty_page_before_reported_total_aborts(make_aggregator):
    db = FakeDatabase({"meets": rows(1500)})
    db.select_range = _overcounting(db.select_range, extra=500)

    with pytest.raises(PageFetchFailure) as excinfo:
        make_aggregator(db).fetch_all("meets", order_by="id")

    assert excinfo.value.start == 1500
    assert "1500 of 2000" in str(excinfo.value)


def _overcounting(select_range, extra):
    def wrapper(*args, **kwargs):
        data, total = select_range(*args, **kwargs)
        return data, (total + extra if total is not None else None)

    return wrapper


def test_hard_cap_truncates_and_stops(make_aggregator):
    db = FakeDatabase({"meets": rows(5000)})

    result = make_aggregator(db, hard_cap=2500).fetch_all("meets", order_by="id")

    assert len(result) == 2500
    assert len(db.range_calls) == 3


def test_transient_failure_is_retried_with_backoff(make_aggregator, sleeps):
    db = FakeDatabase({"meets": rows(1500)})
    db.failures["meets"] = 2

    result = make_aggregator(db, max_retries=3).fetch_all("meets", order_by="id")

    assert len(result) == 1500
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_abort_the_whole_fetch(make_aggregator, sleeps):
    db = FakeDatabase({"meets": rows(1500)})
    db.failures["meets"] = 3

    with pytest.raises(PageFetchFailure) as excinfo:
        make_aggregator(db, max_retries=3).fetch_all("meets", order_by="id")

    assert excinfo.value.table == "meets"
    assert excinfo.value.start == 0
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.cause, ConnectionError)
    assert len(sleeps) == 2


def test_fixed_backoff(make_aggregator, sleeps):
    db = FakeDatabase({"meets": rows(10)})
    db.failures["meets"] = 2

    make_aggregator(db, max_retries=3, backoff="fixed").fetch_all("meets", order_by="id")

    assert sleeps == [0.5, 0.5]


def test_fetch_in_batches_splits_large_id_lists(make_aggregator):
    db = FakeDatabase({"meet_results": [{"result_id": i, "meet_id": i % 450} for i in range(900)]})

    result = make_aggregator(db).fetch_in_batches(
        "meet_results", ["result_id", "meet_id"], "meet_id", list(range(450)) + [None, 3], order_by="result_id"
    )

    assert len(result) == 900
    assert len(db.range_calls) == 3
    assert len({r["result_id"] for r in result}) == 900


def test_fetch_in_batches_with_no_ids_makes_no_requests(make_aggregator):
    db = FakeDatabase({"meet_results": rows(10)})

    assert make_aggregator(db).fetch_in_batches("meet_results", None, "meet_id", []) == []
    assert db.range_calls == []


def test_from_config_reads_pagination_section(config):
    aggregator = PaginatedAggregator.from_config(FakeDatabase(), config, max_retries=5)

    assert aggregator.page_size == 1000
    assert aggregator.hard_cap == 50000
    assert aggregator.id_batch_size == 200
    assert aggregator.max_retries == 5


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(chunked([1], 0))
