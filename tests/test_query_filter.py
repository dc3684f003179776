"""Unit tests for the view filters and the staged filter panel."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from warehouse_ledger import query_filter as qf
from warehouse_ledger.constants import ALL_SUBWAREHOUSES, TransactionType
from warehouse_ledger.ledger import StockRow
from warehouse_ledger.query_filter import FilterCriteria, FilterPanel

ENTRY = TransactionType.ENTRY
EXIT = TransactionType.EXIT


@pytest.fixture
def lookup(products):
    return {product.product_id: product for product in products}


@pytest.fixture
def stock_rows():
    return [
        StockRow("A", "Anti-A reagent", "Fridge 1", 0),
        StockRow("B", "Buffer solution", "Shelf 2", 3),
        StockRow("C", "Control serum", "Fridge 1", 5),
        StockRow("D", "Diluent", "Shelf 2", 12),
        StockRow("E", "Enzyme", "Fridge 1", -2),
    ]


@pytest.fixture
def log_rows(make_transaction):
    return [
        make_transaction("A", ENTRY, 10, timestamp="2025-03-01T08:00:00+00:00"),
        make_transaction("B", ENTRY, 4, timestamp="2025-03-05T23:30:00+00:00"),
        make_transaction("A", EXIT, 2, batch="LOT-77", subwarehouse="Fridge 1", timestamp="2025-03-05T10:00:00+00:00"),
        make_transaction("B", EXIT, 1, batch="X9", subwarehouse="Bench", timestamp="2025-03-09T12:00:00+00:00"),
        make_transaction("GONE", ENTRY, 7, timestamp="2025-03-05T09:00:00+00:00"),
        make_transaction("GONE", EXIT, 1, batch="L", timestamp="2025-03-05T09:00:00+00:00"),
    ]


# ---------------------------------------------------------------------------
# Identity and stock view
# ---------------------------------------------------------------------------


def test_empty_criteria_is_identity_for_every_view(stock_rows, log_rows, lookup):
    """Default criteria keep every row that belongs in each view."""

    assert qf.filter_stock(stock_rows) == stock_rows
    assert [t.product_id for t in qf.filter_entries(log_rows, lookup)] == ["A", "B"]
    assert [t.product_id for t in qf.filter_exits(log_rows, lookup)] == ["A", "B"]


def test_views_exclude_products_missing_from_catalog(log_rows, lookup):
    ids = {t.product_id for t in qf.filter_entries(log_rows, lookup) + qf.filter_exits(log_rows, lookup)}

    assert "GONE" not in ids


def test_open_ended_bucket_matches_five_or_more(stock_rows):
    result = qf.filter_stock(stock_rows, FilterCriteria(stock_levels=frozenset({5})))

    assert [row.stock for row in result] == [5, 12]


def test_exact_buckets_are_unioned(stock_rows):
    result = qf.filter_stock(stock_rows, FilterCriteria(stock_levels=frozenset({0, 3})))

    assert [row.product_id for row in result] == ["A", "B"]


def test_negative_stock_matches_no_bucket(stock_rows):
    result = qf.filter_stock(stock_rows, FilterCriteria(stock_levels=frozenset(range(6))))

    assert "E" not in [row.product_id for row in result]


def test_stock_search_covers_name_id_and_subwarehouse(stock_rows):
    by_name = qf.filter_stock(stock_rows, FilterCriteria(search="SERUM"))
    by_sub = qf.filter_stock(stock_rows, FilterCriteria(search="shelf"))

    assert [row.product_id for row in by_name] == ["C"]
    assert [row.product_id for row in by_sub] == ["B", "D"]


def test_search_terms_are_or_combined(stock_rows):
    result = qf.filter_stock(stock_rows, FilterCriteria(search=["enzyme", "buffer"]))

    assert [row.product_id for row in result] == ["B", "E"]


def test_dimensions_are_and_combined(stock_rows):
    criteria = FilterCriteria(search="e", subwarehouse="Fridge 1", stock_levels=frozenset({5}))

    assert [row.product_id for row in qf.filter_stock(stock_rows, criteria)] == ["C"]


# ---------------------------------------------------------------------------
# Entries and exits views
# ---------------------------------------------------------------------------


def test_date_only_bounds_are_inclusive_whole_days(log_rows, lookup):
    criteria = FilterCriteria(start=date(2025, 3, 5), end=date(2025, 3, 5))

    entries = qf.filter_entries(log_rows, lookup, criteria)
    exits = qf.filter_exits(log_rows, lookup, criteria)

    assert [t.product_id for t in entries] == ["B"]
    assert [t.batch for t in exits] == ["LOT-77"]


def test_datetime_bounds_are_compared_exactly(log_rows, lookup):
    criteria = FilterCriteria(start=datetime(2025, 3, 5, 23, 30))

    assert [t.product_id for t in qf.filter_entries(log_rows, lookup, criteria)] == ["B"]


def test_open_lower_bound(log_rows, lookup):
    criteria = FilterCriteria(end=date(2025, 3, 1))

    assert [t.product_id for t in qf.filter_entries(log_rows, lookup, criteria)] == ["A"]


def test_entries_ignore_subwarehouse_selection(log_rows, lookup):
    criteria = FilterCriteria(subwarehouse="Nowhere")

    assert len(qf.filter_entries(log_rows, lookup, criteria)) == 2


def test_exit_search_covers_batch_and_exit_subwarehouse(log_rows, lookup):
    by_batch = qf.filter_exits(log_rows, lookup, FilterCriteria(search="lot-7"))
    by_sub = qf.filter_exits(log_rows, lookup, FilterCriteria(search="bench"))

    assert [t.product_id for t in by_batch] == ["A"]
    assert [t.product_id for t in by_sub] == ["B"]


def test_exit_subwarehouse_uses_transaction_value(log_rows, lookup):
    result = qf.filter_exits(log_rows, lookup, FilterCriteria(subwarehouse="Bench"))

    assert [t.batch for t in result] == ["X9"]


def test_unreadable_timestamp_only_matches_unbounded_range(make_transaction, lookup):
    rows = [make_transaction("A", ENTRY, 1, timestamp="not a date")]

    assert qf.filter_entries(rows, lookup) == rows
    assert qf.filter_entries(rows, lookup, FilterCriteria(start=date(2000, 1, 1))) == []


# ---------------------------------------------------------------------------
# FilterPanel
# ---------------------------------------------------------------------------


def test_staged_values_do_not_filter_until_applied():
    panel = FilterPanel()

    panel.stage(subwarehouse="Fridge 1", stock_levels={1, 2})

    assert panel.applied.subwarehouse == ALL_SUBWAREHOUSES
    applied = panel.apply()
    assert applied.subwarehouse == "Fridge 1"
    assert applied.stock_levels == frozenset({1, 2})


def test_search_is_live():
    panel = FilterPanel()

    panel.set_search("buffer")

    assert panel.applied.search == "buffer"
    assert panel.staged.search == "buffer"
    with pytest.raises(TypeError):
        panel.stage(search="x")


def test_clear_resets_everything_but_search():
    panel = FilterPanel()
    panel.set_search("serum")
    panel.stage(subwarehouse="Shelf 2", start=date(2025, 1, 1))
    panel.apply()

    panel.clear()

    assert panel.applied == FilterCriteria(search="serum")
    assert panel.staged == FilterCriteria(search="serum")


def test_unknown_stock_bucket_is_rejected():
    panel = FilterPanel()

    with pytest.raises(ValueError):
        panel.stage(stock_levels={7})
