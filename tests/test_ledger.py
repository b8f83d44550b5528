"""Unit tests for the pure ledger engine."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from already_dead import ledger
from already_dead.records import Seller


# ---------------------------------------------------------------------------
# Numeric normalization
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "   ",
        "abc",
        "$1,200.50",
        "12",
        "-4",
        3.5,
        7,
        True,
        "1.2.3",
        "1-2",
        float("nan"),
        float("inf"),
        Decimal("NaN"),
        Decimal("2.75"),
    ],
)
def test_to_number_is_idempotent(raw):
    once = ledger.to_number(raw)

    assert ledger.to_number(once) == once
    assert once.is_finite()


@pytest.mark.parametrize("raw", [None, "", "abc", "1.2.3", "--", float("nan"), float("inf"), True, False])
def test_to_number_returns_zero_for_unparseable_input(raw):
    assert ledger.to_number(raw) == Decimal("0")


def test_to_number_strips_currency_formatting():
    assert ledger.to_number("$1,200.50") == Decimal("1200.50")
    assert ledger.to_number(" -12 ") == Decimal("-12")


def test_to_number_keeps_float_text_exact():
    assert ledger.to_number(0.1) == Decimal("0.1")


def test_to_quantity_truncates_toward_zero():
    assert ledger.to_quantity("3.9") == 3
    assert ledger.to_quantity(-2.7) == -2
    assert ledger.to_quantity("n/a") == 0


# ---------------------------------------------------------------------------
# Inventory ledger
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "qty, delta",
    [(10, -3), (10, 5), (3, -3), (3, -10), (0, -1), (0, 0), (4, "2"), (4, "junk")],
)
def test_adjust_quantity_never_goes_negative(make_item, qty, delta):
    item = make_item(qty=qty)

    adjusted = ledger.adjust_quantity(item, delta)

    expected = qty + ledger.to_quantity(delta)
    assert adjusted.qty >= 0
    if expected >= 0:
        assert adjusted.qty == expected
    else:
        assert adjusted.qty == 0


def test_adjust_quantity_returns_new_item(make_item):
    item = make_item(qty=2)

    adjusted = ledger.adjust_quantity(item, -1)

    assert item.qty == 2
    assert adjusted.qty == 1
    assert adjusted.item_id == item.item_id


def test_lookup_by_name_is_case_insensitive_first_match(make_item):
    items = [
        make_item(item_id="I-1", name="Denim Jacket"),
        make_item(item_id="I-2", name="denim jacket"),
    ]

    found = ledger.lookup_by_name(items, "DENIM JACKET")

    assert found is not None
    assert found.item_id == "I-1"


def test_lookup_by_name_returns_none_when_absent(make_item):
    assert ledger.lookup_by_name([make_item()], "Nope") is None
    assert ledger.lookup_by_name([make_item()], None) is None


def test_lookup_item_prefers_id_over_name(make_item):
    items = [make_item(item_id="I-1", name="Hat"), make_item(item_id="I-2", name="Scarf")]

    found = ledger.lookup_item(items, item_id="I-2", item_name="Hat")

    assert found is not None
    assert found.item_id == "I-2"


def test_lookup_item_falls_back_to_name_for_unknown_id(make_item):
    items = [make_item(item_id="I-1", name="Hat")]

    found = ledger.lookup_item(items, item_id="I-404", item_name="hat")

    assert found is not None
    assert found.item_id == "I-1"


def test_apply_delta_is_noop_for_unknown_item(make_item):
    items = [make_item(qty=4)]

    updated, adjusted = ledger.apply_delta(items, ledger.InventoryDelta(item_id=None, item_name="Ghost", delta=-1))

    assert adjusted is None
    assert updated == items


# ---------------------------------------------------------------------------
# Sale recorder
# ---------------------------------------------------------------------------


def _line_input(**overrides):
    values = dict(
        date_iso="2026-10-01",
        item_id="I-1",
        item_name="Vintage Tee",
        qty=3,
        price=Decimal("390"),
        fees=Decimal("0"),
        unit_cost=Decimal("80"),
    )
    values.update(overrides)
    return ledger.SaleLineInput(**values)


def test_record_sale_pairs_line_with_negative_delta():
    recording = ledger.record_sale(_line_input(), line_id="L-1")

    assert recording.sale.line_id == "L-1"
    assert recording.sale.sale_id == "L-1"
    assert recording.sale.qty == 3
    assert recording.sale.unit_cost == Decimal("80")
    assert recording.inventory_delta == ledger.InventoryDelta(item_id="I-1", item_name="Vintage Tee", delta=-3)


def test_record_sale_keeps_supplied_sale_id():
    recording = ledger.record_sale(_line_input(sale_id="L-first"), line_id="L-second")

    assert recording.sale.sale_id == "L-first"
    assert recording.sale.line_id == "L-second"


def test_record_sale_generates_line_id():
    recording = ledger.record_sale(_line_input())

    assert recording.sale.line_id.startswith("L")
    assert recording.sale.sale_id == recording.sale.line_id


def test_sale_then_delete_restores_original_quantity(make_item):
    items = [make_item(qty=10)]
    recording = ledger.record_sale(_line_input(qty=3))

    after_sale, sold = ledger.apply_delta(items, recording.inventory_delta)
    assert sold is not None and sold.qty == 7

    after_delete, restored = ledger.apply_delta(after_sale, ledger.delete_sale(recording.sale))
    assert restored is not None
    assert restored.qty == 10
    assert after_delete[0].qty == 10


def test_generate_record_id_is_timestamped_and_unique():
    moment = datetime(2026, 1, 2, 3, 4, 5, 6)

    first = ledger.generate_record_id("L", when=moment)
    second = ledger.generate_record_id("L", when=moment)

    assert first.startswith("L20260102030405000006")
    assert len(first) == 27
    assert first != second


# ---------------------------------------------------------------------------
# Profit and margin aggregation
# ---------------------------------------------------------------------------


def test_line_profit_formula(make_line):
    line = make_line(price="260", fees="10", qty=2)

    assert ledger.line_profit(line, Decimal("80")) == Decimal("90")


@pytest.mark.parametrize("total", [Decimal("0"), Decimal("125.50"), Decimal("-3"), "abc"])
def test_average_of_empty_set_is_zero(total):
    assert ledger.average(total, 0) == Decimal("0")


def test_margin_without_revenue_is_zero():
    assert ledger.margin(Decimal("10"), Decimal("0")) == Decimal("0")
    assert ledger.margin(Decimal("25"), Decimal("100")) == Decimal("0.25")


def test_make_cost_lookup_prefers_snapshot_then_catalog(make_item, make_line):
    lookup = ledger.make_cost_lookup([make_item(item_id="I-1", name="Hat", unit_cost="12")])

    assert lookup(make_line(unit_cost="5")) == Decimal("5")
    assert lookup(make_line(item_id="I-1", unit_cost=None)) == Decimal("12")
    assert lookup(make_line(item_id=None, item_name="HAT", unit_cost=None)) == Decimal("12")
    assert lookup(make_line(item_id="I-9", item_name="Gone", unit_cost=None)) == Decimal("0")


def test_ledger_totals_count_distinct_sales(make_line):
    lines = [
        make_line("L-1", sale_id="S-1", qty=1, price="100", fees="0", unit_cost="40"),
        make_line("L-2", sale_id="S-1", qty=2, price="150", fees="5", unit_cost="20"),
        make_line("L-3", sale_id="S-2", qty=1, price="50", fees="0", unit_cost="10"),
    ]

    totals = ledger.period_totals(lines)

    assert totals.count == 2
    assert totals.items_total == 4
    assert totals.revenue == Decimal("300")
    assert totals.fees == Decimal("5")
    assert totals.cost == Decimal("90")
    assert totals.profit == Decimal("205")
    assert totals.avg_items_per_sale == Decimal("2")
    assert totals.avg_price_per_sale == Decimal("150")


def test_period_totals_of_nothing_is_empty():
    totals = ledger.period_totals([])

    assert totals.count == 0
    assert totals.profit == Decimal("0")
    assert totals.margin == Decimal("0")
    assert totals.avg_price_per_sale == Decimal("0")


def test_seller_breakdown_sums_to_overall_profit(make_line):
    lines = [
        make_line("L-1", seller_id="S-1", price="260", fees="10", qty=2, unit_cost="80"),
        make_line("L-2", seller_id="S-2", price="100", fees="0", qty=1, unit_cost="30"),
        make_line("L-3", seller_id=None, price="40", fees="2", qty=1, unit_cost="50"),
        make_line("L-4", seller_id="S-1", price="75", fees="5", qty=1, unit_cost="20"),
        make_line("L-5", seller_id="S-ghost", price="10", fees="0", qty=1, unit_cost="1"),
    ]

    breakdown = ledger.seller_breakdown(lines, [Seller("S-1", "Ana"), Seller("S-2", "Ben")])
    overall = ledger.period_totals(lines)

    assert sum((entry.totals.profit for entry in breakdown), Decimal("0")) == overall.profit
    assert sum(entry.totals.count for entry in breakdown) == overall.count


def test_seller_breakdown_names_and_order(make_line):
    lines = [
        make_line("L-1", seller_id="S-1", price="100", fees="0", qty=1, unit_cost="10"),
        make_line("L-2", seller_id=None, price="500", fees="0", qty=1, unit_cost="10"),
        make_line("L-3", seller_id="S-9", price="20", fees="0", qty=1, unit_cost="10"),
    ]

    breakdown = ledger.seller_breakdown(lines, [Seller("S-1", "Ana")])

    assert [entry.name for entry in breakdown] == ["Unassigned", "Ana", "Unknown"]
    assert breakdown[0].seller_id is None


def test_sale_summaries_group_lines_newest_first(make_line):
    lines = [
        make_line("L-1", sale_id="S-1", date_iso="2026-09-01", qty=1, price="100", fees="0", unit_cost="40"),
        make_line("L-2", sale_id="S-2", date_iso="2026-10-03", qty=1, price="50", fees="0", unit_cost="10"),
        make_line("L-3", sale_id="S-1", date_iso="2026-09-01", qty=2, price="30", fees="0", unit_cost="5"),
    ]

    summaries = ledger.sale_summaries(lines)

    assert [summary.sale_id for summary in summaries] == ["S-2", "S-1"]
    assert summaries[1].line_count == 2
    assert summaries[1].items_total == 3
    assert summaries[1].profit == Decimal("80")


def test_filter_lines_end_is_exclusive(make_line):
    lines = [
        make_line("L-1", date_iso="2026-09-30"),
        make_line("L-2", date_iso="2026-10-01"),
        make_line("L-3", date_iso="2026-10-31T22:15:00"),
        make_line("L-4", date_iso="2026-11-01"),
    ]

    start, end = ledger.month_window(2026, 10)
    kept = ledger.filter_lines(lines, start=start, end=end)

    assert [line.line_id for line in kept] == ["L-2", "L-3"]


def test_filter_lines_by_seller(make_line):
    lines = [make_line("L-1", seller_id="S-1"), make_line("L-2", seller_id=None), make_line("L-3", seller_id="S-2")]

    assert [line.line_id for line in ledger.filter_lines(lines, seller_ids=["S-2"])] == ["L-3"]
    assert len(ledger.filter_lines(lines, seller_ids=[])) == 3


def test_month_window_rolls_over_year():
    assert ledger.month_window(2026, 12) == ("2026-12-01", "2027-01-01")


@pytest.mark.parametrize(
    "value, expected",
    [
        (Decimal("1204.5"), "$1,204.50"),
        (Decimal("-1204.5"), "-$1,204.50"),
        ("0.005", "$0.01"),
        (None, "$0.00"),
    ],
)
def test_format_money(value, expected):
    assert ledger.format_money(value) == expected


# ---------------------------------------------------------------------------
# Inventory summaries and monthly buckets
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("qty, expected", [(0, True), (4, True), (5, False), (12, False)])
def test_low_stock_threshold_is_exclusive(make_item, qty, expected):
    assert ledger.is_low_stock(make_item(qty=qty)) is expected


def test_summarize_inventory(make_item):
    items = [
        make_item(item_id="I-1", qty=10, unit_cost="80", resale_price="150"),
        make_item(item_id="I-2", name="Cap", qty=4, unit_cost="10", resale_price="20"),
    ]

    summary = ledger.summarize_inventory(items)

    assert summary.item_count == 2
    assert summary.units_on_hand == 14
    assert summary.cost_basis == Decimal("840")
    assert summary.resale_value == Decimal("1580")
    assert summary.potential_profit == Decimal("740")
    assert [item.item_id for item in summary.low_stock] == ["I-2"]


@pytest.mark.parametrize(
    "value, expected",
    [("2026-10-05", "2026-10"), ("2026-10", "2026-10"), ("2026-13-01", None), ("10/05/2026", None), (None, None)],
)
def test_month_key(value, expected):
    assert ledger.month_key(value) == expected


def test_trailing_months_cross_year_boundary():
    assert ledger.trailing_months(date(2026, 2, 10), 4) == [(2025, 11), (2025, 12), (2026, 1), (2026, 2)]


def test_monthly_buckets_fill_empty_months(make_line, fixed_today):
    lines = [make_line(date_iso="2026-10-05", price="260", fees="10", qty=2, unit_cost="80")]

    buckets = ledger.monthly_profit_buckets(lines, 6, today=fixed_today)

    assert [bucket.month_key for bucket in buckets] == [
        "2026-05",
        "2026-06",
        "2026-07",
        "2026-08",
        "2026-09",
        "2026-10",
    ]
    assert [bucket.profit for bucket in buckets].count(Decimal("0")) == 5
    assert buckets[-1].profit == Decimal("90")
    assert buckets[-1].label == "Oct 26"


def test_monthly_buckets_ignore_lines_outside_window(make_line, fixed_today):
    lines = [
        make_line("L-1", date_iso="2025-01-05"),
        make_line("L-2", date_iso="not a date"),
    ]

    buckets = ledger.monthly_profit_buckets(lines, 3, today=fixed_today)

    assert all(bucket.profit == Decimal("0") for bucket in buckets)
    assert ledger.monthly_profit_buckets(lines, 0, today=fixed_today) == []


def test_best_month_prefers_earliest_on_tie():
    buckets = [
        ledger.MonthBucket("2026-08", "Aug 26", Decimal("50")),
        ledger.MonthBucket("2026-09", "Sep 26", Decimal("50")),
        ledger.MonthBucket("2026-10", "Oct 26", Decimal("10")),
    ]

    assert ledger.best_month(buckets).month_key == "2026-08"
    assert ledger.best_month([]) is None
