"""Ledger engine for Already Dead.

Pure, synchronous rules that keep inventory quantities, sale lines and the
derived financial figures consistent. Nothing in this module performs I/O:
callers fetch records through the data access layer, pass them in here, and
write the returned records or deltas back themselves.

The module is organised leaves first:

1. Numeric normalization of untyped inbound values.
2. The inventory ledger (clamped quantity deltas, legacy lookup by name).
3. The sale recorder, which pairs every new or deleted sale with the
   inventory delta that must be persisted alongside it.
4. Profit and margin aggregation over sale lines.
5. Inventory summaries, low-stock flags and monthly profit buckets.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from .constants import LOW_STOCK_THRESHOLD, UNASSIGNED_SELLER_NAME
from .records import InventoryItem, SaleLine, Seller

ZERO = Decimal("0")
CENT = Decimal("0.01")

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_MONTH_PREFIX = re.compile(r"^(\d{4})-(\d{2})")

UnitCostFn = Callable[[SaleLine], Decimal]


# ---------------------------------------------------------------------------
# Numeric normalization
# ---------------------------------------------------------------------------


def to_number(value: Any) -> Decimal:
    """Coerce an arbitrary inbound value into a finite :class:`Decimal`.

    Numbers pass through unchanged (floats via their ``str`` form so ``0.1``
    stays ``0.1``). Everything else is stringified and stripped down to
    digits, ``.`` and ``-`` so that ``"$1,200.50"`` becomes ``1200.50``.
    ``None``, booleans, empty strings and anything that does not parse to a
    finite number yield ``0``.

    Args:
        value (Any): Spreadsheet cell, form field or stored value.

    Returns:
        Decimal: The parsed value, or ``Decimal("0")``. Never NaN or infinite.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        candidate = value
    elif isinstance(value, (int, float)):
        candidate = Decimal(str(value))
    else:
        cleaned = _NON_NUMERIC.sub("", str(value).strip())
        if not cleaned:
            return ZERO
        try:
            candidate = Decimal(cleaned)
        except InvalidOperation:
            return ZERO
    if not candidate.is_finite():
        return ZERO
    return candidate


def to_quantity(value: Any) -> int:
    """Normalize ``value`` and truncate it toward zero."""

    return int(to_number(value))


# ---------------------------------------------------------------------------
# Inventory ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryDelta:
    """Signed quantity change addressed to one inventory item.

    The target is resolved by ``item_id`` first and by the legacy,
    case-insensitive ``item_name`` second.
    """

    item_id: Optional[str]
    item_name: Optional[str]
    delta: int


def adjust_quantity(item: InventoryItem, delta: Any) -> InventoryItem:
    """Return ``item`` with ``delta`` applied and the quantity floored at zero.

    Non-numeric deltas normalize to ``0`` and leave the quantity unchanged.
    """

    next_qty = max(0, item.qty + to_quantity(delta))
    return replace(item, qty=next_qty)


def lookup_by_name(items: Iterable[InventoryItem], name: Optional[str]) -> Optional[InventoryItem]:
    """Find the first item whose name matches ``name`` case-insensitively.

    Returns ``None`` when ``name`` is empty or no item matches; callers treat
    that as a no-op rather than an error.
    """

    if not name:
        return None
    wanted = name.lower()
    for item in items:
        if item.name.lower() == wanted:
            return item
    return None


def lookup_item(
    items: Iterable[InventoryItem],
    *,
    item_id: Optional[str] = None,
    item_name: Optional[str] = None,
) -> Optional[InventoryItem]:
    """Resolve an item by id, falling back to the legacy name lookup."""

    candidates = list(items)
    if item_id:
        for item in candidates:
            if item.item_id == item_id:
                return item
    return lookup_by_name(candidates, item_name)


def apply_delta(
    items: Sequence[InventoryItem],
    delta: InventoryDelta,
) -> Tuple[List[InventoryItem], Optional[InventoryItem]]:
    """Apply ``delta`` to the matching item of a collection.

    Args:
        items (Sequence[InventoryItem]): Current inventory.
        delta (InventoryDelta): Change to apply.

    Returns:
        tuple[list[InventoryItem], InventoryItem | None]: The new collection
            and the adjusted item. When no item matches, the collection is
            returned unchanged alongside ``None``.
    """

    target = lookup_item(items, item_id=delta.item_id, item_name=delta.item_name)
    if target is None:
        return list(items), None
    adjusted = adjust_quantity(target, delta.delta)
    updated = [adjusted if item is target else item for item in items]
    return updated, adjusted


# ---------------------------------------------------------------------------
# Sale recorder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SaleLineInput:
    """Caller-validated data for a new sale line."""

    date_iso: str
    item_id: Optional[str]
    item_name: Optional[str]
    qty: int
    price: Decimal
    fees: Decimal = ZERO
    unit_cost: Optional[Decimal] = None
    seller_id: Optional[str] = None
    client_id: Optional[str] = None
    notes: Optional[str] = None
    sale_id: Optional[str] = None


@dataclass(frozen=True)
class SaleRecording:
    """A new sale line paired with the stock deduction it implies."""

    sale: SaleLine
    inventory_delta: InventoryDelta


def generate_record_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-resistant identifier.

    The identifier is ``{prefix}{YYYYMMDDHHMMSSffffff}{6 hex chars}``: the
    timestamp keeps ids in creation order and the random suffix separates
    records created within the same microsecond.
    """

    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:6]}"


def record_sale(line: SaleLineInput, *, line_id: Optional[str] = None) -> SaleRecording:
    """Create a sale line and the matching inventory deduction.

    The recorder trusts its input: ``qty > 0`` and an item reference are
    checked by the caller before this is invoked. Both returned effects must
    be persisted together.

    Args:
        line (SaleLineInput): Validated sale data.
        line_id (str | None): Identifier to use instead of a generated one.

    Returns:
        SaleRecording: The new :class:`SaleLine` and an
            :class:`InventoryDelta` of ``-qty`` for the same item reference.
    """

    new_id = line_id or generate_record_id("L")
    sale = SaleLine(
        line_id=new_id,
        sale_id=line.sale_id or new_id,
        date_iso=line.date_iso,
        item_id=line.item_id,
        item_name=line.item_name,
        qty=line.qty,
        price=line.price,
        fees=line.fees,
        unit_cost=line.unit_cost,
        seller_id=line.seller_id,
        client_id=line.client_id,
        notes=line.notes,
    )
    delta = InventoryDelta(item_id=line.item_id, item_name=line.item_name, delta=-abs(line.qty))
    return SaleRecording(sale=sale, inventory_delta=delta)


def delete_sale(sale: SaleLine) -> InventoryDelta:
    """Return the delta that restores the stock deducted by ``sale``.

    The sale's own stored quantity is used, so the restoration is exact
    regardless of what happened to the item since.
    """

    return InventoryDelta(item_id=sale.item_id, item_name=sale.item_name, delta=abs(sale.qty))


# ---------------------------------------------------------------------------
# Profit and margin aggregation
# ---------------------------------------------------------------------------


def line_profit(line: SaleLine, unit_cost: Any) -> Decimal:
    """``price - fees - unit_cost * qty`` for one line."""

    return to_number(line.price) - to_number(line.fees) - to_number(unit_cost) * line.qty


def average(total: Any, count: int) -> Decimal:
    """Divide ``total`` by ``count``, returning ``0`` for an empty set."""

    if not count:
        return ZERO
    return to_number(total) / count


def margin(profit: Any, revenue: Any) -> Decimal:
    """Profit as a fraction of revenue, ``0`` when there is no revenue."""

    revenue_value = to_number(revenue)
    if revenue_value == ZERO:
        return ZERO
    return to_number(profit) / revenue_value


def snapshot_cost(line: SaleLine) -> Decimal:
    """Unit cost captured on the line itself, ``0`` when none was recorded."""

    return line.unit_cost if line.unit_cost is not None else ZERO


def make_cost_lookup(items: Iterable[InventoryItem]) -> UnitCostFn:
    """Build a unit-cost resolver backed by the inventory catalog.

    The resolver prefers the cost snapshot stored on the line. Lines without a
    snapshot fall back to the catalog item's current cost (by id, then by
    name), and to ``0`` when the item is gone.
    """

    catalog = list(items)
    by_id = {item.item_id: item for item in catalog}

    def _resolve(line: SaleLine) -> Decimal:
        if line.unit_cost is not None:
            return line.unit_cost
        item = by_id.get(line.item_id) if line.item_id else None
        if item is None:
            item = lookup_by_name(catalog, line.item_name)
        return item.unit_cost if item is not None else ZERO

    return _resolve


@dataclass
class LedgerTotals:
    """Running totals for a group of sale lines.

    ``count`` is the number of distinct sales in the group and
    ``items_total`` the number of units sold.
    """

    count: int = 0
    profit: Decimal = ZERO
    revenue: Decimal = ZERO
    fees: Decimal = ZERO
    cost: Decimal = ZERO
    items_total: int = 0
    _sale_ids: set = field(default_factory=set, repr=False, compare=False)

    def add(self, line: SaleLine, unit_cost: Decimal) -> None:
        price = to_number(line.price)
        fees = to_number(line.fees)
        cost = to_number(unit_cost) * line.qty
        self.revenue += price
        self.fees += fees
        self.cost += cost
        self.profit += price - fees - cost
        self.items_total += line.qty
        if line.sale_id not in self._sale_ids:
            self._sale_ids.add(line.sale_id)
            self.count += 1

    @property
    def margin(self) -> Decimal:
        return margin(self.profit, self.revenue)

    @property
    def avg_items_per_sale(self) -> Decimal:
        return average(self.items_total, self.count)

    @property
    def avg_price_per_sale(self) -> Decimal:
        return average(self.revenue, self.count)


def aggregate(
    lines: Iterable[SaleLine],
    key_fn: Callable[[SaleLine], Hashable],
    *,
    unit_cost_fn: UnitCostFn = snapshot_cost,
) -> Dict[Hashable, LedgerTotals]:
    """Group ``lines`` by ``key_fn`` and total each group.

    Args:
        lines (Iterable[SaleLine]): Lines to aggregate.
        key_fn (Callable[[SaleLine], Hashable]): Grouping key, such as the
            seller id, the month key, or a constant for an all-time total.
        unit_cost_fn (Callable[[SaleLine], Decimal]): Resolves the unit cost
            used in the profit formula.

    Returns:
        dict[Hashable, LedgerTotals]: Totals per key in first-seen order.
    """

    groups: Dict[Hashable, LedgerTotals] = {}
    for line in lines:
        key = key_fn(line)
        totals = groups.get(key)
        if totals is None:
            totals = groups[key] = LedgerTotals()
        totals.add(line, unit_cost_fn(line))
    return groups


def period_totals(lines: Iterable[SaleLine], *, unit_cost_fn: UnitCostFn = snapshot_cost) -> LedgerTotals:
    """Total every line into a single :class:`LedgerTotals`."""

    groups = aggregate(lines, lambda _line: None, unit_cost_fn=unit_cost_fn)
    return groups.get(None, LedgerTotals())


@dataclass(frozen=True)
class SaleSummary:
    """Figures for one sale, across all of its lines."""

    sale_id: str
    date_iso: str
    seller_id: Optional[str]
    revenue: Decimal
    fees: Decimal
    cost: Decimal
    profit: Decimal
    items_total: int
    line_count: int


def sale_summaries(
    lines: Iterable[SaleLine],
    *,
    unit_cost_fn: UnitCostFn = snapshot_cost,
) -> List[SaleSummary]:
    """Summarize each sale, newest first."""

    materialized = list(lines)
    groups = aggregate(materialized, lambda line: line.sale_id, unit_cost_fn=unit_cost_fn)
    first_lines: Dict[str, SaleLine] = {}
    line_counts: Dict[str, int] = {}
    for line in materialized:
        first_lines.setdefault(line.sale_id, line)
        line_counts[line.sale_id] = line_counts.get(line.sale_id, 0) + 1

    summaries = [
        SaleSummary(
            sale_id=sale_id,
            date_iso=first_lines[sale_id].date_iso,
            seller_id=first_lines[sale_id].seller_id,
            revenue=totals.revenue,
            fees=totals.fees,
            cost=totals.cost,
            profit=totals.profit,
            items_total=totals.items_total,
            line_count=line_counts[sale_id],
        )
        for sale_id, totals in groups.items()
    ]
    summaries.sort(key=lambda summary: summary.date_iso, reverse=True)
    return summaries


@dataclass(frozen=True)
class SellerMetrics:
    """Totals attributed to one seller, or to no seller at all."""

    seller_id: Optional[str]
    name: str
    totals: LedgerTotals


def seller_breakdown(
    lines: Iterable[SaleLine],
    sellers: Iterable[Seller] = (),
    *,
    unit_cost_fn: UnitCostFn = snapshot_cost,
) -> List[SellerMetrics]:
    """Total sales per seller, most profitable first.

    Lines without a seller are collected under an "Unassigned" entry so the
    breakdown always sums to the overall totals. Seller ids missing from
    ``sellers`` are reported as "Unknown".
    """

    names = {seller.seller_id: seller.name for seller in sellers}
    groups = aggregate(lines, lambda line: line.seller_id, unit_cost_fn=unit_cost_fn)
    metrics = [
        SellerMetrics(
            seller_id=seller_id,
            name=UNASSIGNED_SELLER_NAME if seller_id is None else names.get(seller_id, "Unknown"),
            totals=totals,
        )
        for seller_id, totals in groups.items()
    ]
    metrics.sort(key=lambda entry: entry.totals.profit, reverse=True)
    return metrics


def filter_lines(
    lines: Iterable[SaleLine],
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    seller_ids: Optional[Iterable[str]] = None,
) -> List[SaleLine]:
    """Keep lines dated in ``[start, end)`` and sold by one of ``seller_ids``.

    Dates compare as ``YYYY-MM-DD`` strings. An empty or missing
    ``seller_ids`` keeps every seller, including unassigned lines.
    """

    allowed = set(seller_ids or ())
    kept: List[SaleLine] = []
    for line in lines:
        day = (line.date_iso or "")[:10]
        if start is not None and day < start:
            continue
        if end is not None and day >= end:
            continue
        if allowed and line.seller_id not in allowed:
            continue
        kept.append(line)
    return kept


def month_window(year: int, month: int) -> Tuple[str, str]:
    """Return the first day of a month and of the following month."""

    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
    return f"{year:04d}-{month:02d}-01", f"{next_year:04d}-{next_month:02d}-01"


def format_money(value: Any) -> str:
    """Round to cents for display, e.g. ``-$1,204.50``."""

    amount = to_number(value).quantize(CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < ZERO else ""
    return f"{sign}${abs(amount):,.2f}"


# ---------------------------------------------------------------------------
# Inventory summaries and monthly buckets
# ---------------------------------------------------------------------------


def is_low_stock(item: InventoryItem) -> bool:
    return item.qty < LOW_STOCK_THRESHOLD


def cost_basis(items: Iterable[InventoryItem]) -> Decimal:
    return sum((item.unit_cost * item.qty for item in items), ZERO)


def resale_value(items: Iterable[InventoryItem]) -> Decimal:
    return sum((item.resale_price * item.qty for item in items), ZERO)


def potential_profit(items: Iterable[InventoryItem]) -> Decimal:
    materialized = list(items)
    return resale_value(materialized) - cost_basis(materialized)


@dataclass(frozen=True)
class InventorySummary:
    """Dashboard figures for the inventory on hand."""

    item_count: int
    units_on_hand: int
    cost_basis: Decimal
    resale_value: Decimal
    potential_profit: Decimal
    low_stock: Tuple[InventoryItem, ...]


def summarize_inventory(items: Iterable[InventoryItem]) -> InventorySummary:
    materialized = list(items)
    basis = cost_basis(materialized)
    value = resale_value(materialized)
    return InventorySummary(
        item_count=len(materialized),
        units_on_hand=sum(item.qty for item in materialized),
        cost_basis=basis,
        resale_value=value,
        potential_profit=value - basis,
        low_stock=tuple(item for item in materialized if is_low_stock(item)),
    )


@dataclass(frozen=True)
class MonthBucket:
    """Profit booked in one calendar month."""

    month_key: str
    label: str
    profit: Decimal


def month_key(date_iso: Optional[str]) -> Optional[str]:
    """Extract ``YYYY-MM`` from an ISO date, ``None`` when it is not one."""

    match = _MONTH_PREFIX.match(date_iso or "")
    if match is None or not 1 <= int(match.group(2)) <= 12:
        return None
    return f"{match.group(1)}-{match.group(2)}"


def trailing_months(today: date, months_back: int) -> List[Tuple[int, int]]:
    """List ``months_back`` ``(year, month)`` pairs ending at ``today``'s month."""

    months: List[Tuple[int, int]] = []
    absolute = today.year * 12 + (today.month - 1)
    for offset in range(months_back - 1, -1, -1):
        year, zero_based = divmod(absolute - offset, 12)
        months.append((year, zero_based + 1))
    return months


def monthly_profit_buckets(
    lines: Iterable[SaleLine],
    months_back: int,
    *,
    today: Optional[date] = None,
    unit_cost_fn: UnitCostFn = snapshot_cost,
) -> List[MonthBucket]:
    """Bucket line profit into a trailing window of calendar months.

    Args:
        lines (Iterable[SaleLine]): Lines to bucket by their ``YYYY-MM``.
        months_back (int): Window size in months, the current month included.
        today (date | None): Anchor for the window; defaults to today.
        unit_cost_fn (Callable[[SaleLine], Decimal]): Unit cost resolver.

    Returns:
        list[MonthBucket]: Exactly ``months_back`` buckets in ascending order.
            Months without sales carry a profit of ``0``; lines outside the
            window or without a usable date are ignored.
    """

    if months_back <= 0:
        return []
    today = today or date.today()
    window = trailing_months(today, months_back)
    totals: Dict[str, Decimal] = {f"{year:04d}-{month:02d}": ZERO for year, month in window}
    for line in lines:
        key = month_key(line.date_iso)
        if key is None or key not in totals:
            continue
        totals[key] += line_profit(line, unit_cost_fn(line))
    return [
        MonthBucket(
            month_key=f"{year:04d}-{month:02d}",
            label=f"{MONTH_NAMES[month - 1]} {year % 100:02d}",
            profit=totals[f"{year:04d}-{month:02d}"],
        )
        for year, month in window
    ]


def best_month(buckets: Sequence[MonthBucket]) -> Optional[MonthBucket]:
    """Most profitable bucket; the earliest wins a tie."""

    if not buckets:
        return None
    return max(buckets, key=lambda bucket: bucket.profit)

