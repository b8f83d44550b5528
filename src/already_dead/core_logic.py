"""Business logic layer for Already Dead.

This module orchestrates the ledger engine against the workbook store. It
loads the runtime context, gates caller input before it reaches the pure
ledger functions, and writes the resulting records and inventory deltas back
through the Data Access Layer (DAL).

Writes only touch the in-memory workbook. Nothing reaches disk until
:func:`persist_context` is called, which the CLI does only after a command
completed, so a sale and its stock deduction are saved together or not at all.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

from openpyxl.workbook import Workbook

from . import data_manager, importer, ledger, log
from .constants import CLIENT_PAGE_SIZE, EXPECTED_SCHEMA_VERSION, Collection
from .records import CalendarNote, Client, InventoryItem, SaleLine, Seller, TrackingEntry


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced item, seller, client or record is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[Collection, List[Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale line."""

    qty: int
    price: Decimal
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    fees: Decimal = Decimal("0")
    date_iso: Optional[str] = None
    seller_id: Optional[str] = None
    client_id: Optional[str] = None
    sale_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SaleOutcome:
    """Result of recording or deleting a sale.

    ``item`` is the inventory item after the stock change, or ``None`` when
    the sale's item could not be found and the change was skipped.
    """

    sale: SaleLine
    item: Optional[InventoryItem]

    @property
    def inventory_adjusted(self) -> bool:
        return self.item is not None


@dataclass(frozen=True)
class ProfitReport:
    """Totals, per-sale figures and per-seller breakdown for a period."""

    start: Optional[str]
    end: Optional[str]
    totals: ledger.LedgerTotals
    sales: List[ledger.SaleSummary]
    sellers: List[ledger.SellerMetrics]


@dataclass(frozen=True)
class ClientPage:
    """One page of a client search."""

    clients: List[Client]
    page: int
    page_size: int
    total: int

    @property
    def page_count(self) -> int:
        return max(1, -(-self.total // self.page_size))


# ---------------------------------------------------------------------------
# Runtime and caches
# ---------------------------------------------------------------------------


def _sheet_name(context: RuntimeContext, collection: Collection) -> str:
    return context.settings.sheet_name(collection)


def _records(context: RuntimeContext, collection: Collection) -> List[Any]:
    """Return the cached records of ``collection``, loading them on first use."""

    cached = context._cache.get(collection)
    if cached is None:
        cached = data_manager.list_records(
            context.workbook,
            collection,
            sheet_name=_sheet_name(context, collection),
        )
        context._cache[collection] = cached
        log.debug("Populated %s cache with %d entries", collection.value, len(cached))
    return cached


def _invalidate_cache(context: RuntimeContext, *collections: Collection) -> None:
    """Evict cached collections after mutating workbook state."""

    if not collections:
        return
    log.debug("Invalidating caches: %s", ", ".join(c.value for c in collections))
    for collection in collections:
        context._cache.pop(collection, None)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION`` or a configured worksheet is missing.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    expected = [_sheet_name(context, collection) for collection in Collection]
    missing = data_manager.missing_sheets(context.workbook, expected)
    if missing:
        log.error("Workbook is missing worksheets: %s", ", ".join(missing))
        raise RuntimeError(f"Workbook is missing worksheets: {', '.join(missing)}")

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, discarding unsaved modifications and caches."""
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Validation gate
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is not finite or is less than zero.
    """
    if not amount.is_finite():
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be a finite number")
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_name(value: Optional[str], *, what: str) -> str:
    """Return ``value`` stripped, rejecting blanks."""
    text = (value or "").strip()
    if not text:
        log.error("Validation failed: %s is required", what)
        raise ValueError(f"{what.capitalize()} is required")
    return text


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def list_items(context: RuntimeContext) -> List[InventoryItem]:
    """Return every inventory item in sheet order."""
    return list(_records(context, Collection.INVENTORY))


def find_item(
    context: RuntimeContext,
    *,
    item_id: Optional[str] = None,
    item_name: Optional[str] = None,
) -> Optional[InventoryItem]:
    """Resolve an item by id or legacy name; ``None`` when absent."""
    return ledger.lookup_item(_records(context, Collection.INVENTORY), item_id=item_id, item_name=item_name)


def get_item(context: RuntimeContext, item_id: str) -> InventoryItem:
    """Resolve an inventory item by its identifier.

    Raises:
        MissingReferenceError: If ``item_id`` is not in the inventory.
    """
    for item in _records(context, Collection.INVENTORY):
        if item.item_id == item_id:
            return item
    log.warning("Inventory lookup failed for id '%s'", item_id)
    raise MissingReferenceError(f"Unknown item id: {item_id}")


def add_item(
    context: RuntimeContext,
    *,
    name: str,
    qty: int = 0,
    unit_cost: Decimal = Decimal("0"),
    resale_price: Decimal = Decimal("0"),
    item_id: Optional[str] = None,
) -> InventoryItem:
    """Add an item to the inventory.

    Raises:
        BusinessRuleViolation: If an item with the same name already exists.
        ValueError: If the name is blank, the quantity is negative or a price
            is negative.
    """
    clean_name = require_name(name, what="item name")
    if qty < 0:
        log.error("Quantity validation failed: %s", qty)
        raise ValueError("Quantity must be zero or positive")
    require_nonnegative_money(unit_cost)
    require_nonnegative_money(resale_price)
    if ledger.lookup_by_name(_records(context, Collection.INVENTORY), clean_name) is not None:
        log.warning("Attempted to add duplicate item '%s'", clean_name)
        raise BusinessRuleViolation(f"Item '{clean_name}' already exists")

    item = InventoryItem(
        item_id=item_id or ledger.generate_record_id("I"),
        name=clean_name,
        qty=qty,
        unit_cost=unit_cost,
        resale_price=resale_price,
    )
    data_manager.insert_record(
        context.workbook, Collection.INVENTORY, item, sheet_name=_sheet_name(context, Collection.INVENTORY)
    )
    _invalidate_cache(context, Collection.INVENTORY)
    log.info("Added item '%s' (%s) with qty=%s", item.name, item.item_id, item.qty)
    return item


def update_item(
    context: RuntimeContext,
    item_id: str,
    *,
    name: Optional[str] = None,
    unit_cost: Optional[Decimal] = None,
    resale_price: Optional[Decimal] = None,
) -> InventoryItem:
    """Edit an item's name or prices.

    Quantities change through :func:`adjust_item_quantity` and sales only.

    Raises:
        BusinessRuleViolation: If another item already has the new name.
    """
    item = get_item(context, item_id)
    patch: Dict[str, Any] = {}
    if name is not None:
        clean_name = require_name(name, what="item name")
        existing = ledger.lookup_by_name(
            (other for other in _records(context, Collection.INVENTORY) if other.item_id != item_id),
            clean_name,
        )
        if existing is not None:
            log.warning("Attempted to rename item '%s' to duplicate name '%s'", item_id, clean_name)
            raise BusinessRuleViolation(f"Item '{clean_name}' already exists")
        patch["name"] = clean_name
    if unit_cost is not None:
        require_nonnegative_money(unit_cost)
        patch["unit_cost"] = unit_cost
    if resale_price is not None:
        require_nonnegative_money(resale_price)
        patch["resale_price"] = resale_price
    if not patch:
        return item

    data_manager.update_record(
        context.workbook,
        Collection.INVENTORY,
        item_id,
        patch,
        sheet_name=_sheet_name(context, Collection.INVENTORY),
    )
    _invalidate_cache(context, Collection.INVENTORY)
    log.info("Updated item '%s': %s", item_id, ", ".join(sorted(patch)))
    return get_item(context, item_id)


def delete_item(context: RuntimeContext, item_id: str) -> InventoryItem:
    """Remove an item from the inventory.

    Sale lines referencing the item are kept; deleting one of them later
    skips the stock restoration.

    Raises:
        MissingReferenceError: If ``item_id`` is not in the inventory.
    """
    item = get_item(context, item_id)
    data_manager.delete_record(
        context.workbook,
        Collection.INVENTORY,
        item_id,
        sheet_name=_sheet_name(context, Collection.INVENTORY),
    )
    _invalidate_cache(context, Collection.INVENTORY)
    log.info("Deleted item '%s' (%s)", item.name, item.item_id)
    return item


def _write_delta(context: RuntimeContext, delta: ledger.InventoryDelta) -> Optional[InventoryItem]:
    """Apply an inventory delta and write the new quantity back.

    Unknown items are skipped and reported as ``None``.
    """
    items = _records(context, Collection.INVENTORY)
    _, adjusted = ledger.apply_delta(items, delta)
    if adjusted is None:
        log.warning(
            "Inventory item not found (id=%s, name=%s); skipped quantity change of %+d",
            delta.item_id,
            delta.item_name,
            delta.delta,
        )
        return None
    data_manager.update_record(
        context.workbook,
        Collection.INVENTORY,
        adjusted.item_id,
        {"qty": adjusted.qty},
        sheet_name=_sheet_name(context, Collection.INVENTORY),
    )
    _invalidate_cache(context, Collection.INVENTORY)
    return adjusted


def adjust_item_quantity(
    context: RuntimeContext,
    delta: int,
    *,
    item_id: Optional[str] = None,
    item_name: Optional[str] = None,
) -> Optional[InventoryItem]:
    """Manually change an item's on-hand quantity, floored at zero.

    Returns:
        InventoryItem | None: The adjusted item, or ``None`` when no item
            matches; the adjustment is then skipped.
    """
    adjusted = _write_delta(context, ledger.InventoryDelta(item_id=item_id, item_name=item_name, delta=delta))
    if adjusted is not None:
        log.info("Adjusted item '%s' by %+d to qty=%s", adjusted.name, delta, adjusted.qty)
    return adjusted


def inventory_summary(context: RuntimeContext) -> ledger.InventorySummary:
    """Cost basis, resale value, potential profit and low-stock items."""
    return ledger.summarize_inventory(_records(context, Collection.INVENTORY))


def low_stock_items(context: RuntimeContext) -> List[InventoryItem]:
    return [item for item in _records(context, Collection.INVENTORY) if ledger.is_low_stock(item)]


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def list_sales(context: RuntimeContext) -> List[SaleLine]:
    """Return every sale line in sheet order."""
    return list(_records(context, Collection.SALES))


def get_sale(context: RuntimeContext, line_id: str) -> SaleLine:
    """Resolve a sale line by its identifier.

    Raises:
        MissingReferenceError: If no line has ``line_id``.
    """
    for line in _records(context, Collection.SALES):
        if line.line_id == line_id:
            return line
    log.warning("Sale lookup failed for id '%s'", line_id)
    raise MissingReferenceError(f"Unknown sale id: {line_id}")


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleOutcome:
    """Validate a sale, record it and deduct the sold units from inventory.

    The command passes the validation gate the ledger recorder relies on:
    a positive quantity, an item reference, non-negative money and, when
    given, a known active seller and a known client. The item's current unit
    cost is captured on the line. An item reference that matches nothing is
    accepted; the sale is recorded and the deduction skipped, which is logged
    and visible through :attr:`SaleOutcome.inventory_adjusted`.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        SaleOutcome: The stored line and the item after deduction.

    Raises:
        BusinessRuleViolation: If no item is referenced or the seller is
            inactive.
        MissingReferenceError: If the seller or client is unknown.
        ValueError: When quantity or money validations fail.
    """
    if not (command.item_id or (command.item_name or "").strip()):
        log.error("Sale rejected: no item selected")
        raise BusinessRuleViolation("A sale must reference an inventory item")
    require_positive_quantity(command.qty)
    require_nonnegative_money(command.price)
    require_nonnegative_money(command.fees)
    if command.seller_id is not None:
        seller = get_seller(context, command.seller_id)
        if not seller.is_active:
            log.warning("Attempted sale with inactive seller '%s'", command.seller_id)
            raise BusinessRuleViolation(f"Seller '{command.seller_id}' is inactive")
    if command.client_id is not None:
        get_client(context, command.client_id)

    item = find_item(context, item_id=command.item_id, item_name=command.item_name)
    line_input = ledger.SaleLineInput(
        date_iso=command.date_iso or date.today().isoformat(),
        item_id=item.item_id if item is not None else command.item_id,
        item_name=item.name if item is not None else (command.item_name or "").strip() or None,
        qty=command.qty,
        price=command.price,
        fees=command.fees,
        unit_cost=item.unit_cost if item is not None else None,
        seller_id=command.seller_id,
        client_id=command.client_id,
        notes=command.notes,
        sale_id=command.sale_id,
    )
    recording = ledger.record_sale(line_input)

    adjusted = _write_delta(context, recording.inventory_delta)
    data_manager.insert_record(
        context.workbook,
        Collection.SALES,
        recording.sale,
        sheet_name=_sheet_name(context, Collection.SALES),
    )
    _invalidate_cache(context, Collection.SALES)
    log.info(
        "Recorded sale '%s' of %s x '%s' (price=%s, fees=%s)",
        recording.sale.line_id,
        recording.sale.qty,
        recording.sale.item_name or recording.sale.item_id,
        recording.sale.price,
        recording.sale.fees,
    )
    return SaleOutcome(sale=recording.sale, item=adjusted)


def delete_sale(context: RuntimeContext, line_id: str) -> SaleOutcome:
    """Delete a sale line and restore the units it deducted.

    The restoration uses the line's stored quantity. When the sale's item no
    longer exists the line is still deleted and the restoration is skipped
    with a warning.

    Raises:
        MissingReferenceError: If ``line_id`` is unknown.
    """
    sale = get_sale(context, line_id)
    adjusted = _write_delta(context, ledger.delete_sale(sale))
    data_manager.delete_record(
        context.workbook,
        Collection.SALES,
        line_id,
        sheet_name=_sheet_name(context, Collection.SALES),
    )
    _invalidate_cache(context, Collection.SALES)
    if adjusted is None:
        log.warning("Deleted sale '%s' without restoring stock: item is gone", line_id)
    else:
        log.info("Deleted sale '%s'; restored '%s' to qty=%s", line_id, adjusted.name, adjusted.qty)
    return SaleOutcome(sale=sale, item=adjusted)


def cost_lookup(context: RuntimeContext) -> ledger.UnitCostFn:
    return ledger.make_cost_lookup(_records(context, Collection.INVENTORY))


def profit_report(
    context: RuntimeContext,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
    seller_ids: Optional[Sequence[str]] = None,
) -> ProfitReport:
    """Compute profit metrics for a month, or for all time.

    Args:
        context (RuntimeContext): Runtime context.
        year (int | None): Report year; requires ``month``.
        month (int | None): Report month (1-12); requires ``year``.
        seller_ids (Sequence[str] | None): Restrict to these sellers.

    Returns:
        ProfitReport: Period totals, sales newest first and the per-seller
            breakdown sorted by profit.

    Raises:
        ValueError: If only one of ``year``/``month`` is given or the month is
            out of range.
    """
    start = end = None
    if (year is None) != (month is None):
        raise ValueError("Year and month must be given together")
    if year is not None and month is not None:
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {month}")
        start, end = ledger.month_window(year, month)

    lines = ledger.filter_lines(_records(context, Collection.SALES), start=start, end=end, seller_ids=seller_ids)
    unit_cost_fn = cost_lookup(context)
    return ProfitReport(
        start=start,
        end=end,
        totals=ledger.period_totals(lines, unit_cost_fn=unit_cost_fn),
        sales=ledger.sale_summaries(lines, unit_cost_fn=unit_cost_fn),
        sellers=ledger.seller_breakdown(
            lines,
            _records(context, Collection.SELLERS),
            unit_cost_fn=unit_cost_fn,
        ),
    )


def seller_report(
    context: RuntimeContext,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
    seller_ids: Optional[Sequence[str]] = None,
) -> List[ledger.SellerMetrics]:
    """Per-seller breakdown of :func:`profit_report`, most profitable first."""
    return profit_report(context, year=year, month=month, seller_ids=seller_ids).sellers


def monthly_report(
    context: RuntimeContext,
    *,
    months_back: Optional[int] = None,
    today: Optional[date] = None,
) -> List[ledger.MonthBucket]:
    """Profit per month over the trailing window (``MonthsBack`` by default)."""
    window = months_back if months_back is not None else context.settings.months_back
    return ledger.monthly_profit_buckets(
        _records(context, Collection.SALES),
        window,
        today=today,
        unit_cost_fn=cost_lookup(context),
    )


SELLER_CSV_HEADER = (
    "Seller",
    "Sales Count",
    "Total Profit",
    "Avg Items / Sale",
    "Avg Selling Price / Sale",
    "Total Revenue",
)


def export_seller_metrics_csv(report: ProfitReport, stream: TextIO) -> int:
    """Write the per-seller breakdown of ``report`` as CSV.

    Returns:
        int: Number of data rows written.
    """
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(SELLER_CSV_HEADER)
    for entry in report.sellers:
        totals = entry.totals
        writer.writerow(
            [
                entry.name,
                totals.count,
                f"{totals.profit:.2f}",
                f"{totals.avg_items_per_sale:.2f}",
                f"{totals.avg_price_per_sale:.2f}",
                f"{totals.revenue:.2f}",
            ]
        )
    return len(report.sellers)


# ---------------------------------------------------------------------------
# Sellers and clients
# ---------------------------------------------------------------------------


def list_sellers(context: RuntimeContext, *, include_inactive: bool = False) -> List[Seller]:
    sellers = _records(context, Collection.SELLERS)
    return [seller for seller in sellers if include_inactive or seller.is_active]


def get_seller(context: RuntimeContext, seller_id: str) -> Seller:
    """Resolve a seller by id.

    Raises:
        MissingReferenceError: If ``seller_id`` is unknown.
    """
    for seller in _records(context, Collection.SELLERS):
        if seller.seller_id == seller_id:
            return seller
    log.warning("Seller lookup failed for id '%s'", seller_id)
    raise MissingReferenceError(f"Unknown seller id: {seller_id}")


def add_seller(context: RuntimeContext, *, name: str, seller_id: Optional[str] = None, is_active: bool = True) -> Seller:
    seller = Seller(
        seller_id=seller_id or ledger.generate_record_id("S"),
        name=require_name(name, what="seller name"),
        is_active=is_active,
    )
    data_manager.insert_record(
        context.workbook, Collection.SELLERS, seller, sheet_name=_sheet_name(context, Collection.SELLERS)
    )
    _invalidate_cache(context, Collection.SELLERS)
    log.info("Added seller '%s' (%s)", seller.name, seller.seller_id)
    return seller


def get_client(context: RuntimeContext, client_id: str) -> Client:
    """Resolve a client by id.

    Raises:
        MissingReferenceError: If ``client_id`` is unknown.
    """
    for client in _records(context, Collection.CLIENTS):
        if client.client_id == client_id:
            return client
    log.warning("Client lookup failed for id '%s'", client_id)
    raise MissingReferenceError(f"Unknown client id: {client_id}")


def _clean_phone(raw: Optional[str]) -> Optional[str]:
    """Keep digits and ``+`` only."""
    cleaned = "".join(ch for ch in (raw or "") if ch.isdigit() or ch == "+")
    return cleaned or None


def _clean_email(raw: Optional[str]) -> Optional[str]:
    email = (raw or "").strip()
    if not email:
        return None
    if "@" not in email or "." not in email:
        log.error("Client email validation failed: %s", email)
        raise ValueError(f"Invalid email address: {email}")
    return email


def add_client(
    context: RuntimeContext,
    *,
    name: str,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    last_spoken_to: Optional[str] = None,
    notes: Optional[str] = None,
) -> Client:
    """Add a client, defaulting ``last_spoken_to`` to today."""
    client = Client(
        client_id=ledger.generate_record_id("C"),
        name=require_name(name, what="client name"),
        phone=_clean_phone(phone),
        email=_clean_email(email),
        last_spoken_to=last_spoken_to or date.today().isoformat(),
        notes=(notes or "").strip() or None,
    )
    data_manager.insert_record(
        context.workbook, Collection.CLIENTS, client, sheet_name=_sheet_name(context, Collection.CLIENTS)
    )
    _invalidate_cache(context, Collection.CLIENTS)
    log.info("Added client '%s' (%s)", client.name, client.client_id)
    return client


def update_client(context: RuntimeContext, client_id: str, **changes: Optional[str]) -> Client:
    """Edit client fields.

    Accepted keywords are ``name``, ``phone``, ``email``, ``last_spoken_to``
    and ``notes``; values are cleaned the same way :func:`add_client` cleans
    them.

    Raises:
        MissingReferenceError: If ``client_id`` is unknown.
        KeyError: For an unknown field.
    """
    get_client(context, client_id)
    cleaners = {
        "name": lambda value: require_name(value, what="client name"),
        "phone": _clean_phone,
        "email": _clean_email,
        "last_spoken_to": lambda value: (value or "").strip() or None,
        "notes": lambda value: (value or "").strip() or None,
    }
    patch: Dict[str, Any] = {}
    for key, value in changes.items():
        if key not in cleaners:
            raise KeyError(f"Unknown client field: {key}")
        patch[key] = cleaners[key](value)
    if patch:
        data_manager.update_record(
            context.workbook,
            Collection.CLIENTS,
            client_id,
            patch,
            sheet_name=_sheet_name(context, Collection.CLIENTS),
        )
        _invalidate_cache(context, Collection.CLIENTS)
        log.info("Updated client '%s': %s", client_id, ", ".join(sorted(patch)))
    return get_client(context, client_id)


def delete_client(context: RuntimeContext, client_id: str) -> None:
    get_client(context, client_id)
    data_manager.delete_record(
        context.workbook, Collection.CLIENTS, client_id, sheet_name=_sheet_name(context, Collection.CLIENTS)
    )
    _invalidate_cache(context, Collection.CLIENTS)
    log.info("Deleted client '%s'", client_id)


def search_clients(
    context: RuntimeContext,
    query: Optional[str] = None,
    *,
    page: int = 1,
    page_size: int = CLIENT_PAGE_SIZE,
) -> ClientPage:
    """Search clients by name, phone, email or notes, sorted by name."""
    page = max(1, page)
    page_size = max(1, page_size)
    clients, total = data_manager.query_records(
        context.workbook,
        Collection.CLIENTS,
        search=query,
        fields=("name", "phone", "email", "notes"),
        order_by="name",
        offset=(page - 1) * page_size,
        limit=page_size,
        sheet_name=_sheet_name(context, Collection.CLIENTS),
    )
    return ClientPage(clients=clients, page=page, page_size=page_size, total=total)


# ---------------------------------------------------------------------------
# Tracking and calendar
# ---------------------------------------------------------------------------


def add_tracking(
    context: RuntimeContext,
    *,
    tracking_number: str,
    date_purchased: Optional[str] = None,
    contents: Optional[str] = None,
    cost: Optional[Decimal] = None,
) -> TrackingEntry:
    entry = TrackingEntry(
        tracking_id=ledger.generate_record_id("T"),
        tracking_number=require_name(tracking_number, what="tracking number"),
        date_purchased=date_purchased or date.today().isoformat(),
        contents=(contents or "").strip() or None,
        cost=cost if cost else None,
    )
    data_manager.insert_record(
        context.workbook, Collection.TRACKING, entry, sheet_name=_sheet_name(context, Collection.TRACKING)
    )
    _invalidate_cache(context, Collection.TRACKING)
    log.info("Added tracking number '%s'", entry.tracking_number)
    return entry


def delete_tracking(context: RuntimeContext, tracking_id: str) -> None:
    """Remove a tracking entry.

    Raises:
        MissingReferenceError: If ``tracking_id`` is unknown.
    """
    try:
        data_manager.delete_record(
            context.workbook,
            Collection.TRACKING,
            tracking_id,
            sheet_name=_sheet_name(context, Collection.TRACKING),
        )
    except KeyError as exc:
        log.warning("Tracking lookup failed for id '%s'", tracking_id)
        raise MissingReferenceError(f"Unknown tracking id: {tracking_id}") from exc
    _invalidate_cache(context, Collection.TRACKING)
    log.info("Deleted tracking entry '%s'", tracking_id)


def search_tracking(context: RuntimeContext, query: Optional[str] = None) -> List[TrackingEntry]:
    """Entries whose tracking number or contents contain ``query``, newest first."""
    entries, _ = data_manager.query_records(
        context.workbook,
        Collection.TRACKING,
        search=query,
        fields=("tracking_number", "contents"),
        sheet_name=_sheet_name(context, Collection.TRACKING),
    )
    return list(reversed(entries))


def upsert_calendar_note(context: RuntimeContext, date_iso: str, note: str) -> CalendarNote:
    """Set the note for a day, replacing any existing one."""
    day = date.fromisoformat(date_iso).isoformat()
    for existing in _records(context, Collection.CALENDAR):
        if existing.date_iso == day:
            data_manager.update_record(
                context.workbook,
                Collection.CALENDAR,
                existing.note_id,
                {"note": note},
                sheet_name=_sheet_name(context, Collection.CALENDAR),
            )
            _invalidate_cache(context, Collection.CALENDAR)
            log.info("Updated calendar note for %s", day)
            return CalendarNote(note_id=existing.note_id, date_iso=day, note=note)

    created = CalendarNote(note_id=ledger.generate_record_id("N"), date_iso=day, note=note)
    data_manager.insert_record(
        context.workbook, Collection.CALENDAR, created, sheet_name=_sheet_name(context, Collection.CALENDAR)
    )
    _invalidate_cache(context, Collection.CALENDAR)
    log.info("Added calendar note for %s", day)
    return created


def list_calendar_notes(
    context: RuntimeContext,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[CalendarNote]:
    """Notes dated in ``[start, end)``, in date order."""
    notes = [
        note
        for note in _records(context, Collection.CALENDAR)
        if (start is None or note.date_iso >= start) and (end is None or note.date_iso < end)
    ]
    return sorted(notes, key=lambda note: note.date_iso)


# ---------------------------------------------------------------------------
# Spreadsheet import
# ---------------------------------------------------------------------------


def import_inventory(context: RuntimeContext, source: Path) -> List[InventoryItem]:
    """Insert the inventory rows of an exported spreadsheet.

    Rows whose name matches an existing item are skipped with a warning.
    """
    existing = list(_records(context, Collection.INVENTORY))
    inserted: List[InventoryItem] = []
    for item in importer.load_inventory(source):
        if ledger.lookup_by_name([*existing, *inserted], item.name) is not None:
            log.warning("Skipping imported item '%s': already in inventory", item.name)
            continue
        data_manager.insert_record(
            context.workbook, Collection.INVENTORY, item, sheet_name=_sheet_name(context, Collection.INVENTORY)
        )
        inserted.append(item)
    _invalidate_cache(context, Collection.INVENTORY)
    log.info("Imported %d inventory item(s) from '%s'", len(inserted), source)
    return inserted


def import_sales(context: RuntimeContext, source: Path) -> List[SaleLine]:
    """Insert historical sale lines from an exported spreadsheet.

    Imported history does not deduct stock: the exported inventory counts
    already reflect those sales.
    """
    lines = importer.load_sales(source)
    for line in lines:
        data_manager.insert_record(
            context.workbook, Collection.SALES, line, sheet_name=_sheet_name(context, Collection.SALES)
        )
    _invalidate_cache(context, Collection.SALES)
    log.info("Imported %d sale line(s) from '%s'", len(lines), source)
    return lines
