"""Enumerations and fixed values shared across the Already Dead modules.

Keeps the identifiers the ledger, the workbook layer and the CLI agree on in a
single place.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Items with fewer units than this on hand are flagged as low stock.
LOW_STOCK_THRESHOLD = 5

DEFAULT_MONTHS_BACK = 6
CLIENT_PAGE_SIZE = 30

UNASSIGNED_SELLER_NAME = "Unassigned"


class Collection(str, Enum):
    """Enumerate the logical collections stored by the persistence layer."""

    INVENTORY = "inventory"
    SALES = "sales"
    SELLERS = "sellers"
    CLIENTS = "clients"
    TRACKING = "tracking"
    CALENDAR = "calendar"


class SheetName(str, Enum):
    """Default worksheet names, one per :class:`Collection`."""

    INVENTORY = "Inventory"
    SALES = "Sales"
    SELLERS = "Sellers"
    CLIENTS = "Clients"
    TRACKING = "Tracking"
    CALENDAR = "CalendarNotes"


DEFAULT_SHEET_NAMES: dict[Collection, str] = {
    Collection.INVENTORY: SheetName.INVENTORY.value,
    Collection.SALES: SheetName.SALES.value,
    Collection.SELLERS: SheetName.SELLERS.value,
    Collection.CLIENTS: SheetName.CLIENTS.value,
    Collection.TRACKING: SheetName.TRACKING.value,
    Collection.CALENDAR: SheetName.CALENDAR.value,
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_THRESHOLD",
    "DEFAULT_MONTHS_BACK",
    "CLIENT_PAGE_SIZE",
    "UNASSIGNED_SELLER_NAME",
    "Collection",
    "SheetName",
    "DEFAULT_SHEET_NAMES",
]
