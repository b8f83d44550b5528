"""Typed records exchanged between the ledger, the workbook layer and the CLI.

Every record is an immutable dataclass. Money is carried as
:class:`~decimal.Decimal` and quantities as ``int``; values arriving from
spreadsheets or the command line are normalized before they reach these
types.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class InventoryItem:
    """An item held for resale, with its on-hand count and unit prices."""

    item_id: str
    name: str
    qty: int
    unit_cost: Decimal
    resale_price: Decimal


@dataclass(frozen=True)
class SaleLine:
    """A single sold line.

    ``item_name`` is the legacy lookup key matched case-insensitively against
    :attr:`InventoryItem.name`; ``item_id`` is preferred when present.
    ``sale_id`` groups the lines of one sale and equals ``line_id`` for
    single-line sales. ``price`` is the line revenue, not a unit price.
    ``unit_cost`` is the catalog cost captured when the sale was recorded and
    is ``None`` for rows imported without one.
    """

    line_id: str
    sale_id: str
    date_iso: str
    item_id: Optional[str]
    item_name: Optional[str]
    qty: int
    price: Decimal
    fees: Decimal
    unit_cost: Optional[Decimal] = None
    seller_id: Optional[str] = None
    client_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Seller:
    """A seller used to group sales in reports."""

    seller_id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class Client:
    """Contact details for a client."""

    client_id: str
    name: Optional[str]
    phone: Optional[str] = None
    email: Optional[str] = None
    last_spoken_to: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class TrackingEntry:
    """A shipment tracking number and what it contains."""

    tracking_id: str
    tracking_number: str
    date_purchased: Optional[str] = None
    contents: Optional[str] = None
    cost: Optional[Decimal] = None


@dataclass(frozen=True)
class CalendarNote:
    """A free-text note pinned to a calendar day."""

    note_id: str
    date_iso: str
    note: str


__all__ = [
    "InventoryItem",
    "SaleLine",
    "Seller",
    "Client",
    "TrackingEntry",
    "CalendarNote",
]
