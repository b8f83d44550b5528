"""Read business spreadsheets exported outside the ledger.

The export files are loose: header spelling and sheet titles vary (the
inventory sheet is titled ``"Inventory "`` with a trailing space), blank rows
are common and numbers may arrive as text. Headers are normalized before
lookup and values go through the Numeric Normalizer.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import openpyxl
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import log
from .constants import SheetName
from .ledger import ZERO, generate_record_id, to_number, to_quantity
from .records import InventoryItem, SaleLine


EXCEL_EPOCH = date(1899, 12, 30)

_WHITESPACE = re.compile(r"\s+")
_NOT_KEY_CHAR = re.compile(r"[^a-z0-9_]")


class SpreadsheetImportError(Exception):
    """Raised when an import file lacks the expected sheet or content."""


def normalize_header(text: Any) -> str:
    """Turn a header like ``"Used Sell Price"`` into ``"used_sell_price"``."""
    lowered = str(text if text is not None else "").strip().lower()
    return _NOT_KEY_CHAR.sub("", _WHITESPACE.sub("_", lowered))


def open_source(path: Path) -> Workbook:
    """Open an import workbook read-only.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """
    source = Path(path).expanduser()
    if not source.exists():
        raise FileNotFoundError(f"Import file not found: {source}")
    log.debug("Opening import workbook '%s'", source)
    return openpyxl.load_workbook(source, data_only=True, read_only=True)


def find_sheet(workbook: Workbook, logical_name: str) -> Worksheet:
    """Locate a worksheet by its exact title, then by normalized title.

    Raises:
        SpreadsheetImportError: If no sheet matches; the message lists the
            sheets that were found.
    """
    if logical_name in workbook.sheetnames:
        return workbook[logical_name]
    wanted = normalize_header(logical_name)
    for title in workbook.sheetnames:
        if normalize_header(title) == wanted:
            return workbook[title]
    raise SpreadsheetImportError(
        f"Could not find {logical_name.strip()} sheet. Found sheets: {', '.join(workbook.sheetnames)}"
    )


def read_rows(sheet: Worksheet) -> List[Dict[str, Any]]:
    """Return the rows below the header as dicts keyed by normalized header."""
    rows = sheet.iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return []
    keys = [normalize_header(cell) for cell in header]
    records: List[Dict[str, Any]] = []
    for raw in rows:
        if all(cell is None or str(cell).strip() == "" for cell in raw):
            continue
        records.append({key: value for key, value in zip(keys, raw) if key})
    return records


def excel_serial_to_iso(value: Any) -> Optional[str]:
    """Convert an Excel serial day number to ``YYYY-MM-DD``.

    Non-numeric, NaN and out-of-range values yield ``None``.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return (EXCEL_EPOCH + timedelta(days=int(value))).isoformat()
    except (OverflowError, ValueError):
        log.warning("Unrecognized date serial '%s' in import file", value)
        return None


def _date_value(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    serial = excel_serial_to_iso(value)
    if serial is not None:
        return serial
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        log.warning("Unrecognized date '%s' in import file", text)
        return None


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip() != "":
            return value
    return None


def map_inventory_row(row: Mapping[str, Any]) -> Optional[InventoryItem]:
    """Map an inventory export row; ``None`` for rows without an item name.

    Expected headers are ``Item name`` (or ``Item``), ``Qty``, ``Cost`` and
    ``Used Sell Price``.
    """
    name = str(_first(row, "item_name", "item") or "").strip()
    if not name:
        return None
    return InventoryItem(
        item_id=generate_record_id("I"),
        name=name,
        qty=max(0, to_quantity(row.get("qty"))),
        unit_cost=to_number(row.get("cost")),
        resale_price=to_number(row.get("used_sell_price")),
    )


def map_sales_row(row: Mapping[str, Any]) -> Optional[SaleLine]:
    """Map a sales export row; ``None`` when the row has no item or quantity."""
    name = str(_first(row, "item_name", "item") or "").strip()
    qty = to_quantity(_first(row, "qty", "units_sold"))
    if not name or qty <= 0:
        return None
    date_iso = _date_value(row.get("date")) or date.today().isoformat()
    line_id = generate_record_id("L")
    notes = _first(row, "note", "notes")
    return SaleLine(
        line_id=line_id,
        sale_id=line_id,
        date_iso=date_iso,
        item_id=None,
        item_name=name,
        qty=qty,
        price=to_number(row.get("price")),
        fees=to_number(row.get("fees")) if row.get("fees") is not None else ZERO,
        notes=str(notes).strip() if notes is not None else None,
    )


def load_inventory(path: Path, *, sheet_name: str = SheetName.INVENTORY.value + " ") -> List[InventoryItem]:
    """Read inventory items from an export workbook.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        SpreadsheetImportError: If the inventory sheet cannot be found.
    """
    workbook = open_source(path)
    try:
        sheet = find_sheet(workbook, sheet_name)
        rows = read_rows(sheet)
    finally:
        workbook.close()
    items = [item for item in (map_inventory_row(row) for row in rows) if item is not None]
    log.info("Read %d of %d inventory row(s) from '%s'", len(items), len(rows), path)
    return items


def load_sales(path: Path, *, sheet_name: str = SheetName.SALES.value) -> List[SaleLine]:
    """Read historical sale lines from an export workbook.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        SpreadsheetImportError: If the sales sheet cannot be found.
    """
    workbook = open_source(path)
    try:
        sheet = find_sheet(workbook, sheet_name)
        rows = read_rows(sheet)
    finally:
        workbook.close()
    lines = [line for line in (map_sales_row(row) for row in rows) if line is not None]
    log.info("Read %d of %d sales row(s) from '%s'", len(lines), len(rows), path)
    return lines


__all__ = [
    "SpreadsheetImportError",
    "normalize_header",
    "open_source",
    "find_sheet",
    "read_rows",
    "excel_serial_to_iso",
    "map_inventory_row",
    "map_sales_row",
    "load_inventory",
    "load_sales",
]
