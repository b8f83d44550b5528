"""Data access layer for Already Dead.

This module is the local-mode persistence collaborator: it reads from and
writes to the data workbook, one worksheet per collection. Ledger rules
belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Collection operations: listing, querying, inserting, updating and
   deleting records by id.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import DEFAULT_MONTHS_BACK, DEFAULT_SHEET_NAMES, Collection
from .ledger import to_number, to_quantity
from .records import CalendarNote, Client, InventoryItem, SaleLine, Seller, TrackingEntry


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    collections: Mapping[Collection, str] = field(default_factory=lambda: dict(DEFAULT_SHEET_NAMES))
    months_back: int = DEFAULT_MONTHS_BACK

    def sheet_name(self, collection: Collection) -> str:
        """Return the worksheet configured for ``collection``."""

        return self.collections.get(collection, DEFAULT_SHEET_NAMES[collection])


@dataclass(frozen=True)
class CollectionSchema:
    """Column layout of one collection's worksheet.

    ``columns`` pairs each worksheet header with the record attribute stored
    under it. The first column holds the record identifier.
    """

    collection: Collection
    columns: Tuple[Tuple[str, str], ...]
    deserialize: Callable[[Sequence[object]], Any]

    @property
    def headers(self) -> List[str]:
        return [header for header, _ in self.columns]

    @property
    def key_header(self) -> str:
        return self.columns[0][0]

    @property
    def key_attribute(self) -> str:
        return self.columns[0][1]

    def header_for(self, attribute: str) -> str:
        for header, name in self.columns:
            if name == attribute:
                return header
        raise KeyError(f"Unknown {self.collection.value} field: {attribute}")

    def serialize(self, record: Any) -> List[object]:
        return [getattr(record, attribute) for _, attribute in self.columns]

    def record_id(self, record: Any) -> str:
        return str(getattr(record, self.key_attribute))


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    # Collection names are worksheet titles, keep their case.
    parser.optionxform = str  # type: ignore[assignment]
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``BusinessName`` and
    ``SchemaVersion``. ``[Collections]`` optionally maps collection names
    (``Inventory``, ``Sales``, ...) to worksheet titles, resolving each
    logical collection to exactly one sheet. ``[Reports]`` optionally sets
    ``MonthsBack``. Relative data file paths are anchored to ``base_path``,
    or to the current working directory when omitted.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory anchoring relative ``DataFile``
            entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required entry is missing, or ``[Collections]`` names a
            collection that does not exist.
        ValueError: If ``MonthsBack`` is not a positive integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    collections: Dict[Collection, str] = dict(DEFAULT_SHEET_NAMES)
    if parser.has_section("Collections"):
        for option, sheet_name in parser.items("Collections"):
            try:
                collection = Collection(option.strip().lower())
            except ValueError as exc:
                raise KeyError(f"Unknown collection in [Collections]: {option}") from exc
            collections[collection] = sheet_name

    months_back = parser.getint("Reports", "MonthsBack", fallback=DEFAULT_MONTHS_BACK)
    if months_back <= 0:
        raise ValueError(f"MonthsBack must be positive, got {months_back}")

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        collections=collections,
        months_back=months_back,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the data workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def missing_sheets(workbook: Workbook, sheet_names: Iterable[str]) -> List[str]:
    """Return the expected worksheet titles that ``workbook`` lacks."""

    present = set(workbook.sheetnames)
    return [name for name in sheet_names if name not in present]


# ---------------------------------------------------------------------------
# Cell conversion
# ---------------------------------------------------------------------------


def _padded(raw_row: Sequence[object], width: int) -> List[object]:
    values = list(raw_row[:width])
    values.extend([None] * (width - len(values)))
    return values


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _date_text(value: object) -> Optional[str]:
    """Dates typed into the sheet by hand come back as datetime cells."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()[:10]
    return _optional_text(value)


def _optional_number(value: object):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_number(value)


def _flag(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() not in {"", "false", "0", "no"}
    return bool(value)


def deserialize_item(raw_row: Sequence[object]) -> InventoryItem:
    """Convert a raw ``Inventory`` row into an :class:`InventoryItem`.

    Quantities are truncated to integers and floored at zero; prices are
    normalized into :class:`~decimal.Decimal`.
    """

    item_id, name, qty, unit_cost, resale_price = _padded(raw_row, 5)
    return InventoryItem(
        item_id=_text(item_id),
        name=_text(name).strip(),
        qty=max(0, to_quantity(qty)),
        unit_cost=to_number(unit_cost),
        resale_price=to_number(resale_price),
    )


def deserialize_sale_line(raw_row: Sequence[object]) -> SaleLine:
    """Convert a raw ``Sales`` row into a :class:`SaleLine`.

    Lines written before sales were grouped carry no ``SaleID``; they become
    their own single-line sale.
    """

    (
        line_id,
        sale_id,
        date_iso,
        item_id,
        item_name,
        qty,
        price,
        fees,
        unit_cost,
        seller_id,
        client_id,
        notes,
    ) = _padded(raw_row, 12)

    line_text = _text(line_id)
    return SaleLine(
        line_id=line_text,
        sale_id=_optional_text(sale_id) or line_text,
        date_iso=_date_text(date_iso) or "",
        item_id=_optional_text(item_id),
        item_name=_optional_text(item_name),
        qty=to_quantity(qty),
        price=to_number(price),
        fees=to_number(fees),
        unit_cost=_optional_number(unit_cost),
        seller_id=_optional_text(seller_id),
        client_id=_optional_text(client_id),
        notes=_optional_text(notes),
    )


def deserialize_seller(raw_row: Sequence[object]) -> Seller:
    seller_id, name, is_active = _padded(raw_row, 3)
    return Seller(seller_id=_text(seller_id), name=_text(name).strip(), is_active=_flag(is_active))


def deserialize_client(raw_row: Sequence[object]) -> Client:
    client_id, name, phone, email, last_spoken_to, notes = _padded(raw_row, 6)
    return Client(
        client_id=_text(client_id),
        name=_optional_text(name),
        phone=_optional_text(phone),
        email=_optional_text(email),
        last_spoken_to=_date_text(last_spoken_to),
        notes=_optional_text(notes),
    )


def deserialize_tracking(raw_row: Sequence[object]) -> TrackingEntry:
    tracking_id, tracking_number, date_purchased, contents, cost = _padded(raw_row, 5)
    return TrackingEntry(
        tracking_id=_text(tracking_id),
        tracking_number=_text(tracking_number),
        date_purchased=_date_text(date_purchased),
        contents=_optional_text(contents),
        cost=_optional_number(cost),
    )


def deserialize_calendar_note(raw_row: Sequence[object]) -> CalendarNote:
    note_id, date_iso, note = _padded(raw_row, 3)
    return CalendarNote(note_id=_text(note_id), date_iso=_date_text(date_iso) or "", note=_text(note))


SCHEMAS: Mapping[Collection, CollectionSchema] = {
    Collection.INVENTORY: CollectionSchema(
        collection=Collection.INVENTORY,
        columns=(
            ("ItemID", "item_id"),
            ("Name", "name"),
            ("Qty", "qty"),
            ("UnitCost", "unit_cost"),
            ("ResalePrice", "resale_price"),
        ),
        deserialize=deserialize_item,
    ),
    Collection.SALES: CollectionSchema(
        collection=Collection.SALES,
        columns=(
            ("LineID", "line_id"),
            ("SaleID", "sale_id"),
            ("Date", "date_iso"),
            ("ItemID", "item_id"),
            ("ItemName", "item_name"),
            ("Qty", "qty"),
            ("Price", "price"),
            ("Fees", "fees"),
            ("UnitCost", "unit_cost"),
            ("SellerID", "seller_id"),
            ("ClientID", "client_id"),
            ("Notes", "notes"),
        ),
        deserialize=deserialize_sale_line,
    ),
    Collection.SELLERS: CollectionSchema(
        collection=Collection.SELLERS,
        columns=(
            ("SellerID", "seller_id"),
            ("Name", "name"),
            ("IsActive", "is_active"),
        ),
        deserialize=deserialize_seller,
    ),
    Collection.CLIENTS: CollectionSchema(
        collection=Collection.CLIENTS,
        columns=(
            ("ClientID", "client_id"),
            ("Name", "name"),
            ("Phone", "phone"),
            ("Email", "email"),
            ("LastSpokenTo", "last_spoken_to"),
            ("Notes", "notes"),
        ),
        deserialize=deserialize_client,
    ),
    Collection.TRACKING: CollectionSchema(
        collection=Collection.TRACKING,
        columns=(
            ("TrackingID", "tracking_id"),
            ("TrackingNumber", "tracking_number"),
            ("DatePurchased", "date_purchased"),
            ("Contents", "contents"),
            ("Cost", "cost"),
        ),
        deserialize=deserialize_tracking,
    ),
    Collection.CALENDAR: CollectionSchema(
        collection=Collection.CALENDAR,
        columns=(
            ("NoteID", "note_id"),
            ("Date", "date_iso"),
            ("Note", "note"),
        ),
        deserialize=deserialize_calendar_note,
    ),
}


# ---------------------------------------------------------------------------
# Collection operations
# ---------------------------------------------------------------------------


def _sheet(workbook: Workbook, collection: Collection, sheet_name: Optional[str]) -> Worksheet:
    return workbook[sheet_name or DEFAULT_SHEET_NAMES[collection]]


def iter_records(workbook: Workbook, collection: Collection, *, sheet_name: Optional[str] = None) -> Iterable[Any]:
    """Iterate over the records stored on a collection's worksheet.

    The header row and fully empty rows are skipped; every other row is
    converted through the collection's deserializer.

    Args:
        workbook (Workbook): Workbook holding the collection.
        collection (Collection): Logical collection to read.
        sheet_name (str | None): Worksheet title configured for the
            collection; defaults to the standard title.

    Yields:
        Any: One typed record per populated row, in sheet order.
    """

    schema = SCHEMAS[collection]
    sheet = _sheet(workbook, collection, sheet_name)
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield schema.deserialize(raw)


def list_records(workbook: Workbook, collection: Collection, *, sheet_name: Optional[str] = None) -> List[Any]:
    """Return every record of ``collection`` in sheet order."""

    return list(iter_records(workbook, collection, sheet_name=sheet_name))


def query_records(
    workbook: Workbook,
    collection: Collection,
    *,
    search: Optional[str] = None,
    fields: Optional[Sequence[str]] = None,
    order_by: Optional[str] = None,
    offset: int = 0,
    limit: Optional[int] = None,
    sheet_name: Optional[str] = None,
) -> Tuple[List[Any], int]:
    """Filter, sort and paginate a collection.

    Args:
        workbook (Workbook): Workbook holding the collection.
        collection (Collection): Logical collection to query.
        search (str | None): Case-insensitive substring matched against
            ``fields``. Blank searches match everything.
        fields (Sequence[str] | None): Record attributes to search; defaults
            to every column.
        order_by (str | None): Attribute to sort by, case-insensitively with
            blanks last.
        offset (int): Number of matching records to skip.
        limit (int | None): Maximum number of records to return.
        sheet_name (str | None): Worksheet title configured for the
            collection.

    Returns:
        tuple[list[Any], int]: The requested page and the total number of
            matching records.

    Raises:
        KeyError: If ``fields`` or ``order_by`` name an unknown attribute.
    """

    schema = SCHEMAS[collection]
    search_fields = list(fields) if fields else [attribute for _, attribute in schema.columns]
    for attribute in [*search_fields, *([order_by] if order_by else [])]:
        schema.header_for(attribute)

    records = list_records(workbook, collection, sheet_name=sheet_name)
    needle = (search or "").strip().lower()
    if needle:
        records = [
            record
            for record in records
            if any(needle in _text(getattr(record, attribute)).lower() for attribute in search_fields)
        ]
    if order_by:
        records.sort(key=lambda record: (getattr(record, order_by) is None, _text(getattr(record, order_by)).lower()))

    total = len(records)
    start = max(0, offset)
    page = records[start:] if limit is None else records[start:start + max(0, limit)]
    return page, total


def insert_record(workbook: Workbook, collection: Collection, record: Any, *, sheet_name: Optional[str] = None) -> str:
    """Append ``record`` to its collection's worksheet and return its id.

    Raises:
        ValueError: If a record with the same id already exists.
    """

    schema = SCHEMAS[collection]
    sheet = _sheet(workbook, collection, sheet_name)
    record_id = schema.record_id(record)
    if locate_row(workbook, sheet.title, schema.key_header, record_id) is not None:
        raise ValueError(f"Duplicate {collection.value} id: {record_id}")
    sheet.append(schema.serialize(record))
    return record_id


def update_record(
    workbook: Workbook,
    collection: Collection,
    record_id: str,
    patch: Mapping[str, Any],
    *,
    sheet_name: Optional[str] = None,
) -> None:
    """Update selected fields of an existing record.

    ``patch`` maps record attribute names to replacement values; only those
    cells are written.

    Raises:
        KeyError: If the record, or any patched field, cannot be found.
    """

    schema = SCHEMAS[collection]
    sheet = _sheet(workbook, collection, sheet_name)
    row_index = locate_row(workbook, sheet.title, schema.key_header, record_id)
    if row_index is None:
        raise KeyError(f"{collection.value.capitalize()} record not found: {record_id}")

    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    for attribute, value in patch.items():
        header = schema.header_for(attribute)
        if header not in header_map:
            raise KeyError(f"Worksheet '{sheet.title}' has no column '{header}'")
        sheet.cell(row=row_index, column=header_map[header], value=value)


def delete_record(workbook: Workbook, collection: Collection, record_id: str, *, sheet_name: Optional[str] = None) -> None:
    """Remove a record's row from its worksheet.

    Raises:
        KeyError: If no row holds ``record_id``.
    """

    schema = SCHEMAS[collection]
    sheet = _sheet(workbook, collection, sheet_name)
    row_index = locate_row(workbook, sheet.title, schema.key_header, record_id)
    if row_index is None:
        raise KeyError(f"{collection.value.capitalize()} record not found: {record_id}")
    sheet.delete_rows(row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    wanted = str(key_value)

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if len(row) < key_col_index:
            continue
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == wanted:
            return row_idx

    log.debug("No row in '%s' with %s=%s", sheet_name, key_column, key_value)
    return None
