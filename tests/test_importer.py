"""Tests for reading exported business spreadsheets."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import openpyxl
import pytest

from already_dead import importer


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Item name", "item_name"),
        ("  Used Sell Price ", "used_sell_price"),
        ("QTY", "qty"),
        ("Cost ($)", "cost_"),
        (None, ""),
    ],
)
def test_normalize_header(raw, expected):
    assert importer.normalize_header(raw) == expected


def test_find_sheet_prefers_exact_title():
    workbook = openpyxl.Workbook()
    workbook.active.title = "inventory"
    workbook.create_sheet("Inventory ")

    assert importer.find_sheet(workbook, "Inventory ").title == "Inventory "


def test_find_sheet_falls_back_to_normalized_title():
    workbook = openpyxl.Workbook()
    workbook.active.title = "INVENTORY"

    assert importer.find_sheet(workbook, "Inventory ").title == "INVENTORY"


def test_find_sheet_lists_sheets_when_missing():
    workbook = openpyxl.Workbook()
    workbook.active.title = "Summary"

    with pytest.raises(importer.SpreadsheetImportError, match="Summary"):
        importer.find_sheet(workbook, "Inventory ")


def test_read_rows_keys_by_normalized_header():
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["Item name", "QTY"])
    sheet.append(["Hat", 2])
    sheet.append([None, "  "])
    sheet.append(["Scarf", None])

    assert importer.read_rows(sheet) == [
        {"item_name": "Hat", "qty": 2},
        {"item_name": "Scarf", "qty": None},
    ]


def test_read_rows_of_empty_sheet():
    assert importer.read_rows(openpyxl.Workbook().active) == []


def test_excel_serial_to_iso():
    assert importer.excel_serial_to_iso(45000) == "2023-03-15"
    assert importer.excel_serial_to_iso("45000") is None
    assert importer.excel_serial_to_iso(True) is None
    assert importer.excel_serial_to_iso(float("nan")) is None
    assert importer.excel_serial_to_iso(1e20) is None


def test_map_inventory_row():
    item = importer.map_inventory_row({"item": " Denim Jacket ", "qty": "2.9", "cost": "$45.00", "used_sell_price": 90})

    assert item is not None
    assert item.name == "Denim Jacket"
    assert item.qty == 2
    assert item.unit_cost == Decimal("45.00")
    assert item.resale_price == Decimal("90")
    assert item.item_id.startswith("I")


def test_map_inventory_row_drops_blank_names():
    assert importer.map_inventory_row({"item_name": "   ", "qty": 4}) is None


def test_map_sales_row_accepts_datetime_cells_and_aliases():
    line = importer.map_sales_row(
        {"date": datetime(2026, 7, 4, 9, 30), "item": "Hat", "units_sold": 3, "price": "75", "note": "cash"}
    )

    assert line is not None
    assert line.date_iso == "2026-07-04"
    assert line.item_name == "Hat"
    assert line.item_id is None
    assert line.qty == 3
    assert line.price == Decimal("75")
    assert line.fees == Decimal("0")
    assert line.notes == "cash"
    assert line.sale_id == line.line_id


def test_map_sales_row_reads_excel_serial_dates():
    line = importer.map_sales_row({"date": 45000, "item": "Hat", "qty": 1, "price": 5})

    assert line.date_iso == "2023-03-15"


def test_map_sales_row_requires_item_and_quantity():
    assert importer.map_sales_row({"item": "Hat", "qty": 0, "price": 5}) is None
    assert importer.map_sales_row({"qty": 1, "price": 5}) is None


def test_load_inventory_reads_export(tmp_path):
    source = tmp_path / "export.xlsx"
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Inventory "
    sheet.append(["Item name", "QTY", "Cost", "Used Sell Price"])
    sheet.append(["Hat", 3, 10, 20])
    sheet.append(["", 1, 1, 1])
    workbook.save(source)

    items = importer.load_inventory(source)

    assert [(item.name, item.qty) for item in items] == [("Hat", 3)]


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        importer.load_sales(tmp_path / "nope.xlsx")
