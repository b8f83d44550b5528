"""Integration tests spanning configuration, workbook storage and business logic."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from already_dead import core_logic
from already_dead.setup_workbook import create_master_workbook
from already_dead.constants import Collection


def test_sales_survive_a_save_and_reload(runtime_context, config_file):
    core_logic.add_item(
        runtime_context, item_id="I-1", name="Denim Jacket", qty=5, unit_cost=Decimal("45.50"), resale_price=Decimal("90")
    )
    core_logic.add_seller(runtime_context, seller_id="S-1", name="Ana")
    first = core_logic.record_sale(
        runtime_context,
        core_logic.SaleCommand(item_id="I-1", qty=1, price=Decimal("90"), fees=Decimal("4.50"), seller_id="S-1"),
    )
    core_logic.record_sale(
        runtime_context,
        core_logic.SaleCommand(
            item_name="denim jacket",
            qty=2,
            price=Decimal("170"),
            sale_id=first.sale.sale_id,
        ),
    )
    core_logic.persist_context(runtime_context)

    reloaded = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(reloaded)

    assert core_logic.get_item(reloaded, "I-1").qty == 2
    report = core_logic.profit_report(reloaded)
    assert report.totals.count == 1
    assert report.totals.items_total == 3
    assert report.totals.profit == Decimal("119.00")
    assert report.sales[0].line_count == 2
    buckets = core_logic.monthly_report(reloaded, today=date.today())
    assert buckets[-1].profit == Decimal("119.00")


def test_configured_sheet_names_are_used_end_to_end(tmp_path):
    workbook_path = create_master_workbook(
        tmp_path / "shop.xlsx",
        sheet_names={Collection.INVENTORY: "Stock", Collection.SALES: "Orders"},
    )
    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\n"
        f"DataFile = {workbook_path.name}\n"
        "BusinessName = Shop\n"
        "SchemaVersion = 1.0.0\n\n"
        "[Collections]\n"
        "Inventory = Stock\n"
        "Sales = Orders\n"
    )

    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    core_logic.add_item(context, item_id="I-1", name="Hat", qty=2)
    core_logic.record_sale(context, core_logic.SaleCommand(item_id="I-1", qty=1, price=Decimal("10")))
    core_logic.persist_context(context)

    reloaded = core_logic.load_runtime_context(config_path)
    assert reloaded.workbook["Stock"].max_row == 2
    assert reloaded.workbook["Orders"].max_row == 2
    assert core_logic.get_item(reloaded, "I-1").qty == 1
