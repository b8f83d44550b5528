"""Command-line entry points for the Already Dead ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the requests consumed by the business layer and
printing what it returns. The workbook is saved only after a mutating command
finished successfully.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .ledger import best_month, format_money, to_number


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="already-dead",
        description="Inventory, sales and profit tools for the Already Dead workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _command(
    name: str,
    help_text: str,
    arguments: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    mutates: bool = False,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and stock adjustments."""
    specs = {
        "add-item": register_add_item_command(),
        "update-item": register_update_item_command(),
        "delete-item": register_delete_item_command(),
        "adjust": register_adjust_command(),
        "sale": register_sale_command(),
        "delete-sale": register_delete_sale_command(),
        "add-seller": register_add_seller_command(),
        "add-client": register_add_client_command(),
        "delete-client": register_delete_client_command(),
        "track": register_track_command(),
        "untrack": register_untrack_command(),
        "note": register_note_command(),
        "import-inventory": register_import_inventory_command(),
        "import-sales": register_import_sales_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(),
        "summary": register_summary_command(),
        "profit": register_profit_command(),
        "sellers": register_sellers_command(),
        "monthly": register_monthly_command(),
        "clients": register_clients_command(),
        "tracking": register_tracking_command(),
        "notes": register_notes_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _item_reference(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--item-id")
    group.add_argument("--item-name", help="Legacy lookup by item name (case-insensitive).")


def _period(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--year", type=int, default=None)
    parser.add_argument("--month", type=int, default=None, help="Month number, 1-12; requires --year.")
    parser.add_argument(
        "--seller-id",
        dest="seller_ids",
        action="append",
        default=None,
        help="Restrict to a seller; repeat for several.",
    )


def register_add_item_command() -> CommandSpec:
    """Register the parser and executor for ``add-item``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--qty", type=int, default=0)
        parser.add_argument("--unit-cost", default="0")
        parser.add_argument("--resale-price", default="0")
        parser.add_argument("--item-id", default=None)

    return _command("add-item", "Add an item to the inventory.", arguments, run_add_item, mutates=True)


def register_update_item_command() -> CommandSpec:
    """Register the parser and executor for ``update-item``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--unit-cost", default=None)
        parser.add_argument("--resale-price", default=None)

    return _command("update-item", "Edit an item's name or prices.", arguments, run_update_item, mutates=True)


def register_delete_item_command() -> CommandSpec:
    """Register the parser and executor for ``delete-item``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--item-id", required=True)

    return _command("delete-item", "Remove an item from the inventory.", arguments, run_delete_item, mutates=True)


def register_adjust_command() -> CommandSpec:
    """Register the parser and executor for ``adjust``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        _item_reference(parser)
        parser.add_argument("--delta", type=int, required=True, help="Units to add (negative to remove).")

    return _command("adjust", "Manually adjust an item's on-hand quantity.", arguments, run_adjust, mutates=True)


def register_sale_command() -> CommandSpec:
    """Register the parser and executor for ``sale``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        _item_reference(parser)
        parser.add_argument("--qty", type=int, required=True)
        parser.add_argument("--price", required=True, help="Line revenue, not a unit price.")
        parser.add_argument("--fees", default="0")
        parser.add_argument("--date", dest="date_iso", default=None, help="Sale date as YYYY-MM-DD (default today).")
        parser.add_argument("--seller-id", default=None)
        parser.add_argument("--client-id", default=None)
        parser.add_argument("--sale-id", default=None, help="Group this line with an earlier line of the same sale.")
        parser.add_argument("--notes", dest="notes", default=None)

    return _command("sale", "Record a sale and deduct it from stock.", arguments, run_sale, mutates=True)


def register_delete_sale_command() -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--line-id", required=True)

    return _command(
        "delete-sale", "Delete a sale line and restore its stock.", arguments, run_delete_sale, mutates=True
    )


def register_add_seller_command() -> CommandSpec:
    """Register the parser and executor for ``add-seller``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--seller-id", default=None)
        parser.add_argument("--inactive", action="store_true", help="Mark the seller as inactive on creation.")

    return _command("add-seller", "Register a seller.", arguments, run_add_seller, mutates=True)


def register_add_client_command() -> CommandSpec:
    """Register the parser and executor for ``add-client``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--email", default=None)
        parser.add_argument("--notes", default=None)

    return _command("add-client", "Add a client contact.", arguments, run_add_client, mutates=True)


def register_delete_client_command() -> CommandSpec:
    """Register the parser and executor for ``delete-client``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--client-id", required=True)

    return _command("delete-client", "Delete a client contact.", arguments, run_delete_client, mutates=True)


def register_track_command() -> CommandSpec:
    """Register the parser and executor for ``track``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--tracking-number", required=True)
        parser.add_argument("--date-purchased", default=None)
        parser.add_argument("--contents", default=None)
        parser.add_argument("--cost", default=None)

    return _command("track", "Save a shipment tracking number.", arguments, run_track, mutates=True)


def register_untrack_command() -> CommandSpec:
    """Register the parser and executor for ``untrack``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--tracking-id", required=True)

    return _command("untrack", "Remove a saved tracking number.", arguments, run_untrack, mutates=True)


def register_note_command() -> CommandSpec:
    """Register the parser and executor for ``note``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--date", dest="date_iso", required=True)
        parser.add_argument("--text", required=True)

    return _command("note", "Set the calendar note for a day.", arguments, run_note, mutates=True)


def register_import_inventory_command() -> CommandSpec:
    """Register the parser and executor for ``import-inventory``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("source", type=Path)

    return _command(
        "import-inventory",
        "Import items from an inventory spreadsheet.",
        arguments,
        run_import_inventory,
        mutates=True,
    )


def register_import_sales_command() -> CommandSpec:
    """Register the parser and executor for ``import-sales``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("source", type=Path)

    return _command(
        "import-sales",
        "Import historical sales (stock is not deducted).",
        arguments,
        run_import_sales,
        mutates=True,
    )


def register_stock_command() -> CommandSpec:
    """Register the parser and executor for ``stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--low", action="store_true", help="Only list low-stock items.")

    return _command("stock", "Display current stock levels.", arguments, run_stock_report)


def register_summary_command() -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    return _command("summary", "Display inventory value and low-stock count.", lambda parser: None, run_summary)


def register_profit_command() -> CommandSpec:
    """Register the parser and executor for ``profit``."""
    return _command("profit", "Display revenue, cost, and profit summaries.", _period, run_profit_report)


def register_sellers_command() -> CommandSpec:
    """Register the parser and executor for ``sellers``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        _period(parser)
        parser.add_argument("--csv", type=Path, default=None, help="Write the breakdown to this CSV file.")

    return _command("sellers", "Display profit per seller.", arguments, run_seller_report)


def register_monthly_command() -> CommandSpec:
    """Register the parser and executor for ``monthly``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--months-back", type=int, default=None)

    return _command("monthly", "Display profit per month.", arguments, run_monthly_report)


def register_clients_command() -> CommandSpec:
    """Register the parser and executor for ``clients``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None)
        parser.add_argument("--page", type=int, default=1)

    return _command("clients", "Search client contacts.", arguments, run_clients)


def register_tracking_command() -> CommandSpec:
    """Register the parser and executor for ``tracking``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None)

    return _command("tracking", "List saved tracking numbers.", arguments, run_tracking)


def register_notes_command() -> CommandSpec:
    """Register the parser and executor for ``notes``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--start", default=None)
        parser.add_argument("--end", default=None, help="Exclusive end date.")

    return _command("notes", "List calendar notes.", arguments, run_notes)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _optional_money(raw: Optional[str]) -> Optional[Decimal]:
    return to_number(raw) if raw is not None else None


def translate_add_item(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-item request."""
    return {
        "name": args.name,
        "qty": args.qty,
        "unit_cost": to_number(args.unit_cost),
        "resale_price": to_number(args.resale_price),
        "item_id": args.item_id,
    }


def translate_update_item(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an update-item request."""
    return {
        "name": args.name,
        "unit_cost": _optional_money(args.unit_cost),
        "resale_price": _optional_money(args.resale_price),
    }


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        item_id=args.item_id,
        item_name=args.item_name,
        qty=args.qty,
        price=to_number(args.price),
        fees=to_number(args.fees),
        date_iso=args.date_iso,
        seller_id=args.seller_id,
        client_id=args.client_id,
        sale_id=args.sale_id,
        notes=args.notes,
    )


def translate_tracking(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-tracking request."""
    return {
        "tracking_number": args.tracking_number,
        "date_purchased": args.date_purchased,
        "contents": args.contents,
        "cost": _optional_money(args.cost),
    }


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow in the BLL."""
    item = core_logic.add_item(context, **translate_add_item(args))
    print(f"Added {item.name} ({item.item_id}) qty={item.qty}")
    return 0


def run_update_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    item = core_logic.update_item(context, args.item_id, **translate_update_item(args))
    print(
        f"Updated {item.name} ({item.item_id}): "
        f"cost {format_money(item.unit_cost)}, resale {format_money(item.resale_price)}"
    )
    return 0


def run_delete_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    item = core_logic.delete_item(context, args.item_id)
    print(f"Deleted {item.name} ({item.item_id})")
    return 0


def run_adjust(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a manual stock adjustment."""
    item = core_logic.adjust_item_quantity(context, args.delta, item_id=args.item_id, item_name=args.item_name)
    if item is None:
        print("Item not found; nothing adjusted.")
        return 0
    print(f"{item.name}: qty={item.qty}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    outcome = core_logic.record_sale(context, translate_sale(args))
    print(f"Recorded sale {outcome.sale.line_id} ({outcome.sale.qty} x {outcome.sale.item_name})")
    if outcome.item is not None:
        print(f"{outcome.item.name}: qty={outcome.item.qty}")
    else:
        print("Item not in inventory; stock was not deducted.")
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale deletion workflow via the BLL."""
    outcome = core_logic.delete_sale(context, args.line_id)
    print(f"Deleted sale {outcome.sale.line_id}")
    if outcome.item is not None:
        print(f"{outcome.item.name}: qty={outcome.item.qty}")
    else:
        print("Item no longer in inventory; stock was not restored.")
    return 0


def run_add_seller(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    seller = core_logic.add_seller(
        context,
        name=args.name,
        seller_id=args.seller_id,
        is_active=not getattr(args, "inactive", False),
    )
    print(f"Added seller {seller.name} ({seller.seller_id})")
    return 0


def run_add_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    client = core_logic.add_client(context, name=args.name, phone=args.phone, email=args.email, notes=args.notes)
    print(f"Added client {client.name} ({client.client_id})")
    return 0


def run_delete_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_client(context, args.client_id)
    print(f"Deleted client {args.client_id}")
    return 0


def run_track(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    entry = core_logic.add_tracking(context, **translate_tracking(args))
    print(f"Saved tracking {entry.tracking_number} ({entry.tracking_id})")
    return 0


def run_untrack(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_tracking(context, args.tracking_id)
    print(f"Removed tracking {args.tracking_id}")
    return 0


def run_note(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    note = core_logic.upsert_calendar_note(context, args.date_iso, args.text)
    print(f"{note.date_iso}: {note.note}")
    return 0


def run_import_inventory(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    items = core_logic.import_inventory(context, args.source)
    print(f"Imported {len(items)} item(s)")
    return 0


def run_import_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    lines = core_logic.import_sales(context, args.source)
    print(f"Imported {len(lines)} sale line(s)")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    items = core_logic.low_stock_items(context) if args.low else core_logic.list_items(context)
    for item in items:
        print(
            f"{item.item_id}\t{item.name}\t{item.qty}\t"
            f"{format_money(item.unit_cost)}\t{format_money(item.resale_price)}"
        )
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the inventory summary workflow."""
    summary = core_logic.inventory_summary(context)
    print(f"Items: {summary.item_count} ({summary.units_on_hand} units)")
    print(f"Cost basis: {format_money(summary.cost_basis)}")
    print(f"Resale value: {format_money(summary.resale_value)}")
    print(f"Potential profit: {format_money(summary.potential_profit)}")
    print(f"Low stock: {len(summary.low_stock)}")
    for item in summary.low_stock:
        print(f"  {item.name}: {item.qty}")
    return 0


def _report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.ProfitReport:
    return core_logic.profit_report(context, year=args.year, month=args.month, seller_ids=args.seller_ids)


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit reporting workflow."""
    report = _report(context, args)
    totals = report.totals
    print(f"Sales: {totals.count}")
    print(f"Revenue: {format_money(totals.revenue)}")
    print(f"Fees: {format_money(totals.fees)}")
    print(f"Cost: {format_money(totals.cost)}")
    print(f"Profit: {format_money(totals.profit)}")
    print(f"Margin: {(totals.margin * 100).quantize(Decimal('0.1'))}%")
    for sale in report.sales:
        print(f"{sale.date_iso}\t{sale.sale_id}\t{sale.items_total}\t{format_money(sale.profit)}")
    return 0


def run_seller_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the per-seller reporting workflow."""
    report = _report(context, args)
    if args.csv is not None:
        with open(args.csv, "w", encoding="utf-8", newline="") as stream:
            rows = core_logic.export_seller_metrics_csv(report, stream)
        print(f"Wrote {rows} seller row(s) to {args.csv}")
        return 0
    core_logic.export_seller_metrics_csv(report, sys.stdout)
    return 0


def run_monthly_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the monthly profit workflow."""
    buckets = core_logic.monthly_report(context, months_back=args.months_back)
    for bucket in buckets:
        print(f"{bucket.label}\t{format_money(bucket.profit)}")
    best = best_month(buckets)
    if best is not None:
        print(f"Best month: {best.label} ({format_money(best.profit)})")
    return 0


def run_clients(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    page = core_logic.search_clients(context, args.search, page=args.page)
    for client in page.clients:
        print(f"{client.client_id}\t{client.name or ''}\t{client.phone or ''}\t{client.email or ''}")
    print(f"Page {page.page} of {page.page_count} ({page.total} client(s))")
    return 0


def run_tracking(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for entry in core_logic.search_tracking(context, args.search):
        print(f"{entry.tracking_id}\t{entry.tracking_number}\t{entry.date_purchased or ''}\t{entry.contents or ''}")
    return 0


def run_notes(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for note in core_logic.list_calendar_notes(context, start=args.start, end=args.end):
        print(f"{note.date_iso}\t{note.note}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = command_table[args.command]
        if spec.mutates:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    sys.exit(main())
