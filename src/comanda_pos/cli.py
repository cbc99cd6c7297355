"""Command-line entry points for the Comanda POS terminal.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the session components, and printing
their results. Keeping the CLI thin lets tests and any other front-end reuse
the same parser configuration.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, export, log
from .receipt import ReceiptPrinter


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="comanda-cli",
        description="Point-of-sale tools for the Comanda POS terminal.",
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


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as catalog edits and sales."""
    specs = {
        "add-product": add_product_command(),
        "edit-product": edit_product_command(),
        "remove-product": remove_product_command(),
        "sell": sell_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings, reports and exports."""
    specs = {
        "products": products_command(),
        "next-order": next_order_command(),
        "sales": sales_command(),
        "report": report_command(),
        "export-products": export_products_command(),
        "export-sales": export_sales_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_date(raw: str) -> date:
    """argparse type for ``YYYY-MM-DD`` values."""
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {raw}") from exc


def parse_item(raw: str) -> Tuple[str, int]:
    """argparse type for ``CODE`` or ``CODE:QTY`` item specifications."""
    code, sep, qty_raw = raw.partition(":")
    code = code.strip()
    if not code:
        raise argparse.ArgumentTypeError(f"Missing product code in item: {raw}")
    if not sep:
        return code, 1
    try:
        return code, int(qty_raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity in item: {raw}") from exc


def add_product_command() -> CommandSpec:
    """Build the spec for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--code", default=None, help="Defaults to the next sequential code.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def edit_product_command() -> CommandSpec:
    """Build the spec for ``edit-product``."""
    name = "edit-product"
    help_text = "Change the code, name or price of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--code", default=None)
        parser.add_argument("--name", default=None)
        parser.add_argument("--price", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_product)


def remove_product_command() -> CommandSpec:
    """Build the spec for ``remove-product``."""
    name = "remove-product"
    help_text = "Delete a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_product)


def sell_command() -> CommandSpec:
    """Build the spec for ``sell``."""
    name = "sell"
    help_text = "Build a cart from product codes and finalize it as one order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            help="Product code with optional quantity, e.g. 001:2. Repeatable.",
        )
        parser.add_argument("--print", dest="print_receipt", action="store_true", help="Print the receipt to stdout.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell)


def products_command() -> CommandSpec:
    """Build the spec for ``products``."""
    name = "products"
    help_text = "List the product catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products)


def next_order_command() -> CommandSpec:
    """Build the spec for ``next-order``."""
    name = "next-order"
    help_text = "Show the number the next finalized order will receive."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_next_order)


def sales_command() -> CommandSpec:
    """Build the spec for ``sales``."""
    name = "sales"
    help_text = "List finalized sales, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", type=parse_date, default=None, help="Only sales of this day.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales)


def report_command() -> CommandSpec:
    """Build the spec for ``report``."""
    name = "report"
    help_text = "Display the daily total and quantity sold per item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", type=parse_date, default=None, help="Defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def export_products_command() -> CommandSpec:
    """Build the spec for ``export-products``."""
    name = "export-products"
    help_text = "Export the catalog to an .xlsx file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output-dir", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_products)


def export_sales_command() -> CommandSpec:
    """Build the spec for ``export-sales``."""
    name = "export-sales"
    help_text = "Export sales of one day, or all sales, to an .xlsx file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", type=parse_date, default=None, help="Omit to export every sale.")
        parser.add_argument("--output-dir", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_sales)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def attach_receipt_printer(context: core_logic.RuntimeContext) -> Optional[ReceiptPrinter]:
    """Subscribe a spooling printer when the config names a receipt directory."""
    receipt_dir = context.settings.receipt_dir
    if receipt_dir is None:
        return None
    printer = ReceiptPrinter(context.settings.store_name, spool_dir=receipt_dir)
    context.ledger.subscribe(printer)
    return printer


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


def today() -> date:
    """Current day on the same UTC calendar the sale timestamps use."""
    return datetime.now(UTC).date()


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into add-product keyword arguments."""
    return {"name": args.name, "price": args.price, "code": args.code}


def translate_edit_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into update-product keyword arguments."""
    return {"code": args.code, "name": args.name, "price": args.price}


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = context.catalog.add_product(**translate_add_product(args))
    print(f"Added {product.code} {product.name} ({product.price}) id={product.id}")
    return 0


def run_edit_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = context.catalog.update_product(args.product_id, **translate_edit_product(args))
    print(f"Updated {product.code} {product.name} ({product.price})")
    return 0


def run_remove_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = context.catalog.remove_product(args.product_id)
    print(f"Removed {product.code} {product.name}")
    return 0


def fill_cart(context: core_logic.RuntimeContext, items: Sequence[Tuple[str, int]]) -> None:
    """Add each ``(code, quantity)`` pair to the session cart."""
    for code, quantity in items:
        product = context.catalog.find_by_code(code)
        context.cart.add_line(product.id, quantity)


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Fill the cart from ``--item`` arguments and finalize it."""
    if getattr(args, "print_receipt", False):
        context.ledger.subscribe(ReceiptPrinter(context.settings.store_name, stream=sys.stdout))
    fill_cart(context, args.items)
    sale = context.ledger.finalize(context.cart)
    print(f"Order {sale.order_number} total {sale.total}")
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for product in context.catalog.list_products():
        print(f"{product.code}\t{product.name}\t{product.price}\t{product.id}")
    return 0


def run_next_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(context.sequencer.peek_next())
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sales = context.ledger.sales_on(args.date) if args.date else context.ledger.all_sales()
    for sale in sales:
        print(f"{sale.order_number}\t{sale.timestamp.isoformat()}\t{sale.total}\t{export.format_sale_items(sale)}")
    return 0


def format_report(totals: core_logic.DailyTotals) -> List[str]:
    lines = [f"Totals for {totals.sale_date.isoformat()}: {totals.total} ({totals.sale_count} sales)"]
    if not totals.items:
        lines.append("  no sales")
    for name, quantity in totals.items.items():
        lines.append(f"  {name}: {quantity}")
    return lines


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    totals = context.reports.daily_totals(args.date or today())
    print("\n".join(format_report(totals)))
    return 0


def resolve_output_dir(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Path:
    return args.output_dir or context.settings.export_dir or Path.cwd()


def run_export_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    path = export.export_products(context.catalog.list_products(), resolve_output_dir(context, args), today=today())
    print(path)
    return 0


def run_export_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sales = context.ledger.sales_on(args.date) if args.date else context.ledger.all_sales()
    path = export.export_sales(sales, resolve_output_dir(context, args), today=today(), sale_date=args.date)
    print(path)
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


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        attach_receipt_printer(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
