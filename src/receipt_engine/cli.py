"""Command-line entry points for the receipt engine.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import ReceiptStatus
from .errors import ReceiptEngineError
from .models import PurchaseReceipt, PurchaseReceiptItem


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
        prog="receipts-cli",
        description="Command-line tools for the purchase-receipt workbook.",
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
    """Declare mutating CLI commands such as receipt edits and lifecycle moves."""
    specs = {
        "add-supplier": register_add_supplier_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "create-receipt": register_create_receipt_command(subparsers),
        "update-receipt": register_update_receipt_command(subparsers),
        "delete-receipt": register_receipt_id_command(
            "delete-receipt", "Delete a pending or received receipt.", run_delete_receipt
        ),
        "add-item": register_add_item_command(subparsers),
        "update-item": register_update_item_command(subparsers),
        "remove-item": register_remove_item_command(subparsers),
        "receive": register_receipt_id_command("receive", "Mark a pending receipt as received.", run_receive),
        "complete": register_complete_command(subparsers),
        "cancel": register_receipt_id_command("cancel", "Cancel a pending or received receipt.", run_cancel),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "show": register_show_command(subparsers),
        "list": register_list_command(subparsers),
        "summary": register_summary_command(subparsers),
        "supplier-performance": register_supplier_performance_command(subparsers),
        "stock": register_stock_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_item_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--product-id", required=required)
    parser.add_argument("--quantity", required=required)
    parser.add_argument("--unit-cost", required=required)
    parser.add_argument("--discount-amount", default=None)
    parser.add_argument("--discount-percentage", default=None)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Register a supplier in the Suppliers sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--name", required=True)
        parser.add_argument("--inactive", action="store_true", help="Mark the supplier as inactive on creation.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--name", required=True)
        parser.add_argument("--inactive", action="store_true", help="Mark the product as inactive on creation.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_create_receipt_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-receipt``."""
    name = "create-receipt"
    help_text = "Create a pending purchase receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--purchase-date", type=date.fromisoformat, default=None, help="YYYY-MM-DD (default: today)")
        parser.add_argument("--receipt-number", default=None, help="Generated when omitted.")
        parser.add_argument("--supplier-bill-number", default="")
        parser.add_argument("--notes", default="")
        parser.add_argument("--bill-discount-amount", default="0")
        parser.add_argument("--bill-discount-percentage", default="0")
        parser.add_argument("--created-by", default=None, help="Defaults to [Defaults] DefaultUser.")
        parser.add_argument(
            "--item",
            action="append",
            default=[],
            metavar="PRODUCT:QTY:COST[:PCT[:AMOUNT]]",
            help="Line item; repeat for several items.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_receipt)


def register_update_receipt_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-receipt``."""
    name = "update-receipt"
    help_text = "Update header fields of a pending or received receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--receipt-id", required=True)
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--purchase-date", type=date.fromisoformat, default=None)
        parser.add_argument("--supplier-bill-number", default=None)
        parser.add_argument("--notes", default=None)
        parser.add_argument("--bill-discount-amount", default=None)
        parser.add_argument("--bill-discount-percentage", default=None)
        parser.add_argument("--expected-version", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_receipt)


def register_receipt_id_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Build a spec for commands whose only argument is ``--receipt-id``."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--receipt-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Add a line item to a receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--receipt-id", required=True)
        _add_item_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item)


def register_update_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-item``."""
    name = "update-item"
    help_text = "Update a line item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        _add_item_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_item)


def register_remove_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-item``."""
    name = "remove-item"
    help_text = "Remove a line item from its receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_item)


def register_complete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``complete``."""
    name = "complete"
    help_text = "Integrate a received receipt into stock and complete it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--receipt-id", required=True)
        parser.add_argument("--user-id", default=None, help="Defaults to [Defaults] DefaultUser.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_complete)


def register_show_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``show``."""
    name = "show"
    help_text = "Display a receipt and its items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        target = parser.add_mutually_exclusive_group(required=True)
        target.add_argument("--receipt-id")
        target.add_argument("--receipt-number")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_show)


def register_list_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list``."""
    name = "list"
    help_text = "List receipts, optionally filtered."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        filters = parser.add_mutually_exclusive_group()
        filters.add_argument("--status", choices=[member.value for member in ReceiptStatus])
        filters.add_argument("--supplier-id")
        filters.add_argument("--search")
        parser.add_argument("--limit", type=int, default=None)
        parser.add_argument("--offset", type=int, default=0)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Summarize receipts created in a date range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=date.fromisoformat, required=True)
        parser.add_argument("--end", type=date.fromisoformat, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary)


def register_supplier_performance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``supplier-performance``."""
    name = "supplier-performance"
    help_text = "Report a supplier's receipts over a purchase-date range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--start", type=date.fromisoformat, required=True)
        parser.add_argument("--end", type=date.fromisoformat, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_supplier_performance)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current inventory levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


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


def _optional_decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def parse_item_spec(raw: str) -> core_logic.ItemCommand:
    """Parse ``PRODUCT:QTY:COST[:PCT[:AMOUNT]]`` into an item command.

    Raises:
        ValueError: If the spec has fewer than three or more than five parts.
    """
    parts = raw.split(":")
    if not 3 <= len(parts) <= 5:
        raise ValueError(f"Invalid item spec '{raw}': expected PRODUCT:QTY:COST[:PCT[:AMOUNT]]")
    product_id, quantity, unit_cost, *discounts = parts
    percentage = Decimal(discounts[0]) if len(discounts) >= 1 and discounts[0] else Decimal("0")
    amount = Decimal(discounts[1]) if len(discounts) == 2 and discounts[1] else Decimal("0")
    return core_logic.ItemCommand(
        product_id=product_id,
        quantity=int(quantity),
        unit_cost=Decimal(unit_cost),
        item_discount_amount=amount,
        item_discount_percentage=percentage,
    )


def translate_add_supplier(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-supplier request."""
    return {
        "name": args.name,
        "supplier_id": args.supplier_id,
        "is_active": not getattr(args, "inactive", False),
    }


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "name": args.name,
        "product_id": args.product_id,
        "is_active": not getattr(args, "inactive", False),
    }


def translate_create_receipt(args: argparse.Namespace, *, default_user_id: str) -> core_logic.ReceiptCommand:
    """Translate CLI args into a receipt creation command."""
    return core_logic.ReceiptCommand(
        supplier_id=args.supplier_id,
        created_by_id=args.created_by or default_user_id,
        purchase_date=args.purchase_date or date.today(),
        items=[parse_item_spec(raw) for raw in args.item],
        receipt_number=args.receipt_number,
        supplier_bill_number=args.supplier_bill_number,
        notes=args.notes,
        bill_discount_amount=Decimal(args.bill_discount_amount),
        bill_discount_percentage=Decimal(args.bill_discount_percentage),
    )


def translate_update_receipt(args: argparse.Namespace) -> core_logic.ReceiptUpdateCommand:
    """Translate CLI args into a partial header update."""
    return core_logic.ReceiptUpdateCommand(
        receipt_id=args.receipt_id,
        supplier_id=args.supplier_id,
        purchase_date=args.purchase_date,
        supplier_bill_number=args.supplier_bill_number,
        notes=args.notes,
        bill_discount_amount=_optional_decimal(args.bill_discount_amount),
        bill_discount_percentage=_optional_decimal(args.bill_discount_percentage),
        expected_version=args.expected_version,
    )


def translate_add_item(args: argparse.Namespace) -> core_logic.ItemCommand:
    """Translate CLI args into an item command."""
    return core_logic.ItemCommand(
        product_id=args.product_id,
        quantity=int(args.quantity),
        unit_cost=Decimal(args.unit_cost),
        item_discount_amount=_optional_decimal(args.discount_amount) or Decimal("0"),
        item_discount_percentage=_optional_decimal(args.discount_percentage) or Decimal("0"),
    )


def translate_update_item(args: argparse.Namespace) -> core_logic.ItemUpdateCommand:
    """Translate CLI args into a partial item update."""
    return core_logic.ItemUpdateCommand(
        item_id=args.item_id,
        product_id=args.product_id,
        quantity=int(args.quantity) if args.quantity is not None else None,
        unit_cost=_optional_decimal(args.unit_cost),
        item_discount_amount=_optional_decimal(args.discount_amount),
        item_discount_percentage=_optional_decimal(args.discount_percentage),
    )


def format_receipt(receipt: PurchaseReceipt) -> str:
    """Render a receipt header as a single line."""
    return (
        f"{receipt.receipt_number}  {receipt.status.value:<9}  supplier={receipt.supplier_id}  "
        f"date={receipt.purchase_date}  total={receipt.total_amount}  id={receipt.receipt_id}"
    )


def format_item(item: PurchaseReceiptItem) -> str:
    """Render a line item as a single indented line."""
    return (
        f"  - {item.product_id}  qty={item.quantity}  cost={item.unit_cost}  "
        f"discount={item.item_discount_amount}  line={item.line_total}  id={item.item_id}"
    )


def _print_mapping(values: Mapping[str, Any]) -> None:
    width = max((len(key) for key in values), default=0)
    for key, value in values.items():
        print(f"{key:<{width}}  {value}")


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-supplier workflow in the BLL."""
    supplier = core_logic.register_supplier(context, **translate_add_supplier(args))
    print(f"Supplier {supplier.supplier_id} ({supplier.name})")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.register_product(context, **translate_add_product(args))
    print(f"Product {product.product_id} ({product.name})")
    return 0


def run_create_receipt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the receipt creation workflow via the BLL."""
    command = translate_create_receipt(args, default_user_id=context.settings.default_user_id)
    details = core_logic.create_receipt(context, command)
    print(format_receipt(details.receipt))
    for item in details.items:
        print(format_item(item))
    return 0


def run_update_receipt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the header update workflow via the BLL."""
    receipt = core_logic.update_receipt(context, translate_update_receipt(args))
    print(format_receipt(receipt))
    return 0


def run_delete_receipt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the receipt deletion workflow via the BLL."""
    core_logic.delete_receipt(context, args.receipt_id)
    print(f"Deleted receipt {args.receipt_id}")
    return 0


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow via the BLL."""
    item = core_logic.add_item(context, args.receipt_id, translate_add_item(args))
    print(format_item(item))
    return 0


def run_update_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-item workflow via the BLL."""
    item = core_logic.update_item(context, translate_update_item(args))
    print(format_item(item))
    return 0


def run_remove_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the remove-item workflow via the BLL."""
    receipt = core_logic.remove_item(context, args.item_id)
    print(format_receipt(receipt))
    return 0


def run_receive(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    receipt = core_logic.receive(context, args.receipt_id)
    print(format_receipt(receipt))
    return 0


def run_complete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    receipt = core_logic.complete(context, args.receipt_id, user_id=args.user_id)
    print(format_receipt(receipt))
    return 0


def run_cancel(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    receipt = core_logic.cancel(context, args.receipt_id)
    print(format_receipt(receipt))
    return 0


def run_show(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a receipt header followed by its items."""
    if args.receipt_id:
        receipt = core_logic.get_receipt(context, args.receipt_id)
    else:
        receipt = core_logic.get_receipt_by_number(context, args.receipt_number)
    details = core_logic.get_receipt_details(context, receipt.receipt_id)
    print(format_receipt(details.receipt))
    for item in details.items:
        print(format_item(item))
    return 0


def run_list(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print receipts matching the selected filter."""
    receipts: List[PurchaseReceipt]
    if args.status:
        receipts = core_logic.list_receipts_by_status(context, args.status)
    elif args.supplier_id:
        receipts = core_logic.list_receipts_by_supplier(context, args.supplier_id)
    elif args.search:
        receipts = core_logic.search_receipts(context, args.search, limit=args.limit, offset=args.offset)
    else:
        receipts = core_logic.list_receipts(context, limit=args.limit, offset=args.offset)
    for receipt in receipts:
        print(format_receipt(receipt))
    print(f"{len(receipts)} of {core_logic.count_receipts(context)} receipt(s)")
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_mapping(core_logic.receipt_summary(context, args.start, args.end))
    return 0


def run_supplier_performance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_mapping(core_logic.supplier_performance(context, args.supplier_id, args.start, args.end))
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print on-hand quantity per product, flagging those due for reorder."""
    levels = core_logic.inventory_levels(context)
    low = set(core_logic.low_stock_products(context))
    _print_mapping(
        {
            product_id: f"{levels[product_id]}  (reorder)" if product_id in low else levels[product_id]
            for product_id in sorted(levels)
        }
    )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, ReceiptEngineError):
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
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
