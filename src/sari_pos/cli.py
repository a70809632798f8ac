"""Command-line entry points for the Sari POS core.

All orchestration in this module is limited to argparse wiring and
translating command-line arguments into calls on an open
:class:`~sari_pos.store.PosStore`. Keeping the CLI thin means any other
front-end can drive the same store API.
"""

from __future__ import annotations

import argparse
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import log
from .constants import AdjustmentType, DiscountType, PaymentMethod
from .errors import PosError
from .models import Cashier, Discount, PaymentInfo, Product, ProductDraft, Sale
from .store import PosStore, load_store


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[PosStore, argparse.Namespace], int]


@dataclass(frozen=True)
class SaleRequest:
    """Cart contents and tender details collected from the command line."""

    items: Tuple[Tuple[str, int], ...]
    discount: Discount
    payment: PaymentInfo
    cashier: Optional[Cashier]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="sari-pos",
        description="Command-line tools for the Sari POS store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upward from the current directory).",
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
    """Declare mutating CLI commands such as sales and stock adjustments."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "sale": register_sale_command(subparsers),
        "settings": register_settings_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "search": register_search_command(subparsers),
        "sales": register_sales_command(subparsers),
        "daily-total": register_daily_total_command(subparsers),
        "monthly-revenue": register_monthly_revenue_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_item(value: str) -> Tuple[str, int]:
    """Parse a ``PRODUCT_ID:QTY`` item argument; the quantity defaults to 1."""
    product_id, sep, quantity = value.rpartition(":")
    if not sep:
        return value, 1
    try:
        return product_id, int(quantity)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid item '{value}', expected PRODUCT_ID:QTY") from exc


def parse_amount(value: str) -> Decimal:
    """Parse a money or rate argument into a ``Decimal``."""
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount '{value}'") from exc
    if not amount.is_finite():
        raise argparse.ArgumentTypeError(f"Invalid amount '{value}'")
    return amount


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--price", type=parse_amount, required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--cost", type=parse_amount, default="0.00")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Edit the descriptive fields of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--price", type=parse_amount, default=None)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--cost", type=parse_amount, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""
    name = "adjust-stock"
    help_text = "Record a restock or a shrinkage correction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument(
            "--direction",
            choices=[member.value for member in AdjustmentType],
            required=True,
        )
        parser.add_argument("--reason", default="")
        parser.add_argument("--actor-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust_stock)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Commit a sale from one or more items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            help="PRODUCT_ID:QTY, repeat for several products.",
        )
        parser.add_argument("--discount", type=parse_amount, default="0")
        parser.add_argument(
            "--discount-type",
            choices=[member.value for member in DiscountType],
            default=DiscountType.PERCENTAGE.value,
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--tendered", type=parse_amount, default="0")
        parser.add_argument("--cashier-id", default=None)
        parser.add_argument("--cashier-name", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_settings_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``settings``."""
    name = "settings"
    help_text = "Show or change business settings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--business-name", default=None)
        parser.add_argument("--address", default=None)
        parser.add_argument("--tin", default=None)
        parser.add_argument("--permit-number", default=None)
        parser.add_argument("--contact-number", default=None)
        parser.add_argument("--email", default=None)
        parser.add_argument("--receipt-footer", default=None)
        parser.add_argument("--vat-rate", type=parse_amount, default=None, help="Fraction, e.g. 0.12 for 12%%.")
        vat = parser.add_mutually_exclusive_group()
        vat.add_argument("--vat-enabled", dest="vat_enabled", action="store_true", default=None)
        vat.add_argument("--vat-disabled", dest="vat_enabled", action="store_false")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_settings)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        group = parser.add_mutually_exclusive_group()
        group.add_argument("--low", action="store_true", help="Only products running low.")
        group.add_argument("--out", action="store_true", help="Only products out of stock.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_search_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``search``."""
    name = "search"
    help_text = "Search products by name, category, or barcode."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("query", nargs="?", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_search)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List sales committed on a day (today by default)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_daily_total_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``daily-total``."""
    name = "daily-total"
    help_text = "Display the sales total for a day (today by default)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_daily_total)


def register_monthly_revenue_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``monthly-revenue``."""
    name = "monthly-revenue"
    help_text = "Display revenue for a calendar month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, required=True)
        parser.add_argument("--month", type=int, required=True, choices=range(1, 13))
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_monthly_revenue)


def dispatch_command(
    store: PosStore,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(store, args)


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


def translate_add_product(args: argparse.Namespace) -> ProductDraft:
    """Translate CLI args into a product draft."""
    return ProductDraft(
        name=args.name,
        category=args.category,
        price=args.price,
        stock=args.stock,
        barcode=args.barcode,
        cost=args.cost,
    )


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the fields an update should change."""
    fields = {
        "name": args.name,
        "category": args.category,
        "price": args.price,
        "barcode": args.barcode,
        "cost": args.cost,
    }
    return {key: value for key, value in fields.items() if value is not None}


def translate_sale(args: argparse.Namespace) -> SaleRequest:
    """Translate CLI args into a sale request."""
    cashier = None
    if args.cashier_id is not None:
        cashier = Cashier(cashier_id=args.cashier_id, name=args.cashier_name)
    return SaleRequest(
        items=tuple(args.items),
        discount=Discount(amount=args.discount, discount_type=DiscountType(args.discount_type)),
        payment=PaymentInfo(method=PaymentMethod(args.payment_method), amount_tendered=args.tendered),
        cashier=cashier,
    )


def translate_settings(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the settings fields to replace."""
    fields = {
        "business_name": args.business_name,
        "address": args.address,
        "tin": args.tin,
        "permit_number": args.permit_number,
        "contact_number": args.contact_number,
        "email": args.email,
        "receipt_footer": args.receipt_footer,
        "vat_rate": args.vat_rate,
        "vat_enabled": args.vat_enabled,
    }
    return {key: value for key, value in fields.items() if value is not None}


def format_product(product: Product) -> str:
    """Render one catalog row for terminal output."""
    barcode = product.barcode or "-"
    return f"{product.product_id}  {product.name:<30} {product.price:>10}  stock={product.stock:<5} {barcode}"


def format_sale(sale: Sale) -> str:
    """Render a one-line sale summary for terminal output."""
    return (
        f"{sale.receipt_label}  {sale.timestamp.isoformat(timespec='seconds')}  "
        f"items={sale.item_count} total={sale.total} {sale.payment_method.value}"
    )


def run_add_product(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = store.catalog.add(translate_add_product(args))
    print(format_product(product))
    return 0


def run_update_product(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the update-product workflow."""
    product = store.catalog.update(args.product_id, **translate_update_product(args))
    print(format_product(product))
    return 0


def run_delete_product(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow."""
    store.catalog.delete(args.product_id)
    return 0


def run_adjust_stock(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the stock adjustment workflow."""
    actor_id = args.actor_id
    if actor_id is None and store.config is not None:
        actor_id = store.config.default_cashier_id
    store.adjust_stock(args.product_id, args.quantity, args.direction, args.reason, actor_id or "")
    print(format_product(store.catalog.find_by_id(args.product_id)))
    return 0


def run_sale(store: PosStore, args: argparse.Namespace) -> int:
    """Build a cart from the request and commit it."""
    request = translate_sale(args)
    cart = store.new_cart()
    for product_id, quantity in request.items:
        cart.add_item(product_id, quantity)
    cart.set_discount(request.discount.amount, request.discount.discount_type)
    sale = store.commit(cart, request.payment, request.cashier)
    print(format_sale(sale))
    print(f"change={sale.change}")
    return 0


def run_settings(store: PosStore, args: argparse.Namespace) -> int:
    """Show settings, updating them first when fields were supplied."""
    changes = translate_settings(args)
    settings = store.update_settings(**changes) if changes else store.settings
    for key, value in asdict(settings).items():
        print(f"{key}: {value}")
    return 0


def run_stock_report(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    if getattr(args, "low", False):
        products = store.low_stock()
    elif getattr(args, "out", False):
        products = store.catalog.out_of_stock()
    else:
        products = store.catalog.list_products()
    for product in products:
        print(format_product(product))
    return 0


def run_search(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the product search workflow."""
    for product in store.catalog.search(args.query):
        print(format_product(product))
    return 0


def run_sales_report(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the daily sales listing workflow."""
    sales = store.sales.by_date(args.date) if args.date else store.sales.today()
    for sale in sales:
        print(format_sale(sale))
    return 0


def run_daily_total(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the daily total workflow."""
    day = args.date or datetime.now(UTC).date()
    print(store.sales.daily_total(day))
    return 0


def run_monthly_revenue(store: PosStore, args: argparse.Namespace) -> int:
    """Execute the monthly revenue workflow."""
    print(store.sales.monthly_revenue(args.year, args.month))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, PosError):
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
        with load_store(getattr(args, "config", None)) as store:
            return dispatch_command(store, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
