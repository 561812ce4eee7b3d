"""Command-line entry points for the POS engine.

All orchestration in this module is limited to argparse wiring and
translating command-line arguments into calls on the business layer.
Keeping the CLI thin lets tests, scripts, or any other front-end reuse the
same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log
from .catalog import ALL_CATEGORIES
from .constants import PaymentMethod
from .payments import quick_cash_options
from .tabs import TerminalSession


CHECKOUT_REJECTED_EXIT_CODE = 4

PAYMENT_CHOICES: Dict[str, PaymentMethod] = {member.name.lower(): member for member in PaymentMethod}


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
        prog="pos-cli",
        description="Point-of-sale tools for the store workbook.",
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
    """Declare mutating CLI commands such as sales and session changes."""
    specs = {
        "open-session": register_open_session_command(subparsers),
        "close-session": register_close_session_command(subparsers),
        "sell": register_sell_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as totals and catalog views."""
    specs = {
        "session-total": register_session_total_command(subparsers),
        "quick-cash": register_quick_cash_command(subparsers),
        "catalog": register_catalog_command(subparsers),
        "closing-history": register_closing_history_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_open_session_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``open-session``."""
    name = "open-session"
    help_text = "Open the cash drawer session for this terminal."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--opening-balance", required=True, help="Cash float placed in the drawer.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_open_session)


def register_close_session_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``close-session``."""
    name = "close-session"
    help_text = "Close the open cash session and reconcile the till count."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--counted",
            action="append",
            default=[],
            metavar="METHOD=AMOUNT",
            help="Counted amount per payment method; cash includes the float. Repeatable.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_close_session)


def register_sell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Ring up a bill and check it out in one step."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            action="append",
            default=[],
            metavar="PRODUCT_ID[:QTY]",
            help="Product to add to the bill. Repeatable.",
        )
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--payment-method", choices=sorted(PAYMENT_CHOICES), required=True)
        parser.add_argument("--amount-received", default=None, help="Cash tendered (cash payments only).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell)


def register_session_total_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``session-total``."""
    name = "session-total"
    help_text = "Display the paid sales total of the open cash session."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_session_total)


def register_quick_cash_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``quick-cash``."""
    name = "quick-cash"
    help_text = "Suggest tendered cash amounts for a bill total."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--total", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_quick_cash)


def register_catalog_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``catalog``."""
    name = "catalog"
    help_text = "List sellable products in this terminal's warehouse."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--category", default=ALL_CATEGORIES)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_catalog)


def register_closing_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``closing-history``."""
    name = "closing-history"
    help_text = "List past till closings with their sales totals and differences."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_closing_history)


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


def parse_payment_method(raw: str) -> PaymentMethod:
    """Accept a method by short name (``cash``) or by its label (``Efectivo``)."""
    key = raw.strip().lower()
    if key in PAYMENT_CHOICES:
        return PAYMENT_CHOICES[key]
    for member in PaymentMethod:
        if member.value.lower() == key:
            return member
    raise ValueError(f"Unknown payment method: {raw}")


def translate_items(raw_items: Sequence[str]) -> List[Tuple[str, Decimal]]:
    """Translate ``PRODUCT_ID[:QTY]`` arguments into (id, quantity) pairs."""
    items = []
    for raw in raw_items:
        product_id, _, quantity_raw = raw.partition(":")
        quantity = Decimal(quantity_raw) if quantity_raw else Decimal("1")
        core_logic.require_positive_quantity(quantity)
        items.append((product_id.strip(), quantity))
    return items


def translate_counted(raw_counts: Sequence[str]) -> Dict[PaymentMethod, Decimal]:
    """Translate ``METHOD=AMOUNT`` arguments into a counted-amounts mapping."""
    counted: Dict[PaymentMethod, Decimal] = {}
    for raw in raw_counts:
        method_raw, separator, amount_raw = raw.partition("=")
        if not separator:
            raise ValueError(f"Expected METHOD=AMOUNT, got: {raw}")
        amount = Decimal(amount_raw)
        core_logic.require_nonnegative_money(amount)
        method = parse_payment_method(method_raw)
        counted[method] = counted.get(method, Decimal("0")) + amount
    return counted


def ring_up(context: core_logic.RuntimeContext, args: argparse.Namespace) -> TerminalSession:
    """Build a terminal whose active bill holds the requested items."""
    terminal = core_logic.start_terminal(context)
    bill = terminal.active_bill
    for product_id, quantity in translate_items(args.item):
        product = core_logic.get_product(context, product_id)
        existing = terminal.active_bill.find_item(product_id)
        current = existing.quantity if existing is not None else Decimal("0")
        terminal.add_item(bill.bill_id, product)
        terminal.update_quantity(bill.bill_id, product_id, current + quantity)
    if args.customer_id is not None:
        customer = core_logic.get_customer(context, args.customer_id)
        terminal.set_customer(bill.bill_id, customer.customer_id)
    return terminal


def run_open_session(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Open a cash session via the BLL."""
    session = core_logic.open_session(context, Decimal(args.opening_balance))
    print(f"Opened session {session.session_id} with float {session.opening_balance}")
    return 0


def run_close_session(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Close the cash session and print the till reconciliation."""
    closing = core_logic.close_session(context, translate_counted(args.counted))
    print(f"Closed session {closing.session_id}")
    for method, difference in closing.differences.items():
        expected = closing.expected.get(method, Decimal("0"))
        counted = closing.counted.get(method, Decimal("0"))
        print(f"  {method.value}: expected {expected} counted {counted} difference {difference}")
    print(f"System sales: {closing.total_system_sales}")
    print(f"Counted sales: {closing.total_counted_sales}")
    print(f"Difference: {closing.total_difference}")
    return 0


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Ring up and check out a bill; a rejected checkout exits with code 4."""
    terminal = ring_up(context, args)
    amount_received = Decimal(args.amount_received) if args.amount_received is not None else None
    result = core_logic.checkout_bill(
        context,
        terminal,
        PAYMENT_CHOICES[args.payment_method],
        amount_received,
    )
    if not result.ok:
        log.error("Checkout rejected: %s", result.error.value if result.error else "unknown")
        print(f"Checkout rejected: {result.error.value if result.error else 'unknown'}")
        return CHECKOUT_REJECTED_EXIT_CODE

    invoice = result.invoice
    print(f"Invoice {invoice.invoice_id} ({invoice.status.value}) total {invoice.total}")
    if result.change is not None:
        print(f"Change: {result.change}")
    return 0


def run_session_total(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(core_logic.session_total(context))
    return 0


def run_quick_cash(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    options = quick_cash_options(Decimal(args.total))
    print(" ".join(str(option) for option in options))
    return 0


def run_catalog(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the filtered sellable catalog, one product per line."""
    warehouse_id = context.settings.warehouse_id
    for product in core_logic.browse_catalog(context, args.search, args.category):
        print(
            f"{product.product_id}\t{product.product_name}\t{product.category}\t"
            f"{product.unit_price}\t{product.stock_in(warehouse_id)}"
        )
    return 0


def run_closing_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one tab-separated line per closing, oldest first."""
    for closing in core_logic.list_cash_closings(context):
        print(
            f"{closing.session_id}\t{closing.closed_at_iso}\t{closing.total_system_sales}\t"
            f"{closing.total_counted_sales}\t{closing.total_difference}"
        )
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
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
