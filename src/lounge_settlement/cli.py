"""Command-line entry points for the lounge settlement engine.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the business layer. Keeping the CLI thin
ensures the same parser configuration can be reused by tests, scripts, or any
alternative front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, set_console_level
from .constants import DiscountKind, PaymentMode, Tender
from .errors import DuplicateRiskError, PartialReversalError, ValidationError
from .money import format_money
from .periods import DateRange
from .settlement import describe_discount


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
        prog="lounge-settle",
        description="Settle, void, and review lounge add-on orders and promo bookings.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to an upward search from the working directory).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Echo informational log lines to stderr.")
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
    """Declare mutating CLI commands such as payments and voids."""
    specs = {
        "pay-order": register_pay_order_command(subparsers),
        "toggle-paid": register_toggle_paid_command(subparsers),
        "void-line": register_line_command(subparsers, "void-line", "Void one add-on line and reverse its sold counter.", run_void_line),
        "void-order": register_order_command(subparsers, "void-order", "Void every line of an order.", run_void_order),
        "void-range": register_range_command(subparsers, "void-range", "Void every add-on line in a day, week, or month.", run_void_range),
        "delete-line": register_line_command(subparsers, "delete-line", "Delete one add-on line without touching counters.", run_delete_line),
        "delete-order": register_order_command(subparsers, "delete-order", "Delete every line of an order without touching counters.", run_delete_order),
        "delete-range": register_range_command(subparsers, "delete-range", "Delete every add-on line in a day, week, or month.", run_delete_range),
        "cancel-line": register_line_command(subparsers, "cancel-line", "Cancel one add-on line: reverse SOLD, archive it with a reason, delete it.", run_cancel_line, reason=True),
        "cancel-order": register_order_command(subparsers, "cancel-order", "Cancel every line of an order with a reason.", run_cancel_order, reason=True),
        "cancel-range": register_range_command(subparsers, "cancel-range", "Cancel every add-on line in a day, week, or month with a reason.", run_cancel_range, reason=True),
        "restock-edit": register_restock_edit_command(subparsers),
        "void-restock": register_void_restock_command(subparsers),
        "void-restock-range": register_range_command(subparsers, "void-restock-range", "Void every restock record in a day, week, or month.", run_void_restock_range),
        "pay-booking": register_pay_booking_command(subparsers),
        "discount-booking": register_discount_booking_command(subparsers),
        "cancel-booking": register_cancel_booking_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as order and booking listings."""
    specs = {
        "orders": register_orders_command(subparsers),
        "bookings": register_bookings_command(subparsers),
        "attendance": register_attendance_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}") from exc


def parse_month(value: str) -> tuple[int, int]:
    try:
        parsed = datetime.strptime(value, "%Y-%m")
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM, got {value!r}") from exc
    return parsed.year, parsed.month


def add_order_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--day", type=parse_day, required=True, help="Local day of the order (YYYY-MM-DD).")
    parser.add_argument("--order-key", required=True, help="Order key as printed by the 'orders' command.")


def add_range_arguments(parser: argparse.ArgumentParser, *, required: bool = True) -> None:
    group = parser.add_mutually_exclusive_group(required=required)
    group.add_argument("--day", type=parse_day, help="One local day (YYYY-MM-DD).")
    group.add_argument("--week", type=parse_day, help="The Monday-to-Sunday week containing this day.")
    group.add_argument("--month", type=parse_month, help="One calendar month (YYYY-MM).")


def add_reason_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--reason", required=True, help="Why the lines are cancelled; stored in the archive.")


def add_tender_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--gcash", default=None, help="GCash amount (defaults to 0).")
    parser.add_argument("--cash", default=None, help="Cash amount (defaults to 0).")
    parser.add_argument(
        "--primary",
        choices=[member.value for member in Tender],
        default=None,
        help="Tender kept as entered in capped mode; defaults to cash when only --cash is given.",
    )


def add_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mode",
        choices=[member.value for member in PaymentMode],
        default=None,
        help="Payment allocation mode (defaults to [Engine] PaymentMode).",
    )


def register_pay_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-order``."""
    name = "pay-order"
    help_text = "Save the GCash/cash payment of an add-on order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_order_arguments(parser)
        add_tender_arguments(parser)
        add_mode_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_order)


def register_toggle_paid_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``toggle-paid``."""
    name = "toggle-paid"
    help_text = "Flip the manual PAID/UNPAID flag of an add-on order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_order_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_toggle_paid)


def register_line_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    reason: bool = False,
) -> CommandSpec:
    """Register a command addressing one add-on line by id."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--line-id", required=True)
        if reason:
            add_reason_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    reason: bool = False,
) -> CommandSpec:
    """Register a command addressing one grouped order."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_order_arguments(parser)
        if reason:
            add_reason_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_range_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    reason: bool = False,
) -> CommandSpec:
    """Register a command addressing a day, week, or month of lines."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_range_arguments(parser)
        if reason:
            add_reason_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_restock_edit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock-edit``."""
    name = "restock-edit"
    help_text = "Set a restock record to an exact quantity."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--record-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock_edit)


def register_void_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``void-restock``."""
    name = "void-restock"
    help_text = "Void a restock record and lower the restocked counter."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--record-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_void_restock)


def register_pay_booking_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-booking``."""
    name = "pay-booking"
    help_text = "Save the GCash/cash payment of a promo booking."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--booking-id", required=True)
        add_tender_arguments(parser)
        add_mode_argument(parser)
        parser.add_argument("--toggle", action="store_true", help="Only flip the manual PAID/UNPAID flag.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_booking)


def register_discount_booking_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``discount-booking``."""
    name = "discount-booking"
    help_text = "Set the discount of a promo booking."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--booking-id", required=True)
        parser.add_argument("--kind", choices=[member.value for member in DiscountKind], required=True)
        parser.add_argument("--value", default="0")
        parser.add_argument("--reason", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_discount_booking)


def register_cancel_booking_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cancel-booking``."""
    name = "cancel-booking"
    help_text = "Archive a promo booking with a reason and delete it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--booking-id", required=True)
        parser.add_argument("--reason", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel_booking)


def register_orders_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``orders``."""
    name = "orders"
    help_text = "List the grouped add-on orders of one day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--day", type=parse_day, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_orders_report)


def register_bookings_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bookings``."""
    name = "bookings"
    help_text = "List promo bookings with due, payment, and status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_range_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bookings_report)


def register_attendance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``attendance``."""
    name = "attendance"
    help_text = "Show the IN/OUT status and attempts of promo bookings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--booking-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_attendance_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else None
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


def translate_range(args: argparse.Namespace, tz: tzinfo) -> Optional[DateRange]:
    """Translate ``--day``/``--week``/``--month`` into a half-open window."""
    if getattr(args, "day", None) is not None:
        return DateRange.day(args.day, tz)
    if getattr(args, "week", None) is not None:
        return DateRange.week(args.week, tz)
    if getattr(args, "month", None) is not None:
        year, month = args.month
        return DateRange.month(year, month, tz)
    return None


def translate_mode(args: argparse.Namespace) -> Optional[PaymentMode]:
    return PaymentMode(args.mode) if getattr(args, "mode", None) else None


def translate_primary(args: argparse.Namespace) -> Tender:
    """Pick the tender kept as entered when capped mode splits the due."""
    if getattr(args, "primary", None):
        return Tender(args.primary)
    if getattr(args, "cash", None) is not None and getattr(args, "gcash", None) is None:
        return Tender.CASH
    return Tender.GCASH


def run_pay_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the order payment workflow via the BLL."""
    order = core_logic.get_order(context, args.day, args.order_key)
    state = core_logic.save_order_payment(
        context,
        order,
        args.gcash or "0",
        args.cash or "0",
        mode=translate_mode(args),
        primary=translate_primary(args),
    )
    print(
        f"{order.key}: due {format_money(state.due)}, GCash {format_money(state.gcash_amount)}, "
        f"cash {format_money(state.cash_amount)}, {state.balance_label.value.lower()} "
        f"{format_money(state.balance)}, {'PAID' if state.paid else 'UNPAID'}"
    )
    return 0


def run_toggle_paid(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = core_logic.get_order(context, args.day, args.order_key)
    paid = core_logic.toggle_order_paid(context, order)
    print(f"{order.key}: {'PAID' if paid else 'UNPAID'}")
    return 0


def run_void_line(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcome = core_logic.void_line(context, args.line_id)
    print(f"Voided {outcome.target}: sold counter {outcome.counter_before} -> {outcome.counter_after}")
    return 0


def run_void_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcomes = core_logic.void_order(context, args.day, args.order_key)
    print(f"Voided {len(outcomes)} line(s) of {args.order_key}")
    return 0


def run_void_range(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    date_range = translate_range(args, context.settings.timezone)
    outcomes = core_logic.void_range(context, date_range)
    print(f"Voided {len(outcomes)} line(s) in {date_range.label}")
    return 0


def run_delete_line(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_line(context, args.line_id)
    print(f"Deleted {args.line_id}")
    return 0


def run_delete_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcome = core_logic.delete_order(context, args.day, args.order_key)
    print(f"Deleted {outcome.deleted} line(s) of {args.order_key}")
    return 0


def run_delete_range(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    date_range = translate_range(args, context.settings.timezone)
    outcome = core_logic.delete_range(context, date_range)
    print(f"Deleted {outcome.deleted} line(s) in {date_range.label}")
    return 0


def run_cancel_line(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcome = core_logic.cancel_line(context, args.line_id, args.reason)
    print(f"Cancelled {outcome.target}: sold counter {outcome.counter_before} -> {outcome.counter_after}")
    return 0


def run_cancel_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcomes = core_logic.cancel_order(context, args.day, args.order_key, args.reason)
    print(f"Cancelled {len(outcomes)} line(s) of {args.order_key}")
    return 0


def run_cancel_range(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    date_range = translate_range(args, context.settings.timezone)
    outcomes = core_logic.cancel_range(context, date_range, args.reason)
    print(f"Cancelled {len(outcomes)} line(s) in {date_range.label}")
    return 0


def run_restock_edit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcome = core_logic.restock_edit(context, args.record_id, args.quantity)
    print(f"Restock {outcome.target}: restocked counter {outcome.counter_before} -> {outcome.counter_after}")
    return 0


def run_void_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    outcome = core_logic.void_restock(context, args.record_id)
    print(f"Voided restock {outcome.target}: restocked counter {outcome.counter_before} -> {outcome.counter_after}")
    return 0


def run_void_restock_range(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    date_range = translate_range(args, context.settings.timezone)
    outcomes = core_logic.void_restock_range(context, date_range)
    print(f"Voided {len(outcomes)} restock record(s) in {date_range.label}")
    return 0


def run_pay_booking(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the booking payment (or paid toggle) workflow via the BLL."""
    if args.toggle:
        paid = core_logic.toggle_booking_paid(context, args.booking_id)
        print(f"{args.booking_id}: {'PAID' if paid else 'UNPAID'}")
        return 0
    state = core_logic.save_booking_payment(
        context,
        args.booking_id,
        args.gcash or "0",
        args.cash or "0",
        mode=translate_mode(args),
        primary=translate_primary(args),
    )
    print(
        f"{args.booking_id}: due {format_money(state.due)}, paid {format_money(state.total_paid)}, "
        f"{state.balance_label.value.lower()} {format_money(state.balance)}, {'PAID' if state.paid else 'UNPAID'}"
    )
    return 0


def run_discount_booking(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.save_booking_discount(context, args.booking_id, args.kind, args.value, args.reason)
    print(
        f"{args.booking_id}: base {format_money(result.base_cost)}, discount "
        f"{format_money(result.discount_amount)}, due {format_money(result.due)}"
    )
    return 0


def run_cancel_booking(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.cancel_booking(context, args.booking_id, args.reason)
    print(f"Cancelled {args.booking_id}")
    return 0


def run_orders_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one row per grouped order of the requested day."""
    for view in core_logic.list_day_orders(context, args.day):
        order, state = view.order, view.payment
        print(
            f"{order.key}\t{order.full_name}\t{order.seat_number}\t{len(order.items)} item(s)\t"
            f"{format_money(order.grand_total)}\tGCash {format_money(order.gcash_amount)}\t"
            f"Cash {format_money(order.cash_amount)}\t{state.balance_label.value} "
            f"{format_money(state.balance)}\t{'PAID' if state.paid else 'UNPAID'}"
        )
    return 0


def run_bookings_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    date_range = translate_range(args, context.settings.timezone)
    for view in core_logic.list_bookings(context, date_range):
        booking = view.booking
        print(
            f"{booking.booking_id}\t{booking.full_name}\t{booking.area}\t{view.phase.value}\t"
            f"{format_money(view.discount.base_cost)}\t{describe_discount(booking.discount)}\t"
            f"due {format_money(view.discount.due)}\t{view.payment.balance_label.value} "
            f"{format_money(view.payment.balance)}\t{'PAID' if view.payment.paid else 'UNPAID'}"
        )
    return 0


def run_attendance_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for view in core_logic.list_bookings(context):
        booking = view.booking
        if args.booking_id and booking.booking_id != args.booking_id:
            continue
        status = view.attendance.value if view.attendance is not None else "-"
        print(
            f"{booking.booking_id}\t{booking.full_name}\t{status}\tattempts {view.attempts}\t"
            f"{'EXPIRED' if view.expired else 'VALID'}"
        )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (PartialReversalError, DuplicateRiskError)):
        log.error("%s", error)
        return 4
    if isinstance(error, ValidationError):
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
    if args.verbose:
        set_console_level(logging.INFO)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        try:
            exit_code = dispatch_command(context, args, command_table)
        except (PartialReversalError, DuplicateRiskError):
            # Steps that already ran are kept so only the remainder is retried.
            persist_workbook(context)
            raise
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
