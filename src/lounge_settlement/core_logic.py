"""Business logic layer for the lounge settlement engine.

This module wires the pure settlement functions to the workbook-backed
stores. It consumes the Data Access Layer (DAL) for all I/O, re-reads rows on
every call, and never caches derived orders or payment states: the line list
is the single source of truth and everything else is recomputed from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log, reversal
from .attendance import AttemptsDisplay, attempts_display, booking_phase, is_expired, last_status
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    AttendanceStatus,
    BookingPhase,
    CounterName,
    PaymentMode,
    Tender,
)
from .errors import ValidationError
from .grouping import Order, find_order, group_orders
from .money import ZERO, round2, to_bool
from .periods import DateRange
from .settlement import (
    DiscountResult,
    DiscountRule,
    PaymentPatch,
    PaymentState,
    apply_discount,
    build_payment_patch,
    describe_stored_payment,
    is_paid_for,
    settle,
    split_tenders,
    toggle_paid_patch,
)


EXPORT_COLUMNS: Sequence[str] = (
    "OrderKey",
    "FullName",
    "SeatNumber",
    "StartedAt",
    "Items",
    "GrandTotal",
    "GcashAmount",
    "CashAmount",
    "IsPaid",
)


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook

    @property
    def lines(self) -> data_manager.WorkbookLineStore:
        return data_manager.line_item_store(self.workbook, self.settings.timezone)

    @property
    def restocks(self) -> data_manager.WorkbookRecordStore:
        return data_manager.restock_store(self.workbook, self.settings.timezone)

    @property
    def bookings(self) -> data_manager.WorkbookBookingStore:
        return data_manager.WorkbookBookingStore(self.workbook, self.settings.timezone)

    @property
    def sold_counter(self) -> data_manager.WorkbookCounterStore:
        return data_manager.WorkbookCounterStore(self.workbook, CounterName.SOLD)

    @property
    def restocked_counter(self) -> data_manager.WorkbookCounterStore:
        return data_manager.WorkbookCounterStore(self.workbook, CounterName.RESTOCKED)


@dataclass(frozen=True)
class OrderSummary:
    """Flat order figures, as exported to (and imported from) a worksheet."""

    key: str
    full_name: str
    seat_number: str
    started_at: Optional[datetime]
    item_count: int
    grand_total: Decimal
    gcash_amount: Decimal
    cash_amount: Decimal
    is_paid: bool

    @property
    def payment(self) -> PaymentState:
        return describe_stored_payment(self.grand_total, self.gcash_amount, self.cash_amount, self.is_paid)


@dataclass(frozen=True)
class OrderView:
    """One grouped order together with its payment figures."""

    order: Order
    payment: PaymentState

    @property
    def summary(self) -> OrderSummary:
        order = self.order
        return OrderSummary(
            key=order.key,
            full_name=order.full_name,
            seat_number=order.seat_number,
            started_at=order.started_at,
            item_count=len(order.items),
            grand_total=order.grand_total,
            gcash_amount=order.gcash_amount,
            cash_amount=order.cash_amount,
            is_paid=order.is_paid,
        )


@dataclass(frozen=True)
class BookingView:
    """Everything a booking table row or receipt shows for one promo booking."""

    booking: data_manager.PromoBooking
    discount: DiscountResult
    payment: PaymentState
    phase: BookingPhase
    expired: bool
    attempts: AttemptsDisplay
    attendance: Optional[AttendanceStatus]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Add-on orders
# ---------------------------------------------------------------------------


def order_view(order: Order) -> OrderView:
    """Attach the stored payment figures to ``order``.

    The paid badge follows the stored manual flag, not the tenders.
    """

    payment = describe_stored_payment(order.grand_total, order.gcash_amount, order.cash_amount, order.is_paid)
    return OrderView(order=order, payment=payment)


def list_day_orders(context: RuntimeContext, day: date) -> List[OrderView]:
    """Group the lines of the local calendar ``day`` into orders, newest first."""

    bounds = DateRange.day(day, context.settings.timezone)
    lines = context.lines.fetch_lines(bounds)
    orders = group_orders(lines, context.settings.group_window)
    log.debug("Listed %d orders for %s", len(orders), bounds.label)
    return [order_view(order) for order in orders]


def get_order(context: RuntimeContext, day: date, order_key: str) -> Order:
    """Find one order of ``day`` by key.

    Raises:
        ValidationError: If no order of that day carries ``order_key``.
    """

    orders = [view.order for view in list_day_orders(context, day)]
    order = find_order(orders, order_key)
    if order is None:
        log.warning("Order lookup failed for key '%s' on %s", order_key, day)
        raise ValidationError(f"Unknown order on {day.isoformat()}: {order_key}")
    return order


def _write_order_patch(context: RuntimeContext, order: Order, patch: PaymentPatch) -> None:
    # Each line keeps only its own share so a later void removes just that share.
    shares = split_tenders([item.line_total for item in order.items], patch.gcash_amount, patch.cash_amount)
    store = context.lines
    for item, (gcash_share, cash_share) in zip(order.items, shares):
        store.update_line(
            item.line_id,
            {
                "GcashAmount": gcash_share,
                "CashAmount": cash_share,
                "IsPaid": patch.is_paid,
                "PaidAt": patch.paid_at,
            },
        )


def save_order_payment(
    context: RuntimeContext,
    order: Order,
    gcash: Any,
    cash: Any = ZERO,
    *,
    mode: Optional[PaymentMode] = None,
    primary: Tender = Tender.GCASH,
    now: Optional[datetime] = None,
) -> PaymentState:
    """Settle an order and write tenders and the derived paid flag.

    Args:
        context (RuntimeContext): Active runtime context.
        order (Order): Order as grouped from freshly read lines.
        gcash (Any): Requested e-wallet tender. Coerced, never raises.
        cash (Any): Requested cash tender; recomputed in capped mode.
        mode (PaymentMode | None): Allocation policy, defaulting to the
            configured ``PaymentMode``.
        primary (Tender): Tender kept as entered in capped mode; the other
            one fills the rest of the due.
        now (datetime | None): Timestamp used when the order becomes paid.

    Returns:
        PaymentState: The settled figures that were persisted.
    """

    resolved_mode = mode or context.settings.payment_mode
    state = settle(order.grand_total, gcash, cash, resolved_mode, primary=primary)
    patch = build_payment_patch(
        state,
        was_paid=order.is_paid,
        previous_paid_at=order.paid_at,
        now=_resolve_timestamp(now),
    )
    _write_order_patch(context, order, patch)
    log.info(
        "Saved %s payment for order %s: gcash=%s cash=%s paid=%s",
        resolved_mode.value,
        order.key,
        patch.gcash_amount,
        patch.cash_amount,
        patch.is_paid,
    )
    return state


def toggle_order_paid(context: RuntimeContext, order: Order, *, now: Optional[datetime] = None) -> bool:
    """Flip the manual paid flag on every line of ``order``; return the new flag."""

    next_paid, paid_at = toggle_paid_patch(order.is_paid, now=_resolve_timestamp(now))
    context.lines.update_lines(order.line_ids, {"IsPaid": next_paid, "PaidAt": paid_at})
    log.info("Order %s marked %s", order.key, "PAID" if next_paid else "UNPAID")
    return next_paid


def export_orders(views: Iterable[OrderView], worksheet: Worksheet) -> int:
    """Write order figures to ``worksheet`` (header plus one row per order)."""

    worksheet.append(list(EXPORT_COLUMNS))
    count = 0
    for view in views:
        summary = view.summary
        worksheet.append(
            [
                summary.key,
                summary.full_name,
                summary.seat_number,
                data_manager.to_cell(summary.started_at),
                summary.item_count,
                summary.grand_total,
                summary.gcash_amount,
                summary.cash_amount,
                summary.is_paid,
            ]
        )
        count += 1
    log.info("Exported %d orders to sheet '%s'", count, worksheet.title)
    return count


def import_orders(worksheet: Worksheet, tz: tzinfo = UTC) -> List[OrderSummary]:
    """Read back the rows written by :func:`export_orders`.

    Raises:
        ValueError: If the header row does not match the export layout.
    """

    rows = worksheet.iter_rows(values_only=True)
    header = next(rows, None)
    if header is None or tuple(header[: len(EXPORT_COLUMNS)]) != tuple(EXPORT_COLUMNS):
        raise ValueError("Worksheet is not an order export")

    summaries = []
    for raw in rows:
        if not any(cell is not None for cell in raw):
            continue
        key, full_name, seat, started_at, items, grand_total, gcash, cash, is_paid = raw[: len(EXPORT_COLUMNS)]
        summaries.append(
            OrderSummary(
                key=str(key or ""),
                full_name=str(full_name or ""),
                seat_number=str(seat or ""),
                started_at=data_manager.parse_timestamp(started_at, tz),
                item_count=int(items or 0),
                grand_total=round2(grand_total),
                gcash_amount=round2(gcash),
                cash_amount=round2(cash),
                is_paid=to_bool(is_paid),
            )
        )
    return summaries


# ---------------------------------------------------------------------------
# Promo bookings
# ---------------------------------------------------------------------------


def booking_view(
    booking: data_manager.PromoBooking,
    now: datetime,
    logs: Iterable[data_manager.AttendanceLog] = (),
) -> BookingView:
    """Derive discount, payment, phase, expiry, attempts, and attendance."""

    discount = apply_discount(booking.price, booking.discount)
    payment = describe_stored_payment(discount.due, booking.gcash_amount, booking.cash_amount, booking.is_paid)
    return BookingView(
        booking=booking,
        discount=discount,
        payment=payment,
        phase=booking_phase(booking.start_at, booking.end_at, now),
        expired=is_expired(booking.validity_end_at, now),
        attempts=attempts_display(booking.attempts_left, booking.max_attempts),
        attendance=last_status(logs),
    )


def list_bookings(
    context: RuntimeContext,
    date_range: Optional[DateRange] = None,
    *,
    now: Optional[datetime] = None,
) -> List[BookingView]:
    """Return booking views (created inside ``date_range``), newest first."""

    store = context.bookings
    bookings = store.fetch_lines(date_range)
    logs = store.fetch_attendance(booking.booking_id for booking in bookings)
    moment = _resolve_timestamp(now)
    views = [booking_view(booking, moment, logs.get(booking.booking_id, ())) for booking in bookings]
    views.sort(key=lambda view: view.booking.created_at, reverse=True)
    return views


def get_booking(context: RuntimeContext, booking_id: str) -> data_manager.PromoBooking:
    return context.bookings.read_record(booking_id)


def _write_booking_patch(context: RuntimeContext, booking_id: str, patch: PaymentPatch) -> data_manager.PromoBooking:
    return context.bookings.update_line(
        booking_id,
        {
            "GcashAmount": patch.gcash_amount,
            "CashAmount": patch.cash_amount,
            "IsPaid": patch.is_paid,
            "PaidAt": patch.paid_at,
        },
    )


def save_booking_payment(
    context: RuntimeContext,
    booking_id: str,
    gcash: Any,
    cash: Any = ZERO,
    *,
    mode: Optional[PaymentMode] = None,
    primary: Tender = Tender.GCASH,
    now: Optional[datetime] = None,
) -> PaymentState:
    """Settle a booking's discounted due and persist the payment fields."""

    booking = get_booking(context, booking_id)
    due = apply_discount(booking.price, booking.discount).due
    resolved_mode = mode or context.settings.payment_mode
    state = settle(due, gcash, cash, resolved_mode, primary=primary)
    patch = build_payment_patch(
        state,
        was_paid=booking.is_paid,
        previous_paid_at=booking.paid_at,
        now=_resolve_timestamp(now),
    )
    _write_booking_patch(context, booking.booking_id, patch)
    log.info(
        "Saved %s payment for booking %s: due=%s gcash=%s cash=%s paid=%s",
        resolved_mode.value,
        booking.booking_id,
        due,
        patch.gcash_amount,
        patch.cash_amount,
        patch.is_paid,
    )
    return state


def save_booking_discount(
    context: RuntimeContext,
    booking_id: str,
    kind: Any,
    value: Any,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> DiscountResult:
    """Store a new discount and re-derive the paid flag against the new due.

    Tenders already on file are kept as they are.
    """

    booking = get_booking(context, booking_id)
    rule = DiscountRule.from_raw(kind, value)
    result = apply_discount(booking.price, rule)
    total_paid = round2(booking.gcash_amount + booking.cash_amount)
    paid = is_paid_for(result.due, total_paid)
    if paid:
        paid_at = booking.paid_at if booking.is_paid and booking.paid_at is not None else _resolve_timestamp(now)
    else:
        paid_at = None

    context.bookings.update_line(
        booking.booking_id,
        {
            "DiscountKind": rule.kind.value,
            "DiscountValue": rule.value,
            "DiscountReason": (reason or "").strip() or None,
            "IsPaid": paid,
            "PaidAt": paid_at,
        },
    )
    log.info(
        "Saved discount %s %s for booking %s: due %s -> %s (paid=%s)",
        rule.kind.value,
        rule.value,
        booking.booking_id,
        result.base_cost,
        result.due,
        paid,
    )
    return result


def toggle_booking_paid(context: RuntimeContext, booking_id: str, *, now: Optional[datetime] = None) -> bool:
    booking = get_booking(context, booking_id)
    next_paid, paid_at = toggle_paid_patch(booking.is_paid, now=_resolve_timestamp(now))
    context.bookings.update_line(booking.booking_id, {"IsPaid": next_paid, "PaidAt": paid_at})
    log.info("Booking %s marked %s", booking.booking_id, "PAID" if next_paid else "UNPAID")
    return next_paid


# ---------------------------------------------------------------------------
# Reversals
# ---------------------------------------------------------------------------


def void_line(context: RuntimeContext, line_id: str) -> reversal.ReversalOutcome:
    """Void one add-on line, reversing its product's sold counter."""

    line = context.lines.get_line(line_id)
    return reversal.void_line(line, context.sold_counter, context.lines)


def void_order(context: RuntimeContext, day: date, order_key: str) -> List[reversal.ReversalOutcome]:
    order = get_order(context, day, order_key)
    return reversal.void_order(order.items, context.sold_counter, context.lines)


def void_range(context: RuntimeContext, date_range: DateRange) -> List[reversal.ReversalOutcome]:
    return reversal.void_range(date_range, context.sold_counter, context.lines)


def delete_line(context: RuntimeContext, line_id: str) -> reversal.ReversalOutcome:
    return reversal.delete_line(line_id, context.lines)


def delete_order(context: RuntimeContext, day: date, order_key: str) -> reversal.ReversalOutcome:
    order = get_order(context, day, order_key)
    return reversal.delete_order(order.line_ids, context.lines)


def delete_range(context: RuntimeContext, date_range: DateRange) -> reversal.ReversalOutcome:
    return reversal.delete_range(date_range, context.lines)


def _require_reason(reason: str) -> None:
    if not str(reason or "").strip():
        raise ValidationError("A cancellation reason is required")


def cancel_line(
    context: RuntimeContext,
    line_id: str,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> reversal.ReversalOutcome:
    """Cancel one add-on line: reverse SOLD, archive it with ``reason``, then delete it."""

    _require_reason(reason)
    line = context.lines.get_line(line_id)
    return reversal.cancel_line(line, reason, context.sold_counter, context.lines, now=_resolve_timestamp(now))


def cancel_order(
    context: RuntimeContext,
    day: date,
    order_key: str,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> List[reversal.ReversalOutcome]:
    _require_reason(reason)
    order = get_order(context, day, order_key)
    return reversal.cancel_order(
        order.items, reason, context.sold_counter, context.lines, now=_resolve_timestamp(now)
    )


def cancel_range(
    context: RuntimeContext,
    date_range: DateRange,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> List[reversal.ReversalOutcome]:
    return reversal.cancel_range(
        date_range, reason, context.sold_counter, context.lines, now=_resolve_timestamp(now)
    )


def cancel_booking(
    context: RuntimeContext,
    booking_id: str,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> reversal.ReversalOutcome:
    return reversal.cancel_booking(booking_id, reason, context.bookings, now=_resolve_timestamp(now))


def list_restocks(context: RuntimeContext, date_range: Optional[DateRange] = None) -> List[data_manager.RestockRecord]:
    return context.restocks.fetch_lines(date_range)


def restock_edit(context: RuntimeContext, record_id: str, new_qty: Any) -> reversal.ReversalOutcome:
    """Set a restock entry to an exact quantity, shifting the restocked counter."""

    if isinstance(new_qty, bool) or not isinstance(new_qty, int) or new_qty <= 0:
        raise ValidationError("Restock quantity must be a whole number greater than zero")
    record = context.restocks.get_line(record_id)
    return reversal.restock_edit(record, new_qty, context.restocked_counter, context.restocks)


def void_restock(context: RuntimeContext, record_id: str) -> reversal.ReversalOutcome:
    record = context.restocks.get_line(record_id)
    return reversal.void_restock(record, context.restocked_counter, context.restocks)


def void_restock_range(context: RuntimeContext, date_range: DateRange) -> List[reversal.ReversalOutcome]:
    return reversal.void_restock_range(date_range, context.restocked_counter, context.restocks)
