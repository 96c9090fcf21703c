"""Compensating reversal of lines, orders, restocks, and promo bookings.

Each operation is an ordered list of steps executed one at a time. The first
collaborator failure stops the list; nothing already written is rolled back.
The step order is therefore the only consistency guarantee available:

* a void writes the adjusted counter before it deletes the line, so a failed
  delete leaves the counter reversed and the line still present;
* a cancel writes the archive copy before it deletes the booking or line, so a
  failed delete leaves a duplicate that must not be archived again.

Counter updates are read-modify-write with no lock. Two operators adjusting
the same product at the same time can lose one of the updates; a store with
compare-and-swap or serializable transactions is needed to close that gap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from . import log
from .constants import ReversalStep
from .data_manager import ArchivingLineStore, BookingStore, CounterStore, LineItemStore, PromoBooking
from .errors import (
    CollaboratorError,
    CollaboratorWriteError,
    DuplicateRiskError,
    PartialReversalError,
    ValidationError,
)
from .periods import DateRange


class CountedRecord(Protocol):
    """Anything that moved a product counter: a sold line or a restock."""

    line_id: str
    product_ref: str
    quantity: int


Step = tuple[ReversalStep, Callable[[Dict[str, Any]], None]]


@dataclass(frozen=True)
class ReversalOutcome:
    """What a finished reversal operation did."""

    operation: str
    target: str
    completed_steps: tuple[ReversalStep, ...]
    counter_before: Optional[int] = None
    counter_after: Optional[int] = None
    deleted: int = 0


def run_steps(operation: str, target: str, steps: Sequence[Step]) -> Dict[str, Any]:
    """Execute ``steps`` in order, stopping at the first collaborator error.

    Each action receives a shared state dict in which earlier steps leave
    their results. A failing step's error is annotated with the step name and
    the steps already completed, logged, and re-raised unchanged.

    Returns:
        dict: The final state, with ``completed`` holding the step tuple.
    """

    state: Dict[str, Any] = {}
    completed: List[ReversalStep] = []
    for step, action in steps:
        try:
            action(state)
        except CollaboratorError as exc:
            if exc.step is None:
                exc.step = step.value
            exc.completed_steps = tuple(done.value for done in completed)
            log.error(
                "%s of %s aborted at %s after %s: %s",
                operation,
                target,
                exc.step,
                [done.value for done in completed] or "no steps",
                exc,
            )
            raise
        completed.append(step)
        log.debug("%s of %s: %s done", operation, target, step.value)
    state["completed"] = tuple(completed)
    return state


def _require_counted(record: CountedRecord) -> None:
    if not str(record.line_id or "").strip():
        raise ValidationError("A record id is required")
    if not str(record.product_ref or "").strip():
        raise ValidationError(f"Record {record.line_id} has no product reference")
    if record.quantity < 0:
        raise ValidationError(f"Record {record.line_id} has a negative quantity")


def _reverse_counted(
    operation: str,
    record: CountedRecord,
    counters: CounterStore,
    store: LineItemStore,
) -> ReversalOutcome:
    _require_counted(record)
    steps: List[Step] = [
        (ReversalStep.READ_COUNTER, lambda s: s.update(before=counters.read_counter(record.product_ref))),
        (ReversalStep.COMPUTE_NEXT, lambda s: s.update(after=max(0, s["before"] - record.quantity))),
        (ReversalStep.WRITE_COUNTER, lambda s: counters.write_counter(record.product_ref, s["after"])),
        (ReversalStep.DELETE_LINE, lambda s: store.delete_line(record.line_id)),
    ]
    state = run_steps(operation, record.line_id, steps)
    log.info(
        "%s %s: product %s counter %d -> %d",
        operation,
        record.line_id,
        record.product_ref,
        state["before"],
        state["after"],
    )
    return ReversalOutcome(
        operation=operation,
        target=record.line_id,
        completed_steps=state["completed"],
        counter_before=state["before"],
        counter_after=state["after"],
        deleted=1,
    )


def void_line(line: CountedRecord, counters: CounterStore, lines: LineItemStore) -> ReversalOutcome:
    """Reverse the sold counter for ``line`` and then delete it.

    Raises:
        ValidationError: If the line has no id, no product, or a negative
            quantity. No collaborator is called in that case.
        CollaboratorError: If any step fails. Later steps are not attempted.
    """

    return _reverse_counted("Void", line, counters, lines)


def void_restock(record: CountedRecord, counters: CounterStore, records: LineItemStore) -> ReversalOutcome:
    """Reverse a restock entry: lower the restocked counter, then delete it."""

    return _reverse_counted("Void restock", record, counters, records)


def _reverse_each(
    operation: str,
    records: Sequence[CountedRecord],
    reverse_one: Callable[[CountedRecord], ReversalOutcome],
) -> List[ReversalOutcome]:
    for record in records:
        _require_counted(record)

    outcomes: List[ReversalOutcome] = []
    for index, record in enumerate(records):
        try:
            outcomes.append(reverse_one(record))
        except DuplicateRiskError:
            if outcomes:
                log.error(
                    "%s stopped at %s after %s; later lines untouched",
                    operation,
                    record.line_id,
                    [outcome.target for outcome in outcomes],
                )
            raise
        except CollaboratorError as exc:
            if not outcomes:
                raise
            succeeded = [outcome.target for outcome in outcomes]
            remaining = [later.line_id for later in records[index + 1:]]
            log.error(
                "%s stopped at %s: %d reversed, %d untouched",
                operation,
                record.line_id,
                len(succeeded),
                len(remaining),
            )
            raise PartialReversalError(
                f"{operation} stopped at {record.line_id}: {exc}",
                succeeded=succeeded,
                failed=record.line_id,
                remaining=remaining,
            ) from exc
    return outcomes


def void_order(
    items: Iterable[CountedRecord],
    counters: CounterStore,
    lines: LineItemStore,
) -> List[ReversalOutcome]:
    """Void every line of an order, stopping at the first failure.

    Lines already voided stay voided. When at least one line succeeded before
    the failure a :class:`PartialReversalError` lists the succeeded, failed,
    and untouched line ids; otherwise the collaborator error is raised as is.
    """

    records = list(items)
    if not records:
        raise ValidationError("Order has no lines to void")
    return _reverse_each("Void", records, lambda record: _reverse_counted("Void", record, counters, lines))


def void_range(date_range: DateRange, counters: CounterStore, lines: LineItemStore) -> List[ReversalOutcome]:
    """Void every line stamped inside ``date_range`` (start inclusive, end exclusive)."""

    records = lines.fetch_lines(date_range)
    if not records:
        log.info("Void range %s: no lines", date_range.label)
        return []
    return _reverse_each("Void", records, lambda record: _reverse_counted("Void", record, counters, lines))


def void_restock_range(date_range: DateRange, counters: CounterStore, records: LineItemStore) -> List[ReversalOutcome]:
    """Void every restock entry stamped inside ``date_range``.

    Behaves like :func:`void_range` but lowers the restocked counter.
    """

    entries = records.fetch_lines(date_range)
    if not entries:
        log.info("Void restock range %s: no entries", date_range.label)
        return []
    return _reverse_each(
        "Void restock",
        entries,
        lambda record: _reverse_counted("Void restock", record, counters, records),
    )


def _require_reason(reason: Any) -> str:
    reason = str(reason or "").strip()
    if not reason:
        raise ValidationError("A cancellation reason is required")
    return reason


def _cancel_counted(
    line: Any,
    reason: str,
    counters: CounterStore,
    lines: ArchivingLineStore,
    now: datetime,
) -> ReversalOutcome:
    def delete(state: Dict[str, Any]) -> None:
        try:
            lines.delete_line(line.line_id)
        except CollaboratorError as exc:
            raise DuplicateRiskError(
                f"Line {line.line_id} was archived but not deleted; delete it manually "
                f"instead of cancelling again ({exc})",
                record_id=line.line_id,
            ) from exc

    steps: List[Step] = [
        (ReversalStep.READ_COUNTER, lambda s: s.update(before=counters.read_counter(line.product_ref))),
        (ReversalStep.COMPUTE_NEXT, lambda s: s.update(after=max(0, s["before"] - line.quantity))),
        (ReversalStep.WRITE_COUNTER, lambda s: counters.write_counter(line.product_ref, s["after"])),
        (ReversalStep.INSERT_ARCHIVE, lambda s: lines.insert_archive(line, reason=reason, cancelled_at=now)),
        (ReversalStep.DELETE_ORIGINAL, delete),
    ]
    state = run_steps("Cancel", line.line_id, steps)
    log.info(
        "Cancelled line %s (%s): product %s counter %d -> %d",
        line.line_id,
        reason,
        line.product_ref,
        state["before"],
        state["after"],
    )
    return ReversalOutcome(
        operation="Cancel",
        target=line.line_id,
        completed_steps=state["completed"],
        counter_before=state["before"],
        counter_after=state["after"],
        deleted=1,
    )


def cancel_line(
    line: Any,
    reason: str,
    counters: CounterStore,
    lines: ArchivingLineStore,
    *,
    now: datetime,
) -> ReversalOutcome:
    """Cancel one add-on line: reverse SOLD, archive it with ``reason``, delete it.

    Raises:
        ValidationError: If the reason is blank or the line is malformed.
        CollaboratorError: If a counter step or the archive insert fails.
            The line is never deleted without a successful archive write.
        DuplicateRiskError: If the archive was written but the delete
            failed.
    """

    reason = _require_reason(reason)
    _require_counted(line)
    return _cancel_counted(line, reason, counters, lines, now)


def cancel_order(
    items: Iterable[Any],
    reason: str,
    counters: CounterStore,
    lines: ArchivingLineStore,
    *,
    now: datetime,
) -> List[ReversalOutcome]:
    """Cancel every line of an order with the same reason."""

    reason = _require_reason(reason)
    records = list(items)
    if not records:
        raise ValidationError("Order has no lines to cancel")
    return _reverse_each("Cancel", records, lambda record: _cancel_counted(record, reason, counters, lines, now))


def cancel_range(
    date_range: DateRange,
    reason: str,
    counters: CounterStore,
    lines: ArchivingLineStore,
    *,
    now: datetime,
) -> List[ReversalOutcome]:
    reason = _require_reason(reason)
    records = lines.fetch_lines(date_range)
    if not records:
        log.info("Cancel range %s: no lines", date_range.label)
        return []
    return _reverse_each("Cancel", records, lambda record: _cancel_counted(record, reason, counters, lines, now))


def delete_line(line_id: str, lines: LineItemStore) -> ReversalOutcome:
    """Delete one line without touching any counter."""

    if not str(line_id or "").strip():
        raise ValidationError("A line id is required")
    state = run_steps("Delete", line_id, [(ReversalStep.DELETE_LINE, lambda s: lines.delete_line(line_id))])
    log.info("Deleted line %s", line_id)
    return ReversalOutcome(operation="Delete", target=line_id, completed_steps=state["completed"], deleted=1)


def delete_order(line_ids: Sequence[str], lines: LineItemStore) -> ReversalOutcome:
    """Delete every line of an order in one store call, without counters."""

    ids = [str(line_id).strip() for line_id in line_ids]
    if not ids or not all(ids):
        raise ValidationError("An order needs at least one line id")
    target = ",".join(ids)
    state = run_steps(
        "Delete order",
        target,
        [(ReversalStep.DELETE_LINE, lambda s: s.update(deleted=lines.delete_lines(ids)))],
    )
    log.info("Deleted %d lines of order %s", state["deleted"], target)
    return ReversalOutcome(
        operation="Delete order",
        target=target,
        completed_steps=state["completed"],
        deleted=state["deleted"],
    )


def delete_range(date_range: DateRange, lines: LineItemStore) -> ReversalOutcome:
    """Delete every record with ``start <= timestamp < end``; no counters."""

    state = run_steps(
        "Delete range",
        date_range.label,
        [
            (
                ReversalStep.DELETE_RANGE,
                lambda s: s.update(deleted=lines.delete_by_range(date_range.start, date_range.end)),
            )
        ],
    )
    log.info("Deleted %d records in %s", state["deleted"], date_range.label)
    return ReversalOutcome(
        operation="Delete range",
        target=date_range.label,
        completed_steps=state["completed"],
        deleted=state["deleted"],
    )


def cancel_booking(
    booking_id: str,
    reason: str,
    bookings: BookingStore,
    *,
    now: datetime,
) -> ReversalOutcome:
    """Archive a promo booking with ``reason`` and then delete the original.

    Raises:
        ValidationError: If the id or the reason is blank.
        CollaboratorError: If the read or the archive insert fails. The
            original is never deleted without a successful archive write.
        DuplicateRiskError: If the archive was written but the delete
            failed. Retrying would archive the booking twice.
    """

    booking_id = str(booking_id or "").strip()
    reason = str(reason or "").strip()
    if not booking_id:
        raise ValidationError("A booking id is required")
    if not reason:
        raise ValidationError("A cancellation reason is required")

    def read(state: Dict[str, Any]) -> None:
        state["record"] = bookings.read_record(booking_id)

    def archive(state: Dict[str, Any]) -> None:
        record: PromoBooking = state["record"]
        bookings.insert_archive(record, reason=reason, cancelled_at=now)

    def delete(state: Dict[str, Any]) -> None:
        try:
            bookings.delete_record(booking_id)
        except CollaboratorError as exc:
            raise DuplicateRiskError(
                f"Booking {booking_id} was archived but not deleted; delete it manually "
                f"instead of cancelling again ({exc})",
                record_id=booking_id,
            ) from exc

    state = run_steps(
        "Cancel",
        booking_id,
        [
            (ReversalStep.READ_RECORD, read),
            (ReversalStep.INSERT_ARCHIVE, archive),
            (ReversalStep.DELETE_ORIGINAL, delete),
        ],
    )
    log.info("Cancelled booking %s (%s)", booking_id, reason)
    return ReversalOutcome(operation="Cancel", target=booking_id, completed_steps=state["completed"], deleted=1)


def restock_edit(
    record: CountedRecord,
    new_qty: Any,
    counters: CounterStore,
    records: LineItemStore,
) -> ReversalOutcome:
    """Set a restock entry to exactly ``new_qty`` and shift its counter.

    The counter moves by ``new_qty - old_qty`` (floored at zero) before the
    record's quantity is updated.

    Raises:
        ValidationError: If ``new_qty`` is not a whole number above zero.
    """

    if isinstance(new_qty, bool) or not isinstance(new_qty, int) or new_qty <= 0:
        log.warning("Rejected restock quantity %r for %s", new_qty, record.line_id)
        raise ValidationError("Restock quantity must be a whole number greater than zero")
    _require_counted(record)
    delta = new_qty - record.quantity

    def update(state: Dict[str, Any]) -> None:
        updated = records.update_line(record.line_id, {"Quantity": new_qty})
        if updated is None:
            raise CollaboratorWriteError(f"Restock {record.line_id} was not updated")

    steps: List[Step] = [
        (ReversalStep.READ_COUNTER, lambda s: s.update(before=counters.read_counter(record.product_ref))),
        (ReversalStep.COMPUTE_NEXT, lambda s: s.update(after=max(0, s["before"] + delta))),
        (ReversalStep.WRITE_COUNTER, lambda s: counters.write_counter(record.product_ref, s["after"])),
        (ReversalStep.UPDATE_LINE, update),
    ]
    state = run_steps("Restock edit", record.line_id, steps)
    log.info(
        "Restock %s set to %d (delta %+d); counter %d -> %d",
        record.line_id,
        new_qty,
        delta,
        state["before"],
        state["after"],
    )
    return ReversalOutcome(
        operation="Restock edit",
        target=record.line_id,
        completed_steps=state["completed"],
        counter_before=state["before"],
        counter_after=state["after"],
    )


__all__ = [
    "ReversalOutcome",
    "run_steps",
    "void_line",
    "void_restock",
    "void_order",
    "void_range",
    "void_restock_range",
    "cancel_line",
    "cancel_order",
    "cancel_range",
    "delete_line",
    "delete_order",
    "delete_range",
    "cancel_booking",
    "restock_edit",
]
