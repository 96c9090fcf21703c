"""Discount and payment-settlement arithmetic.

Everything in this module is pure: callers pass already-coerced amounts and
receive frozen dataclasses describing what should be displayed or persisted.
Two payment-entry policies coexist at the counter and both are kept:

* ``PaymentMode.CAPPED`` never lets the tenders exceed the amount due. The
  operator types one tender and the other auto-fills the remainder.
* ``PaymentMode.FREE`` takes both tenders as entered and reports either the
  change owed or the amount still remaining.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from . import log
from .constants import BalanceLabel, DiscountKind, PaymentMode, Tender
from .money import ZERO, clamp, clamp_nonnegative, format_money, money_from_input, round2


HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DiscountRule:
    """Discount attached to a promo booking (never to individual lines)."""

    kind: DiscountKind = DiscountKind.NONE
    value: Decimal = ZERO

    @classmethod
    def from_raw(cls, kind: Any, value: Any) -> "DiscountRule":
        """Build a rule from stored values, tolerating unknown kinds.

        Unknown or blank kinds collapse to ``none``. Values are rounded,
        floored at zero, and percentages are clamped to ``[0, 100]``.
        """

        try:
            resolved = DiscountKind(str(kind if kind is not None else "none").strip().lower())
        except ValueError:
            resolved = DiscountKind.NONE
        amount = round2(clamp_nonnegative(value))
        if resolved is DiscountKind.PERCENT:
            amount = clamp(amount, ZERO, HUNDRED)
        return cls(kind=resolved, value=amount)


@dataclass(frozen=True)
class DiscountResult:
    """Outcome of applying a :class:`DiscountRule` to a base cost."""

    base_cost: Decimal
    due: Decimal
    discount_amount: Decimal


@dataclass(frozen=True)
class PaymentState:
    """Derived settlement figures for one order or booking.

    Exactly one of ``remaining`` and ``change`` is meaningful; the other is
    zero and :attr:`balance_label` tells the caller which one to show.
    """

    mode: PaymentMode
    due: Decimal
    gcash_amount: Decimal
    cash_amount: Decimal
    total_paid: Decimal
    remaining: Decimal
    change: Decimal
    paid: bool

    @property
    def balance_label(self) -> BalanceLabel:
        return BalanceLabel.CHANGE if self.total_paid >= self.due else BalanceLabel.REMAINING

    @property
    def balance(self) -> Decimal:
        return self.change if self.balance_label is BalanceLabel.CHANGE else self.remaining


@dataclass(frozen=True)
class PaymentPatch:
    """Fields persisted when a payment is saved or the paid flag toggled."""

    gcash_amount: Decimal
    cash_amount: Decimal
    is_paid: bool
    paid_at: Optional[datetime]


def apply_discount(base_cost: Any, rule: DiscountRule) -> DiscountResult:
    """Apply ``rule`` to ``base_cost``.

    Args:
        base_cost (Any): Undiscounted price. Negative or unparsable values are
            treated as zero.
        rule (DiscountRule): Discount to apply.

    Returns:
        DiscountResult: ``due`` never exceeds the base cost and the discount
            amount is never negative.
    """

    cost = clamp_nonnegative(base_cost)
    value = clamp_nonnegative(rule.value)

    if rule.kind is DiscountKind.PERCENT:
        pct = clamp(value, ZERO, HUNDRED)
        discount = round2(cost * pct / HUNDRED)
        due = round2(max(ZERO, cost - discount))
    elif rule.kind is DiscountKind.AMOUNT:
        discount = round2(min(cost, value))
        due = round2(max(ZERO, cost - discount))
    else:
        discount = ZERO
        due = round2(cost)

    return DiscountResult(base_cost=round2(cost), due=due, discount_amount=discount)


def describe_discount(rule: DiscountRule) -> str:
    """Render a discount for tables and receipts (``15%``, ``₱50.00``, ``—``)."""

    value = clamp_nonnegative(rule.value)
    if rule.kind is DiscountKind.PERCENT and value > 0:
        return f"{value.normalize():f}%"
    if rule.kind is DiscountKind.AMOUNT and value > 0:
        return format_money(value)
    return "—"


def is_paid_for(due: Decimal, total_paid: Decimal) -> bool:
    """Derive the paid flag: always paid when nothing is due."""

    return True if due <= 0 else total_paid >= due


def allocate_capped(due: Any, gcash: Any) -> PaymentState:
    """Settle ``due`` keeping the e-wallet tender and auto-filling cash.

    The e-wallet amount is capped at ``due`` and cash covers the rest, so the
    two tenders always add up to exactly ``due`` when something is owed.
    """

    amount_due = round2(clamp_nonnegative(due))
    if amount_due <= 0:
        return _capped_state(amount_due, ZERO, ZERO)
    settled_gcash = round2(min(amount_due, clamp_nonnegative(gcash)))
    settled_cash = round2(max(ZERO, amount_due - settled_gcash))
    return _capped_state(amount_due, settled_gcash, settled_cash)


def allocate_capped_from_cash(due: Any, cash: Any) -> PaymentState:
    """Mirror of :func:`allocate_capped` for when cash is edited first."""

    amount_due = round2(clamp_nonnegative(due))
    if amount_due <= 0:
        return _capped_state(amount_due, ZERO, ZERO)
    settled_cash = round2(min(amount_due, clamp_nonnegative(cash)))
    settled_gcash = round2(max(ZERO, amount_due - settled_cash))
    return _capped_state(amount_due, settled_gcash, settled_cash)


def _capped_state(due: Decimal, gcash: Decimal, cash: Decimal) -> PaymentState:
    total_paid = round2(gcash + cash)
    return PaymentState(
        mode=PaymentMode.CAPPED,
        due=due,
        gcash_amount=gcash,
        cash_amount=cash,
        total_paid=total_paid,
        remaining=round2(max(ZERO, due - total_paid)),
        change=ZERO,
        paid=is_paid_for(due, total_paid),
    )


def allocate_free(due: Any, gcash: Any, cash: Any) -> PaymentState:
    """Take both tenders as entered and report change or remaining."""

    amount_due = round2(clamp_nonnegative(due))
    settled_gcash = money_from_input(gcash)
    settled_cash = money_from_input(cash)
    total_paid = round2(settled_gcash + settled_cash)

    if total_paid >= amount_due:
        change = round2(total_paid - amount_due)
        remaining = ZERO
    else:
        change = ZERO
        remaining = round2(amount_due - total_paid)

    return PaymentState(
        mode=PaymentMode.FREE,
        due=amount_due,
        gcash_amount=settled_gcash,
        cash_amount=settled_cash,
        total_paid=total_paid,
        remaining=remaining,
        change=change,
        paid=is_paid_for(amount_due, total_paid),
    )


def settle(
    due: Any,
    gcash: Any,
    cash: Any,
    mode: PaymentMode,
    *,
    primary: Tender = Tender.GCASH,
) -> PaymentState:
    """Dispatch to the allocator matching ``mode``.

    In capped mode the ``primary`` tender is kept (capped at the due) and the
    other one is recomputed; ``primary`` is ignored in free mode.
    """

    if mode is PaymentMode.CAPPED:
        if primary is Tender.CASH:
            return allocate_capped_from_cash(due, cash)
        return allocate_capped(due, gcash)
    return allocate_free(due, gcash, cash)


def split_tenders(
    line_totals: Sequence[Any],
    gcash: Any,
    cash: Any,
) -> List[tuple[Decimal, Decimal]]:
    """Spread an order's tenders over its lines, in line order.

    Each line takes e-wallet money first, then cash, up to its own total. The
    last line absorbs whatever is left, so overpayment stays on it and the
    shares always add up to the tenders passed in.
    """

    if not line_totals:
        return []
    gcash_left = money_from_input(gcash)
    cash_left = money_from_input(cash)
    shares: List[tuple[Decimal, Decimal]] = []
    for total in line_totals[:-1]:
        need = round2(clamp_nonnegative(total))
        gcash_share = min(need, gcash_left)
        cash_share = min(need - gcash_share, cash_left)
        gcash_left = round2(gcash_left - gcash_share)
        cash_left = round2(cash_left - cash_share)
        shares.append((round2(gcash_share), round2(cash_share)))
    shares.append((gcash_left, cash_left))
    return shares


def describe_stored_payment(due: Any, gcash: Any, cash: Any, paid_flag: bool) -> PaymentState:
    """Summarize tenders already on file without re-allocating them.

    Stored rows keep the manual paid flag as written, so the state reports
    ``paid_flag`` rather than the derived value unless nothing is due.
    """

    state = allocate_free(due, gcash, cash)
    paid = True if state.due <= 0 else paid_flag
    return PaymentState(
        mode=state.mode,
        due=state.due,
        gcash_amount=state.gcash_amount,
        cash_amount=state.cash_amount,
        total_paid=state.total_paid,
        remaining=state.remaining,
        change=state.change,
        paid=paid,
    )


def build_payment_patch(
    state: PaymentState,
    *,
    was_paid: bool,
    previous_paid_at: Optional[datetime],
    now: datetime,
) -> PaymentPatch:
    """Translate a settled payment into the fields to persist.

    ``paid_at`` is stamped only on the transition into paid; an already paid
    record keeps its original timestamp and an unpaid result clears it.
    """

    if state.paid:
        paid_at = previous_paid_at if was_paid and previous_paid_at is not None else now
    else:
        paid_at = None
    log.debug(
        "Payment patch: due=%s gcash=%s cash=%s paid=%s",
        state.due,
        state.gcash_amount,
        state.cash_amount,
        state.paid,
    )
    return PaymentPatch(
        gcash_amount=state.gcash_amount,
        cash_amount=state.cash_amount,
        is_paid=state.paid,
        paid_at=paid_at,
    )


def toggle_paid_patch(currently_paid: bool, *, now: datetime) -> tuple[bool, Optional[datetime]]:
    """Return the next manual paid flag and its timestamp."""

    next_paid = not currently_paid
    return next_paid, (now if next_paid else None)


__all__ = [
    "DiscountRule",
    "DiscountResult",
    "PaymentState",
    "PaymentPatch",
    "apply_discount",
    "describe_discount",
    "is_paid_for",
    "allocate_capped",
    "allocate_capped_from_cash",
    "allocate_free",
    "settle",
    "split_tenders",
    "describe_stored_payment",
    "build_payment_patch",
    "toggle_paid_patch",
]
