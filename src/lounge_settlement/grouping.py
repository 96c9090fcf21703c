"""Derive logical orders from a flat stream of add-on purchase lines.

The point-of-sale flow commits one row per product, so a single checkout is
spread across several rows. Rows from the same customer and seat committed
close together in time are treated as one order. Orders are never stored:
they are re-projected from the lines on every read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from . import log
from .constants import DEFAULT_GROUP_WINDOW
from .data_manager import LineItem
from .money import ZERO, round2
from .periods import DateRange


def normalize(value: Optional[str]) -> str:
    """Trim and case-fold a name or seat label for identity comparisons."""

    return (value or "").strip().casefold()


def identity(line: LineItem) -> str:
    """Return ``normalized name|normalized seat`` for ``line``."""

    return f"{normalize(line.full_name)}|{normalize(line.seat_number)}"


@dataclass(frozen=True)
class Order:
    """Aggregate over a contiguous run of lines sharing one identity."""

    key: str
    identity: str
    items: tuple[LineItem, ...]
    grand_total: Decimal
    gcash_amount: Decimal
    cash_amount: Decimal
    is_paid: bool
    paid_at: Optional[datetime]

    @property
    def started_at(self) -> datetime:
        return self.items[0].timestamp

    @property
    def last_at(self) -> datetime:
        return self.items[-1].timestamp

    @property
    def full_name(self) -> str:
        return self.items[0].full_name

    @property
    def seat_number(self) -> str:
        return self.items[0].seat_number

    @property
    def line_ids(self) -> tuple[str, ...]:
        return tuple(item.line_id for item in self.items)


class _OrderBuilder:
    """Running accumulator for the group currently being scanned."""

    def __init__(self, first: LineItem) -> None:
        self.identity = identity(first)
        self.items: List[LineItem] = []
        self.grand_total = ZERO
        self.gcash_amount = ZERO
        self.cash_amount = ZERO
        self.is_paid = False
        self.paid_at: Optional[datetime] = None
        self.add(first)

    def add(self, line: LineItem) -> None:
        self.items.append(line)
        self.grand_total = round2(self.grand_total + line.line_total)
        self.gcash_amount = round2(self.gcash_amount + line.gcash_amount)
        self.cash_amount = round2(self.cash_amount + line.cash_amount)
        self.is_paid = self.is_paid or line.is_paid
        if self.paid_at is None:
            self.paid_at = line.paid_at

    def build(self) -> Order:
        first = self.items[0]
        return Order(
            key=f"{self.identity}|{first.timestamp.isoformat()}",
            identity=self.identity,
            items=tuple(self.items),
            grand_total=max(ZERO, self.grand_total),
            gcash_amount=self.gcash_amount,
            cash_amount=self.cash_amount,
            is_paid=self.is_paid,
            paid_at=self.paid_at,
        )


def group_orders(lines: Iterable[LineItem], window: timedelta = DEFAULT_GROUP_WINDOW) -> List[Order]:
    """Group lines into orders and return them most recent first.

    Args:
        lines (Iterable[LineItem]): Lines for one calendar day. They are
            sorted by timestamp (stable) before scanning, so callers may pass
            them in store order.
        window (timedelta): Largest gap between consecutive lines of the same
            order. A gap exactly equal to ``window`` keeps the lines together.

    Returns:
        list[Order]: Every input line appears in exactly one order.
    """

    ordered = sorted(lines, key=lambda line: line.timestamp)
    builders: List[_OrderBuilder] = []
    current: Optional[_OrderBuilder] = None
    last: Optional[LineItem] = None

    for line in ordered:
        starts_new = (
            current is None
            or last is None
            or identity(line) != identity(last)
            or abs(line.timestamp - last.timestamp) > window
        )
        if starts_new:
            current = _OrderBuilder(line)
            builders.append(current)
        else:
            current.add(line)
        last = line

    orders = [builder.build() for builder in builders]
    orders.sort(key=lambda order: order.started_at, reverse=True)
    log.debug("Grouped %d lines into %d orders", len(ordered), len(orders))
    return orders


def filter_day(lines: Iterable[LineItem], day: date, tz: tzinfo) -> List[LineItem]:
    """Keep the lines stamped within the local calendar ``day``."""

    bounds = DateRange.day(day, tz)
    return [line for line in lines if bounds.contains(line.timestamp)]


def find_order(orders: Sequence[Order], key: str) -> Optional[Order]:
    """Look up an order by its key (case-insensitive on the identity part)."""

    wanted = key.strip()
    for order in orders:
        if order.key == wanted or order.key.casefold() == wanted.casefold():
            return order
    return None


__all__ = ["Order", "normalize", "identity", "group_orders", "filter_day", "find_order"]
