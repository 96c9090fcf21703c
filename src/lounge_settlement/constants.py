"""Enumerations shared across the lounge settlement modules.

Centralises domain constants so that the data access layer (DAL), the
settlement engine, and the CLI rely on a single source of truth for sheet
names, payment policies, and status labels.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "2.1.0"

# Lines from the same customer and seat created within this gap form one order.
DEFAULT_GROUP_WINDOW = timedelta(seconds=10)

# Interval used to re-evaluate live statuses against the wall clock.
DEFAULT_TICK_SECONDS = 10

DEFAULT_TIMEZONE = "UTC"


class DiscountKind(str, Enum):
    """Enumerate the discount rules a promo booking may carry."""

    NONE = "none"
    PERCENT = "percent"
    AMOUNT = "amount"


class PaymentMode(str, Enum):
    """Enumerate the two payment-entry policies in use at the counter."""

    CAPPED = "capped"
    FREE = "free"


class Tender(str, Enum):
    """Enumerate the tender an operator edits first in capped mode."""

    GCASH = "gcash"
    CASH = "cash"


class BalanceLabel(str, Enum):
    """Label of the single balance figure reported for a payment."""

    REMAINING = "REMAINING"
    CHANGE = "CHANGE"


class AttendanceStatus(str, Enum):
    """Two-state attendance derived from a log entry."""

    IN = "IN"
    OUT = "OUT"


class BookingPhase(str, Enum):
    """Relative position of a booking window against the current time."""

    UPCOMING = "UPCOMING"
    ONGOING = "ONGOING"
    FINISHED = "FINISHED"


class CounterName(str, Enum):
    """Enumerate the per-product counters kept on the ``Products`` sheet."""

    SOLD = "Sold"
    RESTOCKED = "Restocked"


class ReversalStep(str, Enum):
    """Enumerate the steps the reversal coordinator may execute."""

    READ_COUNTER = "READ_COUNTER"
    COMPUTE_NEXT = "COMPUTE_NEXT"
    WRITE_COUNTER = "WRITE_COUNTER"
    DELETE_LINE = "DELETE_LINE"
    UPDATE_LINE = "UPDATE_LINE"
    READ_RECORD = "READ_RECORD"
    INSERT_ARCHIVE = "INSERT_ARCHIVE"
    DELETE_ORIGINAL = "DELETE_ORIGINAL"
    DELETE_RANGE = "DELETE_RANGE"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    ADD_ON_LINES = "AddOnLines"
    ADD_ON_LINES_CANCELLED = "AddOnLinesCancelled"
    RESTOCK_RECORDS = "RestockRecords"
    PROMO_BOOKINGS = "PromoBookings"
    PROMO_BOOKINGS_CANCELLED = "PromoBookingsCancelled"
    PROMO_ATTENDANCE = "PromoAttendance"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_GROUP_WINDOW",
    "DEFAULT_TICK_SECONDS",
    "DEFAULT_TIMEZONE",
    "DiscountKind",
    "PaymentMode",
    "Tender",
    "BalanceLabel",
    "AttendanceStatus",
    "BookingPhase",
    "CounterName",
    "ReversalStep",
    "SheetName",
]
