"""Data access layer for the lounge settlement engine.

This module provides low-level helpers that read from and write to the
lounge workbook. Settlement rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Stores: the Line-Item, Counter, and Booking stores the engine talks to.
   Each store translates sheet-level failures into the collaborator error
   taxonomy so the coordinator never sees an ``openpyxl`` exception.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta, tzinfo
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence
from zoneinfo import ZoneInfoNotFoundError

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_GROUP_WINDOW,
    DEFAULT_TICK_SECONDS,
    DEFAULT_TIMEZONE,
    CounterName,
    PaymentMode,
    SheetName,
)
from .errors import CollaboratorReadError, CollaboratorWriteError, MissingRecordError
from .money import ZERO, clamp_nonnegative, round2, to_bool, to_int
from .periods import DateRange, resolve_timezone
from .settlement import DiscountRule


CONFIG_FILE_NAME = "config.ini"
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

PRODUCT_COLUMNS: Sequence[str] = (
    "ProductID",
    "ProductName",
    "Category",
    "SellPrice",
    "Restocked",
    "Sold",
    "IsActive",
)
LINE_COLUMNS: Sequence[str] = (
    "LineID",
    "Timestamp",
    "FullName",
    "SeatNumber",
    "ProductID",
    "Quantity",
    "UnitPrice",
    "LineTotal",
    "GcashAmount",
    "CashAmount",
    "IsPaid",
    "PaidAt",
)
CANCELLED_LINE_COLUMNS: Sequence[str] = (
    "OriginalID",
    "Description",
    "CancelledAt",
    *LINE_COLUMNS[1:],
)
RESTOCK_COLUMNS: Sequence[str] = (
    "RecordID",
    "Timestamp",
    "ProductID",
    "Quantity",
    "Notes",
)
BOOKING_COLUMNS: Sequence[str] = (
    "BookingID",
    "CreatedAt",
    "FullName",
    "PhoneNumber",
    "Area",
    "SeatNumber",
    "StartAt",
    "EndAt",
    "Price",
    "GcashAmount",
    "CashAmount",
    "IsPaid",
    "PaidAt",
    "DiscountKind",
    "DiscountValue",
    "DiscountReason",
    "PromoCode",
    "AttemptsLeft",
    "MaxAttempts",
    "ValidityEndAt",
)
CANCELLED_BOOKING_COLUMNS: Sequence[str] = (
    "OriginalID",
    "Description",
    "CancelledAt",
    *BOOKING_COLUMNS[1:],
)
ATTENDANCE_COLUMNS: Sequence[str] = (
    "LogID",
    "BookingID",
    "InAt",
    "OutAt",
    "AutoOut",
    "Note",
)

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: PRODUCT_COLUMNS,
    SheetName.ADD_ON_LINES.value: LINE_COLUMNS,
    SheetName.ADD_ON_LINES_CANCELLED.value: CANCELLED_LINE_COLUMNS,
    SheetName.RESTOCK_RECORDS.value: RESTOCK_COLUMNS,
    SheetName.PROMO_BOOKINGS.value: BOOKING_COLUMNS,
    SheetName.PROMO_BOOKINGS_CANCELLED.value: CANCELLED_BOOKING_COLUMNS,
    SheetName.PROMO_ATTENDANCE.value: ATTENDANCE_COLUMNS,
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    lounge_name: str
    schema_version: str
    timezone: tzinfo = UTC
    group_window: timedelta = DEFAULT_GROUP_WINDOW
    payment_mode: PaymentMode = PaymentMode.CAPPED
    tick_seconds: int = DEFAULT_TICK_SECONDS


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    category: str
    sell_price: Decimal
    restocked: int
    sold: int
    is_active: bool


@dataclass(frozen=True)
class LineItem:
    """One purchased add-on row from the ``AddOnLines`` sheet."""

    line_id: str
    timestamp: datetime
    full_name: str
    seat_number: str
    product_ref: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    gcash_amount: Decimal = ZERO
    cash_amount: Decimal = ZERO
    is_paid: bool = False
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class RestockRecord:
    """One restock entry from the ``RestockRecords`` sheet."""

    record_id: str
    timestamp: datetime
    product_ref: str
    quantity: int
    notes: Optional[str] = None

    @property
    def line_id(self) -> str:
        return self.record_id


@dataclass(frozen=True)
class PromoBooking:
    """One promo booking from the ``PromoBookings`` sheet."""

    booking_id: str
    created_at: datetime
    full_name: str
    phone_number: Optional[str]
    area: str
    seat_number: Optional[str]
    start_at: Optional[datetime]
    end_at: Optional[datetime]
    price: Decimal
    gcash_amount: Decimal = ZERO
    cash_amount: Decimal = ZERO
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    discount: DiscountRule = field(default_factory=DiscountRule)
    discount_reason: Optional[str] = None
    promo_code: Optional[str] = None
    attempts_left: int = 0
    max_attempts: int = 0
    validity_end_at: Optional[datetime] = None


@dataclass(frozen=True)
class AttendanceLog:
    """One IN/OUT entry from the ``PromoAttendance`` sheet."""

    log_id: str
    booking_id: str
    in_at: datetime
    out_at: Optional[datetime] = None
    auto_out: bool = False
    note: Optional[str] = None


class LineItemStore(Protocol):
    """Collaborator that owns purchase lines (or restock records)."""

    def fetch_lines(self, date_range: Optional[DateRange] = None) -> List[Any]: ...

    def get_line(self, line_id: str) -> Any: ...

    def update_line(self, line_id: str, fields: Mapping[str, Any]) -> Any: ...

    def delete_line(self, line_id: str) -> None: ...

    def delete_lines(self, line_ids: Sequence[str]) -> int: ...

    def delete_by_range(self, start: datetime, end: datetime) -> int: ...


class ArchivingLineStore(LineItemStore, Protocol):
    """Line-Item Store that can also copy a line into its cancellation archive."""

    def insert_archive(self, record: LineItem, *, reason: str, cancelled_at: datetime) -> None: ...


class CounterStore(Protocol):
    """Collaborator that owns the per-product counters."""

    def read_counter(self, product_ref: str) -> int: ...

    def write_counter(self, product_ref: str, value: int) -> None: ...


class BookingStore(LineItemStore, Protocol):
    """Line-Item Store for promo bookings, plus the archive used on cancel."""

    def read_record(self, record_id: str) -> PromoBooking: ...

    def insert_archive(self, record: PromoBooking, *, reason: str, cancelled_at: datetime) -> None: ...

    def delete_record(self, record_id: str) -> None: ...


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[System] Timezone`` and the whole
    ``[Engine]`` section are optional and fall back to the package defaults.
    Relative ``DataFile`` paths are anchored to ``base_path`` (or the current
    working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If an optional entry holds an unusable value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        lounge_name = parser.get("System", "LoungeName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    timezone_name = parser.get("System", "Timezone", fallback=DEFAULT_TIMEZONE)
    try:
        timezone = resolve_timezone(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone in configuration: {timezone_name}") from exc

    window_seconds = parser.getint(
        "Engine", "GroupWindowSeconds", fallback=int(DEFAULT_GROUP_WINDOW.total_seconds())
    )
    tick_seconds = parser.getint("Engine", "TickSeconds", fallback=DEFAULT_TICK_SECONDS)
    mode_raw = parser.get("Engine", "PaymentMode", fallback=PaymentMode.CAPPED.value)
    try:
        payment_mode = PaymentMode(mode_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown payment mode in configuration: {mode_raw}") from exc
    if window_seconds < 0 or tick_seconds <= 0:
        raise ValueError("GroupWindowSeconds must be >= 0 and TickSeconds > 0")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        lounge_name=lounge_name,
        schema_version=schema_version,
        timezone=timezone,
        group_window=timedelta(seconds=window_seconds),
        payment_mode=payment_mode,
        tick_seconds=tick_seconds,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the lounge workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Cell conversion
# ---------------------------------------------------------------------------


def parse_timestamp(raw: Any, tz: tzinfo) -> Optional[datetime]:
    """Interpret a timestamp cell.

    ISO strings (with or without offset) and ``datetime`` cells are accepted.
    Naive values are read as local time in ``tz``. Anything else is ``None``.
    """

    if isinstance(raw, datetime):
        moment = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            moment = datetime.fromisoformat(raw.strip())
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz)
    return moment


def to_cell(value: Any) -> Any:
    """Convert a Python value into something the worksheet stores verbatim."""

    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _text(raw: Any) -> str:
    return str(raw).strip() if raw is not None else ""


def _optional_text(raw: Any) -> Optional[str]:
    text = _text(raw)
    return text or None


def _pad(raw_row: Sequence[object], width: int) -> tuple:
    values = tuple(raw_row[:width])
    return values + (None,) * (width - len(values))


def _tender(raw: Any) -> Decimal:
    return round2(clamp_nonnegative(raw))


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.product_name,
        record.category,
        record.sell_price,
        record.restocked,
        record.sold,
        record.is_active,
    ]


def serialize_line_item(record: LineItem) -> list[object]:
    """Convert a line item into the ``AddOnLines`` column ordering."""

    return [
        record.line_id,
        to_cell(record.timestamp),
        record.full_name,
        record.seat_number,
        record.product_ref,
        record.quantity,
        record.unit_price,
        record.line_total,
        record.gcash_amount,
        record.cash_amount,
        record.is_paid,
        to_cell(record.paid_at),
    ]


def serialize_restock(record: RestockRecord) -> list[object]:
    return [
        record.record_id,
        to_cell(record.timestamp),
        record.product_ref,
        record.quantity,
        record.notes,
    ]


def serialize_booking(record: PromoBooking) -> list[object]:
    """Convert a promo booking into the ``PromoBookings`` column ordering."""

    return [
        record.booking_id,
        to_cell(record.created_at),
        record.full_name,
        record.phone_number,
        record.area,
        record.seat_number,
        to_cell(record.start_at),
        to_cell(record.end_at),
        record.price,
        record.gcash_amount,
        record.cash_amount,
        record.is_paid,
        to_cell(record.paid_at),
        record.discount.kind.value,
        record.discount.value,
        record.discount_reason,
        record.promo_code,
        record.attempts_left,
        record.max_attempts,
        to_cell(record.validity_end_at),
    ]


def serialize_cancelled_line(record: LineItem, *, reason: str, cancelled_at: datetime) -> list[object]:
    """Build the archive row written before a cancelled add-on line is deleted."""

    return [record.line_id, reason, to_cell(cancelled_at), *serialize_line_item(record)[1:]]


def serialize_cancelled_booking(record: PromoBooking, *, reason: str, cancelled_at: datetime) -> list[object]:
    """Build the archive row written before a booking is deleted."""

    return [record.booking_id, reason, to_cell(cancelled_at), *serialize_booking(record)[1:]]


def serialize_attendance(record: AttendanceLog) -> list[object]:
    return [
        record.log_id,
        record.booking_id,
        to_cell(record.in_at),
        to_cell(record.out_at),
        record.auto_out,
        record.note,
    ]


# ---------------------------------------------------------------------------
# Deserialization
# ---------------------------------------------------------------------------


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw ``Products`` row, coercing counters through ``to_int``."""

    product_id, name, category, sell_raw, restocked, sold, is_active = _pad(raw_row, len(PRODUCT_COLUMNS))
    return ProductRow(
        product_id=_text(product_id),
        product_name=_text(name),
        category=_text(category),
        sell_price=round2(sell_raw),
        restocked=to_int(restocked),
        sold=to_int(sold),
        is_active=to_bool(is_active),
    )


def deserialize_line_item(raw_row: Sequence[object], tz: tzinfo) -> LineItem:
    """Convert a raw ``AddOnLines`` row into a :class:`LineItem`.

    Numeric columns may come back as strings and flags as ``"1"``; both go
    through the total coercion helpers. Tenders are floored at zero. An
    unparsable timestamp sorts first (the Unix epoch) instead of failing.
    """

    (
        line_id,
        timestamp_raw,
        full_name,
        seat_number,
        product_id,
        quantity,
        unit_price,
        line_total,
        gcash,
        cash,
        is_paid,
        paid_at,
    ) = _pad(raw_row, len(LINE_COLUMNS))

    return LineItem(
        line_id=_text(line_id),
        timestamp=parse_timestamp(timestamp_raw, tz) or EPOCH,
        full_name=_text(full_name),
        seat_number=_text(seat_number),
        product_ref=_text(product_id),
        quantity=to_int(quantity),
        unit_price=round2(unit_price),
        line_total=round2(line_total),
        gcash_amount=_tender(gcash),
        cash_amount=_tender(cash),
        is_paid=to_bool(is_paid),
        paid_at=parse_timestamp(paid_at, tz),
    )


def deserialize_restock(raw_row: Sequence[object], tz: tzinfo) -> RestockRecord:
    record_id, timestamp_raw, product_id, quantity, notes = _pad(raw_row, len(RESTOCK_COLUMNS))
    return RestockRecord(
        record_id=_text(record_id),
        timestamp=parse_timestamp(timestamp_raw, tz) or EPOCH,
        product_ref=_text(product_id),
        quantity=to_int(quantity),
        notes=_optional_text(notes),
    )


def deserialize_booking(raw_row: Sequence[object], tz: tzinfo) -> PromoBooking:
    """Convert a raw ``PromoBookings`` row into a :class:`PromoBooking`."""

    (
        booking_id,
        created_at,
        full_name,
        phone_number,
        area,
        seat_number,
        start_at,
        end_at,
        price,
        gcash,
        cash,
        is_paid,
        paid_at,
        discount_kind,
        discount_value,
        discount_reason,
        promo_code,
        attempts_left,
        max_attempts,
        validity_end_at,
    ) = _pad(raw_row, len(BOOKING_COLUMNS))

    return PromoBooking(
        booking_id=_text(booking_id),
        created_at=parse_timestamp(created_at, tz) or EPOCH,
        full_name=_text(full_name),
        phone_number=_optional_text(phone_number),
        area=_text(area),
        seat_number=_optional_text(seat_number),
        start_at=parse_timestamp(start_at, tz),
        end_at=parse_timestamp(end_at, tz),
        price=round2(price),
        gcash_amount=_tender(gcash),
        cash_amount=_tender(cash),
        is_paid=to_bool(is_paid),
        paid_at=parse_timestamp(paid_at, tz),
        discount=DiscountRule.from_raw(discount_kind, discount_value),
        discount_reason=_optional_text(discount_reason),
        promo_code=_optional_text(promo_code),
        attempts_left=to_int(attempts_left),
        max_attempts=to_int(max_attempts),
        validity_end_at=parse_timestamp(validity_end_at, tz),
    )


def deserialize_attendance(raw_row: Sequence[object], tz: tzinfo) -> AttendanceLog:
    log_id, booking_id, in_at, out_at, auto_out, note = _pad(raw_row, len(ATTENDANCE_COLUMNS))
    return AttendanceLog(
        log_id=_text(log_id),
        booking_id=_text(booking_id),
        in_at=parse_timestamp(in_at, tz) or EPOCH,
        out_at=parse_timestamp(out_at, tz),
        auto_out=to_bool(auto_out),
        note=_optional_text(note),
    )


# ---------------------------------------------------------------------------
# Sheet helpers
# ---------------------------------------------------------------------------


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Map header titles to 1-based column indices for ``sheet_name``."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    headers = header_map(workbook, sheet_name)
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = headers[key_column]
    for row_idx, row in enumerate(workbook[sheet_name].iter_rows(min_row=2, values_only=True), start=2):
        if _text(row[key_col_index - 1]) == key_value:
            return row_idx

    return None


def iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[int, tuple]]:
    """Yield ``(row_index, values)`` for every non-empty data row."""

    sheet = workbook[sheet_name]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if any(cell is not None for cell in raw):
            yield row_idx, raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    for _, raw in iter_rows(workbook, SheetName.PRODUCTS.value):
        yield deserialize_product(raw)


def iter_attendance(workbook: Workbook, tz: tzinfo) -> Iterable[AttendanceLog]:
    for _, raw in iter_rows(workbook, SheetName.PROMO_ATTENDANCE.value):
        yield deserialize_attendance(raw, tz)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    workbook[SheetName.PRODUCTS.value].append(serialize_product(record))


def append_line_item(workbook: Workbook, record: LineItem) -> None:
    """Append a purchase line; used by the point-of-sale flow and fixtures."""

    workbook[SheetName.ADD_ON_LINES.value].append(serialize_line_item(record))


def append_restock(workbook: Workbook, record: RestockRecord) -> None:
    workbook[SheetName.RESTOCK_RECORDS.value].append(serialize_restock(record))


def append_booking(workbook: Workbook, record: PromoBooking) -> None:
    workbook[SheetName.PROMO_BOOKINGS.value].append(serialize_booking(record))


def append_attendance(workbook: Workbook, record: AttendanceLog) -> None:
    workbook[SheetName.PROMO_ATTENDANCE.value].append(serialize_attendance(record))


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class WorkbookRecordStore:
    """Line-Item Store backed by one worksheet.

    Records are addressed by ``key_column`` and filtered on
    ``timestamp_column``. Range filters are half-open: ``start <= ts < end``.
    """

    def __init__(
        self,
        workbook: Workbook,
        sheet: SheetName,
        *,
        key_column: str,
        timestamp_column: str,
        deserialize: Callable[[Sequence[object], tzinfo], Any],
        timezone: tzinfo = UTC,
    ) -> None:
        self.workbook = workbook
        self.sheet_name = sheet.value
        self.key_column = key_column
        self.timestamp_column = timestamp_column
        self.deserialize = deserialize
        self.timezone = timezone

    def _headers(self) -> Dict[str, int]:
        try:
            return header_map(self.workbook, self.sheet_name)
        except KeyError as exc:
            log.error("Sheet '%s' is missing from the workbook", self.sheet_name)
            raise CollaboratorReadError(f"Sheet not found: {self.sheet_name}") from exc

    def _row_index(self, key: str) -> int:
        self._headers()
        try:
            row_index = locate_row(self.workbook, self.sheet_name, self.key_column, key)
        except KeyError as exc:
            raise CollaboratorReadError(str(exc)) from exc
        if row_index is None:
            log.warning("Lookup failed for %s '%s' on sheet '%s'", self.key_column, key, self.sheet_name)
            raise MissingRecordError(f"Unknown {self.key_column}: {key}")
        return row_index

    def _timestamp_of(self, raw: Sequence[object], headers: Mapping[str, int]) -> Optional[datetime]:
        column = headers.get(self.timestamp_column)
        if column is None or column > len(raw):
            return None
        return parse_timestamp(raw[column - 1], self.timezone)

    def fetch_lines(self, date_range: Optional[DateRange] = None) -> List[Any]:
        """Return records (optionally inside ``date_range``) oldest first."""

        headers = self._headers()
        records = []
        for _, raw in iter_rows(self.workbook, self.sheet_name):
            if date_range is not None and not date_range.contains(self._timestamp_of(raw, headers)):
                continue
            records.append(self.deserialize(raw, self.timezone))
        records.sort(key=lambda record: getattr(record, "timestamp", None) or getattr(record, "created_at", EPOCH))
        log.debug("Fetched %d rows from '%s'", len(records), self.sheet_name)
        return records

    def get_line(self, line_id: str) -> Any:
        row_index = self._row_index(line_id)
        raw = next(self.workbook[self.sheet_name].iter_rows(min_row=row_index, max_row=row_index, values_only=True))
        return self.deserialize(raw, self.timezone)

    def update_line(self, line_id: str, fields: Mapping[str, Any]) -> Any:
        """Write ``fields`` (header title -> value) and return the re-read record."""

        headers = self._headers()
        unknown = [name for name in fields if name not in headers]
        if unknown:
            raise CollaboratorWriteError(f"Unknown {self.sheet_name} field(s): {', '.join(unknown)}")
        row_index = self._row_index(line_id)
        sheet = self.workbook[self.sheet_name]
        for name, value in fields.items():
            sheet.cell(row=row_index, column=headers[name], value=to_cell(value))
        return self.get_line(line_id)

    def update_lines(self, line_ids: Sequence[str], fields: Mapping[str, Any]) -> int:
        for line_id in line_ids:
            self.update_line(line_id, fields)
        return len(line_ids)

    def delete_line(self, line_id: str) -> None:
        row_index = self._row_index(line_id)
        self.workbook[self.sheet_name].delete_rows(row_index)

    def delete_lines(self, line_ids: Sequence[str]) -> int:
        """Delete every listed record; all ids are resolved before any delete."""

        row_indexes = sorted({self._row_index(line_id) for line_id in line_ids}, reverse=True)
        sheet = self.workbook[self.sheet_name]
        for row_index in row_indexes:
            sheet.delete_rows(row_index)
        return len(row_indexes)

    def delete_by_range(self, start: datetime, end: datetime) -> int:
        """Delete records with ``start <= timestamp < end``; return the count."""

        headers = self._headers()
        if self.timestamp_column not in headers:
            raise CollaboratorWriteError(f"Unknown column: {self.timestamp_column}")
        doomed = [
            row_index
            for row_index, raw in iter_rows(self.workbook, self.sheet_name)
            if (moment := self._timestamp_of(raw, headers)) is not None and start <= moment < end
        ]
        sheet = self.workbook[self.sheet_name]
        for row_index in reversed(doomed):
            sheet.delete_rows(row_index)
        return len(doomed)

    def insert(self, values: Sequence[object]) -> None:
        try:
            self.workbook[self.sheet_name].append(list(values))
        except KeyError as exc:
            raise CollaboratorWriteError(f"Sheet not found: {self.sheet_name}") from exc


class WorkbookLineStore(WorkbookRecordStore):
    """Add-on lines plus the cancelled-lines archive."""

    def __init__(self, workbook: Workbook, timezone: tzinfo = UTC) -> None:
        super().__init__(
            workbook,
            SheetName.ADD_ON_LINES,
            key_column="LineID",
            timestamp_column="Timestamp",
            deserialize=deserialize_line_item,
            timezone=timezone,
        )

    def insert_archive(self, record: LineItem, *, reason: str, cancelled_at: datetime) -> None:
        try:
            sheet = self.workbook[SheetName.ADD_ON_LINES_CANCELLED.value]
        except KeyError as exc:
            raise CollaboratorWriteError(
                f"Sheet not found: {SheetName.ADD_ON_LINES_CANCELLED.value}"
            ) from exc
        sheet.append(serialize_cancelled_line(record, reason=reason, cancelled_at=cancelled_at))


def line_item_store(workbook: Workbook, timezone: tzinfo = UTC) -> WorkbookLineStore:
    """Store over the ``AddOnLines`` sheet."""

    return WorkbookLineStore(workbook, timezone)


def restock_store(workbook: Workbook, timezone: tzinfo = UTC) -> WorkbookRecordStore:
    """Store over the ``RestockRecords`` sheet."""

    return WorkbookRecordStore(
        workbook,
        SheetName.RESTOCK_RECORDS,
        key_column="RecordID",
        timestamp_column="Timestamp",
        deserialize=deserialize_restock,
        timezone=timezone,
    )


class WorkbookBookingStore(WorkbookRecordStore):
    """Promo bookings plus the cancelled-bookings archive and attendance logs."""

    def __init__(self, workbook: Workbook, timezone: tzinfo = UTC) -> None:
        super().__init__(
            workbook,
            SheetName.PROMO_BOOKINGS,
            key_column="BookingID",
            timestamp_column="CreatedAt",
            deserialize=deserialize_booking,
            timezone=timezone,
        )

    def read_record(self, record_id: str) -> PromoBooking:
        return self.get_line(record_id)

    def insert_archive(self, record: PromoBooking, *, reason: str, cancelled_at: datetime) -> None:
        try:
            sheet = self.workbook[SheetName.PROMO_BOOKINGS_CANCELLED.value]
        except KeyError as exc:
            raise CollaboratorWriteError(
                f"Sheet not found: {SheetName.PROMO_BOOKINGS_CANCELLED.value}"
            ) from exc
        sheet.append(serialize_cancelled_booking(record, reason=reason, cancelled_at=cancelled_at))

    def delete_record(self, record_id: str) -> None:
        self.delete_line(record_id)

    def fetch_attendance(self, booking_ids: Iterable[str]) -> Dict[str, List[AttendanceLog]]:
        """Return attendance logs per booking, most recent ``in_at`` first."""

        wanted = set(booking_ids)
        grouped: Dict[str, List[AttendanceLog]] = {booking_id: [] for booking_id in wanted}
        try:
            logs = list(iter_attendance(self.workbook, self.timezone))
        except KeyError as exc:
            raise CollaboratorReadError(f"Sheet not found: {SheetName.PROMO_ATTENDANCE.value}") from exc
        for entry in logs:
            if entry.booking_id in wanted:
                grouped[entry.booking_id].append(entry)
        for entries in grouped.values():
            entries.sort(key=lambda entry: entry.in_at, reverse=True)
        return grouped


class WorkbookCounterStore:
    """Counter Store over one counter column of the ``Products`` sheet."""

    def __init__(self, workbook: Workbook, counter: CounterName = CounterName.SOLD) -> None:
        self.workbook = workbook
        self.counter = counter

    def _locate(self, product_ref: str) -> tuple[int, int]:
        sheet_name = SheetName.PRODUCTS.value
        try:
            headers = header_map(self.workbook, sheet_name)
            row_index = locate_row(self.workbook, sheet_name, "ProductID", product_ref)
        except KeyError as exc:
            raise CollaboratorReadError(str(exc)) from exc
        if self.counter.value not in headers:
            raise CollaboratorReadError(f"Unknown counter column: {self.counter.value}")
        if row_index is None:
            log.warning("Product lookup failed for id '%s'", product_ref)
            raise MissingRecordError(f"Unknown product id: {product_ref}")
        return row_index, headers[self.counter.value]

    def read_counter(self, product_ref: str) -> int:
        row_index, column = self._locate(product_ref)
        value = self.workbook[SheetName.PRODUCTS.value].cell(row=row_index, column=column).value
        return to_int(value)

    def write_counter(self, product_ref: str, value: int) -> None:
        if value < 0:
            raise CollaboratorWriteError(f"Refusing to store negative {self.counter.value}: {value}")
        row_index, column = self._locate(product_ref)
        self.workbook[SheetName.PRODUCTS.value].cell(row=row_index, column=column, value=int(value))
