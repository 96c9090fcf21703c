"""Shared pytest fixtures and utilities for lounge settlement tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from lounge_settlement import cli, constants, core_logic, data_manager  # noqa: E402
from lounge_settlement.errors import (  # noqa: E402
    CollaboratorReadError,
    CollaboratorWriteError,
    MissingRecordError,
)
from lounge_settlement.periods import DateRange  # noqa: E402
from lounge_settlement.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
BASE_TIME = datetime(2024, 5, 6, 9, 0, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "LoungeName = {lounge_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Timezone = UTC\n\n"
    "[Engine]\n"
    "GroupWindowSeconds = 10\n"
    "PaymentMode = {payment_mode}\n"
    "TickSeconds = 10\n"
)

SEED_PRODUCTS = (
    data_manager.ProductRow("P-COFFEE", "Iced Coffee", "Drinks", Decimal("80.00"), 40, 10, True),
    data_manager.ProductRow("P-CHIPS", "Chips", "Snacks", Decimal("35.00"), 20, 2, True),
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    lounge_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "lounge_workbook.xlsx",
        products: Sequence[data_manager.ProductRow] = SEED_PRODUCTS,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, products=products, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def live_workbook(master_workbook_path: Path):
    """Return the seeded workbook opened through the DAL."""

    return data_manager.open_workbook(master_workbook_path)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        lounge_name: str = "Test Lounge",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        payment_mode: str = "capped",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                lounge_name=lounge_name,
                schema_version=schema_version,
                payment_mode=payment_mode,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            lounge_name=lounge_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="lounge-settle", description="Lounge CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def make_line(
    line_id: str,
    *,
    seconds: float = 0,
    name: str = "Ana Cruz",
    seat: str = "A1",
    product: str = "P-COFFEE",
    quantity: int = 1,
    unit_price: str = "80.00",
    line_total: Optional[str] = None,
    gcash: str = "0",
    cash: str = "0",
    is_paid: bool = False,
    paid_at: Optional[datetime] = None,
) -> data_manager.LineItem:
    """Build a line item stamped ``seconds`` after ``BASE_TIME``."""

    total = Decimal(line_total) if line_total is not None else Decimal(unit_price) * quantity
    return data_manager.LineItem(
        line_id=line_id,
        timestamp=BASE_TIME + timedelta(seconds=seconds),
        full_name=name,
        seat_number=seat,
        product_ref=product,
        quantity=quantity,
        unit_price=Decimal(unit_price),
        line_total=total,
        gcash_amount=Decimal(gcash),
        cash_amount=Decimal(cash),
        is_paid=is_paid,
        paid_at=paid_at,
    )


def make_booking(booking_id: str = "B-1", **overrides: Any) -> data_manager.PromoBooking:
    values: Dict[str, Any] = dict(
        booking_id=booking_id,
        created_at=BASE_TIME,
        full_name="Ben Reyes",
        phone_number="09170000000",
        area="Common Area",
        seat_number="C3",
        start_at=BASE_TIME + timedelta(hours=1),
        end_at=BASE_TIME + timedelta(hours=4),
        price=Decimal("1000.00"),
    )
    values.update(overrides)
    return data_manager.PromoBooking(**values)


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


@dataclass
class FakeCounterStore:
    """Counter store with per-product failure injection."""

    values: Dict[str, int] = field(default_factory=dict)
    fail_read: set = field(default_factory=set)
    fail_write: set = field(default_factory=set)
    calls: List[tuple] = field(default_factory=list)

    def read_counter(self, product_ref: str) -> int:
        self.calls.append(("read", product_ref))
        if product_ref in self.fail_read:
            raise CollaboratorReadError(f"counter read failed for {product_ref}")
        if product_ref not in self.values:
            raise MissingRecordError(f"Unknown product id: {product_ref}")
        return self.values[product_ref]

    def write_counter(self, product_ref: str, value: int) -> None:
        self.calls.append(("write", product_ref, value))
        if product_ref in self.fail_write:
            raise CollaboratorWriteError(f"counter write failed for {product_ref}")
        self.values[product_ref] = value


class FakeLineStore:
    """Line-Item Store over a dict, keyed by ``line_id``, with a cancellation archive."""

    def __init__(self, records: Sequence[Any] = ()) -> None:
        self.records: Dict[str, Any] = {record.line_id: record for record in records}
        self.fail_delete: set = set()
        self.fail_update: set = set()
        self.fail_fetch = False
        self.fail_archive = False
        self.archive: List[tuple] = []
        self.calls: List[tuple] = []

    def fetch_lines(self, date_range: Optional[DateRange] = None) -> List[Any]:
        self.calls.append(("fetch", date_range))
        if self.fail_fetch:
            raise CollaboratorReadError("fetch failed")
        selected = [
            record for record in self.records.values()
            if date_range is None or date_range.contains(record.timestamp)
        ]
        return sorted(selected, key=lambda record: record.timestamp)

    def get_line(self, line_id: str) -> Any:
        if line_id not in self.records:
            raise MissingRecordError(f"Unknown id: {line_id}")
        return self.records[line_id]

    def update_line(self, line_id: str, fields: Mapping[str, Any]) -> Any:
        self.calls.append(("update", line_id, dict(fields)))
        if line_id in self.fail_update:
            raise CollaboratorWriteError(f"update failed for {line_id}")
        record = self.get_line(line_id)
        if "Quantity" in fields:
            record = replace(record, quantity=fields["Quantity"])
        self.records[line_id] = record
        return record

    def insert_archive(self, record: Any, *, reason: str, cancelled_at: datetime) -> None:
        self.calls.append(("archive", record.line_id))
        if self.fail_archive:
            raise CollaboratorWriteError(f"archive insert failed for {record.line_id}")
        self.archive.append((record.line_id, reason, cancelled_at))

    def delete_line(self, line_id: str) -> None:
        self.calls.append(("delete", line_id))
        if line_id in self.fail_delete:
            raise CollaboratorWriteError(f"delete failed for {line_id}")
        self.get_line(line_id)
        del self.records[line_id]

    def delete_lines(self, line_ids: Sequence[str]) -> int:
        self.calls.append(("delete_many", tuple(line_ids)))
        for line_id in line_ids:
            if line_id in self.fail_delete:
                raise CollaboratorWriteError(f"delete failed for {line_id}")
            self.get_line(line_id)
        for line_id in line_ids:
            del self.records[line_id]
        return len(line_ids)

    def delete_by_range(self, start: datetime, end: datetime) -> int:
        self.calls.append(("delete_range", start, end))
        doomed = [key for key, record in self.records.items() if start <= record.timestamp < end]
        for key in doomed:
            del self.records[key]
        return len(doomed)


class FakeBookingStore:
    """Booking store with an archive list and injectable failures."""

    def __init__(self, bookings: Sequence[data_manager.PromoBooking] = ()) -> None:
        self.records = {booking.booking_id: booking for booking in bookings}
        self.archive: List[tuple] = []
        self.fail_read = False
        self.fail_archive = False
        self.fail_delete = False
        self.calls: List[str] = []

    def read_record(self, record_id: str) -> data_manager.PromoBooking:
        self.calls.append("read")
        if self.fail_read:
            raise CollaboratorReadError("booking read failed")
        if record_id not in self.records:
            raise MissingRecordError(f"Unknown BookingID: {record_id}")
        return self.records[record_id]

    def insert_archive(self, record: data_manager.PromoBooking, *, reason: str, cancelled_at: datetime) -> None:
        self.calls.append("archive")
        if self.fail_archive:
            raise CollaboratorWriteError("archive insert failed")
        self.archive.append((record.booking_id, reason, cancelled_at))

    def delete_record(self, record_id: str) -> None:
        self.calls.append("delete")
        if self.fail_delete:
            raise CollaboratorWriteError("booking delete failed")
        del self.records[record_id]


@pytest.fixture
def counters() -> FakeCounterStore:
    return FakeCounterStore(values={"P-COFFEE": 10, "P-CHIPS": 2})


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "lounge_workbook.xlsx",
        lounge_name="Test Lounge",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
