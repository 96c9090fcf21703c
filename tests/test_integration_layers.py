"""Integration tests spanning the data, business, and CLI layers.

Every scenario works on a real workbook file: records are appended through
the data layer, persisted, and then driven through the business layer or the
CLI before the file is reopened to check what actually landed on disk.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import BASE_TIME, make_booking, make_line

from lounge_settlement import cli, constants, core_logic, data_manager
from lounge_settlement.errors import MissingRecordError
from lounge_settlement.periods import DateRange


DAY = date(2024, 5, 6)
NOW = datetime(2024, 5, 6, 18, 0, tzinfo=UTC)


@pytest.fixture
def seeded_config(config_file: Path) -> Path:
    """Workbook with two orders, one restock, and two bookings."""

    context = core_logic.load_runtime_context(config_file)
    workbook = context.workbook
    for line in (
        make_line("A1", quantity=2),
        make_line("A2", seconds=6, product="P-CHIPS", unit_price="35.00"),
        make_line("A3", seconds=14, product="P-CHIPS", unit_price="35.00"),
        make_line("B1", seconds=120, name="Ben Reyes", seat="B2", quantity=3),
        make_line("OLD", seconds=-86_400),
    ):
        data_manager.append_line_item(workbook, line)
    data_manager.append_restock(
        workbook,
        data_manager.RestockRecord(record_id="R-1", timestamp=BASE_TIME, product_ref="P-COFFEE", quantity=12),
    )
    data_manager.append_booking(workbook, make_booking("B-1"))
    data_manager.append_booking(workbook, make_booking("B-2", created_at=BASE_TIME + timedelta(minutes=5)))
    data_manager.append_attendance(
        workbook,
        data_manager.AttendanceLog(log_id="G-1", booking_id="B-2", in_at=BASE_TIME + timedelta(hours=1)),
    )
    core_logic.persist_context(context)
    return config_file


def _reload(config_path: Path) -> core_logic.RuntimeContext:
    return core_logic.load_runtime_context(config_path)


def test_grouping_over_persisted_lines(seeded_config):
    """Lines within the window chain into one order; the previous day is excluded."""

    views = core_logic.list_day_orders(_reload(seeded_config), DAY)

    assert [view.order.line_ids for view in views] == [("B1",), ("A1", "A2", "A3")]
    assert views[1].order.grand_total == Decimal("230.00")
    assert views[0].order.grand_total == Decimal("240.00")


def test_payment_round_trip_through_disk(seeded_config):
    """A saved payment should regroup to the same figures after reopening."""

    context = _reload(seeded_config)
    order = core_logic.list_day_orders(context, DAY)[1].order
    core_logic.save_order_payment(context, order, "50", now=NOW)
    core_logic.persist_context(context)

    reopened = core_logic.list_day_orders(_reload(seeded_config), DAY)[1]
    assert reopened.order.gcash_amount == Decimal("50.00")
    assert reopened.order.cash_amount == Decimal("180.00")
    assert reopened.payment.paid is True
    assert reopened.order.paid_at == NOW


def test_void_line_after_payment_keeps_other_shares(seeded_config):
    """Voiding the first line of a paid order leaves the others' tenders on disk."""

    context = _reload(seeded_config)
    order = core_logic.list_day_orders(context, DAY)[1].order
    core_logic.save_order_payment(context, order, "230", mode=constants.PaymentMode.FREE, now=NOW)
    core_logic.void_line(context, "A1")
    core_logic.persist_context(context)

    reopened = core_logic.list_day_orders(_reload(seeded_config), DAY)[1]
    assert reopened.order.line_ids == ("A2", "A3")
    assert reopened.order.gcash_amount == Decimal("70.00")
    assert reopened.payment.paid is True


def test_void_range_then_delete_range(seeded_config):
    """Voiding a day lowers counters; deleting the previous day does not."""

    context = _reload(seeded_config)
    outcomes = core_logic.void_range(context, DateRange.day(DAY, UTC))
    assert len(outcomes) == 4
    deleted = core_logic.delete_range(context, DateRange.day(DAY - timedelta(days=1), UTC))
    assert deleted.deleted == 1
    core_logic.persist_context(context)

    reopened = _reload(seeded_config)
    assert reopened.lines.fetch_lines() == []
    # Coffee: 10 sold - 2 (A1) - 3 (B1); chips: 2 sold - 1 - 1.
    assert reopened.sold_counter.read_counter("P-COFFEE") == 5
    assert reopened.sold_counter.read_counter("P-CHIPS") == 0


def test_sold_counter_floors_at_zero(seeded_config):
    """Voiding more than was counted should clamp the counter to zero."""

    context = _reload(seeded_config)
    data_manager.append_line_item(context.workbook, make_line("BIG", seconds=600, quantity=50))
    outcome = core_logic.void_line(context, "BIG")
    assert (outcome.counter_before, outcome.counter_after) == (10, 0)


def test_restock_edit_then_void_on_disk(seeded_config):
    """Restock edits and voids should persist both the record and the counter."""

    context = _reload(seeded_config)
    core_logic.restock_edit(context, "R-1", 4)
    core_logic.persist_context(context)

    reopened = _reload(seeded_config)
    assert reopened.restocked_counter.read_counter("P-COFFEE") == 32
    assert [record.quantity for record in core_logic.list_restocks(reopened)] == [4]

    core_logic.void_restock(reopened, "R-1")
    assert reopened.restocked_counter.read_counter("P-COFFEE") == 28
    with pytest.raises(MissingRecordError):
        reopened.restocks.get_line("R-1")


def test_cancel_booking_archives_once(seeded_config):
    """Cancelling should leave exactly one archive row and no original."""

    context = _reload(seeded_config)
    core_logic.cancel_booking(context, "B-1", "guest left", now=NOW)
    core_logic.persist_context(context)

    reopened = _reload(seeded_config)
    assert [booking.booking_id for booking in reopened.bookings.fetch_lines()] == ["B-2"]
    archive = reopened.workbook[constants.SheetName.PROMO_BOOKINGS_CANCELLED.value]
    rows = [row for row in archive.iter_rows(min_row=2, values_only=True) if row[0]]
    assert len(rows) == 1
    assert rows[0][1] == "guest left"


def test_booking_views_from_disk(seeded_config):
    """Booking views should carry attendance and phase from persisted rows."""

    views = core_logic.list_bookings(_reload(seeded_config), now=BASE_TIME + timedelta(hours=2))

    assert [view.booking.booking_id for view in views] == ["B-2", "B-1"]
    assert views[0].attendance is constants.AttendanceStatus.IN
    assert views[1].attendance is None
    assert all(view.phase is constants.BookingPhase.ONGOING for view in views)


def test_cli_void_line_end_to_end(seeded_config, capsys):
    """The CLI should void a line and save the workbook."""

    assert cli.main(["--config", str(seeded_config), "void-line", "--line-id", "B1"]) == 0
    assert "10 -> 7" in capsys.readouterr().out

    reopened = _reload(seeded_config)
    assert reopened.sold_counter.read_counter("P-COFFEE") == 7
    with pytest.raises(MissingRecordError):
        reopened.lines.get_line("B1")


def test_cli_delete_order_end_to_end(seeded_config):
    """delete-order should remove all lines of the order and leave counters."""

    key = core_logic.list_day_orders(_reload(seeded_config), DAY)[1].order.key
    code = cli.main(["--config", str(seeded_config), "delete-order", "--day", "2024-05-06", "--order-key", key])
    assert code == 0

    reopened = _reload(seeded_config)
    assert sorted(line.line_id for line in reopened.lines.fetch_lines()) == ["B1", "OLD"]
    assert reopened.sold_counter.read_counter("P-CHIPS") == 2


def test_cli_unknown_line_exits_1_without_saving(seeded_config):
    """A void against an unknown line fails and leaves the file unchanged."""

    assert cli.main(["--config", str(seeded_config), "void-line", "--line-id", "ZZZ"]) == 1
    assert len(_reload(seeded_config).lines.fetch_lines()) == 5
