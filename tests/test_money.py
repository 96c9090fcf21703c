"""Unit tests for the total money and flag coercions."""

from __future__ import annotations

from decimal import Decimal

import pytest

from lounge_settlement import money


# ---------------------------------------------------------------------------
# to_number / round2
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, Decimal("0")),
        ("", Decimal("0")),
        ("  12.5 ", Decimal("12.5")),
        ("abc", Decimal("0")),
        ("NaN", Decimal("0")),
        ("Infinity", Decimal("0")),
        (float("inf"), Decimal("0")),
        (7, Decimal("7")),
        (0.1, Decimal("0.1")),
        (True, Decimal("0")),
        (object(), Decimal("0")),
    ],
)
def test_to_number_never_raises(raw, expected):
    """to_number should degrade unparsable input to zero."""

    assert money.to_number(raw) == expected


def test_round2_uses_half_up():
    """round2 should round halves away from zero, not to even."""

    assert money.round2("2.345") == Decimal("2.35")
    assert money.round2("2.335") == Decimal("2.34")
    assert money.round2(0.125) == Decimal("0.13")


def test_round2_normalizes_negative_zero():
    """round2 should not produce ``-0.00``."""

    result = money.round2("-0.001")
    assert result == Decimal("0.00")
    assert str(result) == "0.00"


def test_round2_of_garbage_is_zero():
    """round2 should return 0.00 for non-finite or unparsable input."""

    assert money.round2("not a number") == Decimal("0.00")
    assert money.round2(float("nan")) == Decimal("0.00")


# ---------------------------------------------------------------------------
# to_bool / to_int
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw", [True, 1, 2.5, Decimal("1"), "true", " TRUE ", "1", "yes", "Paid"])
def test_to_bool_truthy_representations(raw):
    """to_bool should accept every stored truthy representation."""

    assert money.to_bool(raw) is True


@pytest.mark.parametrize("raw", [False, 0, 0.0, None, "", "false", "0", "no", "unpaid", [], object()])
def test_to_bool_falsy_representations(raw):
    """to_bool should treat everything else as False."""

    assert money.to_bool(raw) is False


def test_to_int_floors_and_clamps():
    """to_int should floor decimals and never return a negative counter."""

    assert money.to_int("7.9") == 7
    assert money.to_int(-3) == 0
    assert money.to_int(None) == 0
    assert money.to_int("12") == 12


# ---------------------------------------------------------------------------
# Clamps and display
# ---------------------------------------------------------------------------


def test_clamp_helpers():
    """clamp and clamp_nonnegative should bound values inclusively."""

    assert money.clamp(Decimal("150"), Decimal("0"), Decimal("100")) == Decimal("100")
    assert money.clamp(Decimal("-5"), Decimal("0"), Decimal("100")) == Decimal("0")
    assert money.clamp_nonnegative("-12.50") == Decimal("0")
    assert money.clamp_nonnegative("12.50") == Decimal("12.50")


def test_money_from_input_rounds_and_floors():
    """money_from_input should clamp at zero and round to cents."""

    assert money.money_from_input("-10") == Decimal("0.00")
    assert money.money_from_input("99.999") == Decimal("100.00")
    assert money.money_from_input("") == Decimal("0.00")


def test_format_money_groups_thousands():
    """format_money should render a peso amount with two decimals."""

    assert money.format_money(Decimal("1234.5")) == "₱1,234.50"
    assert money.format_money(None) == "₱0.00"
