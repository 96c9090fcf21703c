"""Money helpers shared by every settlement computation.

All amounts are :class:`~decimal.Decimal` values rounded half-up to two
places. The coercion helpers are total: the workbook (and any remote store
that replaces it) may hand back numbers as strings or booleans as ``"1"``,
so unparsable input degrades to zero or ``False`` instead of raising.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_TRUE_STRINGS = frozenset({"true", "1", "yes", "paid"})


def to_number(value: Any) -> Decimal:
    """Coerce a stored numeric representation into a finite ``Decimal``.

    Args:
        value (Any): Raw cell value. Integers, floats, decimals, and numeric
            strings are accepted; booleans are not treated as numbers.

    Returns:
        Decimal: Parsed value, or ``Decimal("0")`` for ``None``, blank or
            unparsable strings, booleans, and non-finite numbers.
    """

    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        candidate = Decimal(str(value))
        return candidate if candidate.is_finite() else Decimal("0")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return Decimal("0")
        try:
            candidate = Decimal(text)
        except InvalidOperation:
            return Decimal("0")
        return candidate if candidate.is_finite() else Decimal("0")
    return Decimal("0")


def round2(value: Any) -> Decimal:
    """Round to two decimal places using half-up rounding.

    Non-finite or unparsable input yields ``Decimal("0.00")``. Negative zero
    is normalized so that ``-0.001`` does not render as ``-0.00``.
    """

    rounded = to_number(value).quantize(CENT, rounding=ROUND_HALF_UP)
    return ZERO if rounded == 0 else rounded


def to_int(value: Any) -> int:
    """Coerce a stored counter or attempt count into a non-negative integer."""

    floored = to_number(value).to_integral_value(rounding=ROUND_FLOOR)
    return max(0, int(floored))


def to_bool(value: Any) -> bool:
    """Interpret heterogeneous stored flags.

    ``True``, nonzero numbers, and the strings ``true``, ``1``, ``yes`` and
    ``paid`` (trimmed, case-insensitive) are truthy. Everything else,
    including ``None`` and unknown strings, is ``False``.
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return to_number(value) != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """Clamp ``value`` into the closed interval ``[lower, upper]``."""

    return max(lower, min(upper, value))


def clamp_nonnegative(value: Any) -> Decimal:
    """Return ``max(0, value)`` after numeric coercion."""

    return max(Decimal("0"), to_number(value))


def money_from_input(value: Any) -> Decimal:
    """Normalize a tender amount typed by an operator."""

    return round2(clamp_nonnegative(value))


def format_money(value: Any) -> str:
    """Render an amount for display, e.g. ``₱1,234.50``."""

    return f"₱{round2(value):,.2f}"


__all__ = [
    "CENT",
    "ZERO",
    "to_number",
    "round2",
    "to_int",
    "to_bool",
    "clamp",
    "clamp_nonnegative",
    "money_from_input",
    "format_money",
]
