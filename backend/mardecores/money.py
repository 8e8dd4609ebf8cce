# Overview: Fixed-point currency arithmetic; every ledger computation goes through here.

"""
Money helpers (BRL, two decimal places).

Amounts are ``decimal.Decimal`` quantized to cents with ROUND_HALF_UP.
Binary floats are only accepted at the edge (JSON input) and are converted
through ``str`` so 0.1 stays 0.10.

Equality and zero checks use an epsilon (default R$ 0.005) that absorbs
residue left in legacy rows written with float arithmetic.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from .errors import InvalidAmountError

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_EPSILON = Decimal("0.005")
# Numeric(12, 2) columns hold up to 9_999_999_999.99
MAX_AMOUNT = Decimal("1e10")

_epsilon = DEFAULT_EPSILON


def set_epsilon(value) -> None:
    """Configure the comparison tolerance (called from create_app)."""
    global _epsilon
    eps = Decimal(str(value))
    if eps < 0 or eps > DEFAULT_EPSILON:
        raise ValueError(f"epsilon must be between 0 and {DEFAULT_EPSILON}")
    _epsilon = eps


def get_epsilon() -> Decimal:
    return _epsilon


def to_money(value) -> Decimal:
    """
    Coerce input to a cent-quantized Decimal.

    Raises:
        InvalidAmountError: for None, booleans, non-numeric strings, NaN/inf,
            and magnitudes the ledger columns cannot store
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            dec = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"Invalid amount: {value!r}")
    if not dec.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    return _bounded(dec, value)


def _bounded(dec: Decimal, original) -> Decimal:
    try:
        quantized = dec.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmountError(f"Amount out of range: {original!r}")
    if abs(quantized) >= MAX_AMOUNT:
        raise InvalidAmountError(f"Amount out of range: {original!r}")
    return quantized


def add(*values) -> Decimal:
    total = ZERO
    for v in values:
        total += to_money(v)
    return total


def total_of(values: Iterable) -> Decimal:
    return add(*list(values))


def subtract(a, b) -> Decimal:
    return to_money(a) - to_money(b)


def multiply(amount, quantity: int) -> Decimal:
    """Line total: unit amount times an integer quantity."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidAmountError(f"Quantity must be an integer, got {quantity!r}")
    return _bounded(to_money(amount) * quantity, f"{amount} x {quantity}")


def prorate(amount, numerator, denominator) -> Decimal:
    """amount * numerator / denominator, quantized to cents. Zero denominator -> 0."""
    den = to_money(denominator)
    if den == 0:
        return ZERO
    raw = to_money(amount) * to_money(numerator) / den
    return raw.quantize(CENTS, rounding=ROUND_HALF_UP)


def compare(a, b) -> int:
    """-1, 0 or 1; differences within epsilon compare equal."""
    diff = to_money(a) - to_money(b)
    if abs(diff) <= _epsilon:
        return 0
    return 1 if diff > 0 else -1


def money_equal(a, b) -> bool:
    return compare(a, b) == 0


def is_zero(value) -> bool:
    return compare(value, ZERO) == 0


def is_positive(value) -> bool:
    return compare(value, ZERO) > 0


def non_negative(value) -> Decimal:
    """max(0, value); residue within epsilon below zero also clamps to 0."""
    dec = to_money(value)
    return ZERO if dec < 0 or is_zero(dec) else dec


def format_brl(value) -> str:
    """R$ 1.234,56"""
    dec = to_money(value)
    sign = "-" if dec < 0 else ""
    integer, _, cents = f"{abs(dec):,.2f}".partition(".")
    return f"{sign}R$ {integer.replace(',', '.')},{cents}"


def to_json(value) -> str | None:
    """Serialize for API payloads (string keeps precision)."""
    if value is None:
        return None
    return str(to_money(value))
