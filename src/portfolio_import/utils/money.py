"""Rounding and display for cost basis and share counts."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


Numeric = float | int | str | Decimal | None

CENT = Decimal("0.01")
# Brokers report fractional shares to six places.
SHARE_QUANTUM = Decimal("0.000001")


def _quantize(value: Numeric, quantum: Decimal) -> Decimal:
    if value is None:
        return Decimal("0")
    number = value if isinstance(value, Decimal) else Decimal(str(value))
    return number.quantize(quantum, rounding=ROUND_HALF_UP)


def round_money(value: Numeric) -> float:
    return float(_quantize(value, CENT))


def round_shares(value: Numeric) -> float:
    return float(_quantize(value, SHARE_QUANTUM))


def format_money(value: float | None) -> str:
    """``$1,234.50``; negatives as ``-$12.50``; ``n/a`` when absent."""
    if value is None:
        return "n/a"
    amount = _quantize(value, CENT)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_shares(value: float | None) -> str:
    if value is None:
        return "n/a"
    text = f"{_quantize(value, SHARE_QUANTUM):,.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"
