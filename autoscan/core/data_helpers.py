"""
Data conversion helpers shared by providers, services and repositories.

Usage:
    from autoscan.core.data_helpers import safe_float, to_decimal, utcnow
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any


CENT = Decimal("0.01")


def safe_float(value: Any, default: float | None = None) -> float | None:
    """
    Convert a provider value to float.

    Alpha Vantage reports missing numbers as the strings "None" or "-", so
    anything unparseable (or NaN/Inf) becomes ``default``.
    """
    if value is None:
        return default
    try:
        f = float(value)
    except (ValueError, TypeError):
        return default
    if math.isnan(f) or math.isinf(f):
        return default
    return f


def safe_int(value: Any, default: int | None = None) -> int | None:
    """Convert to int, accepting float strings like "123.0"."""
    f = safe_float(value)
    if f is None:
        return default
    return int(f)


def to_decimal(value: Any) -> Decimal | None:
    """Convert a number or numeric string to Decimal without float noise."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def money(value: Decimal | float | int) -> Decimal:
    """Round to cents (half up)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def pct_change(
    current: float | Decimal | None,
    previous: float | Decimal | None,
) -> float | None:
    """Percent change from ``previous`` to ``current`` (5.0 means +5%)."""
    if current is None or previous is None or previous == 0:
        return None
    return float((Decimal(str(current)) - Decimal(str(previous))) / abs(Decimal(str(previous))) * 100)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes.

    SQLite drops tzinfo on the way back, so timestamps read from it are naive
    even though they were written in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = [
    "CENT",
    "ensure_utc",
    "money",
    "pct_change",
    "safe_float",
    "safe_int",
    "to_decimal",
    "utcnow",
]
