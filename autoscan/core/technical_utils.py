"""
Technical indicators over plain lists of closing prices.

The screening engine only needs a handful of daily-bar indicators, so these
work on ``Sequence[float]`` directly without a dataframe.

Usage:
    from autoscan.core.technical_utils import rsi, sma, macd, technical_snapshot

    closes = [100.0, 101.5, 99.0, 102.0, ...]
    snapshot = technical_snapshot(closes)
    snapshot["rsi"], snapshot["macd_direction"]
"""

from __future__ import annotations

from typing import Literal, NamedTuple, Sequence


MacdDirection = Literal["bullish", "bearish"]


class MacdResult(NamedTuple):
    line: float | None
    signal: float | None
    histogram: float | None


def sma(values: Sequence[float], period: int) -> float | None:
    """Simple moving average of the last ``period`` values, or None if too short."""
    if period <= 0 or len(values) < period:
        return None
    return sum(values[-period:]) / period


def ema_series(values: Sequence[float], period: int) -> list[float]:
    """
    Exponential moving average series, seeded with the SMA of the first window.

    The first element corresponds to ``values[period - 1]``. Returns an empty
    list when there is not enough data.
    """
    if period <= 0 or len(values) < period:
        return []

    multiplier = 2 / (period + 1)
    current = sum(values[:period]) / period
    series = [current]
    for price in values[period:]:
        current = (price - current) * multiplier + current
        series.append(current)
    return series


def ema(values: Sequence[float], period: int) -> float | None:
    """Latest EMA value, or None if insufficient data."""
    series = ema_series(values, period)
    return series[-1] if series else None


def rsi(closes: Sequence[float], period: int = 14) -> float | None:
    """
    Relative Strength Index with Wilder smoothing.

    Returns:
        RSI in [0, 100], or None if fewer than ``period + 1`` closes
    """
    if len(closes) < period + 1:
        return None

    gains: list[float] = []
    losses: list[float] = []
    for prev, cur in zip(closes, closes[1:]):
        change = cur - prev
        gains.append(change if change > 0 else 0.0)
        losses.append(-change if change < 0 else 0.0)

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0

    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def macd(
    closes: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MacdResult:
    """
    MACD line, signal line and histogram.

    The line is available once there are ``slow_period`` closes; the signal
    needs ``signal_period`` more line values.
    """
    slow = ema_series(closes, slow_period)
    if not slow:
        return MacdResult(None, None, None)

    fast = ema_series(closes, fast_period)
    # Align the fast series to the slow one (both end at the last close)
    fast = fast[len(fast) - len(slow) :]
    line_series = [f - s for f, s in zip(fast, slow)]
    line = line_series[-1]

    signal = ema(line_series, signal_period)
    if signal is None:
        return MacdResult(line, None, None)
    return MacdResult(line, signal, line - signal)


def macd_direction(result: MacdResult) -> MacdDirection | None:
    """
    Bullish when the MACD line is above zero, bearish otherwise.

    A line sitting exactly at zero counts as bearish.
    """
    if result.line is None:
        return None
    return "bullish" if result.line > 0 else "bearish"


def technical_snapshot(closes: Sequence[float]) -> dict[str, float | str | None]:
    """
    Indicator values used by stock screening, computed from daily closes.

    Keys: rsi, sma20, sma50, sma200, macd, macd_signal, macd_histogram,
    macd_direction. Any indicator without enough history is None.
    """
    result = macd(closes)
    return {
        "rsi": rsi(closes, 14),
        "sma20": sma(closes, 20),
        "sma50": sma(closes, 50),
        "sma200": sma(closes, 200),
        "macd": result.line,
        "macd_signal": result.signal,
        "macd_histogram": result.histogram,
        "macd_direction": macd_direction(result),
    }


__all__ = [
    "MacdResult",
    "sma",
    "ema",
    "ema_series",
    "rsi",
    "macd",
    "macd_direction",
    "technical_snapshot",
]
