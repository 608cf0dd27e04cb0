"""Technical indicators over a chronological price window.

Every function is pure and accepts any sequence of floats (list, numpy array,
pandas Series). When the window is shorter than an indicator's period the
indicator returns a fixed neutral value instead of failing:

- ``sma`` / ``ema``: the last price
- ``rsi``: 50
- ``volatility``: 0

Those values are consumed downstream as "no signal" and are part of the
contract.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from pricecast.contracts import IndicatorSet

# Longest moving-average period in an IndicatorSet (sma20 / volatility20).
FULL_INDICATOR_WINDOW = 20


def _as_array(prices: Sequence[float]) -> np.ndarray:
    return np.asarray(prices, dtype=float).reshape(-1)


def average(values: np.ndarray) -> float:
    return math.fsum(values) / len(values)


def _last(w: np.ndarray) -> float:
    if len(w) == 0:
        raise ValueError("Price window is empty.")
    return float(w[-1])


def sma(prices: Sequence[float], period: int) -> float:
    """Mean of the last ``period`` prices, or the last price for a short window."""
    if period <= 0:
        raise ValueError(f"period must be positive (got {period}).")
    w = _as_array(prices)
    if len(w) < period:
        return _last(w)
    return average(w[-period:])


def ema(prices: Sequence[float], period: int) -> float:
    """Exponential moving average seeded with the SMA of the first ``period`` prices."""
    if period <= 0:
        raise ValueError(f"period must be positive (got {period}).")
    w = _as_array(prices)
    if len(w) < period:
        return _last(w)

    multiplier = 2.0 / (period + 1)
    value = average(w[:period])
    for price in w[period:]:
        value = (float(price) - value) * multiplier + value
    return value


def rsi(prices: Sequence[float], period: int = 14) -> float:
    """Relative strength index over the last ``period`` price changes."""
    if period <= 0:
        raise ValueError(f"period must be positive (got {period}).")
    w = _as_array(prices)
    if len(w) < period + 1:
        return 50.0

    deltas = np.diff(w[-(period + 1):])
    avg_gain = math.fsum(deltas[deltas > 0]) / period
    avg_loss = -math.fsum(deltas[deltas < 0]) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def macd(prices: Sequence[float]) -> float:
    return ema(prices, 12) - ema(prices, 26)


def volatility(prices: Sequence[float], period: int = 20) -> float:
    """Population standard deviation of the last ``period`` prices."""
    if period <= 0:
        raise ValueError(f"period must be positive (got {period}).")
    w = _as_array(prices)
    if len(w) < period:
        return 0.0
    return pstdev(w[-period:])


def pstdev(values: Sequence[float]) -> float:
    """Population standard deviation of an arbitrary non-empty window."""
    w = _as_array(values)
    if len(w) == 0:
        raise ValueError("Price window is empty.")
    mean = average(w)
    return math.sqrt(math.fsum((w - mean) ** 2) / len(w))


def compute_indicators_partial(prices: Sequence[float]) -> IndicatorSet:
    """All indicators for any non-empty window, each with its own short-window fallback."""
    w = _as_array(prices)
    return IndicatorSet(
        sma5=sma(w, 5),
        sma10=sma(w, 10),
        sma20=sma(w, 20),
        ema12=ema(w, 12),
        ema26=ema(w, 26),
        rsi14=rsi(w, 14),
        macd=macd(w),
        volatility20=volatility(w, 20),
    )


def compute_indicators(prices: Optional[Sequence[float]]) -> Optional[IndicatorSet]:
    """Full indicator set, or ``None`` when the window is shorter than 20 prices."""
    if prices is None:
        return None
    w = _as_array(prices)
    if len(w) < FULL_INDICATOR_WINDOW:
        return None
    return compute_indicators_partial(w)
