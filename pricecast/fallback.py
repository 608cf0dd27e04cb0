"""Statistical predictions that need no trained model.

Two deterministic variants are provided:

- :func:`statistical_prediction` is the plain trend/momentum heuristic used
  when machine learning is switched off or unavailable.
- :func:`indicator_prediction` is the variant the sequence predictor falls
  back to while it has no usable model. It additionally reacts to RSI
  extremes and MACD.

Both return ``None`` for fewer than five prices.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from pricecast.config import MIN_FALLBACK_LENGTH
from pricecast.contracts import PredictionRecord
from pricecast.indicators import average, compute_indicators, pstdev

RECENT_WINDOW = 10
MOMENTUM_WINDOW = 3

TREND_WEIGHT = 0.3
MOMENTUM_WEIGHT = 0.2
MACD_WEIGHT = 0.1
RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0
RSI_ADJUSTMENT = 0.02


def clamp(lo: float, hi: float, value: float) -> float:
    return max(lo, min(hi, value))


def direction_of(predicted: float, last: float) -> str:
    return "up" if predicted > last else "down"


def statistical_prediction(prices: Optional[Sequence[float]]) -> Optional[PredictionRecord]:
    if prices is None:
        return None
    p = np.asarray(prices, dtype=float).reshape(-1)
    if len(p) < MIN_FALLBACK_LENGTH:
        return None

    recent = p[-RECENT_WINDOW:]
    last = float(recent[-1])
    avg = average(recent)
    trend = last - float(recent[0])
    momentum = average(recent[-MOMENTUM_WINDOW:]) - avg
    prediction = last + trend * TREND_WEIGHT + momentum * MOMENTUM_WEIGHT

    vol = pstdev(recent)
    confidence = clamp(50.0, 95.0, 70.0 - (vol / (avg or 1.0)) * 100.0)

    return PredictionRecord(
        predicted_price=float(prediction),
        confidence=round(confidence, 1),
        direction=direction_of(prediction, last),
        volatility=round(vol, 2),
        method="statistical",
        indicators=compute_indicators(p),
    )


def indicator_prediction(prices: Optional[Sequence[float]]) -> Optional[PredictionRecord]:
    """Trend/momentum heuristic nudged by RSI extremes and MACD.

    Momentum compares the mean of the last three prices with the mean of the
    first three in the recent window. The RSI/MACD adjustments and the
    20-period volatility only apply once a full indicator set exists (at least
    20 prices); before that volatility is 0 and confidence sits at 70.
    """
    if prices is None:
        return None
    p = np.asarray(prices, dtype=float).reshape(-1)
    if len(p) < MIN_FALLBACK_LENGTH:
        return None

    indicators = compute_indicators(p)
    recent = p[-RECENT_WINDOW:]
    last = float(p[-1])

    trend = float(recent[-1]) - float(recent[0])
    momentum = average(recent[-MOMENTUM_WINDOW:]) - average(recent[:MOMENTUM_WINDOW])

    prediction = last + trend * TREND_WEIGHT + momentum * MOMENTUM_WEIGHT
    if indicators is not None:
        if indicators.rsi14 > RSI_OVERBOUGHT:
            prediction -= last * RSI_ADJUSTMENT
        elif indicators.rsi14 < RSI_OVERSOLD:
            prediction += last * RSI_ADJUSTMENT
        prediction += indicators.macd * MACD_WEIGHT

    vol = indicators.volatility20 if indicators is not None else 0.0
    confidence = clamp(50.0, 85.0, 70.0 - (vol / last) * 100.0)

    return PredictionRecord(
        predicted_price=float(prediction),
        confidence=round(confidence, 1),
        direction=direction_of(prediction, last),
        volatility=float(vol),
        method="statistical",
        indicators=indicators,
    )
