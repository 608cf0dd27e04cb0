import numpy as np
from dataclasses import dataclass
from typing import Optional, Sequence

from pricecast.config import FEATURE_COUNT, MIN_TRAINING_LENGTH, SEQUENCE_LENGTH
from pricecast.indicators import compute_indicators_partial

# Fixed reference ranges for indicators that are not price-denominated.
RSI_RANGE = (0.0, 100.0)
MACD_RANGE = (-10.0, 10.0)
# Volatility is normalized against [0, max_price * VOLATILITY_RANGE_FRACTION].
VOLATILITY_RANGE_FRACTION = 0.1


@dataclass
class TrainingData:
    """Training examples built from a price history.

    ``sequences`` has shape ``(n_examples, SEQUENCE_LENGTH, FEATURE_COUNT)``
    and ``targets`` has shape ``(n_examples, 1)``. Each target is normalized
    against its own window; ``min_price``/``max_price`` describe the whole
    input series and are kept for bookkeeping only.
    """

    sequences: np.ndarray
    targets: np.ndarray
    min_price: float
    max_price: float

    def __len__(self) -> int:
        return int(self.sequences.shape[0])


@dataclass
class InferenceData:
    """A single model input plus the window range used to denormalize the output."""

    sequence: np.ndarray
    min_price: float
    max_price: float


def normalize(value: float, lo: float, hi: float) -> float:
    """Rescale ``value`` linearly so that ``lo -> 0`` and ``hi -> 1``.

    A zero-width range (flat window) maps every value to the midpoint 0.5.
    """
    span = hi - lo
    if span == 0:
        return 0.5
    return (value - lo) / span


def denormalize(value: float, lo: float, hi: float) -> float:
    """Inverse of :func:`normalize` for the same ``[lo, hi]``."""
    return value * (hi - lo) + lo


def build_feature_sequence(window: Sequence[float]) -> np.ndarray:
    """Build the per-step feature matrix for one window.

    The feature vector at step ``idx`` only sees ``window[:idx + 1]``, so a
    sequence never leaks prices from later steps into earlier ones. Columns::

        [price, sma5, sma10, rsi14, macd, ema12, ema26, volatility20]

    Price-denominated columns are normalized against the window's own
    ``[min, max]``; RSI against ``[0, 100]``; MACD against ``[-10, 10]``;
    volatility against ``[0, max * 0.1]``.
    """
    w = np.asarray(window, dtype=float).reshape(-1)
    if len(w) == 0:
        raise ValueError("Cannot build a feature sequence from an empty window.")

    min_price = float(w.min())
    max_price = float(w.max())
    vol_hi = max_price * VOLATILITY_RANGE_FRACTION

    features = np.empty((len(w), FEATURE_COUNT), dtype=np.float32)
    for idx in range(len(w)):
        ind = compute_indicators_partial(w[: idx + 1])
        features[idx] = (
            normalize(float(w[idx]), min_price, max_price),
            normalize(ind.sma5, min_price, max_price),
            normalize(ind.sma10, min_price, max_price),
            normalize(ind.rsi14, *RSI_RANGE),
            normalize(ind.macd, *MACD_RANGE),
            normalize(ind.ema12, min_price, max_price),
            normalize(ind.ema26, min_price, max_price),
            normalize(ind.volatility20, 0.0, vol_hi),
        )
    return features


def prepare_training(
    prices: Sequence[float],
    sequence_length: int = SEQUENCE_LENGTH,
    min_length: int = MIN_TRAINING_LENGTH,
) -> Optional[TrainingData]:
    """Slide a window over ``prices`` and build ``(sequence, next_price)`` examples.

    Returns ``None`` when fewer than ``min_length`` prices are available;
    otherwise exactly ``len(prices) - sequence_length`` examples.
    """
    p = np.asarray(prices, dtype=float).reshape(-1)
    if len(p) < min_length:
        return None

    n_examples = len(p) - sequence_length
    sequences = np.empty((n_examples, sequence_length, FEATURE_COUNT), dtype=np.float32)
    targets = np.empty((n_examples, 1), dtype=np.float32)

    for k, i in enumerate(range(sequence_length, len(p))):
        window = p[i - sequence_length : i]
        sequences[k] = build_feature_sequence(window)
        targets[k, 0] = normalize(float(p[i]), float(window.min()), float(window.max()))

    return TrainingData(
        sequences=sequences,
        targets=targets,
        min_price=float(p.min()),
        max_price=float(p.max()),
    )


def prepare_inference(
    prices: Sequence[float],
    sequence_length: int = SEQUENCE_LENGTH,
) -> Optional[InferenceData]:
    """Build the model input for the most recent ``sequence_length`` prices.

    Returns ``None`` when the history is shorter than one window.
    """
    p = np.asarray(prices, dtype=float).reshape(-1)
    if len(p) < sequence_length:
        return None

    window = p[-sequence_length:]
    return InferenceData(
        sequence=build_feature_sequence(window)[np.newaxis, :, :],  # (1, T, F)
        min_price=float(window.min()),
        max_price=float(window.max()),
    )
