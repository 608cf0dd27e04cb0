from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal

Direction = Literal["up", "down"]
Method = Literal["ml", "statistical"]
TrainFailureReason = Literal["insufficient-data", "training-exception", "busy"]


@dataclass(frozen=True)
class IndicatorSet:
    sma5: float
    sma10: float
    sma20: float
    ema12: float
    ema26: float
    rsi14: float
    macd: float
    volatility20: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PredictionRecord:
    """Unit of output handed to every collaborator.

    ``confidence`` is a bounded heuristic score in ``[50, 95]``, not a
    probability. ``direction`` is ``"up"`` only when the predicted price is
    strictly above the last observed price.
    """

    predicted_price: float
    confidence: float
    direction: Direction
    volatility: float
    method: Method
    indicators: IndicatorSet | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TrainResult:
    success: bool
    n_examples: int = 0
    epochs: int = 0
    final_loss: float | None = None
    final_mae: float | None = None
    final_val_loss: float | None = None
    reason: TrainFailureReason | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def failure(cls, reason: TrainFailureReason, error: str | None = None) -> "TrainResult":
        return cls(success=False, reason=reason, error=error)


@dataclass(frozen=True)
class TrainingProgress:
    epoch: int
    loss: float | None = None
    mae: float | None = None
    val_loss: float | None = None
    val_mae: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
