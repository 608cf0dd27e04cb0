"""Decide between the sequence model and the statistical fallback.

A :class:`PredictionOrchestrator` is created once by its owner (for example
the API lifespan) and passed to whoever needs predictions. It probes for the
model capability exactly once, in :meth:`PredictionOrchestrator.create`.

Status transitions::

    initializing -> unavailable                 (no TensorFlow)
    initializing -> ready -> model-ready        (persisted model restored)
    ready -> training -> model-ready | ready    (on-demand fit succeeded | failed)

``model-ready`` is never left automatically; only an explicit :meth:`train`
call refits the model.
"""

from __future__ import annotations

import importlib.util
import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from pricecast.config import MIN_TRAINING_LENGTH, PredictorConfig, get_predictor_config
from pricecast.contracts import PredictionRecord, TrainResult, TrainingProgress
from pricecast.fallback import statistical_prediction

if TYPE_CHECKING:
    from pricecast.predictor import SequencePredictor

logger = logging.getLogger(__name__)


class OrchestratorStatus(str, Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    TRAINING = "training"
    MODEL_READY = "model-ready"
    UNAVAILABLE = "unavailable"


def model_capability_available() -> bool:
    """Return whether the sequence-model backend (TensorFlow) can be imported."""
    return importlib.util.find_spec("tensorflow") is not None


def _default_predictor_factory(config: PredictorConfig) -> "SequencePredictor":
    from pricecast.predictor import SequencePredictor

    return SequencePredictor(store_dir=config.model_store_dir)


class PredictionOrchestrator:
    """Owns the predictor and its status; every ``predict`` call returns a usable record."""

    def __init__(self, config: PredictorConfig, predictor: Optional["SequencePredictor"]) -> None:
        self.config = config
        self.predictor = predictor
        self._status = OrchestratorStatus.INITIALIZING
        self.status_history: List[OrchestratorStatus] = [self._status]
        self._trains_in_flight = 0

    @classmethod
    async def create(
        cls,
        config: Optional[PredictorConfig] = None,
        *,
        predictor_factory: Optional[Callable[[PredictorConfig], "SequencePredictor"]] = None,
        capability_probe: Callable[[], bool] = model_capability_available,
    ) -> "PredictionOrchestrator":
        config = config or get_predictor_config()

        if not capability_probe():
            logger.warning("Sequence model backend not available; statistical predictions only")
            orchestrator = cls(config, None)
            orchestrator._set_status(OrchestratorStatus.UNAVAILABLE)
            return orchestrator

        predictor = (predictor_factory or _default_predictor_factory)(config)
        orchestrator = cls(config, predictor)
        orchestrator._set_status(OrchestratorStatus.READY)

        if await predictor.load(config.model_name):
            logger.info("Pre-trained model loaded")
            orchestrator._set_status(OrchestratorStatus.MODEL_READY)
        else:
            logger.info("No pre-trained model found - will train on first use")
        return orchestrator

    @property
    def status(self) -> OrchestratorStatus:
        return self._status

    @property
    def available(self) -> bool:
        return self.predictor is not None

    def _set_status(self, status: OrchestratorStatus) -> None:
        if status is not self._status:
            logger.debug("Status %s -> %s", self._status.value, status.value)
        self._status = status
        self.status_history.append(status)

    def training_progress(self) -> List[TrainingProgress]:
        return self.predictor.progress() if self.predictor is not None else []

    async def predict(self, prices: Sequence[float], ticker: str = "") -> Optional[PredictionRecord]:
        """Return a prediction for ``prices``; ``None`` only below five prices."""
        if not self.config.ml_enabled or self.predictor is None:
            return statistical_prediction(prices)

        try:
            if self._should_auto_train(prices):
                await self._train(prices, ticker, self.config.epochs)
            return await self.predictor.predict(prices)
        except Exception:
            logger.exception("ML prediction error for %s", ticker or "<unknown>")
            if self._status is OrchestratorStatus.TRAINING and self._trains_in_flight == 0:
                self._set_status(OrchestratorStatus.READY)
            return statistical_prediction(prices)

    async def train(
        self,
        prices: Sequence[float],
        ticker: str = "",
        epochs: Optional[int] = None,
    ) -> TrainResult:
        """Explicitly (re)train the model, regardless of its current state."""
        if self.predictor is None:
            return TrainResult.failure("training-exception", "Sequence model backend not available.")
        try:
            return await self._train(prices, ticker, self.config.epochs if epochs is None else epochs)
        except Exception as e:
            logger.exception("Training request for %s failed", ticker or "<unknown>")
            if self._status is OrchestratorStatus.TRAINING and self._trains_in_flight == 0:
                self._set_status(OrchestratorStatus.READY)
            return TrainResult.failure("training-exception", str(e))

    def _should_auto_train(self, prices: Sequence[float]) -> bool:
        return (
            self.config.auto_train
            and not self.predictor.is_trained
            and self._status is not OrchestratorStatus.TRAINING
            and prices is not None
            and len(prices) >= MIN_TRAINING_LENGTH
        )

    async def _train(self, prices: Sequence[float], ticker: str, epochs: int) -> TrainResult:
        logger.info("Training ML model for %s...", ticker or "<unknown>")
        self._trains_in_flight += 1
        self._set_status(OrchestratorStatus.TRAINING)
        try:
            result = await self.predictor.train(prices, epochs)
        finally:
            self._trains_in_flight -= 1

        if result.success:
            logger.info("Model trained for %s - Loss: %.4f", ticker or "<unknown>", result.final_loss)
            await self.predictor.save(self.config.model_name)
        else:
            logger.warning("Training failed (%s), using statistical method", result.reason)

        # Queued fits still run; the last one to finish settles the status.
        if self._trains_in_flight == 0:
            self._set_status(
                OrchestratorStatus.MODEL_READY if self.predictor.is_trained else OrchestratorStatus.READY
            )
        return result

    async def save(self, name: Optional[str] = None) -> bool:
        if self.predictor is None:
            return False
        return await self.predictor.save(name or self.config.model_name)

    async def load(self, name: Optional[str] = None) -> bool:
        """Restore a persisted model; status only changes when the load succeeds."""
        if self.predictor is None:
            return False
        loaded = await self.predictor.load(name or self.config.model_name)
        if loaded:
            self._set_status(OrchestratorStatus.MODEL_READY)
        return loaded

    async def close(self) -> None:
        if self.predictor is not None:
            self.predictor.close()
            self.predictor = None
        self._set_status(OrchestratorStatus.UNAVAILABLE)
