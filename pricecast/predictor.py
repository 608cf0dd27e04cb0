"""Sequence-model lifecycle: creation, training, inference and persistence.

:class:`SequencePredictor` owns one Keras model and moves it through::

    uninitialized -> created -> trained

``load`` is a second way into ``trained`` (``restored`` is then ``True``).

All public operations are coroutines. The blocking Keras work (fit, predict,
save, load) runs in a worker thread so the event loop keeps serving other
tasks, while a per-instance :class:`asyncio.Lock` guarantees that at most one
fit is in flight and that inference never runs against a model mid-fit.

Failures never escape: ``train`` reports them in its :class:`TrainResult`,
``predict`` degrades to :func:`pricecast.fallback.indicator_prediction`, and
``save``/``load`` return ``False``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np
from tensorflow import keras

from pricecast.config import (
    MIN_TRAINING_LENGTH,
    MODEL_STORE_DIR,
    ModelConfig,
    TrainingConfig,
    TRAINING,
    get_model_config,
)
from pricecast.contracts import PredictionRecord, TrainResult, TrainingProgress
from pricecast.data_utils import denormalize, prepare_inference, prepare_training
from pricecast.fallback import clamp, direction_of, indicator_prediction
from pricecast.indicators import compute_indicators
from pricecast.model import build_model, load_model_from_store, save_model_to_store

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "stock-predictor"

# Confidence heuristic for model output.
ML_CONFIDENCE_BASE = 85.0
ML_CONFIDENCE_RANGE = (60.0, 95.0)
ML_VOLATILITY_PENALTY = 1000.0
LARGE_MOVE_THRESHOLD = 0.1
LARGE_MOVE_PENALTY = 10.0


class ModelState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CREATED = "created"
    TRAINED = "trained"


class ProgressRecorder(keras.callbacks.Callback):
    """Collect one :class:`TrainingProgress` per finished epoch."""

    def __init__(self, sink: List[TrainingProgress], log_every_n_epochs: int = 10) -> None:
        super().__init__()
        self._sink = sink
        self._log_every = max(1, int(log_every_n_epochs))

    def on_epoch_end(self, epoch, logs=None):  # noqa: D401 - Keras hook
        logs = logs or {}

        def _get(key: str) -> Optional[float]:
            value = logs.get(key)
            return None if value is None else float(value)

        item = TrainingProgress(
            epoch=int(epoch),
            loss=_get("loss"),
            mae=_get("mae"),
            val_loss=_get("val_loss"),
            val_mae=_get("val_mae"),
        )
        self._sink.append(item)
        if epoch % self._log_every == 0:
            logger.info("Epoch %d: loss=%s mae=%s", epoch, item.loss, item.mae)


def _last_metric(history: dict, key: str) -> Optional[float]:
    values = history.get(key) or []
    return float(values[-1]) if values else None


class SequencePredictor:
    """Trainable sequence model with a statistical safety net."""

    def __init__(
        self,
        *,
        model_cfg: Optional[ModelConfig] = None,
        training_cfg: Optional[TrainingConfig] = None,
        store_dir: Optional[str] = None,
        model_factory: Optional[Callable[[ModelConfig], keras.Model]] = None,
    ) -> None:
        self.model_cfg = model_cfg or get_model_config()
        self.training_cfg = training_cfg or TRAINING
        self.store_dir = store_dir or MODEL_STORE_DIR
        self._model_factory = model_factory or build_model

        self.model: Optional[keras.Model] = None
        self.state = ModelState.UNINITIALIZED
        self.restored = False
        self.last_result: Optional[TrainResult] = None

        self._lock = asyncio.Lock()
        self._training = False
        self._progress: List[TrainingProgress] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_trained(self) -> bool:
        return self.model is not None and self.state is ModelState.TRAINED

    @property
    def is_training(self) -> bool:
        return self._training

    def create_model(self) -> keras.Model:
        self.model = self._model_factory(self.model_cfg)
        self.state = ModelState.CREATED
        self.restored = False
        return self.model

    def progress(self) -> List[TrainingProgress]:
        """Snapshot of the per-epoch progress of the current or last training run."""
        return list(self._progress)

    def iter_progress(self, start: int = 0) -> Iterator[TrainingProgress]:
        """Lazily yield progress events from ``start`` up to the latest finished epoch."""
        i = start
        while i < len(self._progress):
            yield self._progress[i]
            i += 1

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    async def train(
        self,
        prices: Sequence[float],
        epochs: Optional[int] = None,
        *,
        wait: bool = True,
    ) -> TrainResult:
        """Fit the model on ``prices``.

        A second call while a fit is running waits for it to finish, or is
        rejected with ``reason="busy"`` when ``wait`` is false.
        """
        if not wait and self._lock.locked():
            return TrainResult.failure("busy", "A training run is already in progress.")

        epochs = self.training_cfg.epochs if epochs is None else int(epochs)
        async with self._lock:
            self._training = True
            self._progress = []
            try:
                result = await asyncio.to_thread(self._fit, prices, epochs)
            finally:
                self._training = False

            if result.success:
                self.state = ModelState.TRAINED
                self.restored = False
            self.last_result = result
            return result

    def _fit(self, prices: Sequence[float], epochs: int) -> TrainResult:
        data = None
        previous_weights = None
        try:
            logger.info("Preparing training data...")
            data = prepare_training(prices, self.model_cfg.sequence_length, MIN_TRAINING_LENGTH)
            if data is None:
                logger.warning("Insufficient training data (%d prices)", len(prices))
                return TrainResult.failure("insufficient-data", "Insufficient data")

            if self.model is None:
                self.create_model()
            elif self.state is ModelState.TRAINED:
                # A failed refit must leave the trained weights intact.
                previous_weights = self.model.get_weights()

            n_examples = len(data)
            logger.info("Training with %d samples...", n_examples)
            recorder = ProgressRecorder(self._progress, self.training_cfg.log_every_n_epochs)
            history = self.model.fit(
                data.sequences,
                data.targets,
                epochs=epochs,
                batch_size=self.training_cfg.batch_size,
                validation_split=self.training_cfg.validation_split,
                shuffle=self.training_cfg.shuffle,
                callbacks=[recorder],
                verbose=0,
            )

            metrics = dict(history.history)
            final_loss = _last_metric(metrics, "loss")
            if final_loss is None or not math.isfinite(final_loss):
                raise FloatingPointError(f"Training diverged (final loss {final_loss}).")

            logger.info("Model training complete!")
            return TrainResult(
                success=True,
                n_examples=n_examples,
                epochs=epochs,
                final_loss=final_loss,
                final_mae=_last_metric(metrics, "mae"),
                final_val_loss=_last_metric(metrics, "val_loss"),
            )
        except Exception as e:
            logger.exception("Training error")
            if previous_weights is not None:
                self.model.set_weights(previous_weights)
            elif self.model is not None:
                # Never keep the weights of a fit that did not complete.
                self.model = None
                self.state = ModelState.UNINITIALIZED
            return TrainResult.failure("training-exception", str(e))
        finally:
            del data

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    async def predict(self, prices: Sequence[float]) -> Optional[PredictionRecord]:
        """Predict the next price, falling back to the statistical heuristic when needed."""
        if prices is None or len(prices) < MIN_TRAINING_LENGTH:
            return indicator_prediction(prices)
        if not self.is_trained:
            logger.debug("Model not ready, using fallback prediction")
            return indicator_prediction(prices)

        async with self._lock:
            try:
                return await asyncio.to_thread(self._infer, prices)
            except Exception:
                logger.exception("Prediction error; using fallback prediction")
                return indicator_prediction(prices)

    def _infer(self, prices: Sequence[float]) -> PredictionRecord:
        p = np.asarray(prices, dtype=float).reshape(-1)
        data = prepare_inference(p, self.model_cfg.sequence_length)
        try:
            raw = self.model.predict(data.sequence, verbose=0)
            normalized = float(np.asarray(raw).reshape(-1)[0])
            if not math.isfinite(normalized):
                raise FloatingPointError(f"Model produced a non-finite output: {normalized}")
            predicted_price = denormalize(normalized, data.min_price, data.max_price)
        finally:
            del data

        current_price = float(p[-1])
        indicators = compute_indicators(p)
        vol = indicators.volatility20 if indicators is not None else 0.0
        volatility_ratio = vol / current_price

        # Higher volatility -> lower confidence; large moves are less certain.
        confidence = clamp(*ML_CONFIDENCE_RANGE, ML_CONFIDENCE_BASE - volatility_ratio * ML_VOLATILITY_PENALTY)
        if abs(predicted_price - current_price) / current_price > LARGE_MOVE_THRESHOLD:
            confidence -= LARGE_MOVE_PENALTY

        return PredictionRecord(
            predicted_price=float(predicted_price),
            confidence=round(confidence, 1),
            direction=direction_of(predicted_price, current_price),
            volatility=float(vol),
            method="ml",
            indicators=indicators,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self, name: str = DEFAULT_MODEL_NAME) -> bool:
        """Persist the current model under ``name``. Returns ``False`` on any failure."""
        if self.model is None:
            return False

        metrics = {}
        if self.last_result is not None and self.last_result.success:
            metrics = {
                "final_loss": self.last_result.final_loss,
                "final_mae": self.last_result.final_mae,
                "final_val_loss": self.last_result.final_val_loss,
                "n_examples": self.last_result.n_examples,
                "epochs": self.last_result.epochs,
            }

        async with self._lock:
            try:
                path = await asyncio.to_thread(save_model_to_store, self.model, self.store_dir, name, metrics)
            except Exception:
                logger.exception("Error saving model %r", name)
                return False
        logger.info("Model saved successfully to %s", path)
        return True

    async def load(self, name: str = DEFAULT_MODEL_NAME) -> bool:
        """Restore the model stored under ``name``.

        A missing, corrupt or incompatible entry returns ``False`` and leaves
        the in-memory model untouched.
        """
        try:
            model = await asyncio.to_thread(load_model_from_store, self.store_dir, name)
        except Exception as e:
            logger.warning("Could not load saved model %r: %s", name, e)
            return False

        if model is None:
            logger.info("No saved model named %r", name)
            return False

        expected = (self.model_cfg.sequence_length, self.model_cfg.feature_count)
        input_shape = tuple(getattr(model, "input_shape", (None,) + expected)[1:])
        if input_shape != expected:
            logger.warning("Saved model %r expects input %s, not %s", name, input_shape, expected)
            return False

        async with self._lock:
            self.model = model
            self.state = ModelState.TRAINED
            self.restored = True
        logger.info("Model %r loaded successfully", name)
        return True

    def close(self) -> None:
        """Drop the model and free the Keras session."""
        self.model = None
        self.state = ModelState.UNINITIALIZED
        self.restored = False
        keras.backend.clear_session()
