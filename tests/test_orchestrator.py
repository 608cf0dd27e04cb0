import asyncio

import numpy as np
import pytest

from pricecast.config import get_predictor_config
from pricecast.contracts import PredictionRecord, TrainResult
from pricecast.fallback import statistical_prediction
from pricecast.orchestrator import OrchestratorStatus, PredictionOrchestrator


class FakePredictor:
    def __init__(self, *, load_ok=False, train_ok=True, predict_error=None, train_delay=0.0):
        self.load_ok = load_ok
        self.train_ok = train_ok
        self.predict_error = predict_error
        self.train_delay = train_delay
        self.is_trained = False
        self.train_calls = 0
        self.predict_calls = 0
        self.saved = []
        self.loaded = []
        self.closed = False

    async def load(self, name):
        self.loaded.append(name)
        if self.load_ok:
            self.is_trained = True
        return self.load_ok

    async def train(self, prices, epochs=None):
        self.train_calls += 1
        if self.train_delay:
            await asyncio.sleep(self.train_delay)
        if not self.train_ok:
            return TrainResult.failure("training-exception", "boom")
        self.is_trained = True
        return TrainResult(success=True, n_examples=len(prices) - 30, epochs=epochs, final_loss=0.01)

    async def predict(self, prices):
        self.predict_calls += 1
        if self.predict_error is not None:
            raise self.predict_error
        if not self.is_trained:
            return statistical_prediction(prices)
        return PredictionRecord(
            predicted_price=float(prices[-1]) + 1.0,
            confidence=80.0,
            direction="up",
            volatility=0.5,
            method="ml",
        )

    async def save(self, name):
        self.saved.append(name)
        return True

    def progress(self):
        return []

    def close(self):
        self.closed = True


async def _create(predictor, **overrides):
    config = get_predictor_config(model_name="unit-model", epochs=3, **overrides)
    return await PredictionOrchestrator.create(
        config,
        predictor_factory=lambda _cfg: predictor,
        capability_probe=lambda: True,
    )


PRICES = list(np.linspace(100.0, 110.0, 60))


@pytest.mark.asyncio
async def test_create_without_capability_is_unavailable():
    orch = await PredictionOrchestrator.create(get_predictor_config(), capability_probe=lambda: False)

    assert orch.status is OrchestratorStatus.UNAVAILABLE
    assert orch.status_history == [OrchestratorStatus.INITIALIZING, OrchestratorStatus.UNAVAILABLE]
    assert orch.available is False

    record = await orch.predict(PRICES, "AAPL")
    assert record == statistical_prediction(PRICES)

    result = await orch.train(PRICES, "AAPL")
    assert result.success is False


@pytest.mark.asyncio
async def test_create_ready_when_no_persisted_model():
    predictor = FakePredictor(load_ok=False)
    orch = await _create(predictor)

    assert orch.status is OrchestratorStatus.READY
    assert predictor.loaded == ["unit-model"]


@pytest.mark.asyncio
async def test_create_model_ready_when_persisted_model_loads():
    orch = await _create(FakePredictor(load_ok=True))
    assert orch.status is OrchestratorStatus.MODEL_READY


@pytest.mark.asyncio
async def test_ml_disabled_never_trains():
    predictor = FakePredictor()
    orch = await _create(predictor, ml_enabled=False)

    for _ in range(3):
        record = await orch.predict(PRICES, "AAPL")
        assert record.method == "statistical"
        assert record == statistical_prediction(PRICES)

    assert predictor.train_calls == 0
    assert predictor.predict_calls == 0


@pytest.mark.asyncio
async def test_auto_train_then_model_prediction_and_save():
    predictor = FakePredictor()
    orch = await _create(predictor)

    record = await orch.predict(PRICES, "AAPL")

    assert predictor.train_calls == 1
    assert predictor.saved == ["unit-model"]
    assert record.method == "ml"
    assert orch.status is OrchestratorStatus.MODEL_READY
    assert OrchestratorStatus.TRAINING in orch.status_history


@pytest.mark.asyncio
async def test_model_ready_is_not_retrained_automatically():
    predictor = FakePredictor()
    orch = await _create(predictor)

    await orch.predict(PRICES, "AAPL")
    await orch.predict(PRICES, "MSFT")
    await orch.predict(PRICES + [111.0], "AAPL")

    assert predictor.train_calls == 1
    assert orch.status is OrchestratorStatus.MODEL_READY


@pytest.mark.asyncio
async def test_short_history_does_not_trigger_training():
    predictor = FakePredictor()
    orch = await _create(predictor)

    record = await orch.predict(PRICES[:49], "AAPL")

    assert predictor.train_calls == 0
    assert orch.status is OrchestratorStatus.READY
    assert record is not None


@pytest.mark.asyncio
async def test_auto_train_disabled_does_not_train():
    predictor = FakePredictor()
    orch = await _create(predictor, auto_train=False)

    await orch.predict(PRICES, "AAPL")

    assert predictor.train_calls == 0
    assert orch.status is OrchestratorStatus.READY


@pytest.mark.asyncio
async def test_training_failure_reverts_to_ready_and_still_predicts():
    predictor = FakePredictor(train_ok=False)
    orch = await _create(predictor)

    record = await orch.predict(PRICES, "AAPL")

    assert record is not None
    assert record.method == "statistical"
    assert orch.status is OrchestratorStatus.READY
    assert predictor.saved == []


@pytest.mark.asyncio
async def test_prediction_exception_falls_back_to_statistical():
    predictor = FakePredictor(load_ok=True, predict_error=RuntimeError("kaboom"))
    orch = await _create(predictor)

    record = await orch.predict(PRICES, "AAPL")

    assert record == statistical_prediction(PRICES)


@pytest.mark.asyncio
async def test_predict_below_floor_returns_none():
    orch = await _create(FakePredictor())
    assert await orch.predict([1.0, 2.0, 3.0], "AAPL") is None


@pytest.mark.asyncio
async def test_concurrent_predicts_train_only_once():
    predictor = FakePredictor(train_delay=0.05)
    orch = await _create(predictor)

    records = await asyncio.gather(orch.predict(PRICES, "AAPL"), orch.predict(PRICES, "AAPL"))

    assert predictor.train_calls == 1
    assert all(r is not None for r in records)
    assert orch.status is OrchestratorStatus.MODEL_READY


@pytest.mark.asyncio
async def test_explicit_train_retrains_model_ready():
    predictor = FakePredictor(load_ok=True)
    orch = await _create(predictor)

    result = await orch.train(PRICES, "AAPL", epochs=2)

    assert result.success is True
    assert predictor.train_calls == 1
    assert orch.status is OrchestratorStatus.MODEL_READY



class SerializedPredictor(FakePredictor):
    """Queues fits behind one lock and records the status seen as each fit starts."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.orchestrator = None
        self.status_at_fit_start = []
        self._lock = asyncio.Lock()

    async def train(self, prices, epochs=None):
        async with self._lock:
            self.status_at_fit_start.append(self.orchestrator.status)
            return await super().train(prices, epochs)


@pytest.mark.asyncio
async def test_overlapping_trains_keep_training_status_until_last_finishes():
    predictor = SerializedPredictor(load_ok=True, train_delay=0.02)
    orch = await _create(predictor)
    predictor.orchestrator = orch

    results = await asyncio.gather(orch.train(PRICES, "AAPL"), orch.train(PRICES, "AAPL"))

    assert all(r.success for r in results)
    assert predictor.status_at_fit_start == [OrchestratorStatus.TRAINING, OrchestratorStatus.TRAINING]
    assert orch.status is OrchestratorStatus.MODEL_READY
    assert orch.status_history.count(OrchestratorStatus.MODEL_READY) == 2


@pytest.mark.asyncio
async def test_explicit_train_passes_zero_epochs_through():
    predictor = FakePredictor()
    orch = await _create(predictor)
    seen = []

    async def train(prices, epochs=None):
        seen.append(epochs)
        return TrainResult.failure("training-exception", "no epochs")

    predictor.train = train
    await orch.train(PRICES, "AAPL", epochs=0)

    assert seen == [0]
    assert orch.status is OrchestratorStatus.READY


@pytest.mark.asyncio
async def test_load_missing_model_leaves_status_unaffected():
    predictor = FakePredictor(load_ok=False)
    orch = await _create(predictor)

    assert await orch.load("missing-model") is False
    assert orch.status is OrchestratorStatus.READY
    assert OrchestratorStatus.MODEL_READY not in orch.status_history


@pytest.mark.asyncio
async def test_close_releases_predictor():
    predictor = FakePredictor()
    orch = await _create(predictor)

    await orch.close()

    assert predictor.closed is True
    assert orch.available is False
    assert (await orch.predict(PRICES, "AAPL")).method == "statistical"
