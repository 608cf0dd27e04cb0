"""Pytest configuration to make the project root importable.

This ensures that ``import pricecast`` and ``import api.main`` work when tests
are run from the repository root or other locations.
"""

import os
import sys
import time
from types import SimpleNamespace

import numpy as np
import pytest

# Project root = parent directory of this tests/ folder
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


class FakeSequenceModel:
    """Stand-in for a compiled Keras model.

    ``predict`` returns a constant normalized output; ``fit`` replays fake
    epoch logs through the callbacks and records how many fits overlapped.
    """

    input_shape = (None, 30, 8)

    def __init__(self, output: float = 0.5, fit_delay: float = 0.0, fail_fit: bool = False) -> None:
        self.output = output
        self.fit_delay = fit_delay
        self.fail_fit = fail_fit
        self.fit_calls = 0
        self.active_fits = 0
        self.max_active_fits = 0
        self.predict_calls = 0
        self.weights = [np.zeros((2,), dtype=np.float32)]
        self.saved_paths = []

    def fit(self, x, y, *, epochs, batch_size, validation_split, shuffle, callbacks, verbose):  # noqa: ARG002
        self.active_fits += 1
        self.max_active_fits = max(self.max_active_fits, self.active_fits)
        try:
            if self.fit_delay:
                time.sleep(self.fit_delay)
            self.weights = [w + 1 for w in self.weights]
            if self.fail_fit:
                raise RuntimeError("boom")
            for epoch in range(epochs):
                logs = {"loss": 0.1, "mae": 0.2, "val_loss": 0.3, "val_mae": 0.4}
                for cb in callbacks:
                    cb.on_epoch_end(epoch, logs)
            self.fit_calls += 1
            return SimpleNamespace(
                history={
                    "loss": [0.1] * epochs,
                    "mae": [0.2] * epochs,
                    "val_loss": [0.3] * epochs,
                }
            )
        finally:
            self.active_fits -= 1

    def predict(self, X, verbose=0):  # noqa: N803, ARG002
        self.predict_calls += 1
        if isinstance(self.output, Exception):
            raise self.output
        batch = int(getattr(X, "shape", [1])[0])
        return np.full((batch, 1), self.output, dtype=np.float32)

    def get_weights(self):
        return [w.copy() for w in self.weights]

    def set_weights(self, weights):
        self.weights = [np.asarray(w).copy() for w in weights]

    def save(self, path):
        with open(path, "wb") as f:
            f.write(b"fake")
        self.saved_paths.append(path)


@pytest.fixture
def fake_model():
    return FakeSequenceModel()


@pytest.fixture
def linear_prices():
    return list(np.linspace(100.0, 110.0, 60))
