import re
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence, Tuple

import tensorflow as tf
from tensorflow import keras
from tensorflow.keras import layers
from tensorflow.keras.models import Model

from pricecast.config import ModelConfig, get_model_config

logger = logging.getLogger(__name__)

_MODEL_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def build_lstm_model(
    input_shape: Tuple[int, int],
    lstm_units: Sequence[int],
    dropout_rate: float,
    dense_units: int,
    learning_rate: float,
    optimizer_name: str,
    loss_function: str,
) -> keras.Model:
    """Build and compile a stacked LSTM regressor.

    The output is a single sigmoid unit, i.e. a price normalized into
    ``[0, 1]`` against the input window's own range.

    Args:
        input_shape: Tuple ``(sequence_length, feature_count)``.
        lstm_units: Units of each stacked LSTM layer, first to last (>= 1 layer).
        dropout_rate: Rate of the dropout applied after each LSTM layer.
        dense_units: Units of the hidden ReLU layer before the output.
        learning_rate: Learning rate for the optimizer.
        optimizer_name: ``"adam"`` or ``"rmsprop"``.
        loss_function: Keras loss name (e.g. ``"mean_squared_error"``).

    Returns:
        A compiled Keras ``Model`` tracking ``mae`` as a metric.
    """
    if not lstm_units:
        raise ValueError("At least one LSTM layer is required.")

    inputs = keras.Input(shape=(input_shape[0], input_shape[1]), dtype=tf.float32)

    x = inputs
    n_lstm_layers = len(lstm_units)
    for i, units in enumerate(lstm_units):
        x = layers.LSTM(
            units=int(units),
            return_sequences=i < n_lstm_layers - 1,
            activation="tanh",
        )(x)
        x = layers.Dropout(dropout_rate)(x)

    x = layers.Dense(units=dense_units, activation="relu")(x)
    outputs = layers.Dense(units=1, activation="sigmoid", dtype=tf.float32)(x)

    model = Model(inputs=inputs, outputs=outputs)

    if optimizer_name == "adam":
        optimizer = keras.optimizers.Adam(learning_rate=learning_rate)
    elif optimizer_name == "rmsprop":
        optimizer = keras.optimizers.RMSprop(learning_rate=learning_rate)
    else:
        raise ValueError(f"Unsupported optimizer: {optimizer_name}")

    model.compile(loss=loss_function, optimizer=optimizer, metrics=["mae"])

    return model


def build_model(model_cfg: Optional[ModelConfig] = None) -> keras.Model:
    """Build a compiled model from :class:`ModelConfig` (defaults when omitted)."""

    cfg = model_cfg or get_model_config()

    return build_lstm_model(
        input_shape=(cfg.sequence_length, cfg.feature_count),
        lstm_units=cfg.lstm_units,
        dropout_rate=cfg.dropout_rate,
        dense_units=cfg.dense_units,
        learning_rate=cfg.learning_rate,
        optimizer_name=cfg.optimizer_name,
        loss_function=cfg.loss_function,
    )


def load_model(model_path: str | Path, *, compile: bool = True) -> keras.Model:
    """Load a saved Keras model from disk."""

    return keras.models.load_model(str(model_path), compile=compile)


def validate_model_name(name: str) -> str:
    """Return ``name`` if it is usable as a key in the model store."""
    if not isinstance(name, str) or not _MODEL_NAME_RE.match(name) or ".." in name:
        raise ValueError(f"Invalid model name: {name!r}")
    return name


def model_store_paths(store_dir: str | Path, name: str) -> Tuple[Path, Path]:
    """Return ``(model_path, metrics_path)`` for ``name`` inside ``store_dir``."""
    validate_model_name(name)
    store = Path(store_dir)
    return store / f"{name}.keras", store / f"{name}.metrics.json"


def save_model_to_store(
    model: keras.Model,
    store_dir: str | Path,
    name: str,
    metrics: Optional[dict] = None,
) -> Path:
    """Save ``model`` under ``name`` and write a metrics sidecar next to it."""
    model_path, metrics_path = model_store_paths(store_dir, name)
    model_path.parent.mkdir(parents=True, exist_ok=True)
    model.save(str(model_path))

    record = {
        "name": name,
        "model_filename": model_path.name,
        "saved_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
    }
    record.update(metrics or {})
    try:
        metrics_path.write_text(json.dumps(record, indent=2), encoding="utf-8")
    except OSError as e:
        logger.warning("Could not write metrics for model %r: %s", name, e)
    return model_path


def load_model_from_store(store_dir: str | Path, name: str) -> Optional[keras.Model]:
    """Load the model stored under ``name``, or ``None`` when no entry exists."""
    model_path, _ = model_store_paths(store_dir, name)
    if not model_path.is_file():
        return None
    return load_model(model_path)
