# pricecast/config.py

import os
import logging
import sys
from dataclasses import dataclass, field, replace
from typing import Tuple

# --- Base paths ---
# Project root can be overridden if needed (e.g. for tests or deployment)
BASE_DIR = os.path.abspath(os.getenv("PRICECAST_BASE_DIR", os.path.join(os.path.dirname(__file__), "..")))

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------
# Structured configuration
# ---------------------------

@dataclass(frozen=True)
class PathsConfig:
    """Filesystem configuration.

    Values can be overridden via environment variables:
    - PRICECAST_MODEL_STORE_DIR
    """

    model_store_dir: str = field(
        default_factory=lambda: os.getenv(
            "PRICECAST_MODEL_STORE_DIR", os.path.join(BASE_DIR, "models", "store")
        )
    )


@dataclass(frozen=True)
class ModelConfig:
    """Architecture and optimizer settings of the sequence model.

    ``sequence_length`` and ``feature_count`` must match the values the
    sequence builder produces; a stored model built with other values cannot
    be used for inference.
    """

    sequence_length: int = 30
    feature_count: int = 8
    lstm_units: Tuple[int, ...] = (64, 32)
    dropout_rate: float = 0.2
    dense_units: int = 16
    learning_rate: float = 0.001
    optimizer_name: str = "adam"
    loss_function: str = "mean_squared_error"


@dataclass(frozen=True)
class TrainingConfig:
    """Fit parameters (single-run defaults)."""

    epochs: int = 30
    batch_size: int = 32
    validation_split: float = 0.2
    shuffle: bool = True
    # Extra history required beyond one full window before training is allowed.
    min_history_extra: int = 20
    log_every_n_epochs: int = 10


@dataclass(frozen=True)
class PredictorConfig:
    """Orchestrator behaviour.

    Values can be overridden via environment variables:
    - PRICECAST_ML_ENABLED
    - PRICECAST_AUTO_TRAIN
    - PRICECAST_MODEL_NAME
    - PRICECAST_EPOCHS
    """

    ml_enabled: bool = field(default_factory=lambda: _env_flag("PRICECAST_ML_ENABLED", True))
    auto_train: bool = field(default_factory=lambda: _env_flag("PRICECAST_AUTO_TRAIN", True))
    model_name: str = field(default_factory=lambda: os.getenv("PRICECAST_MODEL_NAME", "stock-predictor"))
    epochs: int = field(default_factory=lambda: int(os.getenv("PRICECAST_EPOCHS", "30")))
    model_store_dir: str = field(default_factory=lambda: PathsConfig().model_store_dir)


@dataclass(frozen=True)
class CacheConfig:
    """Prediction result cache used by the HTTP layer."""

    ttl_seconds: float = field(default_factory=lambda: float(os.getenv("PRICECAST_CACHE_TTL", "60")))
    max_entries: int = 256


# Instantiate structured configs
PATHS = PathsConfig()
MODEL = ModelConfig()
TRAINING = TrainingConfig()
CACHE = CacheConfig()


def get_model_config(**overrides) -> ModelConfig:
    """Return the model configuration, optionally with individual fields replaced."""
    return replace(MODEL, **overrides) if overrides else MODEL


def get_predictor_config(**overrides) -> PredictorConfig:
    """Return a fresh predictor configuration.

    Environment variables are read at call time so tests and deployments can
    change them without reloading this module.
    """
    base = PredictorConfig()
    return replace(base, **overrides) if overrides else base


def configure_logging(level: str = "INFO") -> None:
    """Configure process-wide logging for the CLI and the API."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    # TensorFlow is chatty at INFO/WARNING level.
    logging.getLogger("tensorflow").setLevel(logging.ERROR)


# ---------------------------
# Flat aliases
# ---------------------------

SEQUENCE_LENGTH = MODEL.sequence_length
FEATURE_COUNT = MODEL.feature_count
MIN_TRAINING_LENGTH = SEQUENCE_LENGTH + TRAINING.min_history_extra
MIN_FALLBACK_LENGTH = 5

EPOCHS = TRAINING.epochs

MODEL_STORE_DIR = PATHS.model_store_dir
