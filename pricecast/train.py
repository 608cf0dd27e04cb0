import asyncio
import logging
import os

import numpy as np
import pandas as pd

from pricecast.config import EPOCHS, MIN_TRAINING_LENGTH, MODEL_STORE_DIR, configure_logging
from pricecast.contracts import TrainResult
from pricecast.predictor import DEFAULT_MODEL_NAME, SequencePredictor

logger = logging.getLogger(__name__)


def load_price_series(csv_path: str, column: str = "Close", time_column: str | None = None) -> np.ndarray:
    """Load a chronological price series from a CSV file.

    When ``time_column`` is given (or a ``Time``/``DateTime``/``Date`` column
    exists) rows are sorted by it first. Missing and non-positive prices are
    dropped.
    """
    df = pd.read_csv(csv_path)
    if column not in df.columns:
        raise ValueError(f"Column {column!r} not found in {csv_path} (columns: {list(df.columns)})")

    if time_column is None:
        time_column = next((c for c in ("Time", "DateTime", "Date") if c in df.columns), None)
    if time_column is not None:
        df[time_column] = pd.to_datetime(df[time_column])
        df = df.sort_values(time_column)

    prices = pd.to_numeric(df[column], errors="coerce").dropna()
    prices = prices[prices > 0]
    return prices.to_numpy(dtype=float)


async def train_from_prices(
    prices,
    *,
    epochs: int = EPOCHS,
    name: str = DEFAULT_MODEL_NAME,
    store_dir: str = MODEL_STORE_DIR,
    predictor: SequencePredictor | None = None,
) -> TrainResult:
    """Train a predictor on ``prices`` and persist it under ``name`` when the fit succeeds."""
    predictor = predictor or SequencePredictor(store_dir=store_dir)
    result = await predictor.train(prices, epochs)
    if result.success:
        if not await predictor.save(name):
            logger.warning("Model trained but could not be saved as %r", name)
    return result


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Train the price sequence model from a CSV of prices.")
    parser.add_argument("--csv", required=True, help="CSV file with a price column")
    parser.add_argument("--column", default="Close", help="Price column name (default: Close)")
    parser.add_argument("--epochs", type=int, default=EPOCHS, help="Training epochs")
    parser.add_argument("--name", default=DEFAULT_MODEL_NAME, help="Model store key")
    parser.add_argument("--store-dir", default=MODEL_STORE_DIR, help="Model store directory")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    configure_logging(args.log_level)

    if not os.path.exists(args.csv):
        raise SystemExit(f"CSV not found: {args.csv}")

    prices = load_price_series(args.csv, column=args.column)
    if len(prices) < MIN_TRAINING_LENGTH:
        raise SystemExit(f"Need at least {MIN_TRAINING_LENGTH} prices to train (got {len(prices)}).")

    result = asyncio.run(train_from_prices(prices, epochs=args.epochs, name=args.name, store_dir=args.store_dir))

    print("\n--- Training Summary ---")
    if result.success:
        print(
            f"Samples: {result.n_examples}, Epochs: {result.epochs}, "
            f"Loss: {result.final_loss:.4f}, MAE: {result.final_mae}, Model: {args.name}"
        )
    else:
        print(f"Model training was not successful: {result.reason} ({result.error})")
