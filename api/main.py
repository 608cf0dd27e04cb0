from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, FiniteFloat, field_validator

from pricecast.cache import ResultCache
from pricecast.config import configure_logging, get_predictor_config
from pricecast.orchestrator import PredictionOrchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.orchestrator = await PredictionOrchestrator.create(get_predictor_config())
    app.state.cache = ResultCache()
    try:
        yield
    finally:
        await app.state.orchestrator.close()


app = FastAPI(
    title="Price Prediction API",
    description="Forward price estimates from a chronological price series.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report validation errors without echoing inputs, which may not be JSON-safe (NaN)."""
    errors = [{k: v for k, v in err.items() if k != "input"} for err in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


class PriceSeriesRequest(BaseModel):
    ticker: str = ""
    prices: List[FiniteFloat] = Field(..., min_length=1)

    @field_validator("prices")
    @classmethod
    def _positive(cls, v: List[float]) -> List[float]:
        if any(p <= 0 for p in v):
            raise ValueError("prices must be positive")
        return v


class TrainRequest(PriceSeriesRequest):
    epochs: Optional[int] = Field(default=None, ge=1)


def _orchestrator(request: Request) -> PredictionOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Predictor not initialized.")
    return orchestrator


@app.post("/predict", summary="Predict the next price")
async def predict(body: PriceSeriesRequest, request: Request):
    """Return a prediction record; ``prediction`` is null for fewer than five prices."""
    orchestrator = _orchestrator(request)
    cache: ResultCache = request.app.state.cache

    key = (body.ticker, tuple(body.prices))
    cached = cache.get(key)
    if cached is not None:
        return {"ticker": body.ticker, "prediction": cached, "cached": True}

    record = await orchestrator.predict(body.prices, body.ticker)
    payload = record.to_dict() if record is not None else None
    if payload is not None:
        cache.set(key, payload)
    return {"ticker": body.ticker, "prediction": payload, "cached": False}


@app.post("/train", summary="Explicitly (re)train the sequence model")
async def train(body: TrainRequest, request: Request):
    orchestrator = _orchestrator(request)
    result = await orchestrator.train(body.prices, body.ticker, body.epochs)
    return result.to_dict()


@app.get("/train/progress", summary="Per-epoch progress of the current or last training run")
async def train_progress(request: Request):
    return [p.to_dict() for p in _orchestrator(request).training_progress()]


@app.get("/status", summary="Predictor status")
async def status(request: Request):
    orchestrator = _orchestrator(request)
    return {
        "status": orchestrator.status.value,
        "ml_enabled": orchestrator.config.ml_enabled,
        "auto_train": orchestrator.config.auto_train,
    }


@app.get("/health", summary="Health check", response_description="API health status")
async def health_check():
    """
    Checks the health of the API.
    """
    return {"status": "ok"}
