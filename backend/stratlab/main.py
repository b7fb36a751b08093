"""
STRATLAB Backend Server
FastAPI + NumPy
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from stratlab import __version__
from stratlab.batch import BatchEvaluator
from stratlab.config import Settings, configure_logging, settings as default_settings
from stratlab.data import load_series_csv, nan_to_none, series_from_csv_text
from stratlab.errors import (
    BarSeriesError, CollaboratorError, ConfigurationError, PermissionDeniedError,
    StratlabError, StrategyNotFoundError,
)
from stratlab.indicators import BarSeries, IndicatorBank
from stratlab.models import (
    Bar, IndicatorKind, IndicatorSpec, Strategy, StrategyDraft, StrategyFilter, StrategyPage,
    StrategySignals, parameter_descriptors,
)
from stratlab.service import StrategyService
from stratlab.signals import StrategyEvaluator
from stratlab.store import DocumentStore, InMemoryDocumentStore

logger = logging.getLogger(__name__)


class IndicatorRequest(BaseModel):
    """Indicator Request"""
    indicator: IndicatorSpec
    bars: Optional[List[Bar]] = None


class EvaluateRequest(BaseModel):
    """Evaluate Request"""
    strategy: StrategyDraft
    bars: Optional[List[Bar]] = None


class BatchEvaluateRequest(BaseModel):
    """Batch Evaluate Request"""
    strategies: List[StrategyDraft]
    bars: Optional[List[Bar]] = None


class CloneRequest(BaseModel):
    name: Optional[str] = None


class VisibilityRequest(BaseModel):
    isPublic: bool


# Exception type -> HTTP status; first match wins
_ERROR_STATUS = [
    (ConfigurationError, 422),
    (BarSeriesError, 400),
    (StrategyNotFoundError, 404),
    (PermissionDeniedError, 403),
    (CollaboratorError, 503),
]


def create_app(settings: Optional[Settings] = None, store: Optional[DocumentStore] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup/shutdown lifecycle"""
        configure_logging(settings.log_level)
        _load_default_data(app, settings.default_csv_path)
        yield

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.series = None
    app.state.service = StrategyService(store or InMemoryDocumentStore())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StratlabError)
    async def stratlab_error_handler(request: Request, exc: StratlabError):
        for error_type, status in _ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status = 500
        body: Dict[str, Any] = {"detail": str(exc)}
        if isinstance(exc, ConfigurationError):
            body["problems"] = exc.problems
        if isinstance(exc, CollaboratorError):
            body["retryable"] = exc.retryable
        return JSONResponse(status_code=status, content=body)

    def _series(app: FastAPI, bars: Optional[List[Bar]]) -> BarSeries:
        if bars is not None:
            return BarSeries.from_bars(bars)
        if app.state.series is None:
            raise HTTPException(status_code=400, detail="No data loaded. Upload CSV or send bars.")
        return app.state.series

    @app.get("/")
    def read_root():
        """Health check"""
        return {
            "status": "online",
            "service": settings.app_name,
            "version": __version__,
        }

    @app.post("/upload-csv")
    async def upload_csv(file: UploadFile = File(...)):
        """Upload daily bars as CSV"""
        start_time = time.time()
        contents = await file.read()
        try:
            text = contents.decode('utf-8')
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded")
        series = series_from_csv_text(text)
        app.state.series = series
        elapsed = time.time() - start_time
        logger.info("Loaded %d bars from upload in %.2fs", series.length, elapsed)
        return {
            "success": True,
            "bars": series.length,
            "elapsed_seconds": round(elapsed, 2),
        }

    @app.get("/status")
    def get_status():
        """Get backend status"""
        series = app.state.series
        return {
            "data_loaded": series is not None,
            "bars": series.length if series is not None else 0,
        }

    @app.get("/indicators")
    def list_indicators():
        """Indicator kinds with their default parameters and input bounds"""
        return {
            kind.value: [p.model_dump(exclude_none=True) for p in parameter_descriptors(kind)]
            for kind in IndicatorKind
        }

    @app.post("/indicator")
    def compute_indicator_series(request: IndicatorRequest):
        """Calculate one indicator series; warm-up values are null"""
        series = _series(app, request.bars)
        values = IndicatorBank(series).get(request.indicator)
        return {
            "indicator": request.indicator.model_dump(mode='json'),
            "warmup": request.indicator.warmup,
            "dates": [str(d) for d in series.date],
            "values": nan_to_none(values),
        }

    @app.post("/evaluate", response_model=StrategySignals)
    def evaluate_strategy(request: EvaluateRequest):
        """Evaluate buy/sell rules and signal events"""
        start_time = time.time()
        series = _series(app, request.bars)
        result = StrategyEvaluator(series).run(request.strategy)
        logger.info("Evaluated %r over %d bars in %.3fs", request.strategy.name, series.length,
                    time.time() - start_time)
        return result

    @app.post("/evaluate-batch")
    def evaluate_batch(request: BatchEvaluateRequest):
        """Evaluate many strategies over the same bars across worker processes"""
        start_time = time.time()
        series = _series(app, request.bars)
        results = BatchEvaluator(series, processes=settings.batch_processes).evaluate(request.strategies)
        elapsed = time.time() - start_time
        return {
            "success": True,
            "strategies": len(results),
            "elapsed_seconds": round(elapsed, 2),
            "results": [r.model_dump(mode="json") for r in results],
        }

    @app.post("/strategies", response_model=Strategy, status_code=201)
    def create_strategy(draft: StrategyDraft, x_user_id: str = Header(...)):
        return app.state.service.create_strategy(x_user_id, draft)

    @app.get("/strategies", response_model=StrategyPage)
    def list_strategies(
        x_user_id: str = Header(...),
        searchTerm: Optional[str] = None,
        tag: Optional[List[str]] = Query(None),
        isPublic: Optional[bool] = None,
        sortBy: str = "updatedAt",
        sortOrder: str = "desc",
        cursor: Optional[str] = None,
        pageSize: int = settings.page_size,
    ):
        flt = _filter(searchTerm=searchTerm, tags=tag, isPublic=isPublic, sortBy=sortBy, sortOrder=sortOrder)
        return app.state.service.list_strategies(x_user_id, flt, cursor, pageSize)

    @app.get("/strategies/public", response_model=StrategyPage)
    def list_public_strategies(
        searchTerm: Optional[str] = None,
        tag: Optional[List[str]] = Query(None),
        sortBy: str = "updatedAt",
        sortOrder: str = "desc",
        cursor: Optional[str] = None,
        pageSize: int = settings.page_size,
    ):
        flt = _filter(searchTerm=searchTerm, tags=tag, sortBy=sortBy, sortOrder=sortOrder)
        return app.state.service.list_public_strategies(flt, cursor, pageSize)

    @app.get("/strategies/{strategy_id}", response_model=Strategy)
    def get_strategy(strategy_id: str, x_user_id: Optional[str] = Header(None)):
        return app.state.service.get_strategy(strategy_id, x_user_id)

    @app.put("/strategies/{strategy_id}", response_model=Strategy)
    def update_strategy(strategy_id: str, changes: Dict[str, Any], x_user_id: str = Header(...)):
        return app.state.service.update_strategy(strategy_id, x_user_id, changes)

    @app.delete("/strategies/{strategy_id}", status_code=204)
    def delete_strategy(strategy_id: str, x_user_id: str = Header(...)):
        app.state.service.delete_strategy(strategy_id, x_user_id)

    @app.post("/strategies/{strategy_id}/clone", response_model=Strategy, status_code=201)
    def clone_strategy(strategy_id: str, request: CloneRequest, x_user_id: str = Header(...)):
        return app.state.service.clone_strategy(strategy_id, x_user_id, request.name)

    @app.put("/strategies/{strategy_id}/visibility", response_model=Strategy)
    def set_visibility(strategy_id: str, request: VisibilityRequest, x_user_id: str = Header(...)):
        return app.state.service.set_visibility(strategy_id, x_user_id, request.isPublic)

    @app.post("/strategies/{strategy_id}/evaluate", response_model=StrategySignals)
    def evaluate_stored_strategy(strategy_id: str, x_user_id: Optional[str] = Header(None)):
        """Evaluate a stored strategy over the uploaded bars"""
        strategy = app.state.service.get_strategy(strategy_id, x_user_id)
        return StrategyEvaluator(_series(app, None)).run(strategy)

    return app


def _filter(**fields) -> StrategyFilter:
    try:
        return StrategyFilter(**fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _load_default_data(app: FastAPI, path: str):
    """Load default CSV file on startup"""
    if not os.path.exists(path):
        logger.info("Default CSV not found at %s", path)
        return
    try:
        app.state.series = load_series_csv(path)
    except StratlabError as e:
        logger.error("Failed to load default CSV %s: %s", path, e)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=4000)
