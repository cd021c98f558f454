"""FastAPI application entrypoint for FlowTrack.

Run with:
    uvicorn flowtrack.main:app --port 8000
"""

import logging
from contextlib import asynccontextmanager

from flowtrack.config import TrackingConfig
from flowtrack.logging_config import setup_logging

# Configure logging before anything else
setup_logging(log_level=TrackingConfig().log_level)
logger = logging.getLogger(__name__)

from fastapi import Depends, FastAPI
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse

from flowtrack import __version__
from flowtrack.analytics.engine import ProcessChainAnalytics
from flowtrack.api.middleware.rate_limit import setup_rate_limiting
from flowtrack.api.routers import analytics, flows, transfers
from flowtrack.config import Config, get_database
from flowtrack.database.connection import Database
from flowtrack.exceptions import (
    ConcurrencyConflict,
    FlowTrackError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from flowtrack.flow.recorder import MaterialFlowRecorder
from flowtrack.flow.transfers import ProcessTransferTracker
from flowtrack.models.errors import ErrorResponse
from flowtrack.readers.bom import BomRegistry
from flowtrack.readers.route_registry import RouteRegistry

# Map HTTP status codes to machine-readable error codes for consistent API responses.
_STATUS_ERROR_CODES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
    429: "rate_limited",
    500: "internal_error",
    503: "service_unavailable",
}

# Domain errors surfaced to clients, most specific first
_DOMAIN_ERRORS = (
    (ValidationError, 422, "validation_error"),
    (NotFoundError, 404, "not_found"),
    (InvalidStateError, 409, "invalid_state"),
    (ConcurrencyConflict, 409, "concurrency_conflict"),
)

_INTERNAL_ERROR = ErrorResponse(detail="Internal server error", error_code="internal_error")


def attach_services(app: FastAPI, config: Config, db: Database) -> None:
    """Wire the tracking services onto ``app.state`` around an open database."""
    tolerance = config.tracking.receipt_tolerance
    unit = config.tracking.default_unit

    routes = RouteRegistry(db)
    plans = BomRegistry(db)
    recorder = MaterialFlowRecorder(db, routes, default_unit=unit)
    tracker = ProcessTransferTracker(db, routes, recorder, tolerance=tolerance, default_unit=unit)

    app.state.config = config
    app.state.db = db
    app.state.routes = routes
    app.state.plans = plans
    app.state.recorder = recorder
    app.state.tracker = tracker
    app.state.analytics = ProcessChainAnalytics(
        routes, recorder, tracker, config=config.bottleneck, bom_source=plans, tolerance=tolerance
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = Config.load()
    config.db_path.parent.mkdir(parents=True, exist_ok=True)

    db = Database(config.db_path)
    await db.connect()
    attach_services(app, config, db)
    logger.info("FlowTrack %s started (db=%s)", __version__, config.db_path)

    yield

    await db.close()


app = FastAPI(title="FlowTrack", version=__version__, lifespan=lifespan)
setup_rate_limiting(app)


@app.middleware("http")
async def add_api_version_header(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith("/api/"):
        response.headers["X-API-Version"] = "1"
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Enrich all HTTPException responses with a consistent error_code field."""
    error_code = _STATUS_ERROR_CODES.get(exc.status_code, "internal_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=str(exc.detail), error_code=error_code).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(FlowTrackError)
async def flowtrack_error_handler(request: Request, exc: FlowTrackError):
    for error_type, status_code, error_code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            logger.info("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
            return JSONResponse(
                status_code=status_code,
                content=ErrorResponse(detail=str(exc), error_code=error_code).model_dump(),
            )
    logger.error("Application error: %s", exc)
    return JSONResponse(
        status_code=500,
        content=_INTERNAL_ERROR.model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content=_INTERNAL_ERROR.model_dump(),
    )


app.include_router(flows.router)
app.include_router(transfers.router)
app.include_router(analytics.router)


@app.get("/health")
async def health(db: Database = Depends(get_database)):
    try:
        await db.execute_read("SELECT 1")
    except Exception as exc:
        logger.warning("Health check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error_code": "service_unavailable"},
        )
    return {"status": "healthy", "version": __version__}
