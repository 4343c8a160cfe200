"""FastAPI application for the CogniClear decision engine.

Features:
- Decision lifecycle endpoints (draft, analyze, outcome, patterns)
- What-if simulation sessions
- Standardized error response schema for every failure
- Request ids propagated into structured logs
"""

import platform
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agents.simulation import close_simulation_manager, get_simulation_manager
from config import get_settings
from db.postgres import check_connection, close_postgres, init_postgres
from middleware import RequestIDMiddleware
from models.errors import (
    AnalysisContractError,
    DecisionEngineError,
    DecisionNotFoundError,
    ProviderUnavailableError,
    SessionNotFoundError,
    StateError,
    ValidationError,
    create_error_response,
)
from routers import decisions, simulations
from services.decision_service import init_decision_service
from services.repository import InMemoryDecisionRepository, SQLDecisionRepository
from utils.logging import configure_logging, get_logger

APP_VERSION = "0.1.0"
APP_NAME = "CogniClear API"

logger = get_logger(__name__)

# Most specific classes first; the first isinstance match wins
ERROR_STATUS_CODES: list[tuple[type[DecisionEngineError], int]] = [
    (ValidationError, 422),
    (DecisionNotFoundError, 404),
    (SessionNotFoundError, 404),
    (StateError, 409),
    (AnalysisContractError, 502),
    (ProviderUnavailableError, 503),
]

HTTP_ERROR_TYPES = {
    400: "BadRequest",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    503: "ServiceUnavailable",
}


def get_request_id(request: Request) -> str | None:
    """Extract request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID")


def status_code_for(exc: DecisionEngineError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=not settings.debug)

    logger.info(f"{APP_NAME} v{APP_VERSION} starting up...")
    if settings.database_url:
        session_maker = await init_postgres()
        init_decision_service(SQLDecisionRepository(session_maker))
        storage = "postgres"
    else:
        logger.warning("DATABASE_URL not set, decisions are kept in memory only")
        init_decision_service(InMemoryDecisionRepository())
        storage = "memory"

    logger.info(
        "Application startup complete",
        extra={
            "event": "startup",
            "app_version": APP_VERSION,
            "python_version": platform.python_version(),
            "storage": storage,
            "llm_provider": settings.llm_provider,
        },
    )

    yield

    logger.info("Shutting down gracefully...")
    close_simulation_manager()
    if settings.database_url:
        await close_postgres()
    logger.info("Graceful shutdown complete")


app = FastAPI(
    title=APP_NAME,
    description="Decision analysis and simulation engine",
    version=APP_VERSION,
    lifespan=lifespan,
)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(DecisionEngineError)
async def engine_exception_handler(request: Request, exc: DecisionEngineError) -> JSONResponse:
    """Map domain errors onto status codes with the standard error body."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning(
            f"{exc.error_type} on {request.method} {request.url.path}: {exc.message}"
        )

    response = create_error_response(
        error=exc.error_type,
        message=exc.message,
        details=exc.details,
        request_id=get_request_id(request),
        path=str(request.url.path),
    )
    return JSONResponse(status_code=status_code, content=response)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request body and parameter validation errors."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Validation error on {request.method} {request.url.path}: {len(errors)} error(s)"
    )

    response = create_error_response(
        error="ValidationError",
        message="Request validation failed",
        details={"errors": errors},
        request_id=get_request_id(request),
        path=str(request.url.path),
    )
    return JSONResponse(status_code=422, content=response)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    response = create_error_response(
        error=HTTP_ERROR_TYPES.get(exc.status_code, "InternalError"),
        message=message,
        request_id=get_request_id(request),
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.status_code, content=response)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        f"Unhandled exception on {request.method} {request.url.path}: "
        f"{type(exc).__name__}: {exc}"
    )

    # Don't expose internal error details to clients
    response = create_error_response(
        error="InternalError",
        message="An unexpected error occurred. Please try again later.",
        request_id=get_request_id(request),
        path=str(request.url.path),
    )
    return JSONResponse(status_code=500, content=response)


# =============================================================================
# Middleware (last added = first executed on request)
# =============================================================================

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-User-ID", "X-Request-ID", "Accept"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)
app.add_middleware(RequestIDMiddleware)

# =============================================================================
# Routers
# =============================================================================

app.include_router(decisions.router, prefix="/api/decisions", tags=["Decisions"])
app.include_router(simulations.router, prefix="/api/simulations", tags=["Simulations"])


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/live")
async def liveness_check():
    """Process is up. Does not touch storage or the provider."""
    return {"alive": True}


@app.get("/health/ready")
async def readiness_check():
    """Ready to serve: storage reachable. 503 otherwise.

    The reasoning provider is not probed; its outages surface per request.
    """
    if get_settings().database_url:
        storage_ok = await check_connection()
        storage = "postgres"
    else:
        storage_ok = True
        storage = "memory"

    status = {
        "ready": storage_ok,
        "checks": {storage: "healthy" if storage_ok else "unhealthy"},
        "simulation_sessions": len(get_simulation_manager()),
    }
    if not storage_ok:
        return JSONResponse(status_code=503, content=status)
    return status


@app.get("/")
async def root():
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "docs": "/docs",
    }
