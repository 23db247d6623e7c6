"""Homeflow Backend API - FastAPI application."""

import sqlite3
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from homeflow import __version__
from homeflow.errors import (
    AuthorizationError,
    ConflictError,
    HomeflowError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

from .config import get_settings
from .database import get_workflow
from .logging_config import configure_logging, get_logger
from .rate_limit import limiter
from .routes import (
    admin_router,
    catalogue_router,
    evidence_router,
    jobs_router,
    maintenance_router,
    pricing_router,
    providers_router,
    visits_router,
)

logger = get_logger("homeflow.main")

# Most specific first; the first matching class wins
ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (ConflictError, 409),
    (InternalError, 500),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging("DEBUG" if settings.debug else settings.log_level)
    logger.info(f"Starting Homeflow Backend API (debug={settings.debug})")
    yield
    logger.info("Shutting down Homeflow Backend API")


app = FastAPI(
    title="Homeflow Backend API",
    description="Job lifecycle API for the home-services marketplace",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(HomeflowError)
async def homeflow_error_handler(request: Request, exc: HomeflowError) -> JSONResponse:
    """Map domain errors to HTTP responses with ``{"detail": reason}``."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.reason}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.reason}")
    return JSONResponse(status_code=status_code, content={"detail": exc.reason})


# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jobs_router)
app.include_router(visits_router)
app.include_router(catalogue_router)
app.include_router(pricing_router)
app.include_router(providers_router)
app.include_router(admin_router)
app.include_router(maintenance_router)
app.include_router(evidence_router)


@app.get("/")
async def root():
    """Service banner."""
    return {
        "service": "homeflow-backend",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
def health():
    """Health check with a real database read."""
    db_status = "connected"
    try:
        get_workflow().store.list_providers()
    except (HomeflowError, sqlite3.Error) as e:
        db_status = f"error: {str(e)[:50]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
    }
