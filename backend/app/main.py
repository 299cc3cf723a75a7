"""Craftiva Backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from craftiva import __version__
from craftiva.errors import (
    AuthorizationError,
    DuplicateApplicationError,
    MarketplaceError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from craftiva.logging_config import get_logger, setup_logging

from .config import get_settings
from .rate_limit import limiter
from .routes import applications_router, jobs_router

API_PREFIX = "/api/v1"

logger = get_logger("backend")

# Checked in order; the first matching class decides the status code.
ERROR_STATUS_CODES = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateApplicationError, status.HTTP_409_CONFLICT),
    (StateConflictError, status.HTTP_409_CONFLICT),
)


def status_code_for(exc: MarketplaceError) -> int:
    for error_cls, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info(
        f"Starting Craftiva Backend API (debug={settings.debug}, storage={settings.storage_backend})"
    )
    yield
    logger.info("Shutting down Craftiva Backend API")


app = FastAPI(
    title="Craftiva Backend API",
    description="Job marketplace API: job requests, applications and progress tracking",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    code = status_code_for(exc)
    if code == status.HTTP_409_CONFLICT:
        logger.warning(f"{request.method} {request.url.path} | conflict | {exc}")
    return JSONResponse(
        status_code=code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


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
app.include_router(jobs_router, prefix=API_PREFIX)
app.include_router(applications_router, prefix=API_PREFIX)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "craftiva-backend",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    from .database import get_supabase_client

    if get_settings().storage_backend == "memory":
        return {"status": "healthy", "database": "memory"}

    db_status = "disconnected"
    try:
        db = get_supabase_client()
        db.table("job_requests").select("id").limit(1).execute()
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return {
        "status": overall_status,
        "database": db_status,
    }
