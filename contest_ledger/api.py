"""
FastAPI application for Contest Ledger.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth.middleware import RouteProtectionMiddleware
from .auth.session import router as auth_router
from .config import get_settings
from .contest.routes import router as contest_router
from .db.base import init_database
from .errors import ContestError, RateLimited, ValidationFailed
from .logging_config import configure_logging
from .uploads.routes import router as uploads_router

# Initialize structured logging
logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("Starting Contest Ledger", environment=settings.environment)

    try:
        init_database()
    except Exception as e:
        logger.error("Failed to start application", error=str(e))
        raise

    yield

    logger.info("Shutdown complete")


app = FastAPI(
    title="Contest Ledger",
    description="Submission and vote integrity engine for a time-boxed creative contest",
    version=importlib.metadata.version("contest-ledger"),
    lifespan=lifespan,
)

app.add_middleware(RouteProtectionMiddleware, settings_provider=get_settings)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ContestError)
async def contest_error_handler(request: Request, exc: ContestError) -> JSONResponse:
    logger.info(
        "Request rejected",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
    )
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimited) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.to_dict()},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or "body"
    error = ValidationFailed(
        f"Invalid value for '{field}': {first.get('msg', 'invalid request')}",
        rule="invalid_request",
        details={"field": field},
    )
    return await contest_error_handler(request, error)


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("contest-ledger")}


app.include_router(contest_router)
app.include_router(uploads_router)
app.include_router(auth_router)
