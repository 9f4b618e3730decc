"""
FastAPI application entry point for the cadence scheduling engine.

This module initializes the FastAPI application with:
- Settings validation at startup
- CORS middleware for frontend development
- Exception handlers for consistent error responses
- Logging configuration

Environment Variables:
    CADENCE_DB_URL: Database URL (PostgreSQL in production, SQLite locally)
    CADENCE_ENV: Environment (production/development, default: development)
    CADENCE_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    CADENCE_CORS_ORIGINS: Comma-separated allowed origins
        (default: http://localhost:3000,http://127.0.0.1:3000)
"""

import os
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from cadence.src.config.settings import get_settings
from cadence.src.db.database import DATABASE_URL, dispose_engine, init_db
from cadence.src.services.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError as ServiceValidationError,
)
from cadence.src.utils.logging_config import get_logger, init_logging


API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Startup: Load settings, create tables on SQLite
    - Shutdown: Dispose of pooled connections

    Args:
        app: FastAPI application instance

    Yields:
        Control to the application
    """
    # Startup
    logger = get_logger("api")
    logger.info("Starting cadence application")

    settings = get_settings()
    logger.info(
        f"Expansion horizon {settings.expansion_horizon_days} days, "
        f"max {settings.max_occurrences} occurrences per expansion"
    )

    if DATABASE_URL.startswith("sqlite"):
        logger.info("SQLite database detected, creating tables")
        init_db()

    yield

    # Shutdown
    logger.info("Shutting down cadence application")
    dispose_engine()


# Initialize logging before creating app
init_logging()

# Create FastAPI application
app = FastAPI(
    title="Cadence API",
    description="Recurring-schedule engine: recurrence expansion, versioned series, "
                "per-occurrence exceptions and conflict preview over a generic record store.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# Configure CORS middleware for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get(
        "CADENCE_CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers


@app.exception_handler(ValidationError)
async def validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Args:
        request: HTTP request
        exc: Pydantic ValidationError

    Returns:
        JSON response with validation error details
    """
    logger = get_logger("api")
    logger.warning(
        "Validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": exc.errors(),
        }
    )


@app.exception_handler(ServiceError)
async def service_exception_handler(
    request: Request, exc: ServiceError
) -> JSONResponse:
    """
    Handle service errors that a route did not translate itself.

    NotFoundError maps to 404, the ConflictError family to 409, validation
    errors to 400; anything else is a 500.
    """
    if isinstance(exc, NotFoundError):
        status_code, error = status.HTTP_404_NOT_FOUND, "Not Found"
    elif isinstance(exc, ConflictError):
        status_code, error = status.HTTP_409_CONFLICT, "Conflict"
    elif isinstance(exc, ServiceValidationError):
        status_code, error = status.HTTP_400_BAD_REQUEST, "Bad Request"
    else:
        status_code, error = status.HTTP_500_INTERNAL_SERVER_ERROR, "Service Error"

    logger = get_logger("api")
    logger.warning(
        f"Service error: {exc}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
        }
    )

    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": str(exc)},
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """
    Handle SQLAlchemy database errors.

    Args:
        request: HTTP request
        exc: SQLAlchemy exception

    Returns:
        JSON response with database error message
    """
    logger = get_logger("db")
    logger.error(
        "Database error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Database Error",
            "message": "An error occurred while accessing the database. "
                      "Please try again later.",
        }
    )


# Health check endpoint


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Health status and application information
    """
    return {
        "status": "healthy",
        "service": "cadence",
        "version": API_VERSION,
    }


# API routers
from cadence.src.api import recurring, records

app.include_router(recurring.router, prefix="/api")
app.include_router(records.router, prefix="/api")
