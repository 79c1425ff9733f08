"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fieldmap.api.v1.endpoints import health
from fieldmap.api.v1.router import api_router
from fieldmap.core.config import settings
from fieldmap.core.database import close_database, init_database
from fieldmap.core.exceptions import (
    AppError,
    ConcurrentUpdateError,
    ConfigurationError,
    ExtractionCancelledError,
    PersistenceError,
    RecordNotFoundError,
    SourceNotResolvedError,
    ValidationError,
)
from fieldmap.utils.logging import get_logger
from fieldmap.utils.responses import create_error_detail

LOGGER = get_logger(__name__, level=settings.log_level)

# Most specific first; the first isinstance match wins
ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST, "Validation Error"),
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND, "Not Found"),
    (SourceNotResolvedError, status.HTTP_404_NOT_FOUND, "Source Not Resolved"),
    (ConcurrentUpdateError, status.HTTP_409_CONFLICT, "Concurrent Update"),
    (ExtractionCancelledError, status.HTTP_409_CONFLICT, "Extraction Cancelled"),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "Configuration Error"),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR, "Persistence Error"),
)


class RootResponse(BaseModel):
    """Root endpoint response payload."""

    message: str = Field(..., description="Service status message")
    version: str = Field(..., description="Running application version")
    docs: str = Field(..., description="Path to the interactive API docs")
    health: str = Field(..., description="Path to the health check endpoint")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    LOGGER.info("Starting database initialization...")
    try:
        await asyncio.wait_for(
            init_database(auto_migrate=settings.auto_migrate),
            timeout=settings.db_init_timeout,
        )
        LOGGER.info("Database initialized successfully")
    except asyncio.TimeoutError:
        LOGGER.error(f"Database initialization timed out after {settings.db_init_timeout}s")
    except Exception as e:
        LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    LOGGER.info("Shutting down application")
    try:
        await close_database()
    except Exception as e:
        LOGGER.error("Error closing database", exc_info=True, extra={"error": str(e)})


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Dynamic field mapping and photo extraction for workflow steps",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    status_code, title = status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Error"
    for error_type, mapped_status, mapped_title in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code, title = mapped_status, mapped_title
            break

    if status_code >= 500:
        LOGGER.error(f"{title}: {exc.message}", exc_info=exc.original_error is not None)
    else:
        LOGGER.warning(f"{title}: {exc.message}", extra={"path": request.url.path})

    return JSONResponse(
        status_code=status_code,
        content=create_error_detail(title=title, status=status_code, detail=exc.message, request=request),
    )


# Correlation ID middleware
@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get(
    "/",
    response_model=RootResponse,
    tags=["Root"],
    summary="Root endpoint",
    operation_id="get_public_root_metadata",
)
async def root() -> RootResponse:
    return RootResponse(
        message="Server is running",
        version=settings.app_version,
        docs="/docs",
        health="/health",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fieldmap.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
