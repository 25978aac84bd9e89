import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from custom_metrics.api import custom_metrics, stats
from custom_metrics.config import settings
from custom_metrics.services.errors import (
    AggregationError,
    ListError,
    MetricsProviderError,
    ResolutionError,
    SelectorError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# error class -> (status code, error code, detail)
_PROVIDER_ERRORS = {
    ResolutionError: (
        status.HTTP_404_NOT_FOUND,
        "RESOLUTION_ERROR",
        "The requested resource type is not known to this server.",
    ),
    SelectorError: (
        status.HTTP_400_BAD_REQUEST,
        "SELECTOR_ERROR",
        "The label selector could not be parsed.",
    ),
    AggregationError: (
        status.HTTP_400_BAD_REQUEST,
        "AGGREGATION_ERROR",
        "The label selector did not produce a usable set of objects.",
    ),
    ListError: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "LIST_ERROR",
        "The server could not list the objects matching the selector.",
    ),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting custom metrics API (backend: %s)", settings.resource_backend)
    await custom_metrics.refresh_discovery()
    yield
    logger.info("Shutting down custom metrics API")
    await custom_metrics.close_resources()


app = FastAPI(
    title="Synthetic Custom Metrics API",
    description="Custom metrics API serving deterministic synthetic values",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Include routers
app.include_router(custom_metrics.router)
app.include_router(stats.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Synthetic Custom Metrics API",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Global exception handlers


@app.exception_handler(MetricsProviderError)
async def provider_error_handler(request: Request, exc: MetricsProviderError):
    """
    Handle metric query errors.

    ListError messages are already generic; the underlying cause was logged
    where it happened.
    """
    status_code, error_code, detail = _PROVIDER_ERRORS.get(
        type(exc),
        (status.HTTP_500_INTERNAL_SERVER_ERROR, "PROVIDER_ERROR", "The metric query failed."),
    )
    if status_code >= 500:
        logger.error("Metric query failed on %s: %s", request.url.path, exc)
    else:
        logger.warning("Metric query rejected on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": exc.message,
            "detail": detail,
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    logger.warning(f"Validation error: {exc}")
    errors = exc.errors()
    error_messages = []

    for error in errors:
        field = " -> ".join(str(loc) for loc in error["loc"])
        message = error["msg"]
        error_messages.append(f"{field}: {message}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "VALIDATION_ERROR",
            "message": "Invalid request data",
            "detail": "; ".join(error_messages),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle all other unexpected exceptions.

    Logs detailed error information while returning a generic message.
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "detail": "The server encountered an unexpected error. Please try again later.",
        },
    )
