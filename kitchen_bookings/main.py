"""Kitchen Bookings API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kitchen_bookings.api.bookings import router as bookings_router
from kitchen_bookings.api.health import router as health_router
from kitchen_bookings.api.idempotency import setup_idempotency_middleware
from kitchen_bookings.api.middleware import setup_middleware
from kitchen_bookings.infrastructure.config import settings
from kitchen_bookings.infrastructure.database import dispose_engine
from kitchen_bookings.infrastructure.logging import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    logger.info(
        "Starting Kitchen Bookings API",
        version=settings.api_version,
        debug=settings.debug,
        booking_store=settings.booking_store,
        payment_provider=settings.payment_provider,
    )

    yield

    logger.info("Shutting down Kitchen Bookings API")
    if settings.booking_store == "database":
        await dispose_engine()


app = FastAPI(
    title="Kitchen Bookings API",
    description="Manager approval and payment capture for commercial kitchen bookings",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Idempotency runs inside authentication, so it is added first
setup_idempotency_middleware(app)

# Request ID, manager auth, error handling
setup_middleware(app)

app.include_router(health_router, tags=["Health"])
app.include_router(bookings_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", [])
    else:
        error_code = "ERROR"
        message = str(detail)
        details = []

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    """Render malformed payloads and path parameters as 400 INVALID_PAYLOAD."""
    request_id = getattr(request.state, "request_id", None)
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]

    logger.info("Rejected malformed request", path=request.url.path, errors=details)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error_code": "INVALID_PAYLOAD",
            "message": "Request payload is invalid",
            "details": details,
            "request_id": request_id,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    """Handle uncaught exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "details": [],
            "request_id": request_id,
        },
    )
