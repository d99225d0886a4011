"""API middleware for the Kitchen Bookings API.

Provides:
- Manager bearer-token authentication
- Request ID correlation
- Error handling
"""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from kitchen_bookings.domain.value_objects import ManagerPrincipal
from kitchen_bookings.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Request ID Middleware
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID for correlation.

    Generates or extracts a request ID and adds it to:
    - Request state for access in handlers
    - Response headers for client correlation
    - Log context for tracing
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with correlation ID.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response with request ID header.
        """
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid4())

        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=getattr(response, "status_code", 500),
                duration_ms=round(duration_ms, 2),
            )

            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[self.HEADER_NAME] = request_id

        return response


# ============================================================================
# Manager Authentication Middleware
# ============================================================================


# Paths that don't require authentication
PUBLIC_PATHS = {
    "/health",
    "/ready",
    "/docs",
    "/redoc",
    "/openapi.json",
}


def _unauthorized(error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "error_code": error_code,
            "message": message,
            "details": [],
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


class ManagerAuthMiddleware(BaseHTTPMiddleware):
    """Middleware resolving a manager session token to a principal.

    Validates "Authorization: Bearer <token>" against the configured
    token table and stores the ManagerPrincipal on request.state.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Authenticate protected endpoints.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response or 401 error.
        """
        # Skip auth for public paths
        path = request.url.path.rstrip("/")
        if path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")

        if not auth_header:
            logger.warning(
                "Missing authorization header",
                path=path,
                method=request.method,
            )
            return _unauthorized("UNAUTHORIZED", "Missing Authorization header")

        parts = auth_header.split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
            logger.warning(
                "Invalid authorization format",
                path=path,
                method=request.method,
            )
            return _unauthorized(
                "UNAUTHORIZED", "Invalid Authorization header format. Use 'Bearer <token>'"
            )

        manager_id = settings.manager_tokens.get(parts[1].strip())
        if manager_id is None:
            logger.warning(
                "Invalid manager token",
                path=path,
                method=request.method,
            )
            return _unauthorized("INVALID_TOKEN", "Invalid or expired session token")

        request.state.principal = ManagerPrincipal(manager_id=manager_id)
        structlog.contextvars.bind_contextvars(manager_id=manager_id)
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("manager_id")


def get_principal(request: Request) -> ManagerPrincipal:
    """Dependency returning the authenticated manager.

    Raises:
        HTTPException: 401 if the request was not authenticated.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "UNAUTHORIZED",
                "message": "Authentication required",
                "details": [],
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


# ============================================================================
# Error Handling Middleware
# ============================================================================


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware turning unhandled exceptions into the standard 500 envelope.

    Keeps a failed decision from leaking a stack trace to the manager
    while the traceback is logged with the request id bound.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Handle errors uniformly.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response or error response.
        """
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)

            logger.exception(
                "Unhandled exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
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


# ============================================================================
# Middleware Setup
# ============================================================================


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application.

    Middleware is added in reverse order (last added = first executed).

    Args:
        app: FastAPI application instance.
    """
    # Error handling (innermost - wraps the routers and idempotency replay)
    app.add_middleware(ErrorHandlerMiddleware)

    # Manager authentication
    app.add_middleware(ManagerAuthMiddleware)

    # Request ID correlation (outermost - every log line carries the id)
    app.add_middleware(RequestIdMiddleware)
