"""Idempotency middleware for the decision endpoint.

Provides:
- Idempotency-Key header handling, scoped to the authenticated manager
- Replay of the recorded response for a resent decision
- Request body conflict detection
"""

import json
from typing import Callable

import structlog
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from kitchen_bookings.application.idempotency_service import (
    IdempotencyService,
    get_idempotency_service,
)

logger = structlog.get_logger()


# Endpoints that honour idempotency keys
IDEMPOTENT_ENDPOINTS = {
    "/api/manager/bookings/{booking_id}/decision": ["POST"],
}


def _matches_pattern(path: str, pattern: str) -> bool:
    """Check if path matches a pattern with path parameters.

    Args:
        path: Actual request path (e.g., /api/manager/bookings/42/decision)
        pattern: Pattern with placeholders (e.g., /api/manager/bookings/{booking_id}/decision)

    Returns:
        True if path matches pattern.
    """
    path_parts = path.rstrip("/").split("/")
    pattern_parts = pattern.rstrip("/").split("/")

    if len(path_parts) != len(pattern_parts):
        return False

    for path_part, pattern_part in zip(path_parts, pattern_parts):
        if pattern_part.startswith("{") and pattern_part.endswith("}"):
            continue
        if path_part != pattern_part:
            return False

    return True


def _requires_idempotency(path: str, method: str) -> bool:
    for pattern, methods in IDEMPOTENT_ENDPOINTS.items():
        if method in methods and _matches_pattern(path, pattern):
            return True
    return False


def _scope_for(request: Request) -> str:
    principal = getattr(request.state, "principal", None)
    return f"manager-{principal.manager_id}" if principal is not None else ""


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Middleware for idempotency key handling.

    Runs after authentication so the key is scoped to the manager
    sending it. Requests without a key are processed normally.
    """

    HEADER_NAME = "Idempotency-Key"
    REPLAY_HEADER = "X-Idempotent-Replayed"

    def __init__(self, app, service: IdempotencyService | None = None) -> None:
        """Initialize middleware.

        Args:
            app: The ASGI application.
            service: Idempotency service (uses global if not provided).
        """
        super().__init__(app)
        self._service = service

    @property
    def service(self) -> IdempotencyService:
        # Resolved per request so tests can reset the global service
        return self._service or get_idempotency_service()

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Replay or record responses for keyed decision requests.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response (replayed or fresh).
        """
        path = request.url.path.rstrip("/")
        method = request.method

        if not _requires_idempotency(path, method):
            return await call_next(request)

        idempotency_key = request.headers.get(self.HEADER_NAME)
        if not idempotency_key:
            logger.debug("Decision without idempotency key", path=path)
            return await call_next(request)

        request_body = None
        body = await request.body()
        if body:
            try:
                request_body = json.loads(body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                # Left for request validation to reject
                request_body = {"raw": body.decode("utf-8", errors="replace")}

        scope = _scope_for(request)
        result = await self.service.check(
            idempotency_key=idempotency_key,
            endpoint=path,
            method=method,
            request_body=request_body,
            scope=scope,
        )

        if result.is_conflict:
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={
                    "error_code": "IDEMPOTENCY_CONFLICT",
                    "message": result.conflict_message or "Idempotency key already used with different request",
                    "details": [],
                    "request_id": getattr(request.state, "request_id", None),
                },
            )

        if result.is_cached and result.cached_response:
            cached = result.cached_response
            logger.info(
                "Returning cached idempotent response",
                idempotency_key=idempotency_key,
                path=path,
                original_status=cached.response_status,
            )
            response = JSONResponse(status_code=cached.response_status, content=cached.response_body)
            response.headers[self.REPLAY_HEADER] = "true"
            return response

        response = await call_next(request)

        if response.status_code >= 500:
            return response

        response_body = b""
        async for chunk in response.body_iterator:
            response_body += chunk

        try:
            response_dict = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            response_dict = {}

        await self.service.store(
            idempotency_key=idempotency_key,
            endpoint=path,
            method=method,
            response_status=response.status_code,
            response_body=response_dict,
            request_body=request_body,
            scope=scope,
        )

        new_response = JSONResponse(status_code=response.status_code, content=response_dict)
        for key, value in response.headers.items():
            if key.lower() not in ("content-length", "content-type"):
                new_response.headers[key] = value
        return new_response


def setup_idempotency_middleware(app) -> None:
    """Add idempotency middleware to the application.

    Must be called before setup_middleware so it runs inside the
    authentication middleware.

    Args:
        app: FastAPI application instance.
    """
    app.add_middleware(IdempotencyMiddleware)
