"""Idempotency service for safe decision retries.

A manager's client may resend a decision after a timeout. Responses are
cached per (manager, Idempotency-Key, method, path) so a resend replays
the original outcome instead of deciding the booking twice. Server
errors are never cached: a 502 left units pending and the retry must
run again.
"""

import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from kitchen_bookings.infrastructure.config import settings

logger = structlog.get_logger()


@dataclass
class CachedResponse:
    """A cached response for an idempotent request.

    Attributes:
        idempotency_key: The idempotency key.
        scope: Who sent the request (manager id), or "" when anonymous.
        endpoint: API endpoint.
        method: HTTP method.
        response_status: HTTP status code.
        response_body: Response body as dict.
        created_at: When the response was cached.
        expires_at: When the cached response expires.
        request_hash: Hash of the original request body.
    """

    idempotency_key: str
    scope: str
    endpoint: str
    method: str
    response_status: int
    response_body: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    request_hash: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) > self.expires_at


@dataclass
class IdempotencyResult:
    """Result of an idempotency check.

    Attributes:
        is_cached: Whether a cached response was found.
        cached_response: The cached response if found.
        is_conflict: Whether request body conflicts with original.
        conflict_message: Explanation for a conflict.
    """

    is_cached: bool
    cached_response: CachedResponse | None = None
    is_conflict: bool = False
    conflict_message: str | None = None


class InMemoryIdempotencyStore:
    """Process-local store for idempotent responses."""

    def __init__(self, ttl_hours: int | None = None) -> None:
        """Initialize store.

        Args:
            ttl_hours: Lifetime of cached responses (defaults to settings).
        """
        self._responses: dict[str, CachedResponse] = {}
        self._mutex = threading.Lock()
        self.ttl_hours = ttl_hours if ttl_hours is not None else settings.idempotency_ttl_hours

    @staticmethod
    def _make_key(scope: str, idempotency_key: str, endpoint: str, method: str) -> str:
        return f"{scope}:{idempotency_key}:{method}:{endpoint}"

    async def get(self, scope: str, idempotency_key: str, endpoint: str, method: str) -> CachedResponse | None:
        key = self._make_key(scope, idempotency_key, endpoint, method)
        with self._mutex:
            cached = self._responses.get(key)
            if cached is None:
                return None
            if cached.is_expired():
                del self._responses[key]
                return None
            return cached

    async def store(self, cached: CachedResponse) -> None:
        key = self._make_key(cached.scope, cached.idempotency_key, cached.endpoint, cached.method)
        with self._mutex:
            self._responses[key] = cached

    async def cleanup_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed.
        """
        now = datetime.now(timezone.utc)
        with self._mutex:
            expired = [key for key, cached in self._responses.items() if cached.is_expired(now)]
            for key in expired:
                del self._responses[key]
        return len(expired)


class IdempotencyService:
    """Checks and records responses for Idempotency-Key requests."""

    def __init__(self, storage: InMemoryIdempotencyStore | None = None) -> None:
        self._storage = storage or InMemoryIdempotencyStore()

    @staticmethod
    def compute_request_hash(body: dict[str, Any] | None) -> str | None:
        """Compute a SHA-256 hash of a request body for conflict detection."""
        if body is None:
            return None
        payload = json.dumps(body, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode()).hexdigest()

    async def check(
        self,
        idempotency_key: str,
        endpoint: str,
        method: str,
        request_body: dict[str, Any] | None = None,
        scope: str = "",
    ) -> IdempotencyResult:
        """Check if request was already processed.

        Args:
            idempotency_key: The idempotency key from header.
            endpoint: API endpoint path.
            method: HTTP method.
            request_body: Current request body for conflict detection.
            scope: Caller the key belongs to.

        Returns:
            IdempotencyResult with cached response if found.
        """
        cached = await self._storage.get(scope, idempotency_key, endpoint, method)
        if cached is None:
            return IdempotencyResult(is_cached=False)

        if cached.request_hash != self.compute_request_hash(request_body):
            logger.warning(
                "Idempotency key reused with different request body",
                idempotency_key=idempotency_key,
                endpoint=endpoint,
            )
            return IdempotencyResult(
                is_cached=False,
                is_conflict=True,
                conflict_message="Idempotency key already used with different request body",
            )

        return IdempotencyResult(is_cached=True, cached_response=cached)

    async def store(
        self,
        idempotency_key: str,
        endpoint: str,
        method: str,
        response_status: int,
        response_body: dict[str, Any],
        request_body: dict[str, Any] | None = None,
        scope: str = "",
    ) -> CachedResponse | None:
        """Record the response for an idempotency key.

        Returns:
            The cached response, or None for server errors, which are not cached.
        """
        if response_status >= 500:
            logger.debug(
                "Not caching server error for idempotency key",
                idempotency_key=idempotency_key,
                status=response_status,
            )
            return None

        now = datetime.now(timezone.utc)
        cached = CachedResponse(
            idempotency_key=idempotency_key,
            scope=scope,
            endpoint=endpoint,
            method=method,
            response_status=response_status,
            response_body=response_body,
            created_at=now,
            expires_at=now + timedelta(hours=self._storage.ttl_hours),
            request_hash=self.compute_request_hash(request_body),
        )
        await self._storage.store(cached)

        logger.debug(
            "Stored idempotent response",
            idempotency_key=idempotency_key,
            endpoint=endpoint,
            method=method,
            status=response_status,
        )
        return cached


# Global service instance
_idempotency_service: IdempotencyService | None = None


def get_idempotency_service() -> IdempotencyService:
    """Get or create the idempotency service instance."""
    global _idempotency_service
    if _idempotency_service is None:
        _idempotency_service = IdempotencyService()
    return _idempotency_service


def reset_idempotency_service() -> None:
    """Reset idempotency service (for testing)."""
    global _idempotency_service
    _idempotency_service = None
