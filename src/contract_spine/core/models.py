"""Data model shared by the resilience core.

Requests, transport responses, cache entries and the state enums every
component reports through ``ClientStatus``. Everything that crosses a
component boundary is a frozen dataclass: a ``Request`` is immutable
once enqueued and a ``CacheEntry`` is replaced, never edited.

Related modules:
    execution/rate_limit.py — QueueEntry (queue-owned wrapper around Request)
    execution/retry.py      — RetryContext (per-call retry bookkeeping)
    core/validation.py      — Schema / Violation
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Rejecting requests
    HALF_OPEN = "half_open"  # One trial call allowed


class SessionState(str, Enum):
    """Authentication session states."""

    UNAUTHENTICATED = "unauthenticated"
    CHALLENGING = "challenging"      # Challenge issued, awaiting signature
    AUTHENTICATED = "authenticated"  # Holds token + expiry
    EXPIRED = "expired"


@dataclass(frozen=True)
class Request:
    """A logical unit of work for the backend.

    ``payload`` is opaque to the core; contract-specific encoding happens
    before a Request is built.

    Example:
        >>> req = Request(target="game", operation="get_stats", payload={"player": "p1"})
        >>> req.endpoint
        '/contracts/game/get_stats'
    """

    target: str
    operation: str
    payload: Any = None
    priority: int = 0
    idempotency_key: str | None = None
    method: str = "POST"
    path: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def endpoint(self) -> str:
        """Endpoint handed to the transport."""
        if self.path is not None:
            return self.path
        return f"/contracts/{self.target}/{self.operation}"

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging (payload omitted)."""
        return {
            "request_id": self.request_id,
            "target": self.target,
            "operation": self.operation,
            "method": self.method,
            "endpoint": self.endpoint,
            "priority": self.priority,
            "idempotency_key": self.idempotency_key,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TransportResponse:
    """What the transport collaborator hands back for one call."""

    status: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def not_modified(self) -> bool:
        return self.status == 304

    @property
    def etag(self) -> str | None:
        return self.header("ETag")

    @property
    def retry_after(self) -> float | None:
        """``Retry-After`` in seconds (delta-seconds or HTTP-date form)."""
        raw = self.header("Retry-After")
        if not raw:
            return None
        try:
            seconds = float(raw)
        except ValueError:
            pass
        else:
            return max(0.0, seconds) if math.isfinite(seconds) else None

        try:
            target = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        if target.tzinfo is None:
            target = target.replace(tzinfo=UTC)
        return max(0.0, (target - utcnow()).total_seconds())


@dataclass(frozen=True)
class CacheEntry:
    """Cached content for one resource path."""

    path: str
    payload: Any
    etag: str | None
    stored_at: float


@dataclass(frozen=True)
class SessionSnapshot:
    """Observable view of the session, delivered to state listeners.

    Never contains the token itself.
    """

    state: SessionState
    expires_at: float | None = None
    address: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "authenticated": self.authenticated,
            "expires_at": self.expires_at,
            "address": self.address,
        }


@dataclass(frozen=True)
class ClientStatus:
    """Point-in-time snapshot for external monitoring."""

    queue_length: int
    in_flight: int
    circuit_state: CircuitState
    session_state: SessionState
    authenticated: bool
    session_expires_at: float | None
    cache_entries: int
    closed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue_length": self.queue_length,
            "in_flight": self.in_flight,
            "circuit_state": self.circuit_state.value,
            "session_state": self.session_state.value,
            "authenticated": self.authenticated,
            "session_expires_at": self.session_expires_at,
            "cache_entries": self.cache_entries,
            "closed": self.closed,
        }


__all__ = [
    "utcnow",
    "CircuitState",
    "SessionState",
    "Request",
    "TransportResponse",
    "CacheEntry",
    "SessionSnapshot",
    "ClientStatus",
]
