"""
Structured error types for contract-spine.

Every failure that leaves the resilience core is a typed ``SpineError``
carrying the metadata the orchestrator needs to decide what to do next:
retry it, feed it to the circuit breaker, or hand it straight back to the
caller.

Manifesto:
    - **Typed hierarchy:** One class per failure kind the caller may act on
    - **Explicit retry semantics:** Each error knows if it is retryable
    - **Retry guidance:** ``retry_after`` travels with throttling and
      circuit errors
    - **Error chaining:** The original transport exception is kept as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         SpineError                               │
        │        (category, retryable, retry_after, context, cause)        │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError (retryable)        CircuitOpenError              │
        │    NetworkError                    (CIRCUIT, retry_after)        │
        │    TimeoutError                                                  │
        │    BackendError (5xx)              AuthenticationError (AUTH)    │
        │    RateLimitError (retry_after)                                  │
        │      └─ QueueFullError (not        ValidationError               │
        │         retryable, backpressure)     └─ SchemaValidationError    │
        │                                                                  │
        │  ContractCallError (CONTRACT)      ConfigError                   │
        │                                    ClientClosedError             │
        └─────────────────────────────────────────────────────────────────┘

    Breaker bookkeeping uses the hierarchy directly: ``TransientError``
    outcomes count as backend failures, everything else does not.

Examples:
    >>> error = RateLimitError("Throttled", retry_after=5)
    >>> error.retryable
    True
    >>> QueueFullError(max_size=10).retryable
    False

    >>> try:
    ...     raise ConnectionError("DNS failure")
    ... except ConnectionError as e:
    ...     raise NetworkError("Failed to reach API", cause=e)
    Traceback (most recent call last):
    ...
    NetworkError: Failed to reach API

Guardrails:
    ❌ DON'T: Set retryable=True for validation or authentication errors
    ✅ DO: Let the error type's default_retryable handle it

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, contract-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from contract_spine.core.validation import Violation


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        NETWORK: Connection, timeout, DNS errors, 5xx responses
        RATE_LIMIT: Local backpressure or backend throttling
        CIRCUIT: Circuit breaker refusing calls
        AUTH: Challenge/signature rejected, missing wallet
        VALIDATION: Response shape violates a registered schema
        CONTRACT: Backend accepted the call but reported a failure
        CONFIG: Missing or invalid settings
        INTERNAL: Bugs, unexpected state, use after close
        UNKNOWN: Uncategorized errors
    """

    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    CIRCUIT = "CIRCUIT"
    AUTH = "AUTH"
    VALIDATION = "VALIDATION"
    CONTRACT = "CONTRACT"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Attributes:
        request_id: Identifier of the orchestrated request
        target: Contract/target identifier
        operation: Operation name
        endpoint: Endpoint handed to the transport
        http_status: Status code if the backend answered
        attempt: Attempt number that produced the error
        metadata: Additional key-value pairs
    """

    request_id: str | None = None
    target: str | None = None
    operation: str | None = None
    endpoint: str | None = None
    http_status: int | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["request_id", "target", "operation", "endpoint", "http_status", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SpineError(Exception):
    """
    Base exception for all contract-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so the
    orchestrator can classify any failure without inspecting its message.

    Examples:
        >>> error = SpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(request_id="abc").context.request_id
        'abc'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NetworkError("Failed").with_context(endpoint="/contracts/x/y")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retryable, count toward the circuit breaker)
# =============================================================================


class TransientError(SpineError):
    """
    Temporary error that may succeed on retry.

    Network failures, timeouts, 5xx responses and backend throttling. These
    are retried locally up to ``max_retries`` and, when terminal, recorded
    as a failure by the circuit breaker.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Network-level failure raised by the transport."""

    default_category = ErrorCategory.NETWORK


class TimeoutError(TransientError):
    """Outbound call exceeded its maximum duration."""

    default_category = ErrorCategory.NETWORK

    def __init__(
        self,
        message: str = "Operation timed out",
        *,
        timeout: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class BackendError(TransientError):
    """Backend answered with a 5xx-equivalent status."""

    default_category = ErrorCategory.NETWORK

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status = status
        self.body = body


class RateLimitError(TransientError):
    """Backend-signaled throttling (carries retry-after when known)."""

    default_category = ErrorCategory.RATE_LIMIT

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class QueueFullError(RateLimitError):
    """The local request queue is at ``max_queue_size``.

    Backpressure for the caller, so never retried by the orchestrator.
    """

    default_retryable = False

    def __init__(
        self,
        message: str | None = None,
        *,
        max_size: int | None = None,
        **kwargs: Any,
    ):
        if message is None:
            message = f"Request queue is full (max_queue_size={max_size})"
        super().__init__(message, **kwargs)
        self.max_size = max_size


# =============================================================================
# NON-TRANSIENT ERRORS (Surfaced immediately)
# =============================================================================


class CircuitOpenError(SpineError):
    """Circuit breaker is not admitting calls.

    ``retry_after`` is the remaining cooldown in seconds (``0.0`` when the
    breaker is half-open and waiting on its trial call).
    """

    default_category = ErrorCategory.CIRCUIT
    default_retryable = False

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)

    @property
    def remaining_cooldown(self) -> float:
        return self.retry_after or 0.0


class AuthenticationError(SpineError):
    """Challenge or signature rejected, token refused, or no wallet available."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class ValidationError(SpineError):
    """
    Data validation error.

    Never retryable - the payload must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class SchemaValidationError(ValidationError):
    """Response violates a registered schema.

    Carries every violation found, not only the first one.
    """

    def __init__(
        self,
        schema: str,
        violations: list[Violation],
        *,
        message: str | None = None,
        **kwargs: Any,
    ):
        if message is None:
            fields = ", ".join(v.path or "<root>" for v in violations)
            message = f"Payload violates schema '{schema}' ({len(violations)} violation(s): {fields})"
        super().__init__(message, **kwargs)
        self.schema = schema
        self.violations = list(violations)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["schema"] = self.schema
        result["violations"] = [v.to_dict() for v in self.violations]
        return result


class ContractCallError(SpineError):
    """Backend accepted the call but reported a domain-level failure."""

    default_category = ErrorCategory.CONTRACT
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status = status
        self.body = body


class ConfigError(SpineError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class ClientClosedError(SpineError):
    """Operation attempted after the client was destroyed."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


def is_retryable(error: BaseException) -> bool:
    """
    Check if an error is retryable.

    Works with both SpineError and standard exceptions.
    """
    if isinstance(error, SpineError):
        return error.retryable

    return isinstance(error, (ConnectionError, OSError))


def counts_as_backend_failure(error: BaseException) -> bool:
    """True when an outcome reflects backend health rather than call correctness."""
    return isinstance(error, TransientError) and not isinstance(error, QueueFullError)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SpineError",
    "TransientError",
    "NetworkError",
    "TimeoutError",
    "BackendError",
    "RateLimitError",
    "QueueFullError",
    "CircuitOpenError",
    "AuthenticationError",
    "ValidationError",
    "SchemaValidationError",
    "ContractCallError",
    "ConfigError",
    "ClientClosedError",
    "is_retryable",
    "counts_as_backend_failure",
]
