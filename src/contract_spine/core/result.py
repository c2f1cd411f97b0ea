"""
Result envelope for consistent success/failure handling.

Provides a typed ``Result[T]`` that makes success and failure explicit.
``safe_call`` and ``batch_call_contracts`` hand these back instead of
raising, so one bad call never aborts the rest of a batch and callers
that opted out of exceptions never see one.

Manifesto:
    - **Explicit over Implicit:** No hidden exceptions that callers might miss
    - **Tagged failures:** ``Err`` carries the typed ``SpineError``
    - **Batch-friendly:** Collect per-position results, handle errors at the
      end with ``partition_results()``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                     Result[T]                                │
        ├─────────────────┬─────────────────┬─────────────────────────┤
        │     Ok[T]       │     Err[T]      │     Utilities           │
        ├─────────────────┼─────────────────┼─────────────────────────┤
        │ • value: T      │ • error: Exc    │ • try_result_async()    │
        │ • map()         │ • map_err()     │ • partition_results()   │
        │ • unwrap()      │ • unwrap_or()   │                         │
        └─────────────────┴─────────────────┴─────────────────────────┘

Examples:
    >>> from contract_spine.core.result import Ok, Err
    >>> result = Ok(10).map(lambda x: x * 2)
    >>> result.unwrap()
    20
    >>> Err(ValueError("oops")).unwrap_or(0)
    0

    Pattern matching:

    >>> match await client.safe_call("game", "get_stats", {}):
    ...     case Ok(stats):
    ...         render(stats)
    ...     case Err(error):
    ...         report(error.to_dict())

Tags:
    result-pattern, error-handling, batch-processing, contract-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from contract_spine.core.errors import SpineError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Successful result containing a value.

    Immutable; ``map()`` returns a new ``Ok`` rather than changing this one.
    """

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get value or default (always returns value for Ok)."""
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        """Transform error if Err (no-op for Ok)."""
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed result containing an error.

    ``unwrap()`` re-raises the wrapped error; use ``unwrap_or()`` or pattern
    matching for safe extraction.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return default (Err has no value)."""
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        """Transform the error."""
        return Err(f(self.error))

    @property
    def error_type(self) -> str:
        """Class name of the wrapped error, the tag callers switch on."""
        return type(self.error).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, SpineError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": self.error_type,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


async def try_result_async(f: Callable[[], Awaitable[T]]) -> Result[T]:
    """
    Await ``f()`` and capture any exception as ``Err``.

    ``asyncio.CancelledError`` is a ``BaseException`` and therefore still
    propagates: task cancellation is not a call failure.

    Example:
        >>> result = await try_result_async(lambda: fetch_profile(user_id))
    """
    try:
        return Ok(await f())
    except Exception as e:
        return Err(e)


def partition_results(
    results: list[Result[T]],
) -> tuple[list[T], list[Exception]]:
    """
    Partition results into successes and failures.

    Args:
        results: List of Result[T] to partition

    Returns:
        Tuple of (list of successful values, list of errors)
    """
    values = []
    errors = []
    for result in results:
        match result:
            case Ok(value):
                values.append(value)
            case Err(error):
                errors.append(error)
    return values, errors


__all__ = [
    "Ok",
    "Err",
    "Result",
    "try_result_async",
    "partition_results",
]
