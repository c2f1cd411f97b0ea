"""Circuit breaker pattern for fault tolerance.

Prevents cascading failures by failing fast when the backend is
experiencing issues.

States:
    CLOSED: Normal operation. Failures are counted over a rolling
        ``monitoring_period``; reaching ``failure_threshold`` opens the circuit.
    OPEN: Calls rejected immediately with ``CircuitOpenError`` carrying the
        remaining cooldown. After ``recovery_timeout`` → HALF_OPEN.
    HALF_OPEN: Exactly one trial call admitted. Its success closes the circuit,
        its failure reopens it with a fresh cooldown. Late outcomes of calls
        admitted earlier are counted in the stats but do not decide the trial.

Only backend-health outcomes should be recorded as failures; callers report
outcomes that say nothing about backend health with ``record_ignored()``.

Example:
    >>> breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30.0)
    >>>
    >>> admission = breaker.acquire()   # raises CircuitOpenError when not admitted
    >>> try:
    ...     result = await call_backend()
    ...     breaker.record_success(admission)
    ... except TransientError:
    ...     breaker.record_failure(admission=admission)
    ...     raise
"""

from __future__ import annotations

import itertools
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from contract_spine.core.errors import CircuitOpenError, counts_as_backend_failure
from contract_spine.core.logging import get_logger
from contract_spine.core.models import CircuitState, utcnow

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass(frozen=True)
class Admission:
    """Ticket handed out by :meth:`CircuitBreaker.acquire`.

    Hand it back to ``record_*`` so that a HALF_OPEN circuit reacts only to
    the outcome of its own trial call, never to a late outcome of a call
    admitted before the circuit opened.
    """

    seq: int
    trial: bool = False


@dataclass
class CircuitBreaker:
    """Circuit breaker for fault tolerance.

    Attributes:
        name: Identifier for this circuit
        failure_threshold: Failures within the window before opening
        recovery_timeout: Seconds to stay open before admitting a trial
        monitoring_period: Rolling window (seconds) over which failures count
        clock: Monotonic time source (injectable for tests)
    """

    name: str = "default"
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    monitoring_period: float = 60.0
    clock: Callable[[], float] = time.monotonic

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: deque[float] = field(default_factory=deque, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _trial: Admission | None = field(default=None, init=False)
    _admissions: Iterator[int] = field(default_factory=itertools.count, init=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        self._check_state_transition()
        return self._state

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    @property
    def failure_count(self) -> int:
        """Failures currently inside the monitoring window."""
        self._prune(self.clock())
        return len(self._failures)

    def remaining_cooldown(self) -> float:
        """Seconds until an OPEN circuit admits its trial call (0 otherwise)."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self.clock() - self._opened_at))

    def _prune(self, now: float) -> None:
        cutoff = now - self.monitoring_period
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()

    def _check_state_transition(self) -> None:
        """Move OPEN → HALF_OPEN once the cooldown has elapsed."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self.clock() - self._opened_at >= self.recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state."""
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = utcnow()

        self._trial = None
        if new_state == CircuitState.CLOSED:
            self._failures.clear()
            self._opened_at = None
        elif new_state == CircuitState.OPEN:
            self._opened_at = self.clock()

        logger.info(
            "circuit.state_changed",
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
        )

    def _admit(self) -> Admission | None:
        self._check_state_transition()
        self._stats.total_requests += 1

        if self._state == CircuitState.CLOSED:
            return Admission(next(self._admissions))

        if self._state == CircuitState.HALF_OPEN and self._trial is None:
            self._trial = Admission(next(self._admissions), trial=True)
            return self._trial

        self._stats.rejected_requests += 1
        return None

    def _holds_trial(self, admission: Admission | None) -> bool:
        """True when an outcome may decide the HALF_OPEN trial.

        Outcomes recorded without a ticket are taken to belong to the trial.
        """
        return admission is None or admission == self._trial

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        In HALF_OPEN a ``True`` answer claims the single trial slot.
        """
        return self._admit() is not None

    def acquire(self) -> Admission:
        """Admit a call or raise.

        Returns:
            The admission ticket to pass back to ``record_*``.

        Raises:
            CircuitOpenError: With the remaining cooldown as ``retry_after``.
        """
        admission = self._admit()
        if admission is None:
            remaining = self.remaining_cooldown()
            logger.debug("circuit.rejected", circuit=self.name, remaining_cooldown=remaining)
            if self._state == CircuitState.HALF_OPEN:
                message = f"Circuit '{self.name}' is half-open, trial call in progress"
            else:
                message = f"Circuit '{self.name}' is open, retry in {remaining:.1f}s"
            raise CircuitOpenError(message, retry_after=remaining)
        return admission

    def record_success(self, admission: Admission | None = None) -> None:
        """Record a call that reached a healthy backend."""
        self._stats.successful_requests += 1
        self._stats.last_success_time = utcnow()

        if self._state == CircuitState.HALF_OPEN:
            if self._holds_trial(admission):
                self._transition_to(CircuitState.CLOSED)
            else:
                logger.debug("circuit.stale_outcome", circuit=self.name, outcome="success")

    def record_failure(self, error: Exception | None = None, admission: Admission | None = None) -> None:
        """Record a backend failure."""
        now = self.clock()
        self._stats.failed_requests += 1
        self._stats.last_failure_time = utcnow()

        if self._state == CircuitState.CLOSED:
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self.failure_threshold:
                logger.warning(
                    "circuit.threshold_reached",
                    circuit=self.name,
                    failures=len(self._failures),
                    error_type=type(error).__name__ if error is not None else None,
                )
                self._transition_to(CircuitState.OPEN)

        elif self._state == CircuitState.HALF_OPEN:
            if self._holds_trial(admission):
                # The trial failed: full cooldown again.
                self._transition_to(CircuitState.OPEN)
            else:
                logger.debug("circuit.stale_outcome", circuit=self.name, outcome="failure")

    def record_ignored(self, admission: Admission | None = None) -> None:
        """Record an outcome that says nothing about backend health.

        Releases the HALF_OPEN trial slot, if ``admission`` holds it, without
        changing state.
        """
        if self._state == CircuitState.HALF_OPEN and self._holds_trial(admission):
            self._trial = None

    def record_outcome(self, error: Exception | None, admission: Admission | None = None) -> None:
        """Classify and record: success, backend failure, or neutral."""
        if error is None:
            self.record_success(admission)
        elif counts_as_backend_failure(error):
            self.record_failure(error, admission)
        else:
            self.record_ignored(admission)

    def reset(self) -> None:
        """Reset circuit to closed state."""
        self._transition_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        self._transition_to(CircuitState.OPEN)

    async def call_async(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Execute an async function through the circuit breaker."""
        admission = self.acquire()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_outcome(e, admission)
            raise
        self.record_success(admission)
        return result


__all__ = [
    "Admission",
    "CircuitBreaker",
    "CircuitStats",
    "CircuitState",
]
