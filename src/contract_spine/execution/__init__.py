"""Execution — the resilience layer every outbound call passes through.

ARCHITECTURE
────────────
::

    CallOrchestrator
      ├── CircuitBreaker      ─ fail fast on a failing backend
      ├── RetryContext        ─ bounded retries, jittered backoff
      ├── RateLimitedQueue    ─ priority, pacing, Retry-After pauses
      └── TimerGroup          ─ cancellable retry sleeps and watchers
"""

from contract_spine.execution.circuit_breaker import Admission, CircuitBreaker, CircuitStats
from contract_spine.execution.orchestrator import CallOrchestrator
from contract_spine.execution.rate_limit import QueueEntry, RateLimitedQueue
from contract_spine.execution.retry import RetryContext, delay_for, should_retry
from contract_spine.execution.timeout import TimerGroup, run_with_deadline, with_deadline_async

__all__ = [
    "Admission",
    "CallOrchestrator",
    "CircuitBreaker",
    "CircuitStats",
    "QueueEntry",
    "RateLimitedQueue",
    "RetryContext",
    "delay_for",
    "should_retry",
    "TimerGroup",
    "run_with_deadline",
    "with_deadline_async",
]
