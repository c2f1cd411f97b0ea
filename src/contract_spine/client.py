"""
ContractClient: the public entry point.

Builds one of each resilience component from :class:`ContractSpineSettings`
and exposes the call, content, session and schema operations over them.

Example::

    settings = get_settings()
    async with ContractClient.from_settings(settings, wallet=my_wallet) as client:
        client.register_schema("PlayerStats", PLAYER_STATS)
        stats = await client.call_contract("game", "get_stats", {"player": "p1"}, schema="PlayerStats")
        level = await client.get_content("levels/1")

Related modules:
    execution/orchestrator.py — the call path every operation goes through
    transports/http.py        — default transport built from ``base_url``
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from contract_spine.auth.session import AuthenticationSessionManager, StateListener
from contract_spine.core.cache import ContentCache
from contract_spine.core.models import ClientStatus, Request, SessionSnapshot, SessionState
from contract_spine.core.result import Result
from contract_spine.core.settings import ContractSpineSettings, get_settings
from contract_spine.core.validation import Schema, SchemaDefinition, SchemaValidator, Violation
from contract_spine.execution.circuit_breaker import CircuitBreaker
from contract_spine.execution.orchestrator import CallOrchestrator
from contract_spine.execution.rate_limit import RateLimitedQueue
from contract_spine.execution.timeout import TimerGroup
from contract_spine.transports.base import Transport, WalletProvider
from contract_spine.transports.http import HttpxTransport


class ContractClient:
    """Resilient client for a contract-execution and content backend.

    Args:
        transport: Backend transport.
        wallet: Signs authentication challenges (optional).
        settings: Configuration; defaults to :func:`get_settings`.
        autostart_queue: Start the queue's pacing task on first use.
        clock: Wall clock for session expiry and cache timestamps.
        monotonic: Monotonic clock for the breaker and queue pauses.
        rng: Random source for retry jitter.
    """

    def __init__(
        self,
        transport: Transport,
        wallet: WalletProvider | None = None,
        *,
        settings: ContractSpineSettings | None = None,
        autostart_queue: bool = True,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self._owned_transport: HttpxTransport | None = None

        s = self.settings
        self.timers = TimerGroup()
        self.validator = SchemaValidator()
        self.cache = ContentCache(max_entries=s.cache.max_entries, clock=clock)
        self.breaker = CircuitBreaker(
            name="backend",
            failure_threshold=s.circuit_breaker.failure_threshold,
            recovery_timeout=s.circuit_breaker.recovery_timeout,
            monitoring_period=s.circuit_breaker.monitoring_period,
            clock=monotonic,
        )
        self.queue = RateLimitedQueue(
            s.rate_limit, clock=monotonic, autostart=autostart_queue, name="backend"
        )
        self.session = AuthenticationSessionManager(
            transport,
            wallet,
            config=s.auth,
            token=s.session_token,
            timers=self.timers,
            timeout=s.timeout,
            clock=clock,
        )
        self.orchestrator = CallOrchestrator(
            transport,
            session=self.session,
            queue=self.queue,
            breaker=self.breaker,
            cache=self.cache,
            validator=self.validator,
            retry=s.retry,
            timers=self.timers,
            timeout=s.timeout,
            rng=rng,
        )

    @classmethod
    def from_settings(
        cls,
        settings: ContractSpineSettings | None = None,
        *,
        wallet: WalletProvider | None = None,
        **kwargs: Any,
    ) -> ContractClient:
        """Build a client with an :class:`HttpxTransport` on ``settings.base_url``."""
        settings = settings or get_settings()
        transport = HttpxTransport(settings.base_url, timeout=settings.timeout)
        client = cls(transport, wallet, settings=settings, **kwargs)
        client._owned_transport = transport
        return client

    # ── Session ──────────────────────────────────────────────────────────

    async def authenticate(self) -> SessionSnapshot:
        return await self.session.authenticate()

    def logout(self) -> None:
        self.session.logout()

    def on_auth_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to session transitions; returns the unsubscribe function."""
        return self.session.on_state_change(listener)

    @property
    def session_state(self) -> SessionState:
        return self.session.state

    # ── Calls ────────────────────────────────────────────────────────────

    async def call_contract(
        self,
        target: str,
        operation: str,
        payload: Any = None,
        *,
        priority: int = 0,
        idempotency_key: str | None = None,
        schema: str | None = None,
    ) -> Any:
        return await self.orchestrator.call_contract(
            target,
            operation,
            payload,
            priority=priority,
            idempotency_key=idempotency_key,
            schema=schema,
        )

    async def batch_call_contracts(
        self,
        calls: Iterable[Request | Mapping[str, Any]],
        *,
        schema: str | None = None,
    ) -> list[Result[Any]]:
        """Run calls concurrently; accepts ``Request`` objects or keyword mappings."""
        requests = [c if isinstance(c, Request) else Request(**c) for c in calls]
        return await self.orchestrator.batch_call_contracts(requests, schema=schema)

    async def safe_call(self, target: str, operation: str, payload: Any = None, **kwargs: Any) -> Result[Any]:
        return await self.orchestrator.safe_call(target, operation, payload, **kwargs)

    # ── Content ──────────────────────────────────────────────────────────

    async def get_content(self, path: str, *, revalidate: bool = True, schema: str | None = None) -> Any:
        return await self.orchestrator.get_content(path, revalidate=revalidate, schema=schema)

    async def update_content(self, path: str, payload: Any) -> Any:
        return await self.orchestrator.update_content(path, payload)

    async def list_content(
        self, path: str = "", *, recursive: bool = False, include_metadata: bool = False
    ) -> Any:
        return await self.orchestrator.list_content(
            path, recursive=recursive, include_metadata=include_metadata
        )

    # ── Schemas ──────────────────────────────────────────────────────────

    def register_schema(self, name: str, definition: Mapping[str, Any] | SchemaDefinition) -> Schema:
        return self.validator.register(name, definition)

    def validate(self, payload: Any, schema: str) -> list[Violation]:
        return self.validator.validate(payload, schema)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def get_status(self) -> ClientStatus:
        return self.orchestrator.get_status()

    async def destroy(self) -> None:
        """Cancel queued work and timers; close the transport if this client created it."""
        self.orchestrator.destroy()
        if self._owned_transport is not None:
            transport, self._owned_transport = self._owned_transport, None
            await transport.aclose()

    async def __aenter__(self) -> ContractClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.destroy()


__all__ = ["ContractClient"]
