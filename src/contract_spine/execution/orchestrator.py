"""Call orchestration: every outbound call composed through the resilience core.

``execute(request)`` is the single path a call takes::

    CircuitBreaker.acquire()             ─ fail fast (CircuitOpenError)
    RetryContext.run_async ─┬─ attempt 1..N
                            │    RateLimitedQueue.submit      ─ wait for a slot
                            │    session.access_token()       ─ attach / refresh credentials
                            │    transport.send (deadline)    ─ perform the call
                            │    classify status              ─ typed error or response
                            └─ sleep delay_for(n) via TimerGroup (cancellable)
    SchemaValidator.check()              ─ when a schema is named
    CircuitBreaker bookkeeping           ─ once per logical call

The breaker sees a logical call once: admission before the first attempt,
outcome after the retry loop ends. Terminal transient failures count as
failures; any answer from the backend (2xx, 304, a reported contract
failure) counts as success; auth, validation, queue-full and teardown
errors are neutral.

Status classification:

    2xx   → response (``{"success": false}`` body → ContractCallError)
    304   → response on content fetches
    401   → invalidate session, re-authenticate once, resend; second 401 → AuthenticationError
    403   → AuthenticationError
    408   → TimeoutError
    429   → RateLimitError(retry_after)
    5xx   → BackendError
    other → ContractCallError

Related modules:
    client.py — facade that builds one orchestrator per client
"""

from __future__ import annotations

import asyncio
import random
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from contract_spine.core.cache import ContentCache
from contract_spine.core.errors import (
    AuthenticationError,
    BackendError,
    ClientClosedError,
    ContractCallError,
    NetworkError,
    RateLimitError,
    SpineError,
    TimeoutError,
)
from contract_spine.core.logging import LogContext, get_logger
from contract_spine.core.models import ClientStatus, Request, TransportResponse
from contract_spine.core.result import Err, Ok, Result, try_result_async
from contract_spine.core.settings import RetryConfig
from contract_spine.core.validation import SchemaValidator
from contract_spine.execution.circuit_breaker import Admission, CircuitBreaker
from contract_spine.execution.rate_limit import RateLimitedQueue
from contract_spine.execution.retry import RetryContext
from contract_spine.execution.timeout import TimerGroup, run_with_deadline
from contract_spine.transports.base import Transport

if TYPE_CHECKING:
    from contract_spine.auth.session import AuthenticationSessionManager

logger = get_logger(__name__)

CONTENT_TARGET = "content"


def content_endpoint(path: str) -> str:
    return f"/content/{path.lstrip('/')}"


def listing_endpoint(path: str) -> str:
    return f"/list/{path.lstrip('/')}"


class CallOrchestrator:
    """Composes queue, breaker, retry, session, validator and cache around a transport.

    All collaborators are injected; :class:`~contract_spine.client.ContractClient`
    builds them from settings.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        session: AuthenticationSessionManager,
        queue: RateLimitedQueue,
        breaker: CircuitBreaker,
        cache: ContentCache,
        validator: SchemaValidator,
        retry: RetryConfig | None = None,
        timers: TimerGroup | None = None,
        timeout: float | None = None,
        rng: random.Random | None = None,
    ):
        self.transport = transport
        self.session = session
        self.queue = queue
        self.breaker = breaker
        self.cache = cache
        self.validator = validator
        self.retry = retry or RetryConfig()
        self.timers = timers or TimerGroup()
        self.timeout = timeout
        self._rng = rng
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClientClosedError("Client has been destroyed")

    # ── Core path ────────────────────────────────────────────────────────

    async def execute(
        self,
        request: Request,
        *,
        schema: str | None = None,
        allow_not_modified: bool = False,
        extra_headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        """Run ``request`` through the full resilience path.

        Raises:
            CircuitOpenError: The breaker is not admitting calls.
            QueueFullError: The queue is at capacity.
            SchemaValidationError: The response violates ``schema``.
            SpineError: Any other terminal, typed failure.
        """
        self._ensure_open()
        if schema is not None:
            self.validator.get(schema)  # unknown schema fails before any I/O

        async with LogContext(request_id=request.request_id):
            admission = self.breaker.acquire()
            ctx = RetryContext(config=self.retry, rng=self._rng)

            try:
                response = await ctx.run_async(
                    lambda attempt: self._attempt(request, attempt, allow_not_modified, extra_headers),
                    sleep=self.timers.sleep,
                )
                if schema is not None and not response.not_modified:
                    self.validator.check(response.body, schema)
            except BaseException as e:
                self._record_outcome(e, admission)
                if isinstance(e, SpineError):
                    logger.info(
                        "call.failed",
                        target=request.target,
                        operation=request.operation,
                        attempts=ctx.attempt,
                        elapsed=round(ctx.elapsed_seconds, 3),
                        error_type=type(e).__name__,
                    )
                raise

            self.breaker.record_success(admission)
            logger.debug(
                "call.completed",
                target=request.target,
                operation=request.operation,
                status=response.status,
                attempts=ctx.attempt,
                elapsed=round(ctx.elapsed_seconds, 3),
            )
            return response

    def _record_outcome(self, error: BaseException, admission: Admission) -> None:
        if isinstance(error, ContractCallError):
            self.breaker.record_success(admission)
        elif isinstance(error, Exception):
            self.breaker.record_outcome(error, admission)
        else:
            self.breaker.record_ignored(admission)

    async def _attempt(
        self,
        request: Request,
        attempt: int,
        allow_not_modified: bool,
        extra_headers: Mapping[str, str] | None,
    ) -> TransportResponse:
        self._ensure_open()

        async def handler(req: Request) -> TransportResponse:
            return await self._send(req, attempt, allow_not_modified, extra_headers)

        try:
            return await self.queue.submit(request, handler)
        except SpineError as e:
            e.with_context(
                request_id=request.request_id,
                target=request.target,
                operation=request.operation,
                attempt=attempt,
            )
            raise

    async def _send(
        self,
        request: Request,
        attempt: int,
        allow_not_modified: bool,
        extra_headers: Mapping[str, str] | None,
    ) -> TransportResponse:
        headers = dict(request.headers)
        if extra_headers:
            headers.update(extra_headers)

        token: str | None = None
        if self.session.auth_required:
            token = await self.session.access_token()
            headers.update(self.session.bearer_header(token))

        response = await self._call_transport(request, headers)

        if response.status == 401 and self.session.auth_required:
            logger.info("call.unauthorized", endpoint=request.endpoint, attempt=attempt)
            # Only the token that was refused is invalidated; a session already
            # renewed by a concurrent call is reused.
            self.session.invalidate(token)
            token = await self.session.access_token()
            headers.update(self.session.bearer_header(token))
            response = await self._call_transport(request, headers)

        return self._classify(request, response, allow_not_modified)

    async def _call_transport(self, request: Request, headers: dict[str, str]) -> TransportResponse:
        try:
            return await run_with_deadline(
                lambda: self.transport.send(request.endpoint, request.method, request.payload, headers),
                self.timeout,
                operation=f"{request.method} {request.endpoint}",
            )
        except SpineError:
            raise
        except Exception as e:
            raise NetworkError(f"{request.method} {request.endpoint} failed: {e}", cause=e).with_context(
                endpoint=request.endpoint
            ) from e

    def _classify(
        self, request: Request, response: TransportResponse, allow_not_modified: bool
    ) -> TransportResponse:
        status = response.status
        context = {"endpoint": request.endpoint, "http_status": status}

        if response.ok:
            body = response.body
            if isinstance(body, Mapping) and body.get("success") is False:
                raise ContractCallError(
                    _failure_message(body, f"{request.target}.{request.operation} reported failure"),
                    status=status,
                    body=body,
                ).with_context(**context)
            return response

        if status == 304 and allow_not_modified:
            return response

        match status:
            case 401 | 403:
                raise AuthenticationError(f"Backend refused credentials ({status})").with_context(**context)
            case 408:
                raise TimeoutError(f"Backend timed out ({status})").with_context(**context)
            case 429:
                raise RateLimitError(retry_after=response.retry_after).with_context(**context)
            case _ if status >= 500:
                raise BackendError(
                    f"Backend error ({status})", status=status, body=response.body
                ).with_context(**context)
            case _:
                raise ContractCallError(
                    _failure_message(response.body, f"Call rejected ({status})"),
                    status=status,
                    body=response.body,
                ).with_context(**context)

    # ── Contract calls ───────────────────────────────────────────────────

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
        """Call ``operation`` on ``target`` and return the response body."""
        request = Request(
            target=target,
            operation=operation,
            payload=payload,
            priority=priority,
            idempotency_key=idempotency_key,
        )
        response = await self.execute(request, schema=schema)
        return response.body

    async def batch_call_contracts(
        self,
        requests: Iterable[Request],
        *,
        schema: str | None = None,
    ) -> list[Result[Any]]:
        """Run every request concurrently; results are returned by position.

        One failure never cancels its siblings.
        """
        self._ensure_open()
        items = list(requests)
        batch_id = uuid.uuid4().hex[:12]
        started_at = datetime.now(UTC)

        logger.info("batch.start", batch_id=batch_id, items=len(items))

        async def _run_one(request: Request) -> Any:
            response = await self.execute(request, schema=schema)
            return response.body

        results: list[Result[Any]] = list(
            await asyncio.gather(*[try_result_async(lambda r=r: _run_one(r)) for r in items])
        )

        for request, result in zip(items, results, strict=True):
            if isinstance(result, Err):
                logger.warning(
                    "batch.item_failed",
                    batch_id=batch_id,
                    request_id=request.request_id,
                    error_type=result.error_type,
                    error=str(result.error),
                )

        failed = sum(1 for r in results if isinstance(r, Err))
        logger.info(
            "batch.complete",
            batch_id=batch_id,
            succeeded=len(results) - failed,
            failed=failed,
            duration_seconds=(datetime.now(UTC) - started_at).total_seconds(),
        )
        return results

    async def safe_call(
        self,
        target: str,
        operation: str,
        payload: Any = None,
        **kwargs: Any,
    ) -> Result[Any]:
        """``call_contract`` that returns ``Ok(body)`` / ``Err(error)`` instead of raising.

        Every ``Exception`` is captured, including ``CircuitOpenError`` and
        ``QueueFullError``. Task cancellation still propagates.
        """
        try:
            return Ok(await self.call_contract(target, operation, payload, **kwargs))
        except Exception as e:
            logger.debug("call.safe_call_failed", target=target, operation=operation, error_type=type(e).__name__)
            return Err(e)

    # ── Content ──────────────────────────────────────────────────────────

    async def get_content(
        self,
        path: str,
        *,
        revalidate: bool = True,
        schema: str | None = None,
        priority: int = 0,
    ) -> Any:
        """Fetch content, revalidating a cached copy with ``If-None-Match``."""
        self._ensure_open()
        cached = self.cache.get(path)
        if cached is not None and not revalidate:
            logger.debug("content.cache_hit", path=path)
            return cached.payload

        headers: dict[str, str] = {}
        if cached is not None and cached.etag:
            headers["If-None-Match"] = cached.etag

        request = Request(
            target=CONTENT_TARGET,
            operation="get",
            method="GET",
            path=content_endpoint(path),
            priority=priority,
            headers=headers,
        )
        version = self.cache.version(path)
        response = await self.execute(request, schema=schema, allow_not_modified=cached is not None)

        if response.not_modified and cached is not None:
            entry = self.cache.touch(path)
            return (entry or cached).payload

        if response.etag:
            # Skipped when a write invalidated the path while this fetch was in flight.
            self.cache.put(path, response.body, response.etag, if_version=version)
        else:
            self.cache.invalidate(path)
        return response.body

    async def update_content(self, path: str, payload: Any, *, priority: int = 0) -> Any:
        """Write content; the cached copy is dropped before sending and after success."""
        self._ensure_open()
        self.cache.invalidate(path)
        request = Request(
            target=CONTENT_TARGET,
            operation="update",
            method="PUT",
            path=content_endpoint(path),
            payload=payload,
            priority=priority,
        )
        response = await self.execute(request)
        self.cache.invalidate(path)
        return response.body

    async def list_content(
        self,
        path: str = "",
        *,
        recursive: bool = False,
        include_metadata: bool = False,
        priority: int = 0,
    ) -> Any:
        """List content under ``path``. Listings are never cached."""
        request = Request(
            target=CONTENT_TARGET,
            operation="list",
            method="GET",
            path=listing_endpoint(path),
            payload={"recursive": recursive, "metadata": include_metadata},
            priority=priority,
        )
        response = await self.execute(request)
        return response.body

    # ── Lifecycle ────────────────────────────────────────────────────────

    def get_status(self) -> ClientStatus:
        session = self.session.snapshot()
        return ClientStatus(
            queue_length=self.queue.pending,
            in_flight=self.queue.in_flight,
            circuit_state=self.breaker.state,
            session_state=session.state,
            authenticated=session.authenticated,
            session_expires_at=session.expires_at,
            cache_entries=self.cache.size(),
            closed=self._closed,
        )

    def destroy(self) -> None:
        """Tear down: close the queue, cancel retry timers and the expiry watcher.

        Idempotent. Later calls raise ``ClientClosedError``.
        """
        if self._closed:
            return
        self._closed = True
        self.queue.close()
        self.session.close()
        self.timers.close()
        logger.info("client.destroyed")


def _failure_message(body: Any, default: str) -> str:
    if isinstance(body, Mapping):
        for key in ("error", "message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return default


__all__ = [
    "CallOrchestrator",
    "content_endpoint",
    "listing_endpoint",
]
