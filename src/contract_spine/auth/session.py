"""
Challenge-response authentication session.

One manager per client owns the session: token, expiry and state. The
wallet never leaves the caller's side; the manager only asks it for an
address and for a signature over the backend's challenge.

State machine::

    UNAUTHENTICATED ──authenticate()──► CHALLENGING ──token──► AUTHENTICATED
          ▲                                 │                     │    │
          │            rejection / failure  │                     │    │ expiry (lazy check
          └─────────────────────────────────┘                     │    │ or call_later watcher)
          ▲                                                       │    ▼
          └──────────────────────── logout() ─────────────────────┴── EXPIRED
                                                                        │
                                                 authenticate() ────────┘

Concurrent ``authenticate()`` calls share one in-flight challenge task, so
the wallet is asked to sign at most once per session establishment.

Example::

    manager = AuthenticationSessionManager(transport, wallet, config=AuthConfig())
    unsubscribe = manager.on_state_change(lambda snap: print(snap.state))
    await manager.authenticate()
    headers = await manager.auth_headers()   # {"Authorization": "Bearer ..."}

Guardrails:
    - The token and signatures are never logged
    - Listeners are called synchronously on the event loop; keep them short
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from typing import Any

from contract_spine.core.errors import (
    AuthenticationError,
    BackendError,
    ClientClosedError,
    NetworkError,
    RateLimitError,
    SpineError,
)
from contract_spine.core.logging import get_logger
from contract_spine.core.models import SessionSnapshot, SessionState, TransportResponse
from contract_spine.core.settings import AuthConfig
from contract_spine.execution.timeout import TimerGroup, run_with_deadline
from contract_spine.transports.base import Transport, WalletProvider

logger = get_logger(__name__)

StateListener = Callable[[SessionSnapshot], Any]


class AuthenticationSessionManager:
    """Owns the authentication session of one client.

    Args:
        transport: Used for the challenge and verify calls.
        wallet: Signs challenges. Without one only a pre-seeded token works.
        config: Endpoint paths and the expiry margin.
        token: Pre-seeded session token (starts AUTHENTICATED, unknown expiry).
        timers: Timer group for the expiry watcher (shared with the client).
        timeout: Maximum duration of each auth call, ``None`` for no limit.
        clock: Wall-clock source in epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        transport: Transport,
        wallet: WalletProvider | None = None,
        *,
        config: AuthConfig | None = None,
        token: str | None = None,
        timers: TimerGroup | None = None,
        timeout: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.transport = transport
        self.wallet = wallet
        self.config = config or AuthConfig()
        self._timers = timers or TimerGroup()
        self._timeout = timeout
        self._clock = clock

        self._token = token
        self._expires_at: float | None = None
        self._address: str | None = None
        self._state = SessionState.AUTHENTICATED if token else SessionState.UNAUTHENTICATED

        self._inflight: asyncio.Task[SessionSnapshot] | None = None
        self._watcher: asyncio.TimerHandle | None = None
        self._listeners: list[StateListener] = []
        self._closed = False

    # ── Observation ──────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        self._check_expiry()
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def expires_at(self) -> float | None:
        return self._expires_at

    @property
    def auth_required(self) -> bool:
        """True when calls should carry credentials."""
        return self.wallet is not None or self._token is not None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(state=self.state, expires_at=self._expires_at, address=self._address)

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ── Transitions ──────────────────────────────────────────────────────

    def _set_state(self, new_state: SessionState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        logger.info("session.state_changed", old_state=old_state.value, new_state=new_state.value)

        if self._closed:
            return
        snapshot = SessionSnapshot(state=new_state, expires_at=self._expires_at, address=self._address)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(
                    "session.listener_failed",
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _check_expiry(self) -> None:
        if self._state != SessionState.AUTHENTICATED or self._expires_at is None:
            return
        if self._clock() >= self._expires_at - self.config.expiry_margin:
            self._expire("lazy_check")

    def _expire(self, reason: str) -> None:
        self._cancel_watcher()
        self._token = None
        logger.info("session.expired", reason=reason, expires_at=self._expires_at)
        self._set_state(SessionState.EXPIRED)

    def _on_watcher_fired(self) -> None:
        self._watcher = None
        if self._state == SessionState.AUTHENTICATED:
            self._expire("timer")

    def _schedule_watcher(self) -> None:
        self._cancel_watcher()
        if self._expires_at is None or self._timers.closed:
            return
        delay = self._expires_at - self.config.expiry_margin - self._clock()
        self._watcher = self._timers.call_later(delay, self._on_watcher_fired)

    def _cancel_watcher(self) -> None:
        if self._watcher is not None:
            self._timers.cancel(self._watcher)
            self._watcher = None

    # ── Authentication ───────────────────────────────────────────────────

    async def authenticate(self) -> SessionSnapshot:
        """Ensure an authenticated session, running the challenge flow if needed.

        Raises:
            AuthenticationError: No wallet, or the backend rejected the challenge.
            ClientClosedError: After ``close()``.
            TransientError: Network failures propagate typed.
        """
        if self._closed:
            raise ClientClosedError("Session manager is closed")

        if self.state == SessionState.AUTHENTICATED:
            return self.snapshot()

        if self._inflight is None or self._inflight.done():
            if self.wallet is None:
                raise AuthenticationError("No wallet available to answer the authentication challenge")
            self._inflight = asyncio.get_running_loop().create_task(
                self._run_challenge(self.wallet), name="session-authenticate"
            )
        else:
            logger.debug("session.authenticate_coalesced")

        task = self._inflight
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The shared task was cancelled by logout()/close(), not this caller.
            current = asyncio.current_task()
            if task.cancelled() and (current is None or current.cancelling() == 0):
                if self._closed:
                    raise ClientClosedError("Session manager closed during authentication") from None
                raise AuthenticationError("Authentication was cancelled by logout") from None
            raise

    async def _run_challenge(self, wallet: WalletProvider) -> SessionSnapshot:
        self._set_state(SessionState.CHALLENGING)
        try:
            address = await wallet.get_public_address()
            self._address = address

            response = await self._post(self.config.challenge_path, {"address": address})
            challenge = _body_field(response, "challenge")
            if not isinstance(challenge, str) or not challenge:
                raise AuthenticationError("Backend did not issue a challenge").with_context(
                    endpoint=self.config.challenge_path, http_status=response.status
                )

            try:
                signature = await wallet.sign_message(challenge.encode("utf-8"))
            except SpineError:
                raise
            except Exception as e:
                raise AuthenticationError("Wallet failed to sign the challenge", cause=e) from e

            response = await self._post(
                self.config.verify_path,
                {"address": address, "challenge": challenge, "signature": signature},
            )
            token = _body_field(response, "token")
            if not isinstance(token, str) or not token:
                raise AuthenticationError("Signature was not accepted").with_context(
                    endpoint=self.config.verify_path, http_status=response.status
                )
        except BaseException as e:
            if not self._closed:
                self._set_state(SessionState.UNAUTHENTICATED)
            logger.warning("session.authentication_failed", error_type=type(e).__name__)
            raise

        self._token = token
        self._expires_at = _expiry_from(response.body, self._clock())
        self._set_state(SessionState.AUTHENTICATED)
        self._schedule_watcher()
        logger.info("session.authenticated", address=address, expires_at=self._expires_at)
        return SessionSnapshot(state=self._state, expires_at=self._expires_at, address=address)

    async def _post(self, path: str, payload: Mapping[str, Any]) -> TransportResponse:
        try:
            response = await run_with_deadline(
                lambda: self.transport.send(path, "POST", dict(payload), {}),
                self._timeout,
                operation=f"POST {path}",
            )
        except SpineError:
            raise
        except Exception as e:
            raise NetworkError(f"Authentication call to {path} failed: {e}", cause=e).with_context(
                endpoint=path
            ) from e

        if response.ok:
            return response
        if response.status == 429:
            raise RateLimitError(retry_after=response.retry_after).with_context(
                endpoint=path, http_status=response.status
            )
        if response.status >= 500:
            raise BackendError(
                f"Authentication backend error ({response.status})",
                status=response.status,
                body=response.body,
            ).with_context(endpoint=path, http_status=response.status)
        raise AuthenticationError(f"Authentication rejected ({response.status})").with_context(
            endpoint=path, http_status=response.status
        )

    @staticmethod
    def bearer_header(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def access_token(self) -> str:
        """Current session token, authenticating first if needed."""
        await self.authenticate()
        if self._token is None:
            raise AuthenticationError("Session holds no token")
        return self._token

    async def auth_headers(self) -> dict[str, str]:
        """Authorization header for the current session, authenticating first if needed."""
        return self.bearer_header(await self.access_token())

    def invalidate(self, rejected_token: str | None = None) -> None:
        """Mark the session expired (the backend refused the token).

        With ``rejected_token`` this is a no-op once the session has moved
        on to another token, so several calls refused for the same stale
        token cause one re-authentication, not one each.
        """
        if rejected_token is not None and rejected_token != self._token:
            logger.debug("session.stale_rejection_ignored", state=self._state.value)
            return
        if self._state == SessionState.AUTHENTICATED:
            self._expire("rejected_by_backend")

    def logout(self) -> None:
        """Drop the token locally and return to UNAUTHENTICATED."""
        self._cancel_watcher()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        self._token = None
        self._expires_at = None
        self._set_state(SessionState.UNAUTHENTICATED)
        logger.info("session.logged_out")

    def close(self) -> None:
        """Cancel the expiry watcher and any in-flight challenge. No listener fires afterwards."""
        self._closed = True
        self._cancel_watcher()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        self._listeners.clear()
        self._token = None


def _body_field(response: TransportResponse, name: str) -> Any:
    if isinstance(response.body, Mapping):
        return response.body.get(name)
    return None


def _expiry_from(body: Any, now: float) -> float | None:
    """Absolute expiry from ``expires_at`` (epoch seconds) or ``expires_in`` (seconds)."""
    if not isinstance(body, Mapping):
        return None
    expires_at = body.get("expires_at")
    if isinstance(expires_at, (int, float)) and not isinstance(expires_at, bool):
        return float(expires_at)
    expires_in = body.get("expires_in")
    if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
        return now + float(expires_in)
    return None


__all__ = [
    "AuthenticationSessionManager",
    "StateListener",
]
