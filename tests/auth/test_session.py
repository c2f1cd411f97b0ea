"""Tests for AuthenticationSessionManager."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from contract_spine.auth.session import AuthenticationSessionManager
from contract_spine.core.errors import (
    AuthenticationError,
    BackendError,
    ClientClosedError,
    NetworkError,
)
from contract_spine.core.models import SessionState, TransportResponse
from contract_spine.core.settings import AuthConfig
from contract_spine.execution.timeout import TimerGroup
from tests._support.fakes import FakeWallet, ScriptedTransport, auth_routes

AUTHENTICATED = SessionState.AUTHENTICATED
CHALLENGING = SessionState.CHALLENGING
EXPIRED = SessionState.EXPIRED
UNAUTHENTICATED = SessionState.UNAUTHENTICATED


@pytest_asyncio.fixture
async def make(transport: ScriptedTransport, clock):
    managers: list[AuthenticationSessionManager] = []

    def _make(wallet=None, **kwargs) -> AuthenticationSessionManager:
        kwargs.setdefault("clock", clock)
        manager = AuthenticationSessionManager(transport, wallet, timers=TimerGroup(), **kwargs)
        managers.append(manager)
        return manager

    yield _make
    for manager in managers:
        manager.close()


def record_states(manager: AuthenticationSessionManager) -> list[SessionState]:
    seen: list[SessionState] = []
    manager.on_state_change(lambda snap: seen.append(snap.state))
    return seen


class TestChallengeFlow:
    @pytest.mark.asyncio
    async def test_successful_exchange(self, make, transport, wallet, clock):
        auth_routes(transport, token="tok-1", expires_in=600)
        manager = make(wallet)
        states = record_states(manager)

        snapshot = await manager.authenticate()

        assert snapshot.state == AUTHENTICATED
        assert snapshot.address == "0xabc"
        assert snapshot.expires_at == clock() + 600
        assert states == [CHALLENGING, AUTHENTICATED]
        assert wallet.signed == [b"nonce-1"]

        verify = transport.calls_to("/auth/verify")[0]
        assert verify.payload == {"address": "0xabc", "challenge": "nonce-1", "signature": "sig:nonce-1"}
        assert await manager.auth_headers() == {"Authorization": "Bearer tok-1"}

    @pytest.mark.asyncio
    async def test_authenticated_session_is_reused(self, make, transport, wallet):
        auth_routes(transport)
        manager = make(wallet)

        await manager.authenticate()
        await manager.authenticate()
        assert len(transport.calls_to("/auth/challenge")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_challenge(self, make, transport, wallet):
        auth_routes(transport)
        transport.delay = 0.01
        manager = make(wallet)

        results = await asyncio.gather(*(manager.authenticate() for _ in range(5)))

        assert all(r.state == AUTHENTICATED for r in results)
        assert len(transport.calls_to("/auth/challenge")) == 1
        assert len(wallet.signed) == 1

    @pytest.mark.asyncio
    async def test_expires_at_absolute(self, make, transport, wallet):
        transport.route("/auth/challenge", TransportResponse(200, {"challenge": "n"}))
        transport.route("/auth/verify", TransportResponse(200, {"token": "t", "expires_at": 5_000.0}))
        manager = make(wallet)

        assert (await manager.authenticate()).expires_at == 5_000.0


class TestFailures:
    @pytest.mark.asyncio
    async def test_no_wallet(self, make):
        manager = make()
        with pytest.raises(AuthenticationError):
            await manager.authenticate()
        assert manager.state == UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_rejected_signature(self, make, transport, wallet):
        transport.route("/auth/challenge", TransportResponse(200, {"challenge": "nonce-1"}))
        transport.route("/auth/verify", TransportResponse(401, {"error": "bad signature"}))
        manager = make(wallet)
        states = record_states(manager)

        with pytest.raises(AuthenticationError) as exc:
            await manager.authenticate()
        assert exc.value.context.http_status == 401
        assert states == [CHALLENGING, UNAUTHENTICATED]

    @pytest.mark.asyncio
    async def test_missing_challenge(self, make, transport, wallet):
        transport.route("/auth/challenge", TransportResponse(200, {}))
        manager = make(wallet)

        with pytest.raises(AuthenticationError, match="challenge"):
            await manager.authenticate()
        assert wallet.signed == []

    @pytest.mark.asyncio
    async def test_wallet_refuses_to_sign(self, make, transport):
        auth_routes(transport)
        manager = make(FakeWallet(fail=True))

        with pytest.raises(AuthenticationError) as exc:
            await manager.authenticate()
        assert isinstance(exc.value.cause, RuntimeError)
        assert manager.state == UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_backend_error_stays_typed(self, make, transport, wallet):
        transport.route("/auth/challenge", TransportResponse(503))
        manager = make(wallet)

        with pytest.raises(BackendError):
            await manager.authenticate()

    @pytest.mark.asyncio
    async def test_transport_exception_becomes_network_error(self, make, transport, wallet):
        transport.route("/auth/challenge", OSError("unreachable"))
        manager = make(wallet)

        with pytest.raises(NetworkError):
            await manager.authenticate()

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, make, transport, wallet):
        transport.route("/auth/challenge", TransportResponse(503))
        auth_routes(transport)
        manager = make(wallet)

        with pytest.raises(BackendError):
            await manager.authenticate()
        assert (await manager.authenticate()).state == AUTHENTICATED


class TestExpiry:
    @pytest.mark.asyncio
    async def test_lazy_expiry_on_read(self, make, transport, wallet, clock):
        auth_routes(transport, expires_in=100)
        manager = make(wallet, config=AuthConfig(expiry_margin=10))
        await manager.authenticate()
        states = record_states(manager)

        clock.advance(89)
        assert manager.state == AUTHENTICATED
        clock.advance(1)
        assert manager.state == EXPIRED
        assert states == [EXPIRED]

    @pytest.mark.asyncio
    async def test_expired_session_reauthenticates(self, make, transport, wallet, clock):
        auth_routes(transport, token="tok-1", expires_in=100)
        auth_routes(transport, token="tok-2", expires_in=100)
        manager = make(wallet, config=AuthConfig(expiry_margin=0))
        await manager.authenticate()

        clock.advance(100)
        assert await manager.auth_headers() == {"Authorization": "Bearer tok-2"}

    @pytest.mark.asyncio
    async def test_watcher_expires_without_reads(self, transport, wallet):
        auth_routes(transport, expires_in=0.02)
        manager = AuthenticationSessionManager(
            transport, wallet, config=AuthConfig(expiry_margin=0), timers=TimerGroup()
        )
        seen: list[SessionState] = []
        await manager.authenticate()
        manager.on_state_change(lambda snap: seen.append(snap.state))

        await asyncio.sleep(0.2)
        assert seen == [EXPIRED]
        manager.close()

    @pytest.mark.asyncio
    async def test_invalidate(self, make, transport, wallet):
        auth_routes(transport)
        manager = make(wallet)
        await manager.authenticate()

        manager.invalidate()
        assert manager.state == EXPIRED
        assert manager.is_authenticated is False

    @pytest.mark.asyncio
    async def test_invalidate_ignores_replaced_token(self, make, transport, wallet):
        auth_routes(transport, token="tok-1")
        auth_routes(transport, token="tok-2")
        manager = make(wallet)
        assert await manager.access_token() == "tok-1"
        manager.invalidate("tok-1")
        assert await manager.access_token() == "tok-2"

        manager.invalidate("tok-1")
        assert manager.state == AUTHENTICATED
        assert await manager.access_token() == "tok-2"
        assert len(transport.calls_to("/auth/challenge")) == 2

        manager.invalidate("tok-2")
        assert manager.state == EXPIRED


class TestLogoutAndClose:
    @pytest.mark.asyncio
    async def test_logout(self, make, transport, wallet):
        auth_routes(transport)
        manager = make(wallet)
        await manager.authenticate()
        states = record_states(manager)

        manager.logout()
        assert states == [UNAUTHENTICATED]
        assert manager.expires_at is None

    @pytest.mark.asyncio
    async def test_logout_during_challenge(self, make, transport, wallet):
        auth_routes(transport)
        transport.delay = 0.05
        manager = make(wallet)

        task = asyncio.create_task(manager.authenticate())
        await asyncio.sleep(0.01)
        manager.logout()

        with pytest.raises(AuthenticationError, match="logout"):
            await task
        assert manager.state == UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_close_during_challenge(self, make, transport, wallet):
        auth_routes(transport)
        transport.delay = 0.05
        manager = make(wallet)
        states = record_states(manager)

        task = asyncio.create_task(manager.authenticate())
        await asyncio.sleep(0.01)
        manager.close()

        with pytest.raises(ClientClosedError):
            await task
        assert states == [CHALLENGING]

    @pytest.mark.asyncio
    async def test_authenticate_after_close(self, make, wallet):
        manager = make(wallet)
        manager.close()
        with pytest.raises(ClientClosedError):
            await manager.authenticate()


class TestListeners:
    @pytest.mark.asyncio
    async def test_unsubscribe(self, make, transport, wallet):
        auth_routes(transport)
        manager = make(wallet)
        seen: list[SessionState] = []
        unsubscribe = manager.on_state_change(lambda snap: seen.append(snap.state))

        unsubscribe()
        unsubscribe()
        await manager.authenticate()
        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, make, transport, wallet):
        auth_routes(transport)
        manager = make(wallet)

        def broken(snapshot):
            raise RuntimeError("listener bug")

        manager.on_state_change(broken)
        states = record_states(manager)

        await manager.authenticate()
        assert states == [CHALLENGING, AUTHENTICATED]

    def test_snapshot_never_carries_token(self, transport):
        manager = AuthenticationSessionManager(transport, token="secret")
        assert "secret" not in repr(manager.snapshot())
        assert "secret" not in str(manager.snapshot().to_dict())


class TestPreSeededToken:
    @pytest.mark.asyncio
    async def test_seeded_token_used_without_challenge(self, make, transport):
        manager = make(token="seeded")
        assert manager.state == AUTHENTICATED
        assert manager.auth_required is True
        assert await manager.auth_headers() == {"Authorization": "Bearer seeded"}
        assert transport.calls == []

    def test_no_credentials_means_no_auth(self, transport):
        manager = AuthenticationSessionManager(transport)
        assert manager.auth_required is False
        assert manager.state == UNAUTHENTICATED
