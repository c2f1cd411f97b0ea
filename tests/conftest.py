"""
Shared pytest fixtures for contract-spine tests.

This module provides:
- Environment isolation (no CONTRACT_SPINE_* leakage, fresh settings cache)
- Collaborator doubles as fixtures (see ``tests/_support/fakes.py``)
- Fast settings and a ready-made client

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).
"""

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import pytest
import pytest_asyncio

from contract_spine.client import ContractClient
from contract_spine.core import settings as settings_module
from contract_spine.core.settings import (
    CircuitBreakerConfig,
    ContractSpineSettings,
    RateLimitConfig,
    RetryConfig,
)
from tests._support.fakes import FakeClock, FakeWallet, ScriptedTransport


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if test_path.parts[0] == "test_client.py":
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop CONTRACT_SPINE_* variables and the cached settings around each test."""
    for key in list(os.environ):
        if key.startswith("CONTRACT_SPINE_"):
            monkeypatch.delenv(key)
    settings_module._settings_cache = None
    yield
    settings_module._settings_cache = None


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


# =============================================================================
# Settings and client
# =============================================================================


@pytest.fixture
def fast_settings() -> ContractSpineSettings:
    """Settings with no retry delay and a quick pacing tick."""
    return ContractSpineSettings(
        _env_file=None,
        timeout=5.0,
        retry=RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0, jitter=False),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
        rate_limit=RateLimitConfig(queue_processing_interval=0.001, requests_per_tick=10, default_backoff=0.0),
    )


@pytest_asyncio.fixture
async def client(transport: ScriptedTransport, fast_settings: ContractSpineSettings):
    """Unauthenticated client over the scripted transport."""
    c = ContractClient(transport, settings=fast_settings)
    yield c
    await c.destroy()
