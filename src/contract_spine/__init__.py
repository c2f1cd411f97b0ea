"""
contract-spine - resilience and session orchestration for contract/content backends.

Wraps every outbound call in a rate-limited priority queue, a circuit
breaker, a bounded retry loop with jittered backoff, a challenge-response
authentication session, an ETag-aware content cache and a response
schema validator.

Quick start::

    from contract_spine import ContractClient, get_settings

    async with ContractClient.from_settings(get_settings(), wallet=wallet) as client:
        body = await client.call_contract("game", "get_stats", {"player": "p1"})
"""

from contract_spine.client import ContractClient
from contract_spine.core.errors import (
    AuthenticationError,
    BackendError,
    CircuitOpenError,
    ClientClosedError,
    ConfigError,
    ContractCallError,
    NetworkError,
    QueueFullError,
    RateLimitError,
    SchemaValidationError,
    SpineError,
    TimeoutError,
    TransientError,
    ValidationError,
)
from contract_spine.core.logging import configure_logging, get_logger
from contract_spine.core.models import (
    CircuitState,
    ClientStatus,
    Request,
    SessionSnapshot,
    SessionState,
    TransportResponse,
)
from contract_spine.core.result import Err, Ok, Result
from contract_spine.core.settings import ContractSpineSettings, get_settings
from contract_spine.transports import HttpxTransport, Transport, WalletProvider

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ContractClient",
    "ContractSpineSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    # models
    "CircuitState",
    "ClientStatus",
    "Request",
    "SessionSnapshot",
    "SessionState",
    "TransportResponse",
    # results
    "Ok",
    "Err",
    "Result",
    # collaborators
    "Transport",
    "WalletProvider",
    "HttpxTransport",
    # errors
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
]
