"""Collaborator protocols: the transport that reaches the backend and the wallet that signs.

Both are structural (``typing.Protocol``); anything with matching async
methods plugs in. The HTTP implementation lives in ``transports/http.py``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from contract_spine.core.models import TransportResponse


@runtime_checkable
class Transport(Protocol):
    """Sends one call to the backend.

    Raises on network-level failure; otherwise returns the status, decoded
    body and headers (``ETag`` and ``Retry-After`` passed through verbatim).
    """

    async def send(
        self,
        endpoint: str,
        method: str,
        payload: Any,
        headers: Mapping[str, str],
    ) -> TransportResponse:
        ...


@runtime_checkable
class WalletProvider(Protocol):
    """Source of the public address and of signatures over challenges."""

    async def get_public_address(self) -> str:
        ...

    async def sign_message(self, message: bytes) -> str:
        ...


__all__ = [
    "Transport",
    "WalletProvider",
    "TransportResponse",
]
