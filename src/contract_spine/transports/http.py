"""HTTP transport backed by ``httpx.AsyncClient``.

Maps ``Transport.send`` onto a single HTTP request. Status codes are
returned untouched; the orchestrator classifies them. Only failures to
get *any* response are raised here, already typed:

    httpx.TimeoutException  → contract_spine TimeoutError
    httpx.TransportError    → NetworkError

Example::

    transport = HttpxTransport("https://api.example.com", timeout=10.0)
    response = await transport.send("/contracts/game/get_stats", "POST", {"player": "p1"}, {})
    await transport.aclose()
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx

from contract_spine.core.errors import NetworkError, TimeoutError
from contract_spine.core.logging import get_logger
from contract_spine.core.models import TransportResponse

logger = get_logger(__name__)

# Methods whose payload travels as query parameters.
_QUERY_METHODS = frozenset({"GET", "DELETE", "HEAD"})


class HttpxTransport:
    """``Transport`` implementation over httpx.

    Args:
        base_url: Backend root URL.
        client: Pre-built client (not closed by ``aclose``). When omitted
            the transport owns one.
        timeout: httpx timeout for an owned client.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def send(
        self,
        endpoint: str,
        method: str,
        payload: Any,
        headers: Mapping[str, str],
    ) -> TransportResponse:
        method = method.upper()
        kwargs: dict[str, Any] = {"headers": dict(headers)}
        if payload is not None:
            if method in _QUERY_METHODS and isinstance(payload, Mapping):
                kwargs["params"] = {k: _query_value(v) for k, v in payload.items()}
            else:
                kwargs["json"] = payload

        try:
            response = await self._client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"{method} {endpoint} timed out", cause=e).with_context(
                endpoint=endpoint
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {endpoint} failed: {e}", cause=e).with_context(
                endpoint=endpoint
            ) from e

        logger.debug("http.response", method=method, endpoint=endpoint, status=response.status_code)
        return TransportResponse(
            status=response.status_code,
            body=_decode_body(response),
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["HttpxTransport"]
