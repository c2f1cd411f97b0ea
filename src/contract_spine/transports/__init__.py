"""Transport and wallet collaborators."""

from contract_spine.transports.base import Transport, TransportResponse, WalletProvider
from contract_spine.transports.http import HttpxTransport

__all__ = ["Transport", "TransportResponse", "WalletProvider", "HttpxTransport"]
