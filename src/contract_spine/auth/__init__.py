"""Challenge-response authentication session."""

from contract_spine.auth.session import AuthenticationSessionManager, StateListener

__all__ = ["AuthenticationSessionManager", "StateListener"]
