"""
Test support utilities for contract-spine tests.

Fakes for the collaborators (transport, wallet, clock) that don't fit as
pytest fixtures but are shared by several test modules.
"""
