"""
Exceptions for the subchain relay.
"""
from typing import Optional


class RelayError(Exception):
    """Base exception for relay errors."""
    pass


class LedgerError(RelayError):
    """Raised when the rootchain cannot be read."""
    pass


class SandboxError(RelayError):
    """Raised when the subchain node rejects or fails an RPC call."""

    def __init__(self, message: str, method: Optional[str] = None):
        self.method = method
        super().__init__(message)


class RegistryError(RelayError):
    """Raised when the confirmation registry cannot be deployed or read."""
    pass


class DecodeError(RelayError):
    """Raised when a Messenger transaction's input is not a command."""
    pass


class ConsistencyError(RelayError):
    """
    Raised when relay state contradicts itself, e.g. a removed log whose
    transaction was never snapshotted. Never swallowed.
    """
    pass
