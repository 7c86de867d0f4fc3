"""
Exceptions for the ShieldTx SDK.
"""
from typing import Any, Optional


class ShieldTxError(Exception):
    """Base exception for all ShieldTx errors."""
    pass


class ConfigError(ShieldTxError):
    """Raised when the run configuration is invalid."""
    pass


class TransportError(ShieldTxError):
    """Raised when the chain node is unreachable or the connection fails."""
    pass


class TransportTimeoutError(TransportError):
    """Raised when a chain node query or submission times out."""
    pass


class RpcResponseError(TransportError):
    """Raised when the chain node answers with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message)


class InsufficientBalanceError(ShieldTxError):
    """Raised when the spendable balance does not cover the requested amount."""

    def __init__(self, message: str, balance: int = 0, required: int = 0):
        self.balance = balance
        self.required = required
        super().__init__(message)


class KeyResolutionError(ShieldTxError):
    """Raised when a signing key cannot be found in the local wallet."""

    def __init__(self, message: str, public_key: Optional[str] = None):
        self.public_key = public_key
        super().__init__(message)


class BuildError(ShieldTxError):
    """Raised when a transaction cannot be built from a transfer intent."""
    pass


class RejectedByChainError(ShieldTxError):
    """Raised when the chain did not apply the inner transaction we submitted."""

    def __init__(self, message: str, detail: str = "", verdict: Any = None):
        self.detail = detail
        self.verdict = verdict
        super().__init__(message)


class SyncIncompleteError(ShieldTxError):
    """Raised when shielded sync stops before reaching the required height."""

    def __init__(
        self,
        message: str,
        checkpoint: Optional[int] = None,
        required_height: Optional[int] = None
    ):
        self.checkpoint = checkpoint
        self.required_height = required_height
        super().__init__(message)
