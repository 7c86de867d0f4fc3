"""
ShieldTx SDK - transparent, shielding and unshielding transfer pipeline.
"""
from .version import __version__
from .config import TransferConfig
from .exceptions import (
    ShieldTxError, ConfigError, TransportError, TransportTimeoutError,
    RpcResponseError, InsufficientBalanceError, KeyResolutionError,
    BuildError, RejectedByChainError, SyncIncompleteError
)
from .models import (
    TxKind, TransferIntent, UnsignedTx, SignedTx, TxResponse,
    ExecutionOutcome, TxVerdict
)
from .session import ChainSession, SessionBootstrapper, RetryPolicy
from .pipeline import TransferPipeline, PipelineReport

__all__ = [
    "__version__",
    "TransferConfig",
    "ShieldTxError",
    "ConfigError",
    "TransportError",
    "TransportTimeoutError",
    "RpcResponseError",
    "InsufficientBalanceError",
    "KeyResolutionError",
    "BuildError",
    "RejectedByChainError",
    "SyncIncompleteError",
    "TxKind",
    "TransferIntent",
    "UnsignedTx",
    "SignedTx",
    "TxResponse",
    "ExecutionOutcome",
    "TxVerdict",
    "ChainSession",
    "SessionBootstrapper",
    "RetryPolicy",
    "TransferPipeline",
    "PipelineReport",
]
