"""
Transport layer for the chain node.

This module provides an abstraction over how the SDK talks to a chain
node: JSON-RPC over HTTP for real nodes, or an in-process ledger for
tests and local dry runs.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import ShieldedBlock, SignedTx, TxResponse

logger = logging.getLogger(__name__)


class ChainTransport(ABC):
    """
    Abstract base class for chain node transports.

    Every query is blocking; failures to reach the node are raised as
    TransportError.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this transport is available for use.

        Returns:
            True if transport is available, False otherwise
        """
        pass

    @abstractmethod
    def initialize(self, url: str) -> None:
        """
        Initialize the transport with the given node URL.

        Raises:
            TransportError: If connection initialization fails
        """
        pass

    @abstractmethod
    def query_chain_id(self) -> str:
        pass

    @abstractmethod
    def latest_block_height(self) -> int:
        pass

    @abstractmethod
    def query_native_token(self) -> str:
        pass

    @abstractmethod
    def query_denomination(self, token: str) -> Optional[int]:
        """
        Get the number of decimal places of a token.

        Returns:
            Denomination, or None if the token is unknown
        """
        pass

    @abstractmethod
    def query_balance(self, owner: str, token: str, height: Optional[int] = None) -> int:
        pass

    @abstractmethod
    def is_public_key_revealed(self, address: str) -> bool:
        pass

    @abstractmethod
    def query_epoch(self) -> int:
        pass

    @abstractmethod
    def submit(self, signed_tx: SignedTx, timeout: Optional[float] = None) -> TxResponse:
        """
        Broadcast a signed transaction and wait for it to be committed.

        Args:
            signed_tx: Transaction to broadcast
            timeout: Seconds to wait for the node's answer

        Returns:
            Node response describing the applied batch

        Raises:
            TransportError: If the node could not be reached or timed out
        """
        pass

    @abstractmethod
    def fetch_blocks(self, start: int, end: int) -> List[ShieldedBlock]:
        """
        Fetch shielded data of blocks start..end inclusive.

        Returns:
            Blocks in ascending height order
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close any open connections or resources."""
        pass


def get_local_transport(**kwargs) -> ChainTransport:
    """Get an in-process ledger transport."""
    from .local import LocalLedger
    return LocalLedger(**kwargs)


def get_transport(url: str, prefer_local: bool = False, **kwargs) -> ChainTransport:
    """
    Get the transport for a node URL.

    Args:
        url: Node RPC URL, or "local" for an in-process ledger
        prefer_local: Use the in-process ledger regardless of url

    Returns:
        Initialized transport
    """
    if prefer_local or url == "local":
        logger.info("Using in-process ledger transport")
        transport = get_local_transport()
    else:
        from .http import JsonRpcTransport
        logger.info("Using JSON-RPC transport")
        transport = JsonRpcTransport(**kwargs)
    transport.initialize(url)
    return transport
