"""
Chain session and its bootstrapper.

A ChainSession owns the node connection, the wallet and the shielded
context for exactly one pipeline run.
"""
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .config import TransferConfig
from .exceptions import ConfigError, TransportError
from .models import ShieldedBlock, SignedTx, TxResponse
from .shielded.context import ShieldedContext
from .transport import ChainTransport, get_transport
from .transport._rate_limited_log import rate_limited_log
from .utils import short
from .wallet import Wallet

logger = logging.getLogger(__name__)

SOURCE_ALIAS = "source"
NATIVE_TOKEN_ALIAS = "nam"

CHAIN_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,49}$")


class ChainSession:
    """
    Connection to a chain node plus the key registry and shielded state.

    Args:
        transport: Initialized chain transport
        chain_id: Chain the transactions are built for
        wallet: Key registry
        shielded: Shielded-pool state
        base_dir: Directory the wallet and shielded state persist to

    Raises:
        ConfigError: If the chain id is malformed or differs from the node's
        TransportError: If the node cannot be queried
    """

    def __init__(
        self,
        transport: ChainTransport,
        chain_id: str,
        wallet: Wallet,
        shielded: ShieldedContext,
        base_dir: Optional[Path] = None
    ):
        if not CHAIN_ID_PATTERN.match(chain_id):
            raise ConfigError(f"Malformed chain id: {chain_id!r}")
        node_chain_id = transport.query_chain_id()
        if node_chain_id != chain_id:
            raise ConfigError(f"Node is on chain {node_chain_id}, expected {chain_id}")

        self.transport = transport
        self.chain_id = chain_id
        self.wallet = wallet
        self.shielded = shielded
        self.base_dir = base_dir
        self.native_token = transport.query_native_token()

    def register_source(self, secret_key: str) -> Tuple[str, str]:
        """
        Insert the source keypair and the native token into the wallet.

        Returns:
            Tuple of (public_key, address)
        """
        public_key = self.wallet.insert_keypair(SOURCE_ALIAS, secret_key)
        address = self.wallet.find_address(SOURCE_ALIAS)
        self.wallet.insert_address(NATIVE_TOKEN_ALIAS, self.native_token)
        logger.debug(f"Registered source {short(address)} and native token {short(self.native_token)}")
        return public_key, address

    def latest_block_height(self) -> int:
        return self.transport.latest_block_height()

    def query_balance(self, owner: str, token: str, height: Optional[int] = None) -> int:
        return self.transport.query_balance(owner, token, height)

    def query_denomination(self, token: str) -> Optional[int]:
        return self.transport.query_denomination(token)

    def query_epoch(self) -> int:
        return self.transport.query_epoch()

    def is_public_key_revealed(self, address: str) -> bool:
        return self.transport.is_public_key_revealed(address)

    def submit(self, signed_tx: SignedTx, timeout: Optional[float] = None) -> TxResponse:
        return self.transport.submit(signed_tx, timeout)

    def fetch_blocks(self, start: int, end: int) -> List[ShieldedBlock]:
        return self.transport.fetch_blocks(start, end)

    def close(self) -> None:
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


@dataclass
class RetryPolicy:
    """
    Fixed-backoff retry policy.

    Attributes:
        backoff: Seconds to wait between attempts
        max_attempts: Attempt cap, None to retry forever
        sleep: Sleep function
    """
    backoff: float = 2.0
    max_attempts: Optional[int] = None
    sleep: Callable[[float], None] = time.sleep

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts


class SessionBootstrapper:
    """
    Establishes a ChainSession, retrying until the node answers.

    Each attempt reloads the persisted wallet and shielded state, connects
    a fresh transport and registers the source key and native token.
    """

    def __init__(
        self,
        config: TransferConfig,
        transport_factory: Optional[Callable[[], ChainTransport]] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.config = config
        self.transport_factory = transport_factory or self._default_transport
        self.retry_policy = retry_policy or RetryPolicy(backoff=config.bootstrap_backoff)

    def _default_transport(self) -> ChainTransport:
        return get_transport(
            self.config.rpc,
            timeout=self.config.rpc_timeout,
            retry_count=self.config.retry_count
        )

    def bootstrap(self) -> ChainSession:
        """
        Create a session, retrying with a fixed backoff on any failure.

        Raises:
            TransportError: If the retry policy's attempt cap is reached
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                session = self._attempt()
                logger.info(f"Connected to chain {session.chain_id} after {attempt} attempt(s)")
                return session
            except Exception as e:
                if not self.retry_policy.should_retry(attempt):
                    logger.error(f"Giving up on chain session after {attempt} attempts: {e}")
                    raise TransportError(
                        f"Could not establish a chain session after {attempt} attempts: {e}"
                    ) from e
                rate_limited_log(
                    f"Chain session not ready ({e}); retrying every {self.retry_policy.backoff}s",
                    level="warning",
                    logger_instance=logger
                )
                logger.debug(f"Session attempt {attempt} failed: {e!r}")
                self.retry_policy.sleep(self.retry_policy.backoff)

    def _attempt(self) -> ChainSession:
        base_dir = self.config.state_dir
        wallet = Wallet.from_dir(base_dir)
        shielded = ShieldedContext.from_dir(base_dir)
        transport = self.transport_factory()
        try:
            session = ChainSession(transport, self.config.chain_id, wallet, shielded, base_dir)
            session.register_source(self.config.source_private_key)
        except Exception:
            transport.close()
            raise
        return session
