"""
Checks run before any transfer is built.
"""
import logging
from typing import Callable

from .exceptions import InsufficientBalanceError, TransportError
from .models import BuiltTx, TxVerdict
from .session import ChainSession
from .tx.builders import RevealPkBuilder, TxArgs
from .utils import short
from .wallet.crypto import derive_address

logger = logging.getLogger(__name__)

Executor = Callable[[BuiltTx], TxVerdict]


class PreconditionChecker:
    """
    Balance gate and public-key reveal guard.

    Args:
        session: Chain session to query
        execute: Signs, submits and classifies a built transaction, raising
            RejectedByChainError on rejection
    """

    def __init__(self, session: ChainSession, execute: Executor):
        self.session = session
        self.execute = execute

    def check_balance(self, owner: str, token: str, amount: int) -> int:
        """
        Ensure owner holds at least amount of token.

        A failed balance query counts as a zero balance.

        Returns:
            The queried balance

        Raises:
            InsufficientBalanceError: If the balance is zero or below amount
        """
        try:
            balance = self.session.query_balance(owner, token)
        except TransportError as e:
            logger.warning(f"Balance query for {short(owner)} failed, assuming zero: {e}")
            balance = 0

        if balance == 0 or balance < amount:
            logger.error(f"Balance of {short(owner)} is {balance}, transfer needs {amount}")
            raise InsufficientBalanceError(
                f"Insufficient balance: {owner} holds {balance}, transfer needs {amount}",
                balance=balance,
                required=amount
            )
        logger.info(f"Balance of {short(owner)}: {balance}")
        return balance

    def is_revealed(self, public_key: str) -> bool:
        """Whether public_key is registered on chain; a failed query counts as not revealed."""
        address = derive_address(public_key)
        try:
            return self.session.is_public_key_revealed(address)
        except TransportError as e:
            logger.warning(f"Reveal status query for {short(address)} failed: {e}")
            return False

    def ensure_public_key_revealed(self, public_key: str, args: TxArgs) -> bool:
        """
        Reveal public_key unless the chain already knows it.

        Returns:
            True if a reveal transaction was executed, False if it was skipped

        Raises:
            RejectedByChainError: If the reveal transaction was rejected
        """
        if self.is_revealed(public_key):
            logger.info(f"Public key {short(public_key)} already revealed")
            return False

        logger.info(f"Revealing public key {short(public_key)}")
        built = RevealPkBuilder(self.session).build(public_key, args)
        self.execute(built)
        return True
