"""
Transaction builders.

Each builder turns a transfer intent into an UnsignedTx plus the signing
data the Signer needs. Builders only read chain state; they never submit.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..config import DEFAULT_GAS_LIMIT
from ..exceptions import BuildError
from ..models import (
    BuiltTx, DenominatedAmount, InputAmount, SigningData, TransferIntent,
    TxKind, UnsignedTx
)
from ..session import ChainSession
from ..shielded.notes import NoteBuilder, SpendingKey
from ..utils import short
from ..wallet.crypto import derive_address

logger = logging.getLogger(__name__)


@dataclass
class TxArgs:
    """
    Arguments shared by every transaction kind.

    Attributes:
        fee_payer: Public key paying the wrapper fee
        signing_keys: Public keys that must sign the inner transaction
        gas_limit: Gas limit of the wrapper
        memo: Optional plaintext memo
        expiration: Optional expiration as a UTC unix timestamp
    """
    fee_payer: str
    signing_keys: List[str] = field(default_factory=list)
    gas_limit: int = DEFAULT_GAS_LIMIT
    memo: Optional[str] = None
    expiration: Optional[int] = None


class TxBuilder:
    """
    Base class of the transaction builders.

    Args:
        session: Chain session used for denomination and epoch queries
        clock: Returns the current unix time, used to reject expired timestamps
    """

    kind: TxKind

    def __init__(self, session: ChainSession, clock: Callable[[], float] = time.time):
        self.session = session
        self.clock = clock

    def _check_expiration(self, expiration: Optional[int]) -> Optional[int]:
        if expiration is None:
            return None
        try:
            instant = datetime.fromtimestamp(expiration, tz=timezone.utc)
        except (OverflowError, OSError, ValueError, TypeError) as e:
            raise BuildError(f"Expiration {expiration!r} is not a valid timestamp: {e}") from e
        if expiration <= self.clock():
            raise BuildError(f"Expiration {instant.isoformat()} is already in the past")
        return int(expiration)

    def _denominate(self, token: str, amount: int) -> DenominatedAmount:
        denom = self.session.query_denomination(token)
        if denom is None:
            raise BuildError(f"Cannot denominate amount {amount}: unknown token {token}")
        return DenominatedAmount.native(amount, denom)

    @staticmethod
    def _encode_memo(memo: Optional[str]) -> Optional[str]:
        return memo.encode("utf-8").hex() if memo else None

    def _assemble(
        self,
        payload: Dict[str, Any],
        args: TxArgs,
        owner: Optional[str] = None,
        epoch: Optional[int] = None
    ) -> BuiltTx:
        tx = UnsignedTx(
            kind=self.kind,
            chain_id=self.session.chain_id,
            payload=payload,
            memo=self._encode_memo(args.memo),
            expiration=self._check_expiration(args.expiration),
            gas_limit=args.gas_limit,
            fee_payer=args.fee_payer,
            epoch=epoch,
        )
        signing_data = SigningData(
            public_keys=list(args.signing_keys),
            fee_payer=args.fee_payer,
            owner=owner,
        )
        logger.debug(f"Built {self.kind.value} transaction with commitment {short(tx.commitment)}")
        return BuiltTx(tx=tx, signing_data=signing_data, epoch=epoch)


class RevealPkBuilder(TxBuilder):
    """Builds the transaction registering a public key on chain."""

    kind = TxKind.REVEAL_PK

    def build(self, public_key: str, args: TxArgs) -> BuiltTx:
        return self._assemble(
            {"public_key": public_key}, args, owner=derive_address(public_key)
        )


class TransparentTransferBuilder(TxBuilder):
    """Builds a transfer between two transparent addresses."""

    kind = TxKind.TRANSPARENT_TRANSFER

    def build(self, intent: TransferIntent, args: TxArgs) -> BuiltTx:
        """
        Build the transfer.

        Raises:
            BuildError: If the token is unknown or the expiration is invalid
        """
        amount = self._denominate(intent.token, intent.amount)
        payload = {
            "source": intent.source,
            "target": intent.target,
            "token": intent.token,
            "amount": InputAmount.unvalidated(amount).model_dump(),
        }
        return self._assemble(payload, args, owner=intent.source)


class ShieldingTransferBuilder(TxBuilder):
    """
    Builds a transfer from a transparent address into the shielded pool.

    The intent's target is a shielded payment address; the encrypted note
    paying it is produced by the injected NoteBuilder.
    """

    kind = TxKind.SHIELDING_TRANSFER

    def __init__(
        self,
        session: ChainSession,
        note_builder: NoteBuilder,
        clock: Callable[[], float] = time.time
    ):
        super().__init__(session, clock)
        self.note_builder = note_builder

    def build(self, intent: TransferIntent, args: TxArgs) -> BuiltTx:
        """
        Build the shielding transfer.

        Returns:
            BuiltTx whose epoch is the MASP epoch the notes were built in

        Raises:
            BuildError: If the token is unknown, the payment address is
                malformed, the amount is not positive or the expiration is invalid
        """
        amount = self._denominate(intent.token, intent.amount)
        outputs = self.note_builder.build_outputs(intent.target, intent.token, intent.amount)
        epoch = self.session.query_epoch()
        payload = {
            "source": intent.source,
            "target": intent.target,
            "token": intent.token,
            "amount": InputAmount.unvalidated(amount).model_dump(),
            "outputs": [o.model_dump() for o in outputs],
        }
        return self._assemble(payload, args, owner=intent.source, epoch=epoch)


class UnshieldingTransferBuilder(TxBuilder):
    """
    Builds a transfer spending shielded notes to a transparent address.

    Only notes already recorded in the session's shielded context can be
    spent, so a note becomes usable once the context has been synced past
    the block that created it.
    """

    kind = TxKind.UNSHIELDING_TRANSFER

    def __init__(
        self,
        session: ChainSession,
        note_builder: NoteBuilder,
        clock: Callable[[], float] = time.time
    ):
        super().__init__(session, clock)
        self.note_builder = note_builder

    def build(self, spending_key: SpendingKey, intent: TransferIntent, args: TxArgs) -> BuiltTx:
        """
        Build the unshielding transfer.

        Args:
            spending_key: Key owning the notes to spend
            intent: Transfer whose target is a transparent address
            args: Fee and signing arguments

        Raises:
            BuildError: If the visible shielded balance does not cover the
                amount, the token is unknown or the expiration is invalid
        """
        shielded = self.session.shielded
        notes = shielded.spendable_notes(spending_key.viewing_key(), intent.token)
        available = sum(n.value for n in notes)
        if intent.amount <= 0 or available < intent.amount:
            raise BuildError(
                f"Insufficient visible shielded balance: have {available}, need {intent.amount} "
                f"(shielded state synced to height {shielded.checkpoint})"
            )

        amount = InputAmount.validated_amount(self._denominate(intent.token, intent.amount))
        spends, change = self.note_builder.build_spends(
            spending_key, intent.token, intent.amount, notes
        )
        epoch = self.session.query_epoch()
        payload = {
            "target": intent.target,
            "token": intent.token,
            "amount": amount.model_dump(),
            "spends": spends,
            "outputs": [o.model_dump() for o in change],
        }
        return self._assemble(payload, args, owner=intent.target, epoch=epoch)
