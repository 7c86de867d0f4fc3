"""
The transfer pipeline.

One run bootstraps a session, gates on balance, reveals the source key
if needed, then executes a transparent transfer, a shielding transfer,
a shielded sync up to the shielding block and an unshielding transfer
back to the source. Any step error aborts the run.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .config import TransferConfig
from .exceptions import TransportError
from .models import BuiltTx, TransferIntent, TxVerdict
from .preconditions import PreconditionChecker
from .session import ChainSession, SessionBootstrapper, SOURCE_ALIAS
from .shielded.notes import NoteBuilder, SealedBoxNoteBuilder, SpendingKey
from .shielded.sync import ShieldedSyncCoordinator, shutdown_signal
from .tx.builders import (
    TxArgs, TransparentTransferBuilder, ShieldingTransferBuilder,
    UnshieldingTransferBuilder
)
from .tx.classify import ResultClassifier
from .tx.signing import Signer
from .tx.submit import Submitter
from .utils import short

logger = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """Summary of a completed run"""
    source: str
    public_key: str
    token: str
    initial_balance: int
    revealed: bool = False
    payment_address: Optional[str] = None
    checkpoint: Optional[int] = None
    final_balance: Optional[int] = None
    verdicts: Dict[str, TxVerdict] = field(default_factory=dict)


class TransferPipeline:
    """
    Runs the reveal, transparent, shielding, sync and unshielding steps.

    Args:
        config: Run configuration
        bootstrapper: Session bootstrapper (built from config when omitted)
        note_builder: Note-construction capability for shielded transfers
        shutdown: Event cancelling the shielded sync
        clock: Current unix time, used to reject expired transactions
    """

    def __init__(
        self,
        config: TransferConfig,
        bootstrapper: Optional[SessionBootstrapper] = None,
        note_builder: Optional[NoteBuilder] = None,
        shutdown: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config
        self.bootstrapper = bootstrapper or SessionBootstrapper(config)
        self.note_builder = note_builder or SealedBoxNoteBuilder()
        self.shutdown = shutdown or threading.Event()
        self.clock = clock

    def run(self) -> PipelineReport:
        """
        Execute the whole pipeline.

        Raises:
            InsufficientBalanceError: If the source cannot cover the amount
            KeyResolutionError: If a signing key is missing from the wallet
            BuildError: If a transaction cannot be built
            RejectedByChainError: If the chain rejects any transaction
            SyncIncompleteError: If the shielded sync is cancelled or incomplete
        """
        session = self.bootstrapper.bootstrap()
        with session:
            session.wallet.save()
            return self._run(session)

    def execute(self, session: ChainSession, built: BuiltTx) -> TxVerdict:
        """Sign, submit and classify a built transaction, raising on rejection."""
        signed = Signer(session.wallet).sign(built)
        outcome = Submitter(session).submit(signed)
        return ResultClassifier().require_accepted(signed, outcome)

    def _run(self, session: ChainSession) -> PipelineReport:
        config = self.config
        public_key = session.wallet.find_public_key(SOURCE_ALIAS)
        source = session.wallet.find_address(SOURCE_ALIAS)
        token = session.native_token

        def execute(built: BuiltTx) -> TxVerdict:
            return self.execute(session, built)

        checker = PreconditionChecker(session, execute)
        balance = checker.check_balance(source, token, config.amount)
        report = PipelineReport(
            source=source, public_key=public_key, token=token, initial_balance=balance
        )

        reveal_args = TxArgs(
            fee_payer=public_key, signing_keys=[public_key], gas_limit=config.gas_limit
        )
        report.revealed = checker.ensure_public_key_revealed(public_key, reveal_args)

        args = TxArgs(
            fee_payer=public_key,
            signing_keys=[public_key],
            gas_limit=config.gas_limit,
            memo=config.memo,
            expiration=config.expiration_timestamp_utc,
        )

        logger.info(f"Transparent transfer of {config.amount} to {short(config.target_address)}")
        transparent = TransparentTransferBuilder(session, clock=self.clock).build(
            TransferIntent(source=source, target=config.target_address, token=token, amount=config.amount),
            args
        )
        report.verdicts["transparent"] = execute(transparent)

        spending_key = SpendingKey.decode(config.spending_key)
        viewing_key = spending_key.viewing_key()
        payment_address = self.note_builder.derive_payment_address(viewing_key)
        report.payment_address = payment_address

        logger.info(f"Shielding {config.amount} to {short(payment_address, 16)}")
        shielding = ShieldingTransferBuilder(session, self.note_builder, clock=self.clock).build(
            TransferIntent(source=source, target=payment_address, token=token, amount=config.amount),
            args
        )
        shield_verdict = execute(shielding)
        report.verdicts["shielding"] = shield_verdict

        coordinator = ShieldedSyncCoordinator(
            session,
            [viewing_key],
            batch_size=config.sync_batch_size,
            workers=config.sync_workers,
            shutdown=self.shutdown
        )
        with shutdown_signal(self.shutdown):
            report.checkpoint = coordinator.sync(
                start_height=shield_verdict.height,
                required_height=shield_verdict.height
            )

        logger.info(f"Unshielding {config.amount} to {short(source)}")
        unshielding = UnshieldingTransferBuilder(session, self.note_builder, clock=self.clock).build(
            spending_key,
            TransferIntent(source=payment_address, target=source, token=token, amount=config.amount),
            args
        )
        report.verdicts["unshielding"] = execute(unshielding)

        try:
            report.final_balance = session.query_balance(source, token)
        except TransportError as e:
            logger.warning(f"Could not query final balance: {e}")
        return report
