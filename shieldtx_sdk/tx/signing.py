"""
Transaction signing.

Signatures are produced locally from keys held in the wallet; nothing in
this module contacts the network.
"""
import logging
from typing import List

from ..exceptions import BuildError, KeyResolutionError
from ..models import BuiltTx, OfflineSignatures, Signature, SignedTx, UnsignedTx
from ..utils import short
from ..wallet import Wallet
from ..wallet.crypto import sign_message, verify_signature

logger = logging.getLogger(__name__)


class Signer:
    """
    Signs built transactions with keys resolved from a wallet.

    Inner signatures cover the transaction commitment; the fee payer's
    wrapper signature covers the wrapper hash.
    """

    def __init__(self, wallet: Wallet):
        self.wallet = wallet

    def generate_signatures(self, built: BuiltTx, require_fee_payer: bool = True) -> OfflineSignatures:
        """
        Produce the signatures for a built transaction without attaching them.

        Args:
            built: Builder output
            require_fee_payer: When False a missing fee-payer key yields a
                signature set without a wrapper signature

        Raises:
            KeyResolutionError: If a signer's key (or, when required, the
                fee payer's key) is not in the wallet
        """
        tx = built.tx
        commitment = bytes.fromhex(tx.commitment)
        signatures: List[Signature] = []
        for public_key in built.signing_data.public_keys:
            private_key = self.wallet.find_key_by_pk(public_key)
            signatures.append(Signature(
                public_key=public_key,
                signature=sign_message(private_key, commitment)
            ))

        wrapper_signature = None
        try:
            fee_key = self.wallet.find_key_by_pk(built.signing_data.fee_payer)
        except KeyResolutionError:
            if require_fee_payer:
                raise
            logger.warning(
                f"Fee payer {short(built.signing_data.fee_payer)} not in wallet, "
                f"leaving wrapper unsigned"
            )
        else:
            wrapper_signature = Signature(
                public_key=built.signing_data.fee_payer,
                signature=sign_message(fee_key, bytes.fromhex(tx.wrapper_hash))
            )

        logger.debug(f"Generated {len(signatures)} inner signature(s) for {short(tx.commitment)}")
        return OfflineSignatures(signatures=signatures, wrapper_signature=wrapper_signature)

    def attach(self, tx: UnsignedTx, signatures: OfflineSignatures) -> SignedTx:
        """
        Attach previously generated signatures to a transaction.

        Raises:
            BuildError: If a signature does not verify against the transaction
        """
        commitment = bytes.fromhex(tx.commitment)
        for sig in signatures.signatures:
            if not verify_signature(sig.public_key, sig.signature, commitment):
                raise BuildError(
                    f"Signature of {short(sig.public_key)} does not match commitment {short(tx.commitment)}"
                )
        ws = signatures.wrapper_signature
        if ws is not None and not verify_signature(ws.public_key, ws.signature, bytes.fromhex(tx.wrapper_hash)):
            raise BuildError(f"Wrapper signature does not match wrapper {short(tx.wrapper_hash)}")

        return SignedTx(
            tx=tx,
            signatures=list(signatures.signatures),
            wrapper_signature=ws
        )

    def sign(self, built: BuiltTx) -> SignedTx:
        return self.attach(built.tx, self.generate_signatures(built))
