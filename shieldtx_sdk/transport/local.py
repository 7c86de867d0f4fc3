"""
In-process ledger transport.

This module provides a self-contained chain node used for tests and
local dry runs. It keeps transparent balances, revealed public keys and
the shielded note pool, verifies signatures, charges a flat fee per
applied wrapper and produces one block per applied wrapper.
"""
import hashlib
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..exceptions import TransportError, RpcResponseError
from ..models import (
    BatchResult, InnerTxResult, ShieldedBlock, ShieldedOutput, SignedTx,
    TxKind, TxResponse
)
from ..shielded.notes import note_commitment
from ..utils import short
from ..wallet.crypto import derive_address, verify_signature
from .base import ChainTransport

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = "local-devnet.000000"
NATIVE_DENOM = 6
# Transparent account holding the value of the shielded pool
MASP_ADDRESS = derive_address(hashlib.sha256(b"masp").hexdigest())


class InnerTxFailure(Exception):
    """Raised while executing an inner transaction that validity predicates reject."""

    def __init__(self, address: str, message: str):
        self.address = address
        self.message = message
        super().__init__(f"{address}: {message}")


class LocalLedger(ChainTransport):
    """
    An in-memory chain node.

    Wrapper-level failures (wrong chain, expired, stale epoch, bad wrapper
    signature, unrevealed or underfunded fee payer) are answered with a
    non-zero code and no batch. Once the fee is paid the wrapper is applied
    and the inner transaction is either accepted or rejected in the batch.
    """

    def __init__(
        self,
        chain_id: str = DEFAULT_CHAIN_ID,
        native_token: Optional[str] = None,
        fee: int = 1,
        epoch_length: int = 1000,
        clock: Callable[[], float] = time.time
    ):
        self.url: Optional[str] = None
        self.initialized = False
        self.unavailable = False
        self.chain_id = chain_id
        self.native_token = native_token or derive_address(hashlib.sha256(b"nam").hexdigest())
        self.fee = fee
        self.epoch_length = epoch_length
        self.clock = clock

        self.denominations: Dict[str, int] = {self.native_token: NATIVE_DENOM}
        self.balances: Dict[Tuple[str, str], int] = {}
        self.revealed: Dict[str, str] = {}
        self.blocks: List[ShieldedBlock] = []
        self.commitments: Set[str] = set()
        self.nullifiers: Set[str] = set()
        self.submitted: List[SignedTx] = []
        self.applied: List[Tuple[TxKind, InnerTxResult]] = []
        self._history: Dict[int, Dict[Tuple[str, str], int]] = {0: {}}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # ChainTransport
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return True

    def initialize(self, url: str = "local") -> None:
        self.url = url
        self.initialized = True
        logger.debug(f"Initialized local ledger {self.chain_id}")

    def _check_up(self) -> None:
        if not self.initialized:
            raise TransportError("Local ledger not initialized")
        if self.unavailable:
            raise TransportError("Local ledger unavailable")

    def query_chain_id(self) -> str:
        self._check_up()
        return self.chain_id

    def latest_block_height(self) -> int:
        self._check_up()
        with self._lock:
            return len(self.blocks)

    def query_native_token(self) -> str:
        self._check_up()
        return self.native_token

    def query_denomination(self, token: str) -> Optional[int]:
        self._check_up()
        return self.denominations.get(token)

    def query_balance(self, owner: str, token: str, height: Optional[int] = None) -> int:
        self._check_up()
        with self._lock:
            if height is None:
                return self.balances.get((owner, token), 0)
            if height not in self._history:
                raise RpcResponseError(f"No state at height {height}", code=-32602)
            return self._history[height].get((owner, token), 0)

    def is_public_key_revealed(self, address: str) -> bool:
        self._check_up()
        with self._lock:
            return address in self.revealed

    def query_epoch(self) -> int:
        self._check_up()
        with self._lock:
            return self.epoch

    def fetch_blocks(self, start: int, end: int) -> List[ShieldedBlock]:
        self._check_up()
        with self._lock:
            start = max(start, 1)
            end = min(end, len(self.blocks))
            return list(self.blocks[start - 1:end])

    def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Genesis and inspection helpers
    # ------------------------------------------------------------------

    @property
    def height(self) -> int:
        return len(self.blocks)

    @property
    def epoch(self) -> int:
        return len(self.blocks) // self.epoch_length

    def credit(self, owner: str, token: str, amount: int) -> None:
        with self._lock:
            self.balances[(owner, token)] = self.balances.get((owner, token), 0) + amount
            self._history[self.height] = dict(self.balances)

    def advance(self, blocks: int = 1) -> int:
        """Produce empty blocks and return the new height."""
        with self._lock:
            for _ in range(blocks):
                self._commit_block([], [])
            return self.height

    def reveal_count(self) -> int:
        return sum(
            1 for kind, result in self.applied
            if kind == TxKind.REVEAL_PK and result.accepted
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, signed_tx: SignedTx, timeout: Optional[float] = None) -> TxResponse:
        self._check_up()
        with self._lock:
            self.submitted.append(signed_tx)
            tx = signed_tx.tx
            wrapper_hash = tx.wrapper_hash

            rejection = self._check_wrapper(signed_tx)
            if rejection is not None:
                code, info = rejection
                logger.debug(f"Wrapper {short(wrapper_hash)} rejected: {info}")
                return TxResponse(code=code, info=info, height=self.height, hash=wrapper_hash)

            fee_payer = derive_address(tx.fee_payer)
            self._move(fee_payer, None, self.native_token, self.fee)

            outputs: List[ShieldedOutput] = []
            nullifiers: List[str] = []
            try:
                outputs, nullifiers = self._apply_inner(signed_tx)
                result = InnerTxResult(
                    wrapper_hash=wrapper_hash, commitment=tx.commitment, accepted=True
                )
            except InnerTxFailure as e:
                result = InnerTxResult(
                    wrapper_hash=wrapper_hash,
                    commitment=tx.commitment,
                    accepted=False,
                    vps_errors=[(e.address, e.message)],
                    rejected_vps=[e.address]
                )
            except (KeyError, TypeError, ValueError) as e:
                result = InnerTxResult(
                    wrapper_hash=wrapper_hash,
                    commitment=tx.commitment,
                    accepted=False,
                    error=f"Malformed transaction payload: {e}"
                )

            self.applied.append((tx.kind, result))
            height = self._commit_block(outputs, nullifiers)
            return TxResponse(
                code=0,
                info="applied",
                height=height,
                hash=wrapper_hash,
                batch=BatchResult(height=height, results=[result])
            )

    def _check_wrapper(self, signed_tx: SignedTx) -> Optional[Tuple[int, str]]:
        tx = signed_tx.tx
        if tx.chain_id != self.chain_id:
            return 1, f"Invalid chain id {tx.chain_id}, expected {self.chain_id}"
        if tx.expiration is not None and tx.expiration <= self.clock():
            return 2, f"Transaction expired at {tx.expiration}"
        if tx.epoch is not None and tx.epoch != self.epoch:
            return 3, f"Transaction built for epoch {tx.epoch}, current epoch is {self.epoch}"

        ws = signed_tx.wrapper_signature
        if ws is None or ws.public_key != tx.fee_payer or not verify_signature(
            ws.public_key, ws.signature, bytes.fromhex(tx.wrapper_hash)
        ):
            return 4, "Invalid or missing wrapper signature"

        fee_payer = derive_address(tx.fee_payer)
        reveals_fee_payer = (
            tx.kind == TxKind.REVEAL_PK and tx.payload.get("public_key") == tx.fee_payer
        )
        if fee_payer not in self.revealed and not reveals_fee_payer:
            return 5, f"Public key of fee payer {fee_payer} is not revealed"
        if self.balances.get((fee_payer, self.native_token), 0) < self.fee:
            return 6, f"Insufficient balance of {fee_payer} to pay fee {self.fee}"
        return None

    def _authorized(self, signed_tx: SignedTx) -> Set[str]:
        """Addresses whose keys produced valid inner signatures."""
        message = bytes.fromhex(signed_tx.commitment)
        addresses = set()
        for sig in signed_tx.signatures:
            if verify_signature(sig.public_key, sig.signature, message):
                addresses.add(derive_address(sig.public_key))
        return addresses

    def _move(self, source: Optional[str], target: Optional[str], token: str, amount: int) -> None:
        if source is not None:
            self.balances[(source, token)] = self.balances.get((source, token), 0) - amount
        if target is not None:
            self.balances[(target, token)] = self.balances.get((target, token), 0) + amount

    def _read_amount(self, payload: Dict[str, Any]) -> Tuple[str, int]:
        token = payload["token"]
        denom = self.denominations.get(token)
        if denom is None:
            raise InnerTxFailure(token, "unknown token")
        amount = payload["amount"]["amount"]
        if amount["denom"] != denom:
            raise InnerTxFailure(token, f"amount denominated in {amount['denom']}, token uses {denom}")
        return token, int(amount["amount"])

    def _debit_transparent(self, signed_tx: SignedTx, source: str, token: str, amount: int) -> None:
        if source not in self._authorized(signed_tx):
            raise InnerTxFailure(source, "debit not authorized by the source's key")
        if self.balances.get((source, token), 0) < amount:
            raise InnerTxFailure(source, f"insufficient balance to transfer {amount}")

    def _apply_inner(self, signed_tx: SignedTx) -> Tuple[List[ShieldedOutput], List[str]]:
        tx = signed_tx.tx
        payload = tx.payload

        if tx.kind == TxKind.REVEAL_PK:
            public_key = payload["public_key"]
            address = derive_address(public_key)
            if address in self.revealed:
                raise InnerTxFailure(address, "public key already revealed")
            self.revealed[address] = public_key
            return [], []

        if tx.kind == TxKind.TRANSPARENT_TRANSFER:
            token, amount = self._read_amount(payload)
            self._debit_transparent(signed_tx, payload["source"], token, amount)
            self._move(payload["source"], payload["target"], token, amount)
            return [], []

        if tx.kind == TxKind.SHIELDING_TRANSFER:
            token, amount = self._read_amount(payload)
            outputs = [ShieldedOutput.model_validate(o) for o in payload["outputs"]]
            if not outputs:
                raise InnerTxFailure(MASP_ADDRESS, "shielding transfer without outputs")
            self._debit_transparent(signed_tx, payload["source"], token, amount)
            self._move(payload["source"], MASP_ADDRESS, token, amount)
            return outputs, []

        if tx.kind == TxKind.UNSHIELDING_TRANSFER:
            token, amount = self._read_amount(payload)
            if not payload["amount"]["validated"]:
                raise InnerTxFailure(MASP_ADDRESS, "unshielding amount was not validated")
            nullifiers: List[str] = []
            total = 0
            for spend in payload["spends"]:
                opening = spend["opening"]
                if note_commitment(opening) != spend["commitment"]:
                    raise InnerTxFailure(MASP_ADDRESS, "note opening does not match commitment")
                if spend["commitment"] not in self.commitments:
                    raise InnerTxFailure(MASP_ADDRESS, f"unknown note {short(spend['commitment'])}")
                if spend["nullifier"] in self.nullifiers or spend["nullifier"] in nullifiers:
                    raise InnerTxFailure(MASP_ADDRESS, f"note {short(spend['commitment'])} already spent")
                if opening["token"] != token:
                    raise InnerTxFailure(MASP_ADDRESS, "note token does not match transfer token")
                nullifiers.append(spend["nullifier"])
                total += int(opening["value"])
            if total < amount:
                raise InnerTxFailure(MASP_ADDRESS, f"spent notes hold {total}, transfer needs {amount}")
            outputs = [ShieldedOutput.model_validate(o) for o in payload.get("outputs", [])]
            self._move(MASP_ADDRESS, payload["target"], token, amount)
            return outputs, nullifiers

        raise InnerTxFailure(MASP_ADDRESS, f"unsupported transaction kind {tx.kind}")

    def _commit_block(self, outputs: List[ShieldedOutput], nullifiers: List[str]) -> int:
        height = len(self.blocks) + 1
        self.blocks.append(ShieldedBlock(height=height, outputs=outputs, nullifiers=nullifiers))
        self.commitments.update(o.commitment for o in outputs)
        self.nullifiers.update(nullifiers)
        self._history[height] = dict(self.balances)
        return height
