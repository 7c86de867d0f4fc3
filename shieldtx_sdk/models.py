"""
Data models for the ShieldTx SDK.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple

from pydantic import BaseModel, Field

from .utils import hash_canonical


class TxKind(str, Enum):
    """Transaction kinds the pipeline builds."""
    REVEAL_PK = "reveal_pk"
    TRANSPARENT_TRANSFER = "transparent_transfer"
    SHIELDING_TRANSFER = "shielding_transfer"
    UNSHIELDING_TRANSFER = "unshielding_transfer"


class DenominatedAmount(BaseModel):
    """An integer amount in the token's smallest unit, with its denomination"""
    amount: int = Field(..., ge=0)
    denom: int = Field(0, ge=0)

    @classmethod
    def native(cls, amount: int, denom: int) -> "DenominatedAmount":
        return cls(amount=amount, denom=denom)

    def __str__(self) -> str:
        if self.denom == 0:
            return str(self.amount)
        return str(Decimal(self.amount).scaleb(-self.denom))


class InputAmount(BaseModel):
    """
    Transfer amount tagged with whether it was checked against a spendable balance.

    Unshielding requires a validated amount: the builder proved the visible
    shielded balance covers it.
    """
    amount: DenominatedAmount
    validated: bool = False

    @classmethod
    def unvalidated(cls, amount: DenominatedAmount) -> "InputAmount":
        return cls(amount=amount, validated=False)

    @classmethod
    def validated_amount(cls, amount: DenominatedAmount) -> "InputAmount":
        return cls(amount=amount, validated=True)


class TransferIntent(BaseModel):
    """A single requested transfer"""
    source: str
    target: str
    token: str
    amount: int = Field(..., ge=0)
    memo: Optional[str] = None
    expiration: Optional[int] = None

    class Config:
        frozen = True


class SigningData(BaseModel):
    """Keys that must sign a transaction and the key paying its fees"""
    public_keys: List[str]
    fee_payer: str
    owner: Optional[str] = None


class UnsignedTx(BaseModel):
    """
    A built transaction before signatures are attached.

    The commitment identifies the inner transaction, the wrapper hash
    identifies the fee-paying wrapper around it.
    """
    kind: TxKind
    chain_id: str
    payload: Dict[str, Any]
    memo: Optional[str] = None
    expiration: Optional[int] = None
    gas_limit: int
    fee_payer: str
    epoch: Optional[int] = None

    class Config:
        frozen = True

    def inner_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "chain_id": self.chain_id,
            "payload": self.payload,
            "memo": self.memo,
            "expiration": self.expiration,
        }

    @property
    def commitment(self) -> str:
        return hash_canonical(self.inner_dict())

    @property
    def wrapper_hash(self) -> str:
        return hash_canonical({
            "commitment": self.commitment,
            "chain_id": self.chain_id,
            "gas_limit": self.gas_limit,
            "fee_payer": self.fee_payer,
            "epoch": self.epoch,
        })


class Signature(BaseModel):
    """Hex-encoded Ed25519 signature with the public key that produced it"""
    public_key: str
    signature: str


class OfflineSignatures(BaseModel):
    """Signatures produced apart from the transaction they will be attached to"""
    signatures: List[Signature] = Field(default_factory=list)
    wrapper_signature: Optional[Signature] = None


class SignedTx(BaseModel):
    """A transaction with its inner and wrapper signatures attached"""
    tx: UnsignedTx
    signatures: List[Signature] = Field(default_factory=list)
    wrapper_signature: Optional[Signature] = None

    @property
    def commitment(self) -> str:
        return self.tx.commitment

    @property
    def wrapper_hash(self) -> str:
        return self.tx.wrapper_hash


class InnerTxResult(BaseModel):
    """Execution result of one inner transaction of a batch"""
    wrapper_hash: Optional[str] = None
    commitment: str
    accepted: bool
    vps_errors: List[Tuple[str, str]] = Field(default_factory=list)
    rejected_vps: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class BatchResult(BaseModel):
    """Results of every inner transaction applied in a block for one submission"""
    height: int
    results: List[InnerTxResult] = Field(default_factory=list)

    def index(self) -> Dict[Tuple[Optional[str], str], InnerTxResult]:
        return {(r.wrapper_hash, r.commitment): r for r in self.results}

    def get_inner_tx_result(
        self,
        wrapper_hash: Optional[str],
        commitment: str
    ) -> Optional[InnerTxResult]:
        return self.index().get((wrapper_hash, commitment))


class TxResponse(BaseModel):
    """Node response to a submitted transaction"""
    code: int = 0
    info: str = ""
    height: int = 0
    hash: Optional[str] = None
    batch: Optional[BatchResult] = None

    @property
    def applied(self) -> bool:
        return self.code == 0


class ShieldedOutput(BaseModel):
    """An encrypted note as published on chain"""
    commitment: str
    ciphertext: str


class ShieldedBlock(BaseModel):
    """Shielded data of a single block"""
    height: int
    outputs: List[ShieldedOutput] = Field(default_factory=list)
    nullifiers: List[str] = Field(default_factory=list)


class ShieldedNote(BaseModel):
    """A decrypted note owned by one of our viewing keys"""
    commitment: str
    value: int
    token: str
    payment_address: str
    rseed: str
    height: int
    nullifier: str

    def opening(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "token": self.token,
            "payment_address": self.payment_address,
            "rseed": self.rseed,
        }


@dataclass
class BuiltTx:
    """Output of a transaction builder"""
    tx: UnsignedTx
    signing_data: SigningData
    epoch: Optional[int] = None


@dataclass
class ExecutionOutcome:
    """Either a node response or the transport error that prevented one"""
    response: Optional[TxResponse] = None
    error: Optional[Exception] = None

    @classmethod
    def from_response(cls, response: TxResponse) -> "ExecutionOutcome":
        return cls(response=response)

    @classmethod
    def from_error(cls, error: Exception) -> "ExecutionOutcome":
        return cls(error=error)

    @property
    def is_transport_error(self) -> bool:
        return self.error is not None


@dataclass
class TxVerdict:
    """Classification of a submitted transaction"""
    accepted: bool
    commitment: str
    wrapper_hash: str
    height: Optional[int] = None
    detail: str = ""
