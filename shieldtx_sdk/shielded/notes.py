"""
Shielded key material and note construction.

Notes are sealed-box encrypted to the recipient's viewing key, so only
holders of that key can observe them while scanning blocks. Spends reveal
a nullifier derived from the viewing key and the note commitment, which
the chain records to prevent double spends.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Any, List, Optional, Protocol, Tuple

import base58
import nacl.utils
from nacl.encoding import Base64Encoder
from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox

from ..exceptions import BuildError, ConfigError
from ..models import ShieldedNote, ShieldedOutput
from ..utils import canonical_json, hash_canonical, strip_hex_prefix

PAYMENT_ADDRESS_PREFIX = "znam1"
DIVERSIFIER_LEN = 11
RSEED_LEN = 32
OPENING_FIELDS = ("value", "token", "payment_address", "rseed")

logger = logging.getLogger(__name__)

RandomSource = Callable[[int], bytes]


def note_commitment(opening: Dict[str, Any]) -> str:
    """Commitment of a note opening (value, token, payment address, rseed)."""
    return hash_canonical(opening)


def is_valid_opening(opening: Any) -> bool:
    """Check a decrypted opening has exactly the note fields with their types."""
    if not isinstance(opening, dict) or set(opening) != set(OPENING_FIELDS):
        return False
    value = opening["value"]
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return False
    return all(isinstance(opening[k], str) for k in ("token", "payment_address", "rseed"))


@dataclass(frozen=True)
class ViewingKey:
    """
    Full viewing key: decrypts notes and derives their nullifiers.
    """
    secret: bytes
    nullifier_key: bytes

    @classmethod
    def decode(cls, encoded: str) -> "ViewingKey":
        raw = bytes.fromhex(strip_hex_prefix(encoded))
        if len(raw) != 64:
            raise ConfigError(f"Viewing key must be 64 bytes, got {len(raw)}")
        return cls(secret=raw[:32], nullifier_key=raw[32:])

    def encode(self) -> str:
        return (self.secret + self.nullifier_key).hex()

    @property
    def public_key(self) -> bytes:
        return bytes(PrivateKey(self.secret).public_key)

    def to_payment_address(self, diversifier: bytes) -> str:
        if len(diversifier) != DIVERSIFIER_LEN:
            raise ValueError(f"Diversifier must be {DIVERSIFIER_LEN} bytes")
        return PAYMENT_ADDRESS_PREFIX + base58.b58encode(self.public_key + diversifier).decode("ascii")

    def try_decrypt(self, output: ShieldedOutput) -> Optional[Dict[str, Any]]:
        """Return the note opening if this key can decrypt the output."""
        try:
            plaintext = SealedBox(PrivateKey(self.secret)).decrypt(
                output.ciphertext.encode("ascii"), encoder=Base64Encoder
            )
        except (CryptoError, ValueError):
            return None
        try:
            opening = json.loads(plaintext)
        except ValueError:
            logger.warning(f"Undecodable note in output {output.commitment[:10]}...")
            return None
        if not is_valid_opening(opening):
            logger.warning(f"Malformed note opening in output {output.commitment[:10]}...")
            return None
        if note_commitment(opening) != output.commitment:
            logger.warning(f"Decrypted note does not match commitment {output.commitment[:10]}...")
            return None
        return opening

    def nullifier(self, commitment: str) -> str:
        return hashlib.sha256(self.nullifier_key + bytes.fromhex(commitment)).hexdigest()


@dataclass(frozen=True)
class SpendingKey:
    """Spending key from which the viewing key is derived"""
    seed: bytes

    @classmethod
    def decode(cls, encoded: str) -> "SpendingKey":
        """
        Parse a hex-encoded 32-byte spending key.

        Raises:
            ConfigError: If the value is not a valid key
        """
        try:
            raw = bytes.fromhex(strip_hex_prefix(encoded.strip()))
        except ValueError as e:
            raise ConfigError(f"Spending key is not valid hex: {e}") from e
        if len(raw) != 32:
            raise ConfigError(f"Spending key must be 32 bytes, got {len(raw)}")
        return cls(seed=raw)

    def viewing_key(self) -> ViewingKey:
        return ViewingKey(
            secret=hashlib.sha256(b"shieldtx/viewing" + self.seed).digest(),
            nullifier_key=hashlib.sha256(b"shieldtx/nullifier" + self.seed).digest(),
        )


def parse_payment_address(address: str) -> Tuple[bytes, bytes]:
    """
    Split a payment address into (viewing public key, diversifier).

    Raises:
        BuildError: If the address is malformed
    """
    if not address.startswith(PAYMENT_ADDRESS_PREFIX):
        raise BuildError(f"Not a shielded payment address: {address}")
    try:
        raw = base58.b58decode(address[len(PAYMENT_ADDRESS_PREFIX):])
    except ValueError as e:
        raise BuildError(f"Malformed payment address {address}: {e}") from e
    if len(raw) != 32 + DIVERSIFIER_LEN:
        raise BuildError(f"Malformed payment address {address}: wrong length {len(raw)}")
    return raw[:32], raw[32:]


class NoteBuilder(Protocol):
    """Capability the shielding and unshielding builders call into"""

    def derive_payment_address(self, viewing_key: ViewingKey) -> str:
        ...

    def build_outputs(self, payment_address: str, token: str, value: int) -> List[ShieldedOutput]:
        ...

    def build_spends(
        self,
        spending_key: SpendingKey,
        token: str,
        amount: int,
        notes: List[ShieldedNote]
    ) -> Tuple[List[Dict[str, Any]], List[ShieldedOutput]]:
        ...


class SealedBoxNoteBuilder:
    """
    Note builder backed by NaCl sealed boxes.

    Args:
        rng: Source of randomness for diversifiers and note seeds
    """

    def __init__(self, rng: RandomSource = nacl.utils.random):
        self.rng = rng

    def derive_payment_address(self, viewing_key: ViewingKey) -> str:
        return viewing_key.to_payment_address(self.rng(DIVERSIFIER_LEN))

    def build_outputs(self, payment_address: str, token: str, value: int) -> List[ShieldedOutput]:
        """
        Create the encrypted note paying value to payment_address.

        Raises:
            BuildError: If the payment address is malformed or value is not positive
        """
        if value <= 0:
            raise BuildError(f"Shielded output value must be positive, got {value}")
        public_key, _ = parse_payment_address(payment_address)
        opening = {
            "value": value,
            "token": token,
            "payment_address": payment_address,
            "rseed": self.rng(RSEED_LEN).hex(),
        }
        ciphertext = SealedBox(PublicKey(public_key)).encrypt(
            canonical_json(opening).encode("utf-8"), encoder=Base64Encoder
        )
        return [ShieldedOutput(
            commitment=note_commitment(opening),
            ciphertext=ciphertext.decode("ascii"),
        )]

    def build_spends(
        self,
        spending_key: SpendingKey,
        token: str,
        amount: int,
        notes: List[ShieldedNote]
    ) -> Tuple[List[Dict[str, Any]], List[ShieldedOutput]]:
        """
        Select notes covering amount and build the spends plus a change output.

        Args:
            spending_key: Key authorizing the spend
            token: Token being unshielded
            amount: Amount to unshield
            notes: Unspent notes visible to the spending key's viewing key

        Returns:
            Tuple of (spend descriptions, change outputs)

        Raises:
            BuildError: If the visible notes do not cover amount
        """
        viewing_key = spending_key.viewing_key()
        candidates = sorted(
            (n for n in notes if n.token == token),
            key=lambda n: (n.height, n.commitment)
        )
        selected: List[ShieldedNote] = []
        total = 0
        for note in candidates:
            if total >= amount:
                break
            selected.append(note)
            total += note.value

        if total < amount:
            raise BuildError(
                f"Insufficient visible shielded balance: have {total}, need {amount}"
            )

        spends = [
            {
                "commitment": note.commitment,
                "nullifier": viewing_key.nullifier(note.commitment),
                "opening": note.opening(),
            }
            for note in selected
        ]
        change: List[ShieldedOutput] = []
        if total > amount:
            change_address = self.derive_payment_address(viewing_key)
            change = self.build_outputs(change_address, token, total - amount)
        return spends, change
