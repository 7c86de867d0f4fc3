"""
Key handling for transparent accounts.

Transparent accounts use Ed25519 keys; an account's implicit address is
derived from the hash of its public key.
"""
import hashlib
import logging
from typing import Tuple

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey, Ed25519PublicKey
)
from cryptography.hazmat.primitives.serialization import (
    Encoding, PrivateFormat, PublicFormat, NoEncryption
)

from ..exceptions import ConfigError
from ..utils import strip_hex_prefix

ADDRESS_PREFIX = "tnam1"
ADDRESS_HASH_LEN = 20

logger = logging.getLogger(__name__)


def generate_ed25519_keypair() -> Tuple[Ed25519PrivateKey, str]:
    """
    Generate an Ed25519 keypair.

    Returns:
        Tuple of (private_key, public_key_hex)
    """
    private_key = Ed25519PrivateKey.generate()
    return private_key, public_key_hex(private_key)


def load_secret_key(secret_hex: str) -> Ed25519PrivateKey:
    """
    Parse a hex-encoded 32-byte Ed25519 seed.

    Raises:
        ConfigError: If the value is not a valid key
    """
    try:
        raw = bytes.fromhex(strip_hex_prefix(secret_hex.strip()))
    except ValueError as e:
        raise ConfigError(f"Secret key is not valid hex: {e}") from e
    if len(raw) != 32:
        raise ConfigError(f"Secret key must be 32 bytes, got {len(raw)}")
    return Ed25519PrivateKey.from_private_bytes(raw)


def secret_key_hex(private_key: Ed25519PrivateKey) -> str:
    raw = private_key.private_bytes(
        encoding=Encoding.Raw,
        format=PrivateFormat.Raw,
        encryption_algorithm=NoEncryption()
    )
    return raw.hex()


def public_key_hex(private_key: Ed25519PrivateKey) -> str:
    raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return raw.hex()


def derive_address(public_key: str) -> str:
    """
    Derive the implicit address of a public key.

    Args:
        public_key: Hex-encoded Ed25519 public key

    Returns:
        Address string (tnam1 followed by base58 of the key hash)
    """
    digest = hashlib.sha256(bytes.fromhex(public_key)).digest()[:ADDRESS_HASH_LEN]
    return ADDRESS_PREFIX + base58.b58encode(digest).decode("ascii")


def is_transparent_address(address: str) -> bool:
    if not address.startswith(ADDRESS_PREFIX):
        return False
    try:
        decoded = base58.b58decode(address[len(ADDRESS_PREFIX):])
    except ValueError:
        return False
    return len(decoded) == ADDRESS_HASH_LEN


def sign_message(private_key: Ed25519PrivateKey, message: bytes) -> str:
    return private_key.sign(message).hex()


def verify_signature(public_key: str, signature: str, message: bytes) -> bool:
    """
    Verify a hex-encoded Ed25519 signature.

    Returns:
        True if the signature is valid for the message, False otherwise
    """
    try:
        key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key))
        key.verify(bytes.fromhex(signature), message)
        return True
    except (InvalidSignature, ValueError):
        return False
