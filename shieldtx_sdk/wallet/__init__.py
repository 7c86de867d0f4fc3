"""
Wallet module for the ShieldTx SDK.

Holds the signing keys and known addresses of a run, optionally backed
by a JSON key store in the run's base directory.
"""
import logging
from pathlib import Path
from typing import Optional, Dict

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..exceptions import KeyResolutionError
from ..utils import short
from .crypto import (
    load_secret_key, public_key_hex, derive_address, secret_key_hex
)
from .key_store import KeyStore

__all__ = ['Wallet', 'KeyStore']

logger = logging.getLogger(__name__)


class Wallet:
    """Alias-indexed registry of keypairs and addresses"""

    def __init__(self, store: Optional[KeyStore] = None):
        self.store = store
        self._keys: Dict[str, Dict[str, str]] = {}
        self._addresses: Dict[str, str] = {}

    @classmethod
    def from_dir(cls, base_dir: Path) -> "Wallet":
        """Create a wallet backed by base_dir, loading it if a wallet file exists."""
        wallet = cls(KeyStore(base_dir))
        if wallet.store.exists():
            wallet.load()
        return wallet

    def load(self) -> None:
        if self.store is None:
            return
        data = self.store.read()
        self._keys = dict(data["keys"])
        self._addresses = dict(data["addresses"])
        logger.debug(f"Loaded wallet with {len(self._keys)} keys from {self.store.store_path}")

    def save(self) -> None:
        if self.store is None:
            return
        self.store.write({"keys": self._keys, "addresses": self._addresses})

    def insert_keypair(
        self,
        alias: str,
        secret_key: str,
        address: Optional[str] = None
    ) -> str:
        """
        Store a keypair under an alias, overwriting any previous entry.

        Args:
            alias: Wallet alias for the key
            secret_key: Hex-encoded Ed25519 seed
            address: Address to register with the alias (derived when omitted)

        Returns:
            Hex-encoded public key
        """
        private_key = load_secret_key(secret_key)
        public_key = public_key_hex(private_key)
        address = address or derive_address(public_key)
        self._keys[alias] = {
            "secret_key": secret_key_hex(private_key),
            "public_key": public_key,
            "address": address,
        }
        self._addresses[alias] = address
        return public_key

    def insert_address(self, alias: str, address: str) -> None:
        self._addresses[alias] = address

    def find_address(self, alias: str) -> Optional[str]:
        return self._addresses.get(alias)

    def find_public_key(self, alias: str) -> Optional[str]:
        entry = self._keys.get(alias)
        return entry["public_key"] if entry else None

    def find_key_by_pk(self, public_key: str) -> Ed25519PrivateKey:
        """
        Resolve a public key to its private key.

        Raises:
            KeyResolutionError: If no stored key matches
        """
        for entry in self._keys.values():
            if entry["public_key"] == public_key:
                return load_secret_key(entry["secret_key"])
        raise KeyResolutionError(
            f"No secret key found in wallet for public key {short(public_key)}",
            public_key=public_key
        )
