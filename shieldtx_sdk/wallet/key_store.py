"""
Secure file storage for wallet keys.
"""
import os
import json
import stat
import logging
from pathlib import Path
from typing import Dict, Any

import portalocker

logger = logging.getLogger(__name__)

WALLET_FILE = "wallet.json"


def _empty_store() -> Dict[str, Any]:
    return {"keys": {}, "addresses": {}}


class KeyStore:
    """Process-safe JSON key store"""

    def __init__(self, base_dir: Path, filename: str = WALLET_FILE):
        """
        Initialize the key store.

        Args:
            base_dir: Directory holding the wallet file
            filename: Wallet file name inside base_dir
        """
        self.store_path = Path(base_dir) / filename

    def exists(self) -> bool:
        return self.store_path.exists()

    def _ensure_dir(self):
        """Ensure key store directory exists and the file is owner-only"""
        directory = self.store_path.parent
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)

        if not self.store_path.exists():
            with open(self.store_path, 'w') as f:
                json.dump(_empty_store(), f)

        if os.name == 'posix':
            os.chmod(self.store_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def _get_lock_path(self) -> str:
        return str(self.store_path) + '.lock'

    def read(self) -> Dict[str, Any]:
        """
        Read the key store with proper locking.

        Returns:
            Dictionary with store contents
        """
        if not self.store_path.exists():
            return _empty_store()
        with portalocker.Lock(self._get_lock_path(), timeout=10):
            try:
                with open(self.store_path, 'r') as f:
                    data = json.load(f)
            except json.JSONDecodeError:
                logger.warning(f"Wallet file {self.store_path} is empty or corrupt, starting fresh")
                return _empty_store()
        data.setdefault("keys", {})
        data.setdefault("addresses", {})
        return data

    def write(self, data: Dict[str, Any]):
        """
        Write to the key store with proper locking.

        Args:
            data: Dictionary to write to store
        """
        self._ensure_dir()
        with portalocker.Lock(self._get_lock_path(), timeout=10):
            with open(self.store_path, 'w') as f:
                json.dump(data, f, indent=2)
