"""
Utility functions for the ShieldTx SDK.
"""
import hashlib
import json
import os
import urllib.parse
from typing import Any, Union


def sha256_hex(data: Union[str, bytes]) -> str:
    """
    Calculate SHA-256 hash and return hex string

    Args:
        data: String or bytes to hash

    Returns:
        Hex string of the hash (no 0x prefix)
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def canonical_json(obj: Any) -> str:
    """
    Serialize an object to canonical JSON (sorted keys, no whitespace).

    Args:
        obj: JSON-serializable object

    Returns:
        Canonical JSON string
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def hash_canonical(obj: Any) -> str:
    """Hash the canonical JSON form of an object."""
    return sha256_hex(canonical_json(obj))


def strip_hex_prefix(value: str) -> str:
    """Remove a leading 0x from a hex string if present."""
    return value[2:] if value.startswith("0x") else value


def short(value: str, length: int = 10) -> str:
    """Truncate an identifier for logging."""
    if len(value) <= length:
        return value
    return f"{value[:length]}..."


def validate_rpc_url(url: str) -> None:
    """
    Validate a node URL is well formed and secure.

    Plain HTTP is accepted for localhost, or anywhere when
    SHIELDTX_INSECURE_RPC=1 is set.

    Raises:
        ValueError: If URL is invalid or uses insecure HTTP
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"Invalid RPC URL '{url}'")
    is_local = parsed.hostname in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme != "https" and not is_local:
        if os.environ.get("SHIELDTX_INSECURE_RPC") != "1":
            raise ValueError(
                f"RPC URL must use HTTPS for security (got: {parsed.scheme}://). "
                "Set SHIELDTX_INSECURE_RPC=1 to allow HTTP."
            )
