"""
Run configuration for the ShieldTx SDK.

Every field can be supplied through the environment; explicit values
(e.g. CLI flags) take precedence over environment values.
"""
import os
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigError
from .utils import validate_rpc_url
from .shielded.notes import SpendingKey
from .wallet.crypto import load_secret_key, is_transparent_address

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 250_000

ENV_VARS: Dict[str, str] = {
    "rpc": "RPC",
    "source_private_key": "SOURCE_PRIVATE_KEY",
    "target_address": "TARGET_ADDRESS",
    "amount": "AMOUNT",
    "chain_id": "CHAIN_ID",
    "spending_key": "SPENDING_KEY",
    "expiration_timestamp_utc": "EXPIRATION_TIMESTAMP_UTC",
    "memo": "MEMO",
    "base_dir": "BASE_DIR",
    "rpc_timeout": "SHIELDTX_RPC_TIMEOUT",
    "retry_count": "SHIELDTX_RETRY_COUNT",
    "bootstrap_backoff": "SHIELDTX_BOOTSTRAP_BACKOFF",
    "gas_limit": "SHIELDTX_GAS_LIMIT",
    "sync_batch_size": "SHIELDTX_SYNC_BATCH_SIZE",
    "sync_workers": "SHIELDTX_SYNC_WORKERS",
}


class TransferConfig(BaseModel):
    """Configuration of one pipeline run"""
    rpc: str
    source_private_key: str
    target_address: str
    amount: int = Field(..., gt=0)
    chain_id: str
    spending_key: str
    expiration_timestamp_utc: Optional[int] = None
    memo: Optional[str] = None
    base_dir: Optional[Path] = None

    rpc_timeout: float = Field(30, gt=0)
    retry_count: int = Field(3, ge=0)
    bootstrap_backoff: float = Field(2.0, ge=0)
    gas_limit: int = Field(DEFAULT_GAS_LIMIT, gt=0)
    sync_batch_size: int = Field(10, gt=0)
    sync_workers: int = Field(4, gt=0)

    @field_validator("rpc")
    @classmethod
    def _check_rpc(cls, value: str) -> str:
        if value != "local":
            validate_rpc_url(value)
        return value

    @field_validator("source_private_key")
    @classmethod
    def _check_private_key(cls, value: str) -> str:
        try:
            load_secret_key(value)
        except ConfigError as e:
            raise ValueError(str(e)) from e
        return value

    @field_validator("spending_key")
    @classmethod
    def _check_spending_key(cls, value: str) -> str:
        try:
            SpendingKey.decode(value)
        except ConfigError as e:
            raise ValueError(str(e)) from e
        return value

    @field_validator("target_address")
    @classmethod
    def _check_target(cls, value: str) -> str:
        if not is_transparent_address(value):
            raise ValueError(f"not a transparent address: {value}")
        return value

    @field_validator("memo")
    @classmethod
    def _empty_memo_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @property
    def state_dir(self) -> Path:
        return self.base_dir if self.base_dir is not None else Path.cwd()

    @classmethod
    def create(cls, values: Mapping[str, Any]) -> "TransferConfig":
        """
        Validate raw values into a config.

        Raises:
            ConfigError: If a value is missing or invalid
        """
        try:
            return cls.model_validate(dict(values))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}") from e

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any
    ) -> "TransferConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ)
            **overrides: Explicit values; None values are ignored

        Raises:
            ConfigError: If a value is missing or invalid
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {
            field: environ[name] for field, name in ENV_VARS.items()
            if environ.get(name) not in (None, "")
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.create(values)
