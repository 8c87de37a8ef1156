"""
Configuration for the subchain relay.
"""
import os
import urllib.parse
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator

DEFAULT_MNEMONIC = "truth woman royal raccoon gossip force again crisp friend harsh praise imitate"
DEFAULT_REGISTRY_ADDRESS = "0xb7208c5505bf59d7c656e715e3b0a5d9bf364035"

ENV_PREFIX = "SUBCHAIN_"


class RelayConfig(BaseModel):
    """
    Settings for one relay session.

    Attributes:
        rootchain_url: Rootchain RPC endpoint
        messenger_address: Address of the Messenger (command log) contract
        db_path: Directory where the subchain node persists its state
        port: Port the subchain RPC listens on
        registry_artifact: Compiled confirmation registry (JSON with bytecode),
            only needed the first time the subchain is created
    """
    rootchain_url: str
    messenger_address: str
    db_path: str = "db"
    port: int = 8545
    host: str = "127.0.0.1"
    registry_address: str = DEFAULT_REGISTRY_ADDRESS
    registry_artifact: Optional[str] = None
    mnemonic: str = DEFAULT_MNEMONIC
    anvil_bin: str = "anvil"
    impersonate_method: str = "anvil_impersonateAccount"

    batch_size: int = 10
    confirmation_depth: int = 10
    block_retention: int = 100
    poll_interval: float = 5.0
    max_gas: int = 99_000_000
    block_gas_limit: int = 100_000_000

    request_timeout: int = 30
    retry_count: int = 3
    startup_timeout: float = 30.0

    @field_validator("rootchain_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urllib.parse.urlparse(value)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"rootchain_url must use http:// or https:// (got: {value})")
        return value

    @field_validator("batch_size", "block_retention", "port", "max_gas")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("confirmation_depth")
    @classmethod
    def _check_depth(cls, value: int) -> int:
        if value < 0:
            raise ValueError("confirmation_depth cannot be negative")
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> "RelayConfig":
        """
        Build a config from SUBCHAIN_* environment variables.

        Explicit keyword overrides win over the environment; ``None`` overrides
        are ignored so CLI defaults don't mask the environment.
        """
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            env_value = os.environ.get(ENV_PREFIX + name.upper())
            if env_value is not None:
                values[name] = env_value
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
