"""Runtime configuration for the sync worker."""
from __future__ import annotations

from dataclasses import dataclass

from eth_utils import is_hex_address

from .domain.value_types import Address, normalize_address
from .errors import ConfigError

DEFAULT_CHUNK_SIZE = 2_000       # Alchemy caps eth_getLogs at 2k blocks
DEFAULT_POLL_INTERVAL_S = 1.0
DEFAULT_FILTER_CAPACITY = 1_000
DEFAULT_MIN_SPLIT_SPAN = 10
DEFAULT_MAX_SPLIT_DEPTH = 32


def _require_address(name: str, value: str | None) -> Address:
    if not value:
        raise ConfigError(f"{name} is not set")
    if not is_hex_address(value):
        raise ConfigError(f"{name} is not a hex address: {value!r}")
    return normalize_address(value)


@dataclass(slots=True, frozen=True)
class Settings:
    """
    Everything the worker needs to run.

    Addresses are validated and normalized to lowercase on construction; any
    problem raises ConfigError so the process can fail before touching the
    network or the store.
    """
    rpc_url: str
    network_id: int
    token_address: str
    settlement_address: str
    settlement_deploy_block: int = 0
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    filter_capacity: int = DEFAULT_FILTER_CAPACITY
    min_split_span: int = DEFAULT_MIN_SPLIT_SPAN
    max_split_depth: int = DEFAULT_MAX_SPLIT_DEPTH

    def __post_init__(self) -> None:
        if not self.rpc_url:
            raise ConfigError("ETH_RPC_URL is not set")
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "token_address", _require_address("TOKEN_CONTRACT_ADDR", self.token_address))
        object.__setattr__(self, "settlement_address",
                           _require_address("SETTLEMENT_CONTRACT_ADDR", self.settlement_address))
        if self.settlement_deploy_block < 0:
            raise ConfigError("SETTLEMENT_CONTRACT_DEPLOY_BLOCK must be >= 0")
        for name in ("chunk_size", "filter_capacity", "min_split_span", "max_split_depth"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be positive")
        if self.poll_interval_s <= 0:
            raise ConfigError("poll_interval_s must be positive")

    @property
    def namespace(self) -> str:
        """Redis key prefix: network id + a short slice of the settlement address."""
        return f"{self.network_id}:{self.settlement_address[2:6]}"
