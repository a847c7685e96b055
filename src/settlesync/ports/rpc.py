from __future__ import annotations

from typing import Optional, Protocol
from ..domain.models import Event, FilterDescriptor
from ..domain.value_types import Address


class LedgerClient(Protocol):
    """Port defining the contract for the token's Ethereum JSON-RPC client."""

    async def get_block_number(self) -> int:
        """Return the latest block number as an integer."""

    async def get_chain_id(self) -> int:
        """Return the chain id the provider reports."""

    async def query_events(
        self,
        descriptor: FilterDescriptor,
        from_block: int,
        to_block: int,
    ) -> list[Event]:
        """Return decoded, typed events matching `descriptor` for [from_block, to_block] inclusive."""

    async def get_balance(self, address: Address, at_block: int) -> Optional[int]:
        """Return the token balance of `address` at `at_block`, or None if the provider gave no value."""
