from __future__ import annotations

from typing import Mapping, Optional, Protocol


class KeyValueStore(Protocol):
    """Port for the durable key-value store (Redis semantics, string values)."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def hget(self, name: str, field: str) -> Optional[str]: ...

    async def hgetall(self, name: str) -> dict[str, str]: ...

    async def hset(self, name: str, mapping: Mapping[str, str]) -> None: ...

    async def sadd(self, name: str, member: str) -> None: ...

    async def scard(self, name: str) -> int: ...

    async def sscan(self, name: str, cursor: int = 0, count: int = 1000) -> tuple[int, list[str]]:
        """
        One page of set members. Returns (next_cursor, members); next_cursor == 0
        ends the scan. Pages may repeat members, callers must deduplicate.
        """

    async def aclose(self) -> None: ...
