from __future__ import annotations
from typing import Mapping, Optional

from ..ports.storage import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """
    Dict-backed store with Redis string/hash/set semantics.
    Nothing survives the process; used for dry runs and tests.
    """
    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.sets: dict[str, dict[str, None]] = {}   # dict keeps insertion order for sscan

    async def get(self, key: str) -> Optional[str]:
        return self.strings.get(key)

    async def set(self, key: str, value: str) -> None:
        self.strings[key] = str(value)

    async def hget(self, name: str, field: str) -> Optional[str]:
        return self.hashes.get(name, {}).get(field)

    async def hgetall(self, name: str) -> dict[str, str]:
        return dict(self.hashes.get(name, {}))

    async def hset(self, name: str, mapping: Mapping[str, str]) -> None:
        self.hashes.setdefault(name, {}).update({k: str(v) for k, v in mapping.items()})

    async def sadd(self, name: str, member: str) -> None:
        self.sets.setdefault(name, {})[member] = None

    async def scard(self, name: str) -> int:
        return len(self.sets.get(name, {}))

    async def sscan(self, name: str, cursor: int = 0, count: int = 1000) -> tuple[int, list[str]]:
        members = list(self.sets.get(name, {}))
        page = members[cursor:cursor + count]
        nxt = cursor + count
        return (nxt if nxt < len(members) else 0), page

    async def aclose(self) -> None:
        return None
