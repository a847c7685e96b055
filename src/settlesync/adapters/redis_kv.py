from __future__ import annotations
from typing import Mapping, Optional

from redis.asyncio import Redis

from ..config import Settings
from ..ports.storage import KeyValueStore


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisKeyValueStore":
        return cls(Redis(host=settings.redis_host, port=settings.redis_port,
                         db=settings.redis_db, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self.client.set(key, value)

    async def hget(self, name: str, field: str) -> Optional[str]:
        return await self.client.hget(name, field)

    async def hgetall(self, name: str) -> dict[str, str]:
        return await self.client.hgetall(name)

    async def hset(self, name: str, mapping: Mapping[str, str]) -> None:
        await self.client.hset(name, mapping=dict(mapping))

    async def sadd(self, name: str, member: str) -> None:
        await self.client.sadd(name, member)

    async def scard(self, name: str) -> int:
        return int(await self.client.scard(name))

    async def sscan(self, name: str, cursor: int = 0, count: int = 1000) -> tuple[int, list[str]]:
        next_cursor, members = await self.client.sscan(name, cursor=cursor, count=count)
        return int(next_cursor), list(members)

    async def aclose(self) -> None:
        await self.client.aclose()
