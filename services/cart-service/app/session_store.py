from abc import ABC, abstractmethod
from typing import Optional
import redis.asyncio as redis


class SessionStore(ABC):
    """Key-value store with per-key expiry. Values are whole-object overwrites."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class RedisSessionStore(SessionStore):
    def __init__(self, client: redis.Redis):
        self._client = client

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.setex(key, ttl_seconds, value)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def ping(self) -> bool:
        return await self._client.ping()
