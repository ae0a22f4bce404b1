from __future__ import annotations

from redis.asyncio import Redis


class RedisSessionStore:
    """Redis-backed browser session lookup."""

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "assistant:sessions",
        redis_client: Redis | None = None,
    ) -> None:
        self._redis = redis_client if redis_client is not None else Redis.from_url(redis_url, decode_responses=True)
        self._key_prefix = key_prefix.strip(":")

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def create_session(self, session_id: str, user_id: str, ttl_seconds: int) -> None:
        await self._redis.set(self._session_key(session_id), user_id, ex=ttl_seconds)

    async def get_user_id(self, session_id: str) -> str | None:
        value = await self._redis.get(self._session_key(session_id))
        return str(value) if value else None

    async def close(self) -> None:
        await self._redis.aclose()

    def _session_key(self, session_id: str) -> str:
        return f"{self._key_prefix}:session:{session_id}"
