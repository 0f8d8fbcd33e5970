import json
import logging
from typing import Any

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisConversationLog:
    """Per-subscriber message history with a process-local fallback cache."""

    def __init__(
        self,
        client: aioredis.Redis | None,
        ttl_seconds: int = 7 * 86400,
        max_entries: int = 200,
        key_prefix: str = "conversation:",
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._prefix = key_prefix
        self._fallback_cache: dict[str, list[dict[str, Any]]] = {}

    def _key(self, phone: str) -> str:
        return f"{self._prefix}{phone}"

    async def get(self, phone: str) -> list[dict[str, Any]]:
        key = self._key(phone)
        if self._client is None:
            return list(self._fallback_cache.get(key, []))
        try:
            raw = await self._client.get(key)
        except Exception as exc:  # noqa: BLE001
            logger.debug("conversation_log_read_failed", extra={"event": "conversation_log_read_failed", "error": str(exc)})
            return list(self._fallback_cache.get(key, []))
        if not raw:
            return list(self._fallback_cache.get(key, []))
        value = json.loads(raw)
        if not isinstance(value, list):
            return []
        self._fallback_cache[key] = value
        return list(value)

    async def append(self, phone: str, role: str, content: str) -> list[dict[str, Any]]:
        data = await self.get(phone)
        data.append({"role": role, "content": content})
        data = data[-self._max_entries :]
        key = self._key(phone)
        self._fallback_cache[key] = list(data)
        if self._client is not None:
            try:
                await self._client.setex(key, self._ttl, json.dumps(data))
            except Exception as exc:  # noqa: BLE001
                logger.debug("conversation_log_write_failed", extra={"event": "conversation_log_write_failed", "error": str(exc)})
        return data

    async def clear(self, phone: str) -> None:
        """Drop the stored history. Unlike reads, a Redis failure here is raised to the caller."""
        key = self._key(phone)
        self._fallback_cache.pop(key, None)
        if self._client is not None:
            await self._client.delete(key)
