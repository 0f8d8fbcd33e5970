"""Conversation digests: LLM summaries of a day's practice, kept per subscriber."""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from langchain_core.messages import HumanMessage, SystemMessage

from buddy.memory.conversation_log import RedisConversationLog
from buddy.models.digest import Digest
from buddy.models.subscriber import Subscriber
from buddy.utils.schedule_helpers import extract_json_object

logger = logging.getLogger(__name__)

MIN_MESSAGES_FOR_DIGEST = 2


def _transcript(history: list[dict[str, Any]]) -> str:
    lines = []
    for entry in history:
        speaker = "Buddy" if entry.get("role") == "assistant" else "User"
        lines.append(f"{speaker}: {str(entry.get('content', '')).strip()}")
    return "\n".join(lines)


class ConversationDigestService:
    """Create, prune and read digests stored oldest-first under ``digests:<phone>``."""

    def __init__(
        self,
        log: RedisConversationLog,
        llm: Any,
        client: aioredis.Redis | None = None,
        key_prefix: str = "digests:",
    ) -> None:
        self._log = log
        self._llm = llm
        self._client = client
        self._prefix = key_prefix
        self._fallback: dict[str, list[dict[str, Any]]] = {}

    def _key(self, phone: str) -> str:
        return f"{self._prefix}{phone}"

    async def create_digest(self, subscriber: Subscriber) -> Digest | None:
        history = await self._log.get(subscriber.phone)
        if len(history) < MIN_MESSAGES_FOR_DIGEST:
            return None

        prompt = (
            "Summarize this language practice conversation.\n"
            "Return strict JSON only with schema:\n"
            "{\n"
            '  "topic": "main topic",\n'
            '  "summary": "two or three sentences",\n'
            '  "key_breakthroughs": ["..."],\n'
            '  "areas_of_struggle": ["..."],\n'
            '  "new_words": ["..."],\n'
            '  "grammar_mistakes": ["..."],\n'
            '  "user_memos": ["personal facts worth remembering"]\n'
            "}\n\n"
            f"Conversation:\n{_transcript(history)}"
        )
        response = await self._llm.ainvoke(
            [
                SystemMessage(content="You analyse language learning conversations. Always return a valid JSON object, no markdown."),
                HumanMessage(content=prompt),
            ]
        )
        payload = extract_json_object(getattr(response, "content", "") or "")
        if not payload:
            raise ValueError("digest response was not a JSON object")

        digest = Digest.from_dict(payload)
        digest.topic = digest.topic or "General conversation"
        digest.messages_exchanged = len(history)
        await self._save(subscriber.phone, digest)
        logger.info(
            "digest_created",
            extra={"event": "digest_created", "phone": subscriber.phone, "messages": digest.messages_exchanged},
        )
        return digest

    async def _save(self, phone: str, digest: Digest) -> None:
        record = digest.to_dict()
        if self._client is None:
            self._fallback.setdefault(phone, []).append(record)
            return
        await self._client.rpush(self._key(phone), json.dumps(record))

    async def remove_old_digests(self, phone: str, keep_count: int) -> int:
        """Keep only the newest ``keep_count`` digests; returns how many were removed."""
        keep_count = max(0, int(keep_count))
        if self._client is None:
            stored = self._fallback.get(phone, [])
            removed = max(0, len(stored) - keep_count)
            self._fallback[phone] = stored[removed:]
            return removed

        key = self._key(phone)
        total = int(await self._client.llen(key))
        removed = max(0, total - keep_count)
        if not removed:
            return 0
        if keep_count == 0:
            await self._client.delete(key)
        else:
            await self._client.ltrim(key, -keep_count, -1)
        return removed

    async def recent_digests(self, phone: str, limit: int) -> list[Digest]:
        if limit <= 0:
            return []
        if self._client is None:
            records = self._fallback.get(phone, [])[-limit:]
        else:
            records = []
            for raw in await self._client.lrange(self._key(phone), -limit, -1):
                try:
                    records.append(json.loads(raw))
                except json.JSONDecodeError:
                    logger.warning("digest_record_unreadable", extra={"event": "digest_record_unreadable", "phone": phone})
        return [Digest.from_dict(item) for item in records if isinstance(item, dict)]
