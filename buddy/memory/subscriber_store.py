from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

import redis
import redis.asyncio as aioredis

from buddy.models.subscriber import SUBSCRIBER_FIELDS, Subscriber, encode_field
from buddy.utils.gates import local_date

logger = logging.getLogger(__name__)

COUNTER_TTL_SECONDS = 86400
NEW_SUBSCRIBER_FIRST_PUSH = timedelta(hours=24)


def _initial_record(phone: str, fields: dict[str, Any]) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    payload = {
        "signed_up_at": now,
        "next_push_message_at": now + NEW_SUBSCRIBER_FIRST_PUSH,
        **fields,
        "phone": phone,
    }
    return Subscriber.from_dict({name: encode_field(value) for name, value in payload.items()}).to_dict()


def _encode_updates(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(fields) - set(SUBSCRIBER_FIELDS))
    if unknown:
        raise ValueError(f"Unknown subscriber fields: {', '.join(unknown)}")
    return {name: encode_field(value) for name, value in fields.items() if name != "phone"}


class RedisSubscriberStore:
    """Subscribers as Redis hashes (``subscriber:<phone>``), one JSON-encoded value per field.

    ``update`` writes only the named hash fields, so concurrent writers touching
    different fields never overwrite each other.
    """

    def __init__(self, client: aioredis.Redis, key_prefix: str = "subscriber:") -> None:
        self._client = client
        self._prefix = key_prefix

    def _key(self, phone: str) -> str:
        return f"{self._prefix}{phone}"

    @staticmethod
    def _decode(phone: str, raw: dict[str, str]) -> Subscriber:
        decoded: dict[str, Any] = {}
        for name, value in raw.items():
            try:
                decoded[name] = json.loads(value)
            except (TypeError, json.JSONDecodeError):
                decoded[name] = value
        decoded["phone"] = phone
        return Subscriber.from_dict(decoded)

    async def get(self, phone: str) -> Subscriber | None:
        raw = await self._client.hgetall(self._key(phone))
        if not raw:
            return None
        return self._decode(phone, raw)

    async def get_all(self) -> list[Subscriber]:
        subscribers: list[Subscriber] = []
        async for key in self._client.scan_iter(match=f"{self._prefix}*"):
            phone = key[len(self._prefix) :]
            try:
                raw = await self._client.hgetall(key)
            except redis.ResponseError as exc:
                logger.warning("subscriber_record_unreadable", extra={"event": "subscriber_record_unreadable", "key": key, "error": str(exc)})
                continue
            if not raw:
                continue
            try:
                subscribers.append(self._decode(phone, raw))
            except (TypeError, ValueError, OverflowError) as exc:
                logger.warning("subscriber_record_unreadable", extra={"event": "subscriber_record_unreadable", "key": key, "error": str(exc)})
        logger.debug("subscribers_loaded", extra={"event": "subscribers_loaded", "count": len(subscribers)})
        return subscribers

    async def create(self, phone: str, **fields: Any) -> Subscriber:
        record = _initial_record(phone, fields)
        await self._client.hset(self._key(phone), mapping={name: json.dumps(value) for name, value in record.items()})
        return Subscriber.from_dict(record)

    async def update(self, phone: str, fields: dict[str, Any]) -> None:
        updates = _encode_updates(fields)
        if not updates:
            return
        key = self._key(phone)
        # A subscriber deleted mid-sweep stays deleted.
        if not await self._client.exists(key):
            logger.debug("subscriber_update_skipped", extra={"event": "subscriber_update_skipped", "phone": phone})
            return
        await self._client.hset(key, mapping={name: json.dumps(value) for name, value in updates.items()})

    async def delete(self, phone: str) -> None:
        await self._client.delete(self._key(phone))

    async def increment_conversation_count(self, phone: str) -> int:
        raw_timezone = await self._client.hget(self._key(phone), "timezone")
        try:
            timezone_name = json.loads(raw_timezone) if raw_timezone else None
        except json.JSONDecodeError:
            timezone_name = raw_timezone
        today = local_date(datetime.now(timezone.utc), timezone_name)
        key = f"conversation_count:{phone}:{today.isoformat()}"
        count = int(await self._client.incr(key))
        if count == 1 or await self._client.ttl(key) == -1:
            await self._client.expire(key, COUNTER_TTL_SECONDS)
        return count


class InMemorySubscriberStore:
    """In-process subscriber store used when Redis is unavailable and in tests."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._counters: dict[str, int] = defaultdict(int)

    async def get(self, phone: str) -> Subscriber | None:
        record = self._records.get(phone)
        return Subscriber.from_dict(record) if record else None

    async def get_all(self) -> list[Subscriber]:
        subscribers: list[Subscriber] = []
        for phone, record in list(self._records.items()):
            try:
                subscribers.append(Subscriber.from_dict(record))
            except (TypeError, ValueError, OverflowError) as exc:
                logger.warning("subscriber_record_unreadable", extra={"event": "subscriber_record_unreadable", "phone": phone, "error": str(exc)})
        return subscribers

    async def create(self, phone: str, **fields: Any) -> Subscriber:
        record = _initial_record(phone, fields)
        self._records[phone] = record
        return Subscriber.from_dict(record)

    async def update(self, phone: str, fields: dict[str, Any]) -> None:
        updates = _encode_updates(fields)
        record = self._records.get(phone)
        if record is None:
            logger.debug("subscriber_update_skipped", extra={"event": "subscriber_update_skipped", "phone": phone})
            return
        record.update(updates)

    async def delete(self, phone: str) -> None:
        self._records.pop(phone, None)

    async def increment_conversation_count(self, phone: str) -> int:
        record = self._records.get(phone) or {}
        key = f"{phone}:{local_date(datetime.now(timezone.utc), record.get('timezone')).isoformat()}"
        self._counters[key] += 1
        return self._counters[key]
