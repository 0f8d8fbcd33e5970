"""Collaborator contracts consumed by the scheduler.

Concrete adapters live in ``buddy.memory``, ``buddy.agents`` and
``buddy.delivery``; tests substitute small fakes.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from buddy.models.digest import Digest
from buddy.models.subscriber import Subscriber


@dataclass
class DeliveryReport:
    sent: int = 0
    failed: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0


class SubscriberStore(Protocol):
    async def get_all(self) -> list[Subscriber]: ...

    async def get(self, phone: str) -> Subscriber | None: ...

    async def create(self, phone: str, **fields: Any) -> Subscriber: ...

    async def update(self, phone: str, fields: dict[str, Any]) -> None: ...

    async def delete(self, phone: str) -> None: ...

    async def increment_conversation_count(self, phone: str) -> int: ...


class ConversationAgent(Protocol):
    async def clear_conversation(self, phone: str) -> None: ...

    async def initiate_conversation(self, subscriber: Subscriber, human_seed: str, system_prompt: str) -> str: ...


class DigestService(Protocol):
    async def create_digest(self, subscriber: Subscriber) -> Digest | None: ...

    async def remove_old_digests(self, phone: str, keep_count: int) -> int: ...

    async def recent_digests(self, phone: str, limit: int) -> list[Digest]: ...


class Delivery(Protocol):
    async def send(self, phone: str, text: str) -> DeliveryReport: ...


class PromptBuilder(Protocol):
    def daily_prompt(self, subscriber: Subscriber, recent_digests: Sequence[Digest] = ()) -> str: ...


class PlanPolicy(Protocol):
    def should_show_subscription_warning(self, subscriber: Subscriber, now: datetime) -> bool: ...
