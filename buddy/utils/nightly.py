"""Nightly maintenance for one subscriber: digest, cleanup, reset, new conversation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from buddy.models.protocols import ConversationAgent, Delivery, DigestService, PromptBuilder, SubscriberStore
from buddy.models.subscriber import Subscriber
from buddy.utils.prompts import RECENT_DIGEST_COUNT

logger = logging.getLogger(__name__)

DEFAULT_DIGEST_KEEP_COUNT = 10


@dataclass
class StepResult:
    name: str
    ok: bool
    value: Any = None
    error: str = ""


@dataclass
class NightlyOutcome:
    phone: str
    delivered: bool = False
    message: str | None = None
    steps: list[StepResult] = field(default_factory=list)

    def step(self, name: str) -> StepResult | None:
        for item in self.steps:
            if item.name == name:
                return item
        return None


class NightlyPipeline:
    """Runs the nightly steps in order; a failed step is logged and the next one still runs.

    Only delivery of the new opening message decides the outcome. Steps that
    depend on an earlier result (delivery needs a message) are skipped when
    that result is missing.
    """

    def __init__(
        self,
        store: SubscriberStore,
        agent: ConversationAgent,
        digests: DigestService,
        delivery: Delivery,
        prompts: PromptBuilder,
        digest_keep_count: int = DEFAULT_DIGEST_KEEP_COUNT,
        abort_on_clear_failure: bool = False,
    ) -> None:
        self._store = store
        self._agent = agent
        self._digests = digests
        self._delivery = delivery
        self._prompts = prompts
        self._digest_keep_count = max(0, int(digest_keep_count))
        self._abort_on_clear_failure = abort_on_clear_failure

    async def run(self, subscriber: Subscriber) -> NightlyOutcome:
        phone = subscriber.phone
        outcome = NightlyOutcome(phone=phone)

        async def record(name: str, action: Callable[[], Awaitable[Any]]) -> StepResult:
            result = await self._run_step(name, phone, action)
            outcome.steps.append(result)
            return result

        await record("increment_conversation_count", lambda: self._store.increment_conversation_count(phone))

        digest = await record("create_digest", lambda: self._digests.create_digest(subscriber))
        if digest.ok and not digest.value:
            logger.info("nightly_digest_skipped", extra={"event": "nightly_digest_skipped", "phone": phone, "reason": "no_history"})

        cleanup = await record("remove_old_digests", lambda: self._digests.remove_old_digests(phone, self._digest_keep_count))
        if cleanup.ok and cleanup.value:
            logger.debug("nightly_digests_pruned", extra={"event": "nightly_digests_pruned", "phone": phone, "removed": cleanup.value})

        cleared = await record("clear_conversation", lambda: self._agent.clear_conversation(phone))
        if not cleared.ok and self._abort_on_clear_failure:
            logger.warning("nightly_aborted", extra={"event": "nightly_aborted", "phone": phone, "reason": "clear_failed"})
            return outcome

        initiated = await record("initiate_conversation", lambda: self._initiate(subscriber))
        if not initiated.ok:
            return outcome
        outcome.message = initiated.value

        delivered = await record("deliver", lambda: self._delivery.send(phone, initiated.value))
        report = delivered.value
        outcome.delivered = delivered.ok and report is not None and report.failed == 0
        if not outcome.delivered:
            logger.error(
                "nightly_delivery_failed",
                extra={"event": "nightly_delivery_failed", "phone": phone, "failed": getattr(report, "failed", None)},
            )
        return outcome

    async def _initiate(self, subscriber: Subscriber) -> str:
        try:
            recent = await self._digests.recent_digests(subscriber.phone, RECENT_DIGEST_COUNT)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "nightly_recent_digests_unavailable",
                extra={"event": "nightly_recent_digests_unavailable", "phone": subscriber.phone, "error": str(exc)},
            )
            recent = []
        system_prompt = self._prompts.daily_prompt(subscriber, recent)
        message = await self._agent.initiate_conversation(subscriber, "", system_prompt)
        if not str(message or "").strip():
            raise ValueError("agent returned an empty opening message")
        return message

    @staticmethod
    async def _run_step(name: str, phone: str, action: Callable[[], Awaitable[Any]]) -> StepResult:
        try:
            value = await action()
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "nightly_step_failed",
                extra={"event": "nightly_step_failed", "phone": phone, "step": name, "error": str(exc)},
                exc_info=True,
            )
            return StepResult(name=name, ok=False, error=str(exc))
        return StepResult(name=name, ok=True, value=value)
