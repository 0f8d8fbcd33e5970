from __future__ import annotations

import logging
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage

from buddy.memory.conversation_log import RedisConversationLog
from buddy.models.subscriber import Subscriber

logger = logging.getLogger(__name__)

DEFAULT_OPENING_SEED = "Start today's conversation."


class LanguageBuddyAgent:
    """Conversation agent that owns each subscriber's running chat history."""

    def __init__(self, log: RedisConversationLog, llm: Any) -> None:
        self._log = log
        self._llm = llm

    async def clear_conversation(self, phone: str) -> None:
        await self._log.clear(phone)
        logger.debug("conversation_cleared", extra={"event": "conversation_cleared", "phone": phone})

    async def initiate_conversation(self, subscriber: Subscriber, human_seed: str, system_prompt: str) -> str:
        """Generate the agent's first message for a fresh conversation and record it."""
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=human_seed.strip() or DEFAULT_OPENING_SEED),
        ]
        response = await self._llm.ainvoke(messages)
        text = (getattr(response, "content", "") or "").strip() if response else ""
        if not text:
            raise ValueError("LLM returned an empty opening message")
        await self._log.append(subscriber.phone, "assistant", text)
        logger.info(
            "conversation_initiated",
            extra={"event": "conversation_initiated", "phone": subscriber.phone, "chars": len(text)},
        )
        return text
