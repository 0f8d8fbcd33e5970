from __future__ import annotations

import hashlib
from collections.abc import Sequence
from datetime import datetime, timezone

from buddy.models.digest import Digest
from buddy.models.subscriber import Subscriber
from buddy.utils.gates import local_date

RECENT_DIGEST_COUNT = 3


def _describe_languages(languages: list[dict]) -> str:
    described = []
    for item in languages:
        name = str(item.get("name") or item.get("languageName") or "").strip()
        if not name:
            continue
        level = str(item.get("level") or item.get("overallLevel") or "unknown level").strip()
        described.append(f"{name} ({level})")
    return ", ".join(described) or "Not specified"


def daily_topic(subscriber: Subscriber, now: datetime | None = None) -> str | None:
    """Pick today's topic from the subscriber's objectives; stable for the whole local day."""
    candidates = list(dict.fromkeys(item.strip() for item in subscriber.objectives if item.strip()))
    if not candidates:
        return None
    today = local_date(now or datetime.now(timezone.utc), subscriber.timezone)
    digest = hashlib.sha256(f"{subscriber.phone}{today.isoformat()}".encode("utf-8")).hexdigest()
    return candidates[int(digest, 16) % len(candidates)]


def _describe_digest(digest: Digest) -> str:
    parts = [f"Topic: {digest.topic}", f"Summary: {digest.summary}"]
    if digest.areas_of_struggle:
        parts.append(f"Struggles: {', '.join(digest.areas_of_struggle)}")
    if digest.key_breakthroughs:
        parts.append(f"Breakthroughs: {', '.join(digest.key_breakthroughs)}")
    if digest.user_memos:
        parts.append(f"Remember: {', '.join(digest.user_memos)}")
    return "\n".join(parts)


class DailyPromptBuilder:
    """Render the system prompt that opens each day's conversation."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now

    def daily_prompt(self, subscriber: Subscriber, recent_digests: Sequence[Digest] = ()) -> str:
        topic = daily_topic(subscriber, self._now) or "None"
        history = "\n\n".join(_describe_digest(item) for item in list(recent_digests)[-RECENT_DIGEST_COUNT:])
        return (
            "You are a helpful language learning buddy. Your role is to have natural conversations "
            "that help users practice languages.\n\n"
            "CURRENT USER INFO:\n"
            f"- Name: {subscriber.name or 'Unknown'}\n"
            f"- Speaking languages: {_describe_languages(subscriber.speaking_languages)}\n"
            f"- Learning languages: {_describe_languages(subscriber.learning_languages)}\n"
            f"- Topic/Goal for today: {topic}\n\n"
            "CONVERSATIONS OF THE LAST DAYS:\n"
            f"{history or 'No previous conversations.'}\n\n"
            "Start today's conversation with one short, friendly message in the language the user is learning."
        )
