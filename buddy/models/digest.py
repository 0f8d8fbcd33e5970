from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


def _coerce_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


@dataclass
class Digest:
    """Summary of one conversation period for a subscriber."""

    topic: str
    summary: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    key_breakthroughs: list[str] = field(default_factory=list)
    areas_of_struggle: list[str] = field(default_factory=list)
    new_words: list[str] = field(default_factory=list)
    grammar_mistakes: list[str] = field(default_factory=list)
    user_memos: list[str] = field(default_factory=list)
    messages_exchanged: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Digest:
        vocabulary = raw.get("vocabulary") if isinstance(raw.get("vocabulary"), dict) else {}
        grammar = raw.get("grammar") if isinstance(raw.get("grammar"), dict) else {}
        return cls(
            topic=str(raw.get("topic") or "").strip(),
            summary=str(raw.get("summary") or "").strip(),
            timestamp=str(raw.get("timestamp") or datetime.now(timezone.utc).isoformat()),
            key_breakthroughs=_str_list(raw.get("key_breakthroughs", raw.get("keyBreakthroughs"))),
            areas_of_struggle=_str_list(raw.get("areas_of_struggle", raw.get("areasOfStruggle"))),
            new_words=_str_list(raw.get("new_words", vocabulary.get("newWords"))),
            grammar_mistakes=_str_list(raw.get("grammar_mistakes", grammar.get("mistakesMade"))),
            user_memos=_str_list(raw.get("user_memos", raw.get("userMemos"))),
            messages_exchanged=_coerce_int(raw.get("messages_exchanged")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
