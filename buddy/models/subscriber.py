from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from buddy.utils.schedule_helpers import normalize_fixed_times

PREFERENCE_TYPES = {"morning", "midday", "evening", "fixed"}


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime, or ``None``."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Offsets that push the instant outside year 1..9999.
        return None


def _list_of(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def parse_local_date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


@dataclass
class MessagingPreference:
    type: str | None = None
    times: list[str] = field(default_factory=list)
    fuzziness_minutes: int | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> MessagingPreference | None:
        if not isinstance(raw, dict):
            return None
        pref_type = str(raw.get("type") or "").strip().lower() or None
        if pref_type not in PREFERENCE_TYPES:
            pref_type = None
        fuzziness = raw.get("fuzziness_minutes", raw.get("fuzzinessMinutes"))
        try:
            fuzziness = max(0, int(fuzziness)) if fuzziness is not None else None
        except (TypeError, ValueError, OverflowError):
            fuzziness = None
        return cls(type=pref_type, times=normalize_fixed_times(raw.get("times")), fuzziness_minutes=fuzziness)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "times": list(self.times), "fuzziness_minutes": self.fuzziness_minutes}


@dataclass
class Subscriber:
    phone: str
    name: str = ""
    timezone: str | None = None
    messaging_preference: MessagingPreference | None = None
    is_premium: bool = False
    signed_up_at: datetime | None = None
    next_push_message_at: datetime | None = None
    last_message_sent_at: datetime | None = None
    last_nightly_digest_run: date | None = None
    speaking_languages: list[dict[str, Any]] = field(default_factory=list)
    learning_languages: list[dict[str, Any]] = field(default_factory=list)
    objectives: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Subscriber:
        return cls(
            phone=str(raw.get("phone", "")).strip(),
            name=str(raw.get("name") or ""),
            timezone=(str(raw["timezone"]) if raw.get("timezone") else None),
            messaging_preference=MessagingPreference.from_dict(raw.get("messaging_preference")),
            is_premium=bool(raw.get("is_premium", False)),
            signed_up_at=parse_timestamp(raw.get("signed_up_at")),
            next_push_message_at=parse_timestamp(raw.get("next_push_message_at")),
            last_message_sent_at=parse_timestamp(raw.get("last_message_sent_at")),
            last_nightly_digest_run=parse_local_date(raw.get("last_nightly_digest_run")),
            speaking_languages=[item for item in _list_of(raw.get("speaking_languages")) if isinstance(item, dict)],
            learning_languages=[item for item in _list_of(raw.get("learning_languages")) if isinstance(item, dict)],
            objectives=[str(item) for item in _list_of(raw.get("objectives")) if str(item).strip()],
        )

    def to_dict(self) -> dict[str, Any]:
        return {name: encode_field(getattr(self, name)) for name in SUBSCRIBER_FIELDS}


SUBSCRIBER_FIELDS = (
    "phone",
    "name",
    "timezone",
    "messaging_preference",
    "is_premium",
    "signed_up_at",
    "next_push_message_at",
    "last_message_sent_at",
    "last_nightly_digest_run",
    "speaking_languages",
    "learning_languages",
    "objectives",
)


def encode_field(value: Any) -> Any:
    """Convert a subscriber attribute into its JSON-friendly stored form."""
    if isinstance(value, datetime):
        parsed = parse_timestamp(value)
        return parsed.isoformat() if parsed else None
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, MessagingPreference):
        return value.to_dict()
    return value
