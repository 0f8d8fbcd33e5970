"""Subscriber timezone resolution.

Subscribers type their timezone during onboarding, so the stored value can be
an IANA key, a city name, a bare UTC offset or garbage. Everything that needs
a zone goes through :func:`resolve_timezone`, which never raises.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"

_COMMON_TIMEZONE_MAPPINGS = {
    "lima": "America/Lima",
    "london": "Europe/London",
    "paris": "Europe/Paris",
    "berlin": "Europe/Berlin",
    "tokyo": "Asia/Tokyo",
    "new york": "America/New_York",
    "los angeles": "America/Los_Angeles",
    "chicago": "America/Chicago",
    "madrid": "Europe/Madrid",
    "rome": "Europe/Rome",
}

_OFFSET_PATTERN = re.compile(r"^(?:utc|gmt)?\s*([+-]?)(\d{1,2})$", re.IGNORECASE)


def _is_zone_key(candidate: str) -> bool:
    try:
        ZoneInfo(candidate)
        return True
    except Exception:  # noqa: BLE001
        return False


def _offset_zone(text: str) -> str | None:
    match = _OFFSET_PATTERN.match(text)
    if not match:
        return None
    sign, hours_text = match.groups()
    hours = int(hours_text)
    if hours == 0:
        return DEFAULT_TIMEZONE
    if hours > 14:
        return None
    # Etc/GMT zones use POSIX sign: UTC-5 is Etc/GMT+5.
    posix_sign = "+" if sign == "-" else "-"
    candidate = f"Etc/GMT{posix_sign}{hours}"
    return candidate if _is_zone_key(candidate) else None


def validate_timezone(raw: Any) -> str | None:
    """Return a usable zone key for ``raw`` or ``None`` when it cannot be resolved."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if _is_zone_key(text):
        return text
    mapped = _COMMON_TIMEZONE_MAPPINGS.get(text.lower())
    if mapped:
        return mapped
    offset = _offset_zone(text)
    if offset:
        return offset
    logger.debug("timezone_invalid", extra={"event": "timezone_invalid", "timezone": text})
    return None


def resolve_timezone(raw: Any) -> str:
    return validate_timezone(raw) or DEFAULT_TIMEZONE


def zone_for(raw: Any) -> ZoneInfo:
    return ZoneInfo(resolve_timezone(raw))
