"""Shared helpers for schedule parsing and normalization."""

from __future__ import annotations

import json
import re
from datetime import time
from typing import Any

_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def extract_json_object(raw: str) -> dict[str, Any] | None:
    """Extract and parse a JSON object from raw model output."""
    text = str(raw or "").strip()
    if not text:
        return None

    cleaned = text
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned, flags=re.IGNORECASE).strip()
        cleaned = re.sub(r"\s*```$", "", cleaned).strip()

    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end == -1 or end <= start:
            return None
        try:
            parsed = json.loads(cleaned[start : end + 1])
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            return None


def parse_clock(value: Any) -> tuple[int, int] | None:
    """Parse an ``HH:mm`` string such as '08:00' or '7:30'."""
    match = _CLOCK_PATTERN.match(str(value or "").strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if 0 <= hour <= 23 and 0 <= minute <= 59:
        return hour, minute
    return None


def clock_to_time(value: Any) -> time | None:
    parsed = parse_clock(value)
    if parsed is None:
        return None
    return time(parsed[0], parsed[1])


def normalize_fixed_times(raw: Any) -> list[str]:
    """Keep well-formed HH:mm entries, zero-padded, in their original order."""
    if not isinstance(raw, (list, tuple)):
        return []
    normalized: list[str] = []
    for item in raw:
        parsed = parse_clock(item)
        if parsed is None:
            continue
        text = f"{parsed[0]:02d}:{parsed[1]:02d}"
        if text not in normalized:
            normalized.append(text)
    return normalized
