"""Send-time selection for daily push messages.

Pure functions only: callers pass ``now`` and a random source, nothing here
reads the clock or touches storage.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Any

import yaml

from buddy.models.subscriber import MessagingPreference, Subscriber
from buddy.utils.config_paths import resolve_config_file
from buddy.utils.schedule_helpers import clock_to_time, parse_clock
from buddy.utils.timezones import zone_for

logger = logging.getLogger(__name__)

NAMED_WINDOWS = ("morning", "midday", "evening")
DEFAULT_FUZZINESS_MINUTES = 30
DEFAULT_REENGAGEMENT_MESSAGE = "Hey! It's been a while. Shall we continue our language practice?"
DEFAULT_SUBSCRIPTION_WARNING = (
    "⚠️ You have reached the maximum number of messages allowed for your plan. "
    "Please upgrade to continue chatting right now or come back tomorrow :)"
)


@dataclass(frozen=True)
class ScheduleWindow:
    start: str
    end: str
    fuzziness_minutes: int | None = None


DEFAULT_WINDOWS = {
    "morning": ScheduleWindow("07:00", "10:00"),
    "midday": ScheduleWindow("11:00", "14:00"),
    "evening": ScheduleWindow("18:00", "21:00"),
}


@dataclass
class ScheduleSettings:
    windows: dict[str, ScheduleWindow] = field(default_factory=lambda: dict(DEFAULT_WINDOWS))
    default_fuzziness_minutes: int = DEFAULT_FUZZINESS_MINUTES
    reengagement_message: str = DEFAULT_REENGAGEMENT_MESSAGE
    subscription_warning_message: str = DEFAULT_SUBSCRIPTION_WARNING


def _coerce_fuzziness(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return None


def _parse_window(name: str, raw: Any) -> ScheduleWindow:
    fallback = DEFAULT_WINDOWS[name]
    if not isinstance(raw, dict):
        return fallback
    start = str(raw.get("start", "")).strip()
    end = str(raw.get("end", "")).strip()
    if parse_clock(start) is None or parse_clock(end) is None:
        logger.warning(
            "schedule_window_invalid",
            extra={"event": "schedule_window_invalid", "window": name, "start": start, "end": end},
        )
        return fallback
    return ScheduleWindow(start=start, end=end, fuzziness_minutes=_coerce_fuzziness(raw.get("fuzziness_minutes")))


def load_schedule_settings(path: Path | None = None) -> ScheduleSettings:
    """Load ``scheduler.yaml``; any missing or malformed part falls back to built-in defaults."""
    config_path = path or resolve_config_file("scheduler.yaml")
    try:
        if not config_path.exists():
            return ScheduleSettings()
        with config_path.open("r", encoding="utf-8") as handle:
            config = yaml.safe_load(handle) or {}
    except Exception as exc:  # noqa: BLE001
        logger.warning("schedule_settings_load_failed", extra={"event": "schedule_settings_load_failed", "error": str(exc)})
        return ScheduleSettings()
    if not isinstance(config, dict):
        return ScheduleSettings()

    daily = config.get("daily_messages") if isinstance(config.get("daily_messages"), dict) else {}
    raw_windows = daily.get("windows") if isinstance(daily.get("windows"), dict) else {}
    messages = config.get("messages") if isinstance(config.get("messages"), dict) else {}
    fuzziness = _coerce_fuzziness(daily.get("default_fuzziness_minutes"))
    return ScheduleSettings(
        windows={name: _parse_window(name, raw_windows.get(name)) for name in NAMED_WINDOWS},
        default_fuzziness_minutes=DEFAULT_FUZZINESS_MINUTES if fuzziness is None else fuzziness,
        reengagement_message=str(messages.get("reengagement") or DEFAULT_REENGAGEMENT_MESSAGE),
        subscription_warning_message=str(messages.get("subscription_warning") or DEFAULT_SUBSCRIPTION_WARNING),
    )


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def _at_local(day: date, clock: time, tz: tzinfo) -> datetime:
    # Round-trip through UTC so wall times inside a DST gap land on a real instant.
    return datetime.combine(day, clock).replace(tzinfo=tz).astimezone(timezone.utc).astimezone(tz)


def _next_fixed_time(now: datetime, times: list[str]) -> datetime | None:
    clocks = [clock for clock in (clock_to_time(item) for item in times) if clock is not None]
    if not clocks:
        return None
    tz = now.tzinfo
    today = now.date()
    for clock in clocks:
        candidate = _at_local(today, clock, tz)
        if _utc(candidate) > _utc(now):
            return candidate
    return _at_local(today + timedelta(days=1), clocks[0], tz)


def _random_time_in_window(now: datetime, window: ScheduleWindow, fuzziness: int, rng: random.Random) -> datetime:
    tz = now.tzinfo
    start_clock = clock_to_time(window.start) or time(7, 0)
    end_clock = clock_to_time(window.end) or time(10, 0)
    day = now.date()
    start = _at_local(day, start_clock, tz)
    end = _at_local(day, end_clock, tz)
    if _utc(end) <= _utc(start):
        end = _at_local(day + timedelta(days=1), end_clock, tz)
    if _utc(now) > _utc(end):
        shift = (end.date() - day).days
        start = _at_local(day + timedelta(days=1), start_clock, tz)
        end = _at_local(day + timedelta(days=1 + shift), end_clock, tz)

    window_minutes = max(0, int((_utc(end) - _utc(start)).total_seconds() // 60))
    offset = rng.randint(0, window_minutes)
    jitter = rng.randint(-fuzziness, fuzziness) if fuzziness > 0 else 0
    return (_utc(start) + timedelta(minutes=offset + jitter)).astimezone(tz)


def next_send_time(
    now: datetime,
    preference: MessagingPreference | None,
    windows: dict[str, ScheduleWindow] | None = None,
    default_fuzziness: int = DEFAULT_FUZZINESS_MINUTES,
    rng: random.Random | None = None,
) -> datetime:
    """Pick the next send instant for ``preference``, expressed in ``now``'s zone.

    Fixed times win over named windows; anything unusable falls back to the
    morning window. The result is always strictly after ``now``: a candidate
    that is not gets replaced by ``now + 24h``.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    rng = rng or random.Random()
    windows = windows or DEFAULT_WINDOWS

    result: datetime | None = None
    if preference is not None and preference.type == "fixed" and preference.times:
        result = _next_fixed_time(now, preference.times)

    if result is None:
        name = preference.type if preference is not None and preference.type in NAMED_WINDOWS else "morning"
        window = windows.get(name) or DEFAULT_WINDOWS[name]
        fuzziness = next(
            value
            for value in (
                preference.fuzziness_minutes if preference is not None else None,
                window.fuzziness_minutes,
                max(0, int(default_fuzziness)),
            )
            if value is not None
        )
        result = _random_time_in_window(now, window, fuzziness, rng)

    if _utc(result) <= _utc(now):
        return (_utc(now) + timedelta(hours=24)).astimezone(now.tzinfo)
    return result


def next_push_time(
    subscriber: Subscriber,
    now_utc: datetime,
    settings: ScheduleSettings,
    rng: random.Random | None = None,
) -> datetime:
    """Next send time for a subscriber, computed in their own zone and returned in UTC."""
    local_now = now_utc.astimezone(zone_for(subscriber.timezone))
    local_next = next_send_time(
        local_now,
        subscriber.messaging_preference,
        settings.windows,
        settings.default_fuzziness_minutes,
        rng,
    )
    return _utc(local_next)
