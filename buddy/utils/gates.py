"""Pure per-subscriber predicates evaluated on every scheduler tick."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from buddy.models.subscriber import Subscriber
from buddy.utils.timezones import zone_for

NIGHTLY_HOUR = 3
REENGAGEMENT_AFTER = timedelta(days=3)


def local_date(now_utc: datetime, timezone_name: str | None) -> date:
    return now_utc.astimezone(zone_for(timezone_name)).date()


def is_night_hour(subscriber: Subscriber, now: datetime, night_hour: int = NIGHTLY_HOUR) -> bool:
    return now.astimezone(zone_for(subscriber.timezone)).hour == night_hour


def should_run_nightly(subscriber: Subscriber, now_utc: datetime, night_hour: int = NIGHTLY_HOUR) -> bool:
    """True once per local calendar day, during the subscriber's nightly hour.

    ``last_nightly_digest_run`` is the only idempotency record, so this stays
    correct across restarts and repeated polls within the same hour.
    """
    if not is_night_hour(subscriber, now_utc, night_hour):
        return False
    return subscriber.last_nightly_digest_run != local_date(now_utc, subscriber.timezone)


def should_reengage(subscriber: Subscriber, now_utc: datetime, after: timedelta = REENGAGEMENT_AFTER) -> bool:
    if subscriber.last_message_sent_at is None:
        return False
    last_sent = subscriber.last_message_sent_at
    if last_sent.tzinfo is None:
        last_sent = last_sent.replace(tzinfo=timezone.utc)
    return now_utc - last_sent >= after
