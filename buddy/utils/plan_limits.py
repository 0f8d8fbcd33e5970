from __future__ import annotations

import math
from datetime import datetime, timezone

from buddy.models.subscriber import Subscriber

WARNING_STARTS_AFTER_DAYS = 3


class PlanPolicy:
    """Trial/plan predicates based on signup age; premium subscribers are never limited."""

    def __init__(self, trial_days: int = 7) -> None:
        self.trial_days = max(0, int(trial_days))

    @staticmethod
    def days_since_signup(subscriber: Subscriber, now: datetime) -> int:
        if subscriber.signed_up_at is None:
            return 0
        elapsed = now.astimezone(timezone.utc) - subscriber.signed_up_at
        return max(0, math.floor(elapsed.total_seconds() / 86400))

    def should_show_subscription_warning(self, subscriber: Subscriber, now: datetime) -> bool:
        if subscriber.is_premium:
            return False
        days = self.days_since_signup(subscriber, now)
        return WARNING_STARTS_AFTER_DAYS <= days < self.trial_days
