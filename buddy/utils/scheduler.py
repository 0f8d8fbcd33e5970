"""Polling scheduler for subscriber lifecycle jobs.

Scheduler rules:
- Two APScheduler cron jobs on the running asyncio loop: an hourly nightly sweep
  and a per-minute push sweep.
- No in-memory schedule. Every tick re-derives what is due from the persisted
  subscriber fields, so a restart loses nothing.
- Each sweep works on a snapshot taken at tick start and processes
  subscribers one at a time; one subscriber failing never stops the sweep.
- The next push time is persisted before anything is sent.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from buddy.models.protocols import Delivery, PlanPolicy, SubscriberStore
from buddy.models.subscriber import Subscriber
from buddy.utils.decision_log import DecisionLogger
from buddy.utils.gates import NIGHTLY_HOUR, REENGAGEMENT_AFTER, local_date, should_reengage, should_run_nightly
from buddy.utils.nightly import NightlyPipeline
from buddy.utils.schedule_windows import ScheduleSettings, next_push_time

logger = logging.getLogger(__name__)

NIGHTLY_CRON = "0 * * * *"
PUSH_CRON = "* * * * *"
NIGHTLY_JOB_ID = "system:nightly_digests"
PUSH_JOB_ID = "system:push_messages"


class SubscriberScheduler:
    """Drives nightly maintenance and push dispatch across all subscribers."""

    def __init__(
        self,
        store: SubscriberStore,
        pipeline: NightlyPipeline,
        delivery: Delivery,
        plan_policy: PlanPolicy,
        settings: ScheduleSettings | None = None,
        decision_logger: DecisionLogger | None = None,
        *,
        enabled: bool = True,
        night_hour: int = NIGHTLY_HOUR,
        reengagement_after: timedelta = REENGAGEMENT_AFTER,
        push_guard: timedelta = timedelta(minutes=5),
        push_fallback: timedelta = timedelta(hours=23),
        timezone_name: str = "UTC",
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._delivery = delivery
        self._plan_policy = plan_policy
        self._settings = settings or ScheduleSettings()
        self._decisions = decision_logger or DecisionLogger()
        self._enabled = enabled
        self._night_hour = night_hour
        self._reengagement_after = reengagement_after
        self._push_guard = push_guard
        self._push_fallback = push_fallback
        self._timezone_name = timezone_name
        self._rng = rng or random.Random()
        self._scheduler: AsyncIOScheduler | None = None
        self.running = False

    async def start(self) -> None:
        if self.running:
            logger.info("scheduler_start_skipped", extra={"event": "scheduler_start_skipped", "reason": "already_running"})
            return
        self._scheduler = AsyncIOScheduler(timezone=self._timezone_name)
        self._register_jobs()
        self._scheduler.start()
        self.running = True
        logger.info(
            "scheduler_started",
            extra={"event": "scheduler_started", "timezone": self._timezone_name, "enabled": self._enabled},
        )

    async def stop(self) -> None:
        if not self.running:
            return
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
        self.running = False
        logger.info("scheduler_stopped", extra={"event": "scheduler_stopped"})

    def get_jobs(self) -> list[Any]:
        if self._scheduler is None:
            return []
        return self._scheduler.get_jobs()

    def _register_jobs(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.add_job(
            func=self._run_nightly_job,
            trigger=CronTrigger.from_crontab(NIGHTLY_CRON, timezone=self._timezone_name),
            id=NIGHTLY_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        self._scheduler.add_job(
            func=self._run_push_job,
            trigger=CronTrigger.from_crontab(PUSH_CRON, timezone=self._timezone_name),
            id=PUSH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

    async def _run_nightly_job(self) -> None:
        logger.info("nightly_sweep_started", extra={"event": "nightly_sweep_started"})
        await self._timed(NIGHTLY_JOB_ID, self.process_nightly_digests)

    async def _run_push_job(self) -> None:
        logger.debug("push_sweep_started", extra={"event": "push_sweep_started"})
        await self._timed(PUSH_JOB_ID, self.process_push_messages)

    async def _timed(self, name: str, sweep: Any) -> None:
        started = time.perf_counter()
        stats = await sweep()
        await self._decisions.record_job(
            name=name,
            success=not stats.get("aborted", 0),
            execution_time=time.perf_counter() - started,
            result=", ".join(f"{key}={value}" for key, value in stats.items()),
        )

    @staticmethod
    def _now_utc(now: datetime | None) -> datetime:
        if now is None:
            return datetime.now(timezone.utc)
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    async def _snapshot(self, sweep: str) -> list[Subscriber] | None:
        try:
            return list(await self._store.get_all())
        except Exception as exc:  # noqa: BLE001
            logger.error("sweep_aborted", extra={"event": "sweep_aborted", "sweep": sweep, "error": str(exc)})
            return None

    async def process_nightly_digests(self, now: datetime | None = None) -> dict[str, int]:
        stats = {"checked": 0, "triggered": 0, "completed": 0, "failed": 0, "aborted": 0}
        if not self._enabled:
            return stats
        now_utc = self._now_utc(now)
        subscribers = await self._snapshot("nightly")
        if subscribers is None:
            stats["aborted"] = 1
            return stats

        for subscriber in subscribers:
            stats["checked"] += 1
            try:
                if not should_run_nightly(subscriber, now_utc, self._night_hour):
                    continue
                stats["triggered"] += 1
                if await self._run_nightly_for(subscriber, now_utc):
                    stats["completed"] += 1
                else:
                    stats["failed"] += 1
            except Exception as exc:  # noqa: BLE001
                stats["failed"] += 1
                logger.error(
                    "nightly_subscriber_failed",
                    extra={"event": "nightly_subscriber_failed", "phone": subscriber.phone, "error": str(exc)},
                    exc_info=True,
                )
        return stats

    async def _run_nightly_for(self, subscriber: Subscriber, now_utc: datetime) -> bool:
        phone = subscriber.phone
        today_local = local_date(now_utc, subscriber.timezone)
        last_run = subscriber.last_nightly_digest_run
        logger.info(
            "nightly_triggered",
            extra={
                "event": "nightly_triggered",
                "phone": phone,
                "local_date": today_local.isoformat(),
                "last_run": last_run.isoformat() if last_run else None,
            },
        )
        outcome = await self._pipeline.run(subscriber)
        failed_steps = [step.name for step in outcome.steps if not step.ok]
        if not outcome.delivered:
            logger.error(
                "nightly_incomplete",
                extra={"event": "nightly_incomplete", "phone": phone, "failed_steps": failed_steps},
            )
            await self._decisions.log(
                event_type="nightly_incomplete",
                summary="Nightly maintenance not delivered; will retry next hourly tick",
                phone=phone,
                details={"failed_steps": failed_steps, "local_date": today_local.isoformat()},
            )
            return False

        if last_run is None or today_local > last_run:
            await self._store.update(phone, {"last_nightly_digest_run": today_local})
        logger.info(
            "nightly_completed",
            extra={"event": "nightly_completed", "phone": phone, "failed_steps": failed_steps},
        )
        await self._decisions.log(
            event_type="nightly_completed",
            summary="Nightly maintenance delivered",
            phone=phone,
            details={"failed_steps": failed_steps, "local_date": today_local.isoformat()},
        )
        return True

    async def run_nightly_now(self, phone: str, now: datetime | None = None) -> bool:
        """Run nightly maintenance for one subscriber immediately, ignoring the night-hour gate."""
        subscriber = await self._store.get(phone)
        if subscriber is None:
            return False
        return await self._run_nightly_for(subscriber, self._now_utc(now))

    async def run_push_now(self, now: datetime | None = None) -> dict[str, int]:
        return await self.process_push_messages(now)

    @staticmethod
    def is_push_due(subscriber: Subscriber, now_utc: datetime) -> bool:
        if subscriber.next_push_message_at is None:
            return True
        return now_utc >= subscriber.next_push_message_at

    async def process_push_messages(self, now: datetime | None = None) -> dict[str, int]:
        stats = {"checked": 0, "due": 0, "warned": 0, "reengaged": 0, "failed": 0, "aborted": 0}
        if not self._enabled:
            return stats
        now_utc = self._now_utc(now)
        subscribers = await self._snapshot("push")
        if subscribers is None:
            stats["aborted"] = 1
            return stats

        for subscriber in subscribers:
            stats["checked"] += 1
            try:
                await self._dispatch(subscriber, now_utc, stats)
            except Exception as exc:  # noqa: BLE001
                stats["failed"] += 1
                logger.error(
                    "push_subscriber_failed",
                    extra={"event": "push_subscriber_failed", "phone": subscriber.phone, "error": str(exc)},
                    exc_info=True,
                )
        return stats

    async def _dispatch(self, subscriber: Subscriber, now_utc: datetime, stats: dict[str, int]) -> None:
        if not self.is_push_due(subscriber, now_utc):
            return
        stats["due"] += 1
        phone = subscriber.phone

        if self._plan_policy.should_show_subscription_warning(subscriber, now_utc):
            await self._store.update(phone, {"next_push_message_at": now_utc + timedelta(hours=24)})
            await self._delivery.send(phone, self._settings.subscription_warning_message)
            stats["warned"] += 1
            logger.info("push_plan_warning_sent", extra={"event": "push_plan_warning_sent", "phone": phone})
            return

        next_at = next_push_time(subscriber, now_utc, self._settings, self._rng)
        if next_at <= now_utc + self._push_guard:
            logger.warning(
                "push_next_time_too_close",
                extra={
                    "event": "push_next_time_too_close",
                    "phone": phone,
                    "calculated_next": next_at.isoformat(),
                    "now": now_utc.isoformat(),
                },
            )
            next_at = now_utc + self._push_fallback
        await self._store.update(phone, {"next_push_message_at": next_at})

        if not should_reengage(subscriber, now_utc, self._reengagement_after):
            return
        report = await self._delivery.send(phone, self._settings.reengagement_message)
        if report.failed:
            logger.error("push_reengagement_failed", extra={"event": "push_reengagement_failed", "phone": phone})
            return
        stats["reengaged"] += 1
        logger.info("push_reengagement_sent", extra={"event": "push_reengagement_sent", "phone": phone})
