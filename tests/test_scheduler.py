import asyncio
import random
from datetime import date, datetime, timedelta, timezone

from apscheduler.triggers.cron import CronTrigger
from fakes import FakeAgent, FakeDelivery, FakeDigests, FakePlanPolicy, FakePrompts, RecordingStore

from buddy.models.subscriber import MessagingPreference, Subscriber
from buddy.utils.nightly import NightlyOutcome, NightlyPipeline
from buddy.utils.schedule_windows import DEFAULT_REENGAGEMENT_MESSAGE, DEFAULT_SUBSCRIPTION_WARNING
from buddy.utils.scheduler import NIGHTLY_JOB_ID, PUSH_JOB_ID, SubscriberScheduler

UTC = timezone.utc
NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
# 2024-01-15 03:10 in New York.
NY_NIGHT = datetime(2024, 1, 15, 8, 10, tzinfo=UTC)


def _build(*subscribers: Subscriber, warn_for: set[str] | None = None, pipeline=None, **kwargs):
    events: list[tuple] = []
    store = RecordingStore(events)
    store.seed(*subscribers)
    delivery = FakeDelivery(events)
    if pipeline is None:
        pipeline = NightlyPipeline(store, FakeAgent(), FakeDigests(), delivery, FakePrompts())
    scheduler = SubscriberScheduler(
        store,
        pipeline,
        delivery,
        FakePlanPolicy(warn_for),
        rng=random.Random(0),
        **kwargs,
    )
    return scheduler, store, delivery, events


def _due(phone: str = "+15550001", **fields) -> Subscriber:
    fields.setdefault("next_push_message_at", NOW - timedelta(minutes=1))
    fields.setdefault("messaging_preference", MessagingPreference(type="fixed", times=["18:00"]))
    return Subscriber(phone=phone, timezone="UTC", **fields)


def _stored(store: RecordingStore, phone: str) -> Subscriber:
    return asyncio.run(store.get(phone))


class RaisingPipeline:
    def __init__(self, fail_phone: str) -> None:
        self.fail_phone = fail_phone
        self.ran: list[str] = []

    async def run(self, subscriber: Subscriber) -> NightlyOutcome:
        if subscriber.phone == self.fail_phone:
            raise RuntimeError("boom")
        self.ran.append(subscriber.phone)
        return NightlyOutcome(phone=subscriber.phone, delivered=True)


# Nightly sweep


def test_nightly_sweep_runs_and_records_local_date() -> None:
    subscriber = Subscriber(phone="+15550001", timezone="America/New_York")
    scheduler, store, delivery, _ = _build(subscriber)

    stats = asyncio.run(scheduler.process_nightly_digests(NY_NIGHT))

    assert stats["triggered"] == 1
    assert stats["completed"] == 1
    assert len(delivery.sent) == 1
    assert _stored(store, "+15550001").last_nightly_digest_run == date(2024, 1, 15)


def test_nightly_sweep_is_idempotent_within_the_hour() -> None:
    subscriber = Subscriber(phone="+15550001", timezone="America/New_York")
    scheduler, _, delivery, _ = _build(subscriber)

    asyncio.run(scheduler.process_nightly_digests(NY_NIGHT))
    stats = asyncio.run(scheduler.process_nightly_digests(NY_NIGHT + timedelta(minutes=30)))

    assert stats["triggered"] == 0
    assert len(delivery.sent) == 1


def test_nightly_failure_leaves_marker_for_retry() -> None:
    subscriber = Subscriber(phone="+15550001", timezone="America/New_York")
    scheduler, store, delivery, _ = _build(subscriber)
    delivery.fail_for.add("+15550001")

    stats = asyncio.run(scheduler.process_nightly_digests(NY_NIGHT))

    assert stats["failed"] == 1
    assert _stored(store, "+15550001").last_nightly_digest_run is None
    retry = asyncio.run(scheduler.process_nightly_digests(NY_NIGHT + timedelta(minutes=30)))
    assert retry["triggered"] == 1


def test_nightly_skips_subscribers_outside_their_night_hour() -> None:
    scheduler, _, delivery, _ = _build(
        Subscriber(phone="+15550001", timezone="America/New_York"),
        Subscriber(phone="+81900", timezone="Asia/Tokyo"),
    )
    stats = asyncio.run(scheduler.process_nightly_digests(NY_NIGHT))

    assert stats["checked"] == 2
    assert stats["triggered"] == 1
    assert [phone for phone, _ in delivery.sent] == ["+15550001"]


def test_nightly_one_subscriber_failing_does_not_stop_sweep() -> None:
    first = Subscriber(phone="+1", timezone="UTC")
    second = Subscriber(phone="+2", timezone="UTC")
    pipeline = RaisingPipeline(fail_phone="+1")
    scheduler, _, _, _ = _build(first, second, pipeline=pipeline)

    stats = asyncio.run(scheduler.process_nightly_digests(datetime(2024, 1, 15, 3, 5, tzinfo=UTC)))

    assert stats["failed"] == 1
    assert stats["completed"] == 1
    assert pipeline.ran == ["+2"]


def test_manual_nightly_run_never_moves_marker_backwards() -> None:
    subscriber = Subscriber(phone="+1", timezone="UTC", last_nightly_digest_run=date(2024, 1, 15))
    scheduler, store, _, events = _build(subscriber)

    assert asyncio.run(scheduler.run_nightly_now("+1", datetime(2024, 1, 14, 12, 0, tzinfo=UTC)))
    assert _stored(store, "+1").last_nightly_digest_run == date(2024, 1, 15)
    assert not [event for event in events if event[0] == "update"]
    assert not asyncio.run(scheduler.run_nightly_now("+unknown"))


def test_store_outage_aborts_sweep() -> None:
    scheduler, store, _, _ = _build(Subscriber(phone="+1"))
    store.fail_get_all = True

    assert asyncio.run(scheduler.process_nightly_digests(NY_NIGHT))["aborted"] == 1
    assert asyncio.run(scheduler.process_push_messages(NOW))["aborted"] == 1


def test_disabled_scheduler_does_nothing() -> None:
    scheduler, _, delivery, events = _build(_due(last_message_sent_at=NOW - timedelta(days=5)), enabled=False)

    assert asyncio.run(scheduler.process_push_messages(NOW))["checked"] == 0
    assert events == []
    assert delivery.sent == []


# Push sweep


def test_push_not_due_is_left_alone() -> None:
    scheduler, _, _, events = _build(_due(next_push_message_at=NOW + timedelta(minutes=1)))

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["due"] == 0
    assert events == []


def test_push_persists_next_time_without_sending_to_active_subscriber() -> None:
    scheduler, store, delivery, events = _build(_due(last_message_sent_at=NOW - timedelta(hours=3)))

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["due"] == 1
    assert delivery.sent == []
    assert events == [("update", "+15550001", {"next_push_message_at": datetime(2024, 1, 15, 18, 0, tzinfo=UTC)})]
    assert _stored(store, "+15550001").next_push_message_at == datetime(2024, 1, 15, 18, 0, tzinfo=UTC)


def test_missing_next_push_time_counts_as_due() -> None:
    scheduler, _, _, events = _build(_due(next_push_message_at=None))

    assert asyncio.run(scheduler.process_push_messages(NOW))["due"] == 1
    assert events[0][0] == "update"


def test_unparsable_next_push_time_counts_as_due() -> None:
    scheduler, store, _, events = _build(_due())
    store._records["+15550001"]["next_push_message_at"] = "not-a-date"

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["due"] == 1
    assert events[0] == ("update", "+15550001", {"next_push_message_at": datetime(2024, 1, 15, 18, 0, tzinfo=UTC)})
    assert _stored(store, "+15550001").next_push_message_at == datetime(2024, 1, 15, 18, 0, tzinfo=UTC)


def test_out_of_range_stored_values_do_not_abort_push_sweep() -> None:
    scheduler, store, _, events = _build(_due("+1"), _due("+2"))
    store._records["+1"]["next_push_message_at"] = "0001-01-01T00:00:00+01:00"
    store._records["+1"]["objectives"] = 5

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["aborted"] == 0
    assert stats["checked"] == 2
    assert stats["due"] == 2
    assert sorted(event[1] for event in events if event[0] == "update") == ["+1", "+2"]


def test_subscriber_deleted_during_sweep_is_not_recreated() -> None:
    scheduler, store, _, events = _build(_due())
    store.delete_after_snapshot.add("+15550001")

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["due"] == 1
    assert events[0][0] == "update"
    assert asyncio.run(store.get_all()) == []


def test_reengagement_is_sent_after_next_time_is_persisted() -> None:
    scheduler, _, _, events = _build(_due(last_message_sent_at=NOW - timedelta(days=3)))

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["reengaged"] == 1
    assert [event[0] for event in events] == ["update", "send"]
    assert events[1] == ("send", "+15550001", DEFAULT_REENGAGEMENT_MESSAGE)


def test_failed_reengagement_still_keeps_persisted_time() -> None:
    scheduler, store, delivery, _ = _build(_due(last_message_sent_at=NOW - timedelta(days=4)))
    delivery.fail_for.add("+15550001")

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["reengaged"] == 0
    assert _stored(store, "+15550001").next_push_message_at > NOW
    # Second tick in the same minute is not due any more, so nothing is resent.
    assert asyncio.run(scheduler.process_push_messages(NOW))["due"] == 0


def test_plan_warning_replaces_normal_dispatch() -> None:
    scheduler, _, _, events = _build(
        _due(last_message_sent_at=NOW - timedelta(days=5)),
        warn_for={"+15550001"},
    )

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["warned"] == 1
    assert stats["reengaged"] == 0
    assert events == [
        ("update", "+15550001", {"next_push_message_at": NOW + timedelta(hours=24)}),
        ("send", "+15550001", DEFAULT_SUBSCRIPTION_WARNING),
    ]


def test_next_time_inside_guard_uses_fallback_delay() -> None:
    subscriber = _due(messaging_preference=MessagingPreference(type="fixed", times=["12:03"]))
    scheduler, _, _, events = _build(subscriber)

    asyncio.run(scheduler.process_push_messages(NOW))

    assert events == [("update", "+15550001", {"next_push_message_at": NOW + timedelta(hours=23)})]


def test_push_failure_for_one_subscriber_does_not_stop_others() -> None:
    scheduler, store, _, events = _build(_due("+1"), _due("+2"))
    store.fail_update_for.add("+1")

    stats = asyncio.run(scheduler.process_push_messages(NOW))

    assert stats["checked"] == 2
    assert stats["failed"] == 1
    assert [event[1] for event in events] == ["+2"]


def test_failed_persist_means_no_send() -> None:
    scheduler, store, delivery, _ = _build(_due(last_message_sent_at=NOW - timedelta(days=5)))
    store.fail_update_for.add("+15550001")

    asyncio.run(scheduler.process_push_messages(NOW))

    assert delivery.sent == []


def test_is_push_due_boundary() -> None:
    assert SubscriberScheduler.is_push_due(_due(next_push_message_at=NOW), NOW)
    assert not SubscriberScheduler.is_push_due(_due(next_push_message_at=NOW + timedelta(seconds=1)), NOW)


# Drivers


def test_start_registers_hourly_and_minutely_cron_jobs() -> None:
    scheduler, _, _, _ = _build()

    async def run() -> dict:
        await scheduler.start()
        await scheduler.start()
        jobs = {job.id: job for job in scheduler.get_jobs()}
        await scheduler.stop()
        return jobs

    jobs = asyncio.run(run())

    assert set(jobs) == {NIGHTLY_JOB_ID, PUSH_JOB_ID}
    assert isinstance(jobs[NIGHTLY_JOB_ID].trigger, CronTrigger)
    assert "minute='0'" in str(jobs[NIGHTLY_JOB_ID].trigger)
    assert "minute='*'" in str(jobs[PUSH_JOB_ID].trigger)
    assert jobs[PUSH_JOB_ID].max_instances == 1
    assert not scheduler.running
