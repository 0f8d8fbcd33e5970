import asyncio

from fakes import FakeAgent, FakeDelivery, FakeDigests, FakePrompts, RecordingStore

from buddy.models.digest import Digest
from buddy.models.subscriber import Subscriber
from buddy.utils.nightly import NightlyPipeline

SUBSCRIBER = Subscriber(phone="+15550001", name="Ana", timezone="America/New_York")


def _pipeline(**kwargs):
    store = RecordingStore()
    store.seed(SUBSCRIBER)
    agent = FakeAgent()
    digests = FakeDigests()
    delivery = FakeDelivery()
    prompts = FakePrompts()
    pipeline = NightlyPipeline(store, agent, digests, delivery, prompts, **kwargs)
    return pipeline, store, agent, digests, delivery, prompts


def test_full_run_delivers_new_opening_message() -> None:
    pipeline, _, agent, digests, delivery, _ = _pipeline(digest_keep_count=4)
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert outcome.delivered
    assert outcome.message == agent.message
    assert [step.name for step in outcome.steps] == [
        "increment_conversation_count",
        "create_digest",
        "remove_old_digests",
        "clear_conversation",
        "initiate_conversation",
        "deliver",
    ]
    assert all(step.ok for step in outcome.steps)
    assert digests.pruned == [("+15550001", 4)]
    assert agent.cleared == ["+15550001"]
    assert delivery.sent == [("+15550001", agent.message)]


def test_recent_digests_feed_the_daily_prompt() -> None:
    pipeline, _, agent, digests, _, prompts = _pipeline()
    digests.recent = [Digest(topic=f"t{i}", summary="s") for i in range(5)]
    asyncio.run(pipeline.run(SUBSCRIBER))

    phone, recent = prompts.calls[0]
    assert phone == "+15550001"
    assert [item.topic for item in recent] == ["t2", "t3", "t4"]
    assert agent.prompts == ["prompt for +15550001"]


def test_digest_failure_does_not_stop_later_steps() -> None:
    pipeline, _, _, digests, delivery, _ = _pipeline()
    digests.create_error = RuntimeError("llm timeout")
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert outcome.delivered
    assert not outcome.step("create_digest").ok
    assert "llm timeout" in outcome.step("create_digest").error
    assert outcome.step("remove_old_digests").ok
    assert len(delivery.sent) == 1


def test_counter_failure_is_tolerated() -> None:
    pipeline, store, _, _, delivery, _ = _pipeline()
    store.fail_increment = True
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert outcome.delivered
    assert not outcome.step("increment_conversation_count").ok


def test_clear_failure_continues_by_default() -> None:
    pipeline, _, agent, _, delivery, _ = _pipeline()
    agent.clear_error = ConnectionError("redis down")
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert outcome.delivered
    assert not outcome.step("clear_conversation").ok
    assert len(delivery.sent) == 1


def test_clear_failure_aborts_when_configured() -> None:
    pipeline, _, agent, _, delivery, _ = _pipeline(abort_on_clear_failure=True)
    agent.clear_error = ConnectionError("redis down")
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert not outcome.delivered
    assert outcome.step("initiate_conversation") is None
    assert delivery.sent == []


def test_initiate_failure_skips_delivery() -> None:
    pipeline, _, agent, _, delivery, _ = _pipeline()
    agent.initiate_error = RuntimeError("model unavailable")
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert not outcome.delivered
    assert outcome.step("deliver") is None
    assert delivery.sent == []


def test_empty_opening_message_is_a_failure() -> None:
    pipeline, _, agent, _, delivery, _ = _pipeline()
    agent.message = "   "
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert not outcome.delivered
    assert not outcome.step("initiate_conversation").ok
    assert delivery.sent == []


def test_failed_delivery_report_means_not_delivered() -> None:
    pipeline, _, _, _, delivery, _ = _pipeline()
    delivery.fail_for.add("+15550001")
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert outcome.step("deliver").ok
    assert not outcome.delivered


def test_delivery_exception_means_not_delivered() -> None:
    pipeline, _, _, _, delivery, _ = _pipeline()
    delivery.raise_for.add("+15550001")
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert not outcome.step("deliver").ok
    assert not outcome.delivered


def test_unavailable_digest_history_still_builds_prompt() -> None:
    pipeline, _, _, digests, _, prompts = _pipeline()
    digests.recent_error = ConnectionError("redis down")
    outcome = asyncio.run(pipeline.run(SUBSCRIBER))

    assert outcome.delivered
    assert prompts.calls == [("+15550001", [])]
