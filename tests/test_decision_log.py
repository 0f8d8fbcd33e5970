import asyncio
import json

from fakes import FakeAsyncRedis

from buddy.utils.decision_log import DECISION_LOG_KEY, SCHEDULER_JOBS_KEY, DecisionLogger


def test_decisions_are_pushed_newest_first_and_capped() -> None:
    client = FakeAsyncRedis()
    logger = DecisionLogger(client)

    async def run() -> None:
        for index in range(505):
            await logger.log("nightly_completed", f"run {index}", phone="+1")

    asyncio.run(run())

    entries = client.lists[DECISION_LOG_KEY]
    assert len(entries) == 500
    newest = json.loads(entries[0])
    assert newest["summary"] == "run 504"
    assert newest["phone"] == "+1"


def test_job_records_and_missing_client() -> None:
    client = FakeAsyncRedis()
    asyncio.run(DecisionLogger(client).record_job("system:push_messages", True, 0.25, result="checked=3"))
    record = json.loads(client.lists[SCHEDULER_JOBS_KEY][0])
    assert record["success"] is True
    assert record["result"] == "checked=3"

    asyncio.run(DecisionLogger(None).log("noop", "nothing stored"))
