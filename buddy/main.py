import asyncio
import logging
import threading
from datetime import timedelta
from http.server import BaseHTTPRequestHandler, HTTPServer

import redis.asyncio as aioredis
from dotenv import load_dotenv

from buddy.agents import ConversationDigestService, LanguageBuddyAgent
from buddy.config import AppConfig
from buddy.delivery import WhatsAppDelivery
from buddy.memory import InMemorySubscriberStore, RedisConversationLog, RedisSubscriberStore
from buddy.utils.decision_log import DecisionLogger
from buddy.utils.llm_factory import build_llm
from buddy.utils.nightly import NightlyPipeline
from buddy.utils.plan_limits import PlanPolicy
from buddy.utils.prompts import DailyPromptBuilder
from buddy.utils.schedule_windows import load_schedule_settings
from buddy.utils.scheduler import SubscriberScheduler

logger = logging.getLogger("buddy-main")


class HealthHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(b'{"status": "ok"}')

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        return


def start_health_server(port: int) -> None:
    server = HTTPServer(("0.0.0.0", port), HealthHandler)
    server.serve_forever()


async def _connect_redis(config: AppConfig) -> aioredis.Redis | None:
    client = aioredis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        password=config.redis_password or None,
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Redis unreachable at %s:%s; running with in-process storage: %s", config.redis_host, config.redis_port, exc)
        await client.aclose()
        return None
    return client


def build_scheduler(config: AppConfig, redis_client: aioredis.Redis | None) -> SubscriberScheduler:
    if redis_client is not None:
        store = RedisSubscriberStore(redis_client)
    else:
        store = InMemorySubscriberStore()
    conversation_log = RedisConversationLog(redis_client)
    delivery = WhatsAppDelivery(
        access_token=config.whatsapp_access_token,
        phone_number_id=config.whatsapp_phone_number_id,
        api_version=config.whatsapp_api_version,
    )
    pipeline = NightlyPipeline(
        store=store,
        agent=LanguageBuddyAgent(conversation_log, build_llm(config.llm_provider)),
        digests=ConversationDigestService(conversation_log, build_llm(config.llm_provider, temperature=0.2), redis_client),
        delivery=delivery,
        prompts=DailyPromptBuilder(),
        digest_keep_count=config.digest_keep_count,
        abort_on_clear_failure=config.nightly_abort_on_clear_failure,
    )
    return SubscriberScheduler(
        store=store,
        pipeline=pipeline,
        delivery=delivery,
        plan_policy=PlanPolicy(trial_days=config.subscription_trial_days),
        settings=load_schedule_settings(),
        decision_logger=DecisionLogger(redis_client),
        enabled=config.daily_messages_enabled,
        night_hour=config.nightly_hour,
        reengagement_after=timedelta(days=config.reengagement_after_days),
        push_guard=timedelta(minutes=config.push_guard_minutes),
        push_fallback=timedelta(hours=config.push_fallback_hours),
        timezone_name=config.scheduler_timezone,
    )


async def async_main(config: AppConfig) -> None:
    logger.info("Starting language buddy scheduler (%s)...", config.environment)
    redis_client = await _connect_redis(config)
    scheduler = build_scheduler(config, redis_client)

    await scheduler.start()
    if not config.daily_messages_enabled:
        logger.info("Daily messages disabled via DAILY_MESSAGES_ENABLED=false; sweeps will be no-ops")
    logger.info("Scheduled jobs: %s", [job.id for job in scheduler.get_jobs()])

    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Shutting down...")
    finally:
        await scheduler.stop()
        if redis_client is not None:
            await redis_client.aclose()


def main() -> None:
    load_dotenv()
    config = AppConfig()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if config.health_port:
        health_thread = threading.Thread(target=start_health_server, args=(config.health_port,), daemon=True)
        health_thread.start()
    try:
        asyncio.run(async_main(config))
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
