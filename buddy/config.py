import os
from dataclasses import dataclass

from dotenv import load_dotenv

from buddy.utils.timezones import resolve_timezone

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class AppConfig:
    llm_provider: str = os.getenv("LLM_PROVIDER", "openai")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    redis_host: str = os.getenv("REDIS_HOST", "redis")
    redis_port: int = _env_int("REDIS_PORT", 6379)
    redis_password: str = os.getenv("REDIS_PASSWORD", "")

    whatsapp_access_token: str = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
    whatsapp_phone_number_id: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
    whatsapp_api_version: str = os.getenv("WHATSAPP_API_VERSION", "v18.0")

    daily_messages_enabled: bool = _env_bool("DAILY_MESSAGES_ENABLED", True)
    nightly_hour: int = _env_int("NIGHTLY_HOUR", 3)
    nightly_abort_on_clear_failure: bool = _env_bool("NIGHTLY_ABORT_ON_CLEAR_FAILURE", False)
    reengagement_after_days: int = _env_int("REENGAGEMENT_AFTER_DAYS", 3)
    digest_keep_count: int = _env_int("DIGEST_KEEP_COUNT", 10)
    push_guard_minutes: int = _env_int("PUSH_GUARD_MINUTES", 5)
    push_fallback_hours: int = _env_int("PUSH_FALLBACK_HOURS", 23)
    subscription_trial_days: int = _env_int("SUBSCRIPTION_TRIAL_DAYS", 7)
    scheduler_timezone: str = resolve_timezone(os.getenv("TZ", "UTC"))

    health_port: int = _env_int("HEALTH_PORT", 8000)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    environment: str = os.getenv("ENVIRONMENT", "development")
