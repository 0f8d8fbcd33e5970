from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DECISION_LOG_KEY = "buddy:decision:logs"
SCHEDULER_JOBS_KEY = "buddy:scheduler:jobs"


class DecisionLogger:
    """Persist scheduler decisions/sweep summaries to capped Redis lists for transparency."""

    def __init__(self, redis_client: Any = None) -> None:
        self._redis_client = redis_client

    async def log(
        self,
        event_type: str,
        summary: str,
        phone: str | None = None,
        source: str = "scheduler",
        details: dict[str, Any] | None = None,
    ) -> None:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "summary": summary,
            "phone": phone or "",
            "source": source,
            "details": details or {},
        }
        await self._push(DECISION_LOG_KEY, payload, keep=500)

    async def record_job(
        self,
        name: str,
        success: bool,
        execution_time: float,
        result: str = "",
        error: str = "",
    ) -> None:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": name,
            "success": success,
            "result": result,
            "error": error,
            "execution_time": execution_time,
        }
        await self._push(SCHEDULER_JOBS_KEY, payload, keep=100)

    async def _push(self, key: str, payload: dict[str, Any], keep: int) -> None:
        if self._redis_client is None:
            return
        try:
            await self._redis_client.lpush(key, json.dumps(payload))
            await self._redis_client.ltrim(key, 0, keep - 1)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Decision logger Redis write failed: %s", exc)
