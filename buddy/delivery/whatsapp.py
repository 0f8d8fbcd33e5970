from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import aiohttp

from buddy.models.protocols import DeliveryReport

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"
MESSAGE_SEPARATOR = "---"
_BOLD_PATTERN = re.compile(r"\*\*(.+?)\*\*")
_STRIKE_PATTERN = re.compile(r"~~(.+?)~~")


def to_whatsapp_markup(text: str) -> str:
    text = _BOLD_PATTERN.sub(r"*\1*", text)
    return _STRIKE_PATTERN.sub(r"~\1~", text)


def split_messages(text: str, separator: str = MESSAGE_SEPARATOR) -> list[str]:
    """Split text on separator lines; blank parts are dropped."""
    parts = re.split(rf"^\s*{re.escape(separator)}\s*$", text, flags=re.MULTILINE)
    return [part.strip() for part in parts if part.strip()]


class WhatsAppDelivery:
    """Send text to a subscriber through the WhatsApp Cloud API."""

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_version: str = "v18.0",
        part_delay_seconds: float = 1.0,
        timeout_seconds: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._token = access_token
        self._phone_number_id = phone_number_id
        self._url = f"{GRAPH_API_BASE}/{api_version}/{phone_number_id}/messages"
        self._part_delay = max(0.0, part_delay_seconds)
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        if not self.configured:
            logger.error(
                "whatsapp_not_configured",
                extra={"event": "whatsapp_not_configured", "reason": "missing access token or phone number id"},
            )

    @property
    def configured(self) -> bool:
        return bool(self._token and self._phone_number_id)

    async def send(self, phone: str, text: str) -> DeliveryReport:
        parts = split_messages(to_whatsapp_markup(text or ""))
        report = DeliveryReport()
        if not parts:
            logger.warning("whatsapp_empty_message", extra={"event": "whatsapp_empty_message", "phone": phone})
            return report
        if not self.configured:
            report.failed = len(parts)
            return report

        if self._session is not None:
            await self._send_parts(self._session, phone, parts, report)
        else:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                await self._send_parts(session, phone, parts, report)
        return report

    async def _send_parts(self, session: Any, phone: str, parts: list[str], report: DeliveryReport) -> None:
        for index, part in enumerate(parts):
            if await self._post(session, phone, part):
                report.sent += 1
            else:
                report.failed += 1
            if index < len(parts) - 1 and self._part_delay:
                await asyncio.sleep(self._part_delay)

    async def _post(self, session: Any, phone: str, body: str) -> bool:
        headers = {"Authorization": f"Bearer {self._token}", "Content-Type": "application/json"}
        payload = {"messaging_product": "whatsapp", "to": phone, "text": {"body": body}}
        try:
            async with session.post(self._url, headers=headers, json=payload) as resp:
                if 200 <= resp.status < 300:
                    return True
                error = await resp.text()
                logger.error(
                    "whatsapp_send_failed",
                    extra={"event": "whatsapp_send_failed", "phone": phone, "status": resp.status, "body": error[:500]},
                )
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("whatsapp_send_error", extra={"event": "whatsapp_send_error", "phone": phone, "error": str(exc)})
            return False
