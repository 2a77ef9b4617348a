"""Email transport: delivers workflow email actions through an HTTP email API."""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class EmailTransport(Protocol):
    async def send(self, *, to: str, subject: str, body: str) -> dict[str, Any]:
        """Return ``{"success": bool, ...}``; may raise on transport errors."""
        ...


class HttpEmailTransport:
    """Posts messages to a JSON email API (``EMAIL_API_URL``)."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.api_url = os.getenv("EMAIL_API_URL", "").strip()
        self.api_key = os.getenv("EMAIL_API_KEY", "").strip()
        self.sender = os.getenv("EMAIL_FROM", "noreply@example.com").strip()
        self.timeout_seconds = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))
        self.dry_run = os.getenv("EMAIL_DRY_RUN", "false").strip().lower() in (
            "1",
            "true",
            "yes",
            "on",
        )
        self._transport = transport

    async def send(self, *, to: str, subject: str, body: str) -> dict[str, Any]:
        recipient = (to or "").strip()
        if not recipient:
            return {"success": False, "error": "Recipient address is required."}

        if self.dry_run:
            logger.info("Email dry run to %s: %s", recipient, subject)
            return {"success": True, "dry_run": True, "to": recipient, "subject": subject}

        if not self.api_url:
            return {"success": False, "error": "EMAIL_API_URL is not configured."}

        headers: dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"from": self.sender, "to": recipient, "subject": subject, "text": body}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            details = (e.response.text or "").strip() or str(e)
            return {"success": False, "error": f"email_http_error {e.response.status_code}: {details}"}
        except httpx.TimeoutException as e:
            return {"success": False, "error": f"email_timeout: {e}"}
        except httpx.RequestError as e:
            return {"success": False, "error": f"email_network_error: {e}"}

        message_id = None
        try:
            data = response.json()
            if isinstance(data, dict):
                message_id = data.get("id") or data.get("message_id")
        except ValueError:
            pass
        return {"success": True, "dry_run": False, "to": recipient, "message_id": message_id}
