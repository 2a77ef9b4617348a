"""Action node: side-effecting integrations (email, SMS, records, notifications).

Integration hiccups are soft failures: the node succeeds with an
``*_failed`` / ``*_skipped`` action so authors can branch on it downstream.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from execution.context import ExecutionContext
from integrations.email_transport import EmailTransport
from runners.base import NodeExecutionResult, NodeRunner
from shared.workflow_contracts import ActionConfig, ActionNode

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ActionRunner(NodeRunner):
    kind = "action"
    external = True

    def __init__(self, email_transport: EmailTransport | None = None, *, timeout_seconds: float | None = None):
        super().__init__(timeout_seconds=timeout_seconds)
        self.email_transport = email_transport

    async def run(self, node: ActionNode, context: ExecutionContext) -> NodeExecutionResult:
        config = node.config
        action_type = config.action_type

        if action_type == "send_email":
            output = await self._send_email(config, context)
        elif action_type == "send_sms":
            output = self._send_sms(config, context)
        elif action_type == "create_database_record":
            output = self._create_database_record(config, context)
        elif action_type == "send_notification":
            output = self._send_notification(config, context)
        else:
            output = {
                "action": action_type,
                "message": "Action executed",
                "config": config.model_dump(mode="json"),
            }

        level = "warn" if "error" in output else "info"
        context.log(node.id, level, f"Action '{action_type}' -> {output['action']}")
        return NodeExecutionResult.ok(output)

    async def _send_email(self, config: ActionConfig, context: ExecutionContext) -> dict[str, Any]:
        to = context.resolve_text(config.email_to)
        subject = context.resolve_text(config.email_subject)
        body = context.resolve_text(config.email_body)

        if self.email_transport is None:
            return {"action": "email_failed", "error": "Email transport not configured", "to": to}

        try:
            delivery = await self.email_transport.send(to=to, subject=subject, body=body)
        except Exception as e:
            logger.warning("Email transport raised for %s: %s", to, e)
            return {"action": "email_failed", "error": str(e) or type(e).__name__, "to": to}

        if not delivery.get("success"):
            return {
                "action": "email_failed",
                "error": str(delivery.get("error") or "Failed to send email"),
                "to": to,
            }

        return {
            "action": "email_sent",
            "to": to,
            "subject": subject,
            "sent_at": _now(),
            "dry_run": bool(delivery.get("dry_run", False)),
            "credentials_used": context.credential(config.integration_id) is not None,
        }

    def _send_sms(self, config: ActionConfig, context: ExecutionContext) -> dict[str, Any]:
        to = context.resolve_text(config.to)
        credential = context.credential(config.integration_id)
        if credential is None or not credential.access_token:
            return {"action": "sms_skipped", "error": "No SMS credentials configured", "to": to}

        return {
            "action": "sms_sent",
            "to": to,
            "message": context.resolve_text(config.message),
            "sent_at": _now(),
            "credentials_used": True,
        }

    def _create_database_record(self, config: ActionConfig, context: ExecutionContext) -> dict[str, Any]:
        return {
            "action": "record_created",
            "table": context.resolve_text(config.table),
            "record_id": str(uuid.uuid4()),
            "created_at": _now(),
            "data": context.resolve_structure(config.data),
        }

    def _send_notification(self, config: ActionConfig, context: ExecutionContext) -> dict[str, Any]:
        return {
            "action": "notification_sent",
            "title": context.resolve_text(config.title),
            "message": context.resolve_text(config.message),
            "sent_at": _now(),
        }
