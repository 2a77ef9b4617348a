"""Trigger node: seeds the ``trigger`` variable from the invocation payload."""

from __future__ import annotations

from execution.context import ExecutionContext
from runners.base import NodeExecutionResult, NodeRunner
from shared.workflow_contracts import TriggerNode


class TriggerRunner(NodeRunner):
    kind = "trigger"

    async def run(self, node: TriggerNode, context: ExecutionContext) -> NodeExecutionResult:
        trigger_type = context.trigger_type or node.config.trigger_type
        triggered_at = context.started_at.isoformat()

        context.variables["trigger"] = {
            "type": trigger_type,
            "data": context.trigger_data,
            "timestamp": triggered_at,
        }

        return NodeExecutionResult.ok(
            {
                "trigger_type": trigger_type,
                "trigger_data": context.trigger_data,
                "triggered_at": triggered_at,
            }
        )
