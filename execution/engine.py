"""Workflow Executor.

Walks a validated workflow graph from its trigger, dispatching each node to
the runner registered for its kind, and persists the run and every step
through the execution store.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Mapping, get_args

from pydantic import ValidationError

from execution.context import ExecutionContext
from execution.execution_store import ExecutionStore
from integrations.ai_provider import AIProvider
from integrations.credentials import CredentialProvider
from integrations.email_transport import EmailTransport
from observability.logger import Observability
from runners import (
    ActionRunner,
    AiRunner,
    ConditionRunner,
    HttpRequestRunner,
    LoopRunner,
    NodeExecutionResult,
    NodeRunner,
    ToolRunner,
    TransformRunner,
    TriggerRunner,
)
from shared.workflow_contracts import (
    ConditionNode,
    ExecutionRecord,
    ExecutionStatus,
    IntegrationCredential,
    NodeKind,
    StepRecord,
    TriggerType,
    WorkflowGraph,
    WorkflowNode,
)
from tools.builder import ToolBuilder
from tools.catalog import ToolCatalog

logger = logging.getLogger(__name__)

DEFAULT_EXTERNAL_CALL_TIMEOUT_SECONDS = 30.0
CANCELLED_MESSAGE = "Execution cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def external_call_timeout_from_env() -> float:
    raw = os.getenv("WORKFLOW_EXTERNAL_CALL_TIMEOUT_SECONDS", "").strip()
    if not raw:
        return DEFAULT_EXTERNAL_CALL_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid WORKFLOW_EXTERNAL_CALL_TIMEOUT_SECONDS=%r, using default", raw)
        return DEFAULT_EXTERNAL_CALL_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_EXTERNAL_CALL_TIMEOUT_SECONDS


def build_default_runners(
    *,
    ai_provider: AIProvider | None = None,
    email_transport: EmailTransport | None = None,
    tool_catalog: ToolCatalog | None = None,
    tool_builder: ToolBuilder | None = None,
    timeout_seconds: float | None = None,
) -> dict[str, NodeRunner]:
    timeout = timeout_seconds if timeout_seconds is not None else external_call_timeout_from_env()
    runners: list[NodeRunner] = [
        TriggerRunner(),
        ConditionRunner(),
        LoopRunner(),
        TransformRunner(),
        ActionRunner(email_transport, timeout_seconds=timeout),
        AiRunner(ai_provider, timeout_seconds=timeout),
        ToolRunner(tool_catalog, tool_builder, timeout_seconds=timeout),
        HttpRequestRunner(timeout_seconds=timeout),
    ]
    return {runner.kind: runner for runner in runners}


def _json_safe(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return _json_safe(value.model_dump(mode="json"))
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class WorkflowExecutor:
    """Single entry point for manual, scheduled and webhook invocations."""

    def __init__(
        self,
        store: ExecutionStore,
        runners: Mapping[str, NodeRunner] | None = None,
        credentials: CredentialProvider | None = None,
    ):
        self.store = store
        self.runners = dict(runners) if runners is not None else build_default_runners()
        self.credentials = credentials
        self._running: set[str] = set()
        self._cancel_requested: set[str] = set()

        missing = [kind for kind in get_args(NodeKind) if kind not in self.runners]
        if missing:
            raise ValueError(f"No runner registered for node kind(s): {missing}")

    def close(self) -> None:
        """Release executor resources."""
        try:
            self.store.close()
        except Exception as exc:
            logger.warning("Failed to close ExecutionStore: %s", exc)

    # ─── Invocation ────────────────────────────────────────────

    async def execute_workflow(
        self,
        workflow_id: str,
        user_id: str,
        trigger_type: TriggerType = "manual",
        trigger_data: Any = None,
    ) -> ExecutionRecord:
        """Load the user's stored workflow and run it.

        Lookup problems never raise: they produce (and persist) a failed
        execution record carrying the reason.
        """
        try:
            workflow = self.store.get_workflow(workflow_id)
        except ValidationError as exc:
            logger.warning("Stored workflow %s no longer validates: %s", workflow_id, exc)
            reason = f"Workflow definition is invalid ({exc.error_count()} error(s))"
            return self._reject(workflow_id, user_id, trigger_type, trigger_data, reason)

        if workflow is None or workflow.user_id != user_id:
            return self._reject(workflow_id, user_id, trigger_type, trigger_data, "Workflow not found")
        if not workflow.is_active:
            return self._reject(workflow_id, user_id, trigger_type, trigger_data, "Workflow is not active")

        connections: dict[str, IntegrationCredential] = {}
        if self.credentials is not None:
            connections = self.credentials.connections_for(user_id)

        return await self.execute_graph(
            workflow.graph,
            workflow_id=workflow_id,
            user_id=user_id,
            trigger_type=trigger_type,
            trigger_data=trigger_data,
            integration_connections=connections,
        )

    async def execute_graph(
        self,
        graph: WorkflowGraph,
        *,
        workflow_id: str = "adhoc",
        user_id: str = "local",
        trigger_type: TriggerType = "manual",
        trigger_data: Any = None,
        integration_connections: Mapping[str, IntegrationCredential] | None = None,
        execution_id: str | None = None,
    ) -> ExecutionRecord:
        execution_id = execution_id or str(uuid.uuid4())
        context = ExecutionContext(
            workflow_id=workflow_id,
            execution_id=execution_id,
            user_id=user_id,
            trigger_data=trigger_data,
            trigger_type=trigger_type,
            integration_connections=integration_connections or {},
        )
        obs = Observability.for_execution(user_id, execution_id)
        record = ExecutionRecord(
            execution_id=execution_id,
            workflow_id=workflow_id,
            user_id=user_id,
            status="running",
            trigger_type=trigger_type,
            trigger_data=_json_safe(trigger_data),
            started_at=context.started_at,
        )
        self.store.save_execution(record)
        self._running.add(execution_id)
        self._emit_event(obs, "execution_started", {"workflow_id": workflow_id, "trigger_type": trigger_type})

        status: ExecutionStatus = "completed"
        error: str | None = None
        error_step_id: str | None = None
        try:
            status, error, error_step_id = await self._traverse(graph, context, obs)
        except asyncio.CancelledError:
            status, error = "cancelled", CANCELLED_MESSAGE
            raise
        except Exception as exc:
            logger.exception("Execution %s aborted", execution_id)
            status, error = "failed", str(exc) or type(exc).__name__
            raise
        finally:
            self._running.discard(execution_id)
            self._cancel_requested.discard(execution_id)
            record = self._finish(record, context, status, error, error_step_id)
            self._emit_event(
                obs,
                "execution_finished",
                {"status": status, "error": error, "error_step_id": error_step_id, "duration_ms": record.duration_ms},
                level="ERROR" if status == "failed" else "INFO",
            )
        return record

    def cancel(self, execution_id: str) -> bool:
        """Flag a running execution; it stops before its next node."""
        if execution_id not in self._running:
            return False
        self._cancel_requested.add(execution_id)
        logger.info("Cancellation requested for execution %s", execution_id)
        return True

    # ─── History ───────────────────────────────────────────────

    def list_executions(self, workflow_id: str, user_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return self.store.list_executions(workflow_id, user_id, limit=limit)

    def get_execution(self, execution_id: str) -> tuple[ExecutionRecord, list[StepRecord]] | None:
        record = self.store.get_execution(execution_id)
        if record is None:
            return None
        return record, self.store.list_steps(execution_id)

    # ─── Traversal ─────────────────────────────────────────────

    async def _traverse(
        self,
        graph: WorkflowGraph,
        context: ExecutionContext,
        obs: Observability,
    ) -> tuple[ExecutionStatus, str | None, str | None]:
        """Run nodes in dependency order.

        A node becomes ready once every predecessor has either run or been
        pruned. It runs when at least one predecessor routed to it; otherwise
        it is pruned too, which lets joins after an untaken branch proceed.
        """
        successors = {node_id: list(dict.fromkeys(targets)) for node_id, targets in graph.adjacency().items()}
        pending: dict[str, int] = {node_id: 0 for node_id in successors}
        for targets in successors.values():
            for target in targets:
                pending[target] += 1
        activated: set[str] = set()
        settled: set[str] = set()
        ready: deque[str] = deque([graph.trigger_node.id])

        def release(node_id: str, chosen: set[str]) -> None:
            prune = [node_id]
            while prune:
                current = prune.pop()
                for target in successors[current]:
                    if current == node_id and target in chosen:
                        activated.add(target)
                    pending[target] -= 1
                    if pending[target] > 0 or target in settled:
                        continue
                    if target in activated:
                        ready.append(target)
                    else:
                        settled.add(target)
                        prune.append(target)

        while ready:
            node_id = ready.popleft()
            if node_id in settled:
                continue
            settled.add(node_id)

            if context.execution_id in self._cancel_requested:
                context.log(node_id, "warn", CANCELLED_MESSAGE)
                return "cancelled", CANCELLED_MESSAGE, None

            node = graph.node(node_id)
            result = await self._run_node(node, context, obs)

            if not result.success and not result.should_continue:
                return "failed", result.error or f"Node '{node.id}' failed", node.id
            if not result.success:
                context.log(node.id, "warn", f"Node failed but execution continues: {result.error}")
            if not result.should_continue:
                break

            chosen = set(self._next_node_ids(graph, node, result))
            release(node.id, chosen)
            for target in chosen.difference(successors[node.id]):
                if target not in settled:
                    ready.append(target)

        return "completed", None, None

    async def _run_node(
        self,
        node: WorkflowNode,
        context: ExecutionContext,
        obs: Observability,
    ) -> NodeExecutionResult:
        runner = self.runners[node.kind]
        context.log(node.id, "info", f"Executing node: {node.display_name}")

        step = StepRecord(
            execution_id=context.execution_id,
            step_id=node.id,
            node_kind=node.kind,
            status="running",
            input_data=self._step_input(node, context),
        )
        self.store.save_step(step)

        with obs.measure("node_execution", {"node_id": node.id, "node_kind": node.kind}) as metric:
            result = await runner.execute(node, context)
            metric["success"] = result.success
            metric["error"] = result.error
        duration_ms = metric["duration_ms"]

        step = step.model_copy(
            update={
                "status": "completed" if result.success else "failed",
                "output": _json_safe(result.output),
                "error": result.error,
                "completed_at": _utcnow(),
                "duration_ms": duration_ms,
            }
        )
        self.store.save_step(step)

        if result.success:
            context.step_outputs[node.id] = result.output
            context.log(node.id, "info", "Node executed successfully")
            self._emit_event(obs, "node_completed", {"node_id": node.id, "node_kind": node.kind})
        else:
            self._emit_event(
                obs,
                "node_failed",
                {"node_id": node.id, "node_kind": node.kind, "error": result.error},
                level="WARNING",
            )
        return result

    def _next_node_ids(self, graph: WorkflowGraph, node: WorkflowNode, result: NodeExecutionResult) -> list[str]:
        if result.next_node_ids is not None:
            return list(result.next_node_ids)

        handles = {"default"}
        if isinstance(node, ConditionNode) and isinstance(result.output, dict):
            handles.add("true" if result.output.get("condition_met") else "false")
        return [edge.to_node for edge in graph.outgoing(node.id) if edge.handle in handles]

    def _step_input(self, node: WorkflowNode, context: ExecutionContext) -> dict[str, Any]:
        return {
            "node_id": node.id,
            "node_kind": node.kind,
            "label": node.label,
            "config": node.config.model_dump(mode="json"),
            "available_variables": sorted(context.variables),
            "previous_step_outputs": {
                key: "..." if isinstance(value, (dict, list)) else _json_safe(value)
                for key, value in context.step_outputs.items()
            },
        }

    # ─── Records ───────────────────────────────────────────────

    def _finish(
        self,
        record: ExecutionRecord,
        context: ExecutionContext,
        status: ExecutionStatus,
        error: str | None,
        error_step_id: str | None,
    ) -> ExecutionRecord:
        completed_at = _utcnow()
        finished = record.model_copy(
            update={
                "status": status,
                "completed_at": completed_at,
                "duration_ms": round((completed_at - record.started_at).total_seconds() * 1000, 2),
                "error": error,
                "error_step_id": error_step_id,
                "step_results": _json_safe(context.step_outputs),
                "logs": list(context.logs),
            }
        )
        self.store.save_execution(finished)
        return finished

    def _reject(
        self,
        workflow_id: str,
        user_id: str,
        trigger_type: TriggerType,
        trigger_data: Any,
        reason: str,
    ) -> ExecutionRecord:
        now = _utcnow()
        record = ExecutionRecord(
            execution_id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            user_id=user_id,
            status="failed",
            trigger_type=trigger_type,
            trigger_data=_json_safe(trigger_data),
            started_at=now,
            completed_at=now,
            duration_ms=0.0,
            error=reason,
        )
        self.store.save_execution(record)
        logger.info("Rejected execution of workflow %s for user %s: %s", workflow_id, user_id, reason)
        return record

    def _emit_event(
        self,
        obs: Observability,
        event_type: str,
        payload: dict[str, Any],
        level: str = "INFO",
    ) -> None:
        try:
            obs.log_event(event_type, payload, level=level)
        except Exception as exc:
            logger.warning("Failed to emit execution event '%s': %s", event_type, exc)
