"""Node runner contract shared by every node kind."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from execution.context import ExecutionContext
from shared.workflow_contracts import NodeKind, WorkflowNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeExecutionResult:
    success: bool
    output: Any = None
    error: str | None = None
    should_continue: bool = True
    next_node_ids: list[str] | None = None

    @classmethod
    def ok(cls, output: Any = None, *, next_node_ids: list[str] | None = None) -> "NodeExecutionResult":
        return cls(success=True, output=output, should_continue=True, next_node_ids=next_node_ids)

    @classmethod
    def fail(cls, error: str) -> "NodeExecutionResult":
        return cls(success=False, error=error, should_continue=False)


class NodeRunner(ABC):
    """Executes one node kind.

    :meth:`execute` never raises: internal errors and timeouts become a fatal
    ``NodeExecutionResult`` and an ``error`` entry in ``context.logs``.
    Runners that wait on an external collaborator set ``external = True`` and
    get a per-call timeout.
    """

    kind: ClassVar[NodeKind]
    external: ClassVar[bool] = False

    def __init__(self, *, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
        timeout = self._timeout_for(node)
        try:
            if timeout:
                result = await asyncio.wait_for(self.run(node, context), timeout=timeout)
            else:
                result = await self.run(node, context)
        except TimeoutError:
            result = NodeExecutionResult.fail(f"Node '{node.id}' timed out after {timeout:g}s")
        except Exception as exc:
            logger.exception("Runner '%s' crashed on node %s", self.kind, node.id)
            result = NodeExecutionResult.fail(str(exc) or type(exc).__name__)

        if not result.success:
            context.log(node.id, "error", result.error or f"Node '{node.id}' failed")
        return result

    def _timeout_for(self, node: WorkflowNode) -> float | None:
        if not self.external:
            return None
        return node.timeout_seconds or self.timeout_seconds

    @abstractmethod
    async def run(self, node: Any, context: ExecutionContext) -> NodeExecutionResult:
        """Kind-specific semantics; may raise, :meth:`execute` converts errors."""
