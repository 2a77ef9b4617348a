"""Loop node: bounded for-each / while / repeat iteration inside one step."""

from __future__ import annotations

import math
from typing import Any

from execution.context import ExecutionContext
from runners.base import NodeExecutionResult, NodeRunner
from runners.condition import evaluate_clause, to_number
from shared.workflow_contracts import LoopConfig, LoopNode

MAX_REPEAT_COUNT = 1000
LOOP_ITERATION_VARIABLE = "loopIteration"
LOOP_INDEX_VARIABLE = "loopIndex"


class LoopRunner(NodeRunner):
    """Iterations run sequentially; loop temporaries never outlive the node."""

    kind = "loop"

    async def run(self, node: LoopNode, context: ExecutionContext) -> NodeExecutionResult:
        config = node.config
        if config.loop_type == "for_each":
            output = self._for_each(config, context)
        elif config.loop_type == "while":
            output = self._while(config, context)
        else:
            output = self._repeat(config, context)

        context.log(node.id, "info", f"{config.loop_type} loop finished after {output['iterations']} iteration(s)")
        return NodeExecutionResult.ok(output)

    def _for_each(self, config: LoopConfig, context: ExecutionContext) -> dict[str, Any]:
        data = context.resolve_value(config.source)
        if not isinstance(data, list):
            raise ValueError("Source data must be an array for for_each loop")

        results: list[Any] = []
        with context.scoped_variables(config.item_variable) as variables:
            for item in data:
                variables[config.item_variable] = item
                results.append(item)

        return {"loop_type": "for_each", "iterations": len(data), "results": results}

    def _while(self, config: LoopConfig, context: ExecutionContext) -> dict[str, Any]:
        condition = config.condition
        if condition is None:
            raise ValueError("While loops require a condition")

        iterations = 0
        results: list[dict[str, int]] = []
        with context.scoped_variables(LOOP_ITERATION_VARIABLE) as variables:
            while iterations < config.max_iterations:
                variables[LOOP_ITERATION_VARIABLE] = iterations
                if not evaluate_clause(condition, context):
                    break
                iterations += 1
                results.append({"iteration": iterations})

        return {"loop_type": "while", "iterations": iterations, "results": results}

    def _repeat(self, config: LoopConfig, context: ExecutionContext) -> dict[str, Any]:
        requested = to_number(context.resolve_value(config.count, default=None))
        if math.isnan(requested):
            raise ValueError(f"Repeat count must be numeric, got {config.count!r}")

        bounded = min(max(requested, 0.0), float(MAX_REPEAT_COUNT))
        iterations = int(bounded)
        results: list[dict[str, int]] = []
        with context.scoped_variables(LOOP_INDEX_VARIABLE) as variables:
            for index in range(iterations):
                variables[LOOP_INDEX_VARIABLE] = index
                results.append({"iteration": index + 1})

        return {"loop_type": "repeat", "iterations": iterations, "results": results}
