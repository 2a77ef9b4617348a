"""Per-run execution state threaded through every node runner."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from shared.variable_resolver import MISSING, resolve_structure, resolve_text, resolve_value
from shared.workflow_contracts import ExecutionLog, IntegrationCredential, LogLevel

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class ExecutionContext:
    """Mutable state bag for exactly one workflow run.

    ``variables`` is the only map runners routinely mutate. Temporary bindings
    (loop item, loop index, per-item transform scope) must go through
    :meth:`scoped_variables` so prior values are restored when the construct
    ends, including on error.
    """

    workflow_id: str
    execution_id: str
    user_id: str
    trigger_data: Any = None
    trigger_type: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    step_outputs: dict[str, Any] = field(default_factory=dict)
    integration_connections: Mapping[str, IntegrationCredential] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    logs: list[ExecutionLog] = field(default_factory=list)
    _scope_stack: list[list[tuple[str, Any]]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self.integration_connections = MappingProxyType(dict(self.integration_connections))

    def log(self, step_id: str, level: LogLevel, message: str, data: Any = None) -> None:
        self.logs.append(ExecutionLog(step_id=step_id, level=level, message=message, data=data))
        log_method = logger.warning if level == "warn" else getattr(logger, level, logger.info)
        log_method("[%s] %s: %s", self.execution_id, step_id, message)

    @contextmanager
    def scoped_variables(self, *names: str, **bindings: Any) -> Iterator[dict[str, Any]]:
        """Bind temporaries for the duration of a block, then restore.

        ``names`` are saved without being bound. Keys that did not exist
        before the block are removed afterwards. Nested scopes unwind in
        stack order.
        """
        keys = list(dict.fromkeys([*names, *bindings]))
        saved = [(name, self.variables.get(name, _UNSET)) for name in keys]
        self._scope_stack.append(saved)
        self.variables.update(bindings)
        try:
            yield self.variables
        finally:
            self._scope_stack.pop()
            for name, previous in reversed(saved):
                if previous is _UNSET:
                    self.variables.pop(name, None)
                else:
                    self.variables[name] = previous

    @property
    def scope_depth(self) -> int:
        return len(self._scope_stack)

    def credential(self, integration_id: str | None) -> IntegrationCredential | None:
        if not integration_id:
            return None
        return self.integration_connections.get(integration_id)

    def resolve_text(self, template: Any) -> Any:
        return resolve_text(template, self.variables, self.step_outputs)

    def resolve_value(self, template: Any, *, default: Any = MISSING) -> Any:
        return resolve_value(template, self.variables, self.step_outputs, default=default)

    def resolve_structure(self, value: Any) -> Any:
        return resolve_structure(value, self.variables, self.step_outputs)
