"""Workflow graph and execution contracts.

Nodes are a tagged union over ``kind``; each variant carries its own typed
config model, so an unknown node kind or an unknown sub-kind (loop type,
transform type, AI task, condition operator) is rejected when the graph is
loaded instead of silently falling through at run time.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


NodeKind = Literal[
    "trigger",
    "action",
    "condition",
    "loop",
    "transform",
    "ai",
    "tool",
    "api",
]

TriggerType = Literal["manual", "schedule", "webhook", "event"]
ExecutionStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
StepStatus = Literal["running", "completed", "failed"]
LogLevel = Literal["info", "warn", "error"]
EdgeHandle = Literal["default", "true", "false"]

ConditionOperator = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "is_empty",
    "is_not_empty",
]

LoopType = Literal["for_each", "while", "repeat"]
TransformType = Literal["map", "filter", "sort", "aggregate", "format"]
AggregateOperation = Literal["count", "sum", "average", "min", "max"]
FormatType = Literal["json", "csv", "uppercase", "lowercase"]
AiTaskType = Literal[
    "text_generation",
    "sentiment_analysis",
    "summarization",
    "classification",
    "data_extraction",
]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
ToolCodeKind = Literal["builtin", "custom", "config"]

_OPERATOR_ALIASES = {"==": "equals", "!=": "not_equals", ">": "greater_than", "<": "less_than"}
_LOOP_ALIASES = {"foreach": "for_each", "each": "for_each"}
_TRANSFORM_ALIASES = {
    "map_data": "map",
    "filter_data": "filter",
    "sort_data": "sort",
    "aggregate_data": "aggregate",
    "format_data": "format",
}


def canonical_name(value: Any) -> Any:
    """Normalize UI labels like ``"For Each"`` or ``"Send-SMS"`` to snake_case."""
    if not isinstance(value, str):
        return value
    text = value.strip().lower()
    return re.sub(r"[\s\-]+", "_", text)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Node configs ──────────────────────────────────────────────


class ConditionClause(BaseModel):
    """One ``{field, operator, value}`` comparison."""

    model_config = {"frozen": True}

    field: Any = Field(default="")
    operator: ConditionOperator = Field(default="equals")
    value: Any = Field(default=None)

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() in _OPERATOR_ALIASES:
            return _OPERATOR_ALIASES[value.strip()]
        return canonical_name(value)


class TriggerConfig(BaseModel):
    model_config = {"frozen": True}

    trigger_type: TriggerType = Field(default="manual")
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("trigger_type", mode="before")
    @classmethod
    def normalize_trigger_type(cls, value: Any) -> Any:
        return canonical_name(value)


class ConditionConfig(BaseModel):
    model_config = {"frozen": True}

    conditions: list[ConditionClause] = Field(default_factory=list)
    operator: Literal["AND", "OR"] = Field(default="AND")
    true_node_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("true_node_id", "true_handle", "trueHandle"),
    )
    false_node_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("false_node_id", "false_handle", "falseHandle"),
    )

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


class LoopConfig(BaseModel):
    model_config = {"frozen": True}

    loop_type: LoopType = Field(default="for_each")
    source: Any = Field(default=None, validation_alias=AliasChoices("source", "source_data", "sourceData"))
    item_variable: str = Field(default="item", validation_alias=AliasChoices("item_variable", "itemVariable"))
    condition: ConditionClause | None = Field(default=None)
    max_iterations: int = Field(default=100, ge=0, validation_alias=AliasChoices("max_iterations", "maxIterations"))
    count: Any = Field(default=1)

    @field_validator("loop_type", mode="before")
    @classmethod
    def normalize_loop_type(cls, value: Any) -> Any:
        name = canonical_name(value)
        return _LOOP_ALIASES.get(name, name)

    @model_validator(mode="after")
    def validate_loop(self) -> "LoopConfig":
        if self.loop_type == "while" and self.condition is None:
            raise ValueError("While loops require a condition")
        if self.loop_type == "for_each" and not self.item_variable.strip():
            raise ValueError("For-each loops require a non-empty item_variable")
        return self


class TransformConfig(BaseModel):
    model_config = {"frozen": True}

    transform_type: TransformType = Field(default="map")
    source: Any = Field(default=None, validation_alias=AliasChoices("source", "source_data", "sourceData"))
    mapping: dict[str, Any] = Field(default_factory=dict)
    condition: ConditionClause | None = Field(default=None)
    sort_field: str = Field(default="", validation_alias=AliasChoices("sort_field", "sortField"))
    sort_order: Literal["asc", "desc"] = Field(default="asc", validation_alias=AliasChoices("sort_order", "sortOrder"))
    operation: AggregateOperation = Field(default="count")
    field: str = Field(default="")
    format: FormatType = Field(default="json")

    @field_validator("transform_type", mode="before")
    @classmethod
    def normalize_transform_type(cls, value: Any) -> Any:
        name = canonical_name(value)
        return _TRANSFORM_ALIASES.get(name, name)

    @model_validator(mode="after")
    def validate_transform(self) -> "TransformConfig":
        if self.transform_type == "filter" and self.condition is None:
            raise ValueError("Filter transforms require a condition")
        if self.transform_type == "sort" and not self.sort_field:
            raise ValueError("Sort transforms require a sort_field")
        return self


class ActionConfig(BaseModel):
    """Action parameters; unknown action types are accepted and acknowledged."""

    model_config = {"frozen": True, "extra": "allow"}

    action_type: str = Field(default="generic", validation_alias=AliasChoices("action_type", "actionType"))
    integration_id: str | None = Field(default=None, validation_alias=AliasChoices("integration_id", "integrationId"))
    email_to: str = Field(default="", validation_alias=AliasChoices("email_to", "emailTo"))
    email_subject: str = Field(default="", validation_alias=AliasChoices("email_subject", "emailSubject"))
    email_body: str = Field(default="", validation_alias=AliasChoices("email_body", "emailBody"))
    to: str = Field(default="")
    title: str = Field(default="")
    message: str = Field(default="")
    table: str = Field(default="")
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("action_type", mode="before")
    @classmethod
    def normalize_action_type(cls, value: Any) -> Any:
        return canonical_name(value) or "generic"


class AiConfig(BaseModel):
    model_config = {"frozen": True}

    task_type: AiTaskType = Field(default="text_generation", validation_alias=AliasChoices("task_type", "taskType"))
    prompt: str = Field(default="")
    text: str = Field(default="")
    model: str | None = Field(default=None)
    max_tokens: int = Field(default=500, ge=1, validation_alias=AliasChoices("max_tokens", "maxTokens"))
    max_length: int = Field(default=100, ge=1, validation_alias=AliasChoices("max_length", "maxLength"))
    categories: list[str] = Field(default_factory=list)
    fields: list[str] = Field(default_factory=list)

    @field_validator("task_type", mode="before")
    @classmethod
    def normalize_task_type(cls, value: Any) -> Any:
        return canonical_name(value)


class ToolInputMapping(BaseModel):
    """Literal value (resolved as a template) or a ``{from_node, field_name}`` reference."""

    model_config = {"frozen": True}

    field_id: str = Field(validation_alias=AliasChoices("field_id", "fieldId"))
    value: Any = Field(default=None)


class ToolNodeConfig(BaseModel):
    model_config = {"frozen": True}

    tool_id: str | None = Field(default=None, validation_alias=AliasChoices("tool_id", "toolId"))
    input_mappings: list[ToolInputMapping] = Field(
        default_factory=list,
        validation_alias=AliasChoices("input_mappings", "inputMappings"),
    )


class HttpRequestConfig(BaseModel):
    model_config = {"frozen": True}

    method: HttpMethod = Field(default="GET")
    url: str
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Any = Field(default=None)
    integration_id: str | None = Field(default=None, validation_alias=AliasChoices("integration_id", "integrationId"))

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


# ─── Nodes ─────────────────────────────────────────────────────


class _NodeBase(BaseModel):
    model_config = {"frozen": True}

    id: str
    label: str = Field(default="")
    timeout_seconds: float | None = Field(default=None, gt=0.0)

    @property
    def display_name(self) -> str:
        return self.label or self.id


class TriggerNode(_NodeBase):
    kind: Literal["trigger"] = "trigger"
    config: TriggerConfig = Field(default_factory=TriggerConfig)


class ActionNode(_NodeBase):
    kind: Literal["action"] = "action"
    config: ActionConfig = Field(default_factory=ActionConfig)


class ConditionNode(_NodeBase):
    kind: Literal["condition"] = "condition"
    config: ConditionConfig = Field(default_factory=ConditionConfig)


class LoopNode(_NodeBase):
    kind: Literal["loop"] = "loop"
    config: LoopConfig = Field(default_factory=LoopConfig)


class TransformNode(_NodeBase):
    kind: Literal["transform"] = "transform"
    config: TransformConfig = Field(default_factory=TransformConfig)


class AiNode(_NodeBase):
    kind: Literal["ai"] = "ai"
    config: AiConfig = Field(default_factory=AiConfig)


class ToolNode(_NodeBase):
    kind: Literal["tool"] = "tool"
    config: ToolNodeConfig = Field(default_factory=ToolNodeConfig)


class HttpRequestNode(_NodeBase):
    kind: Literal["api"] = "api"
    config: HttpRequestConfig


WorkflowNode = Annotated[
    Union[
        TriggerNode,
        ActionNode,
        ConditionNode,
        LoopNode,
        TransformNode,
        AiNode,
        ToolNode,
        HttpRequestNode,
    ],
    Field(discriminator="kind"),
]


class WorkflowEdge(BaseModel):
    """Directed edge; condition nodes may label edges with a ``true``/``false`` handle."""

    model_config = {"frozen": True}

    from_node: str = Field(validation_alias=AliasChoices("from_node", "source"))
    to_node: str = Field(validation_alias=AliasChoices("to_node", "target"))
    handle: EdgeHandle = Field(default="default", validation_alias=AliasChoices("handle", "source_handle", "sourceHandle"))

    @field_validator("handle", mode="before")
    @classmethod
    def normalize_handle(cls, value: Any) -> Any:
        if value is None or value == "":
            return "default"
        return canonical_name(value)


class WorkflowGraph(BaseModel):
    """User-authored step graph executed by the workflow engine."""

    model_config = {"frozen": True}

    nodes: list[WorkflowNode]
    edges: list[WorkflowEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_graph(self) -> "WorkflowGraph":
        if not self.nodes:
            raise ValueError("WorkflowGraph.nodes must not be empty")

        node_ids = [node.id.strip() for node in self.nodes]
        if any(not node_id for node_id in node_ids):
            raise ValueError("Workflow nodes must use non-empty ids")
        if len(set(node_ids)) != len(node_ids):
            raise ValueError("Workflow node ids must be unique")

        triggers = [node.id for node in self.nodes if node.kind == "trigger"]
        if len(triggers) != 1:
            raise ValueError(f"Workflow must contain exactly one trigger node, found {len(triggers)}")
        trigger_id = triggers[0]

        node_id_set = set(node_ids)
        for edge in self.edges:
            if edge.from_node not in node_id_set:
                raise ValueError(f"Edge from_node '{edge.from_node}' not found in nodes")
            if edge.to_node not in node_id_set:
                raise ValueError(f"Edge to_node '{edge.to_node}' not found in nodes")
            if edge.to_node == trigger_id:
                raise ValueError("Trigger node must not have incoming edges")

        for node in self.nodes:
            if isinstance(node, ConditionNode):
                for target in (node.config.true_node_id, node.config.false_node_id):
                    if target is not None and target not in node_id_set:
                        raise ValueError(f"Condition '{node.id}' branch target '{target}' not found in nodes")

        adjacency = self.adjacency()
        if self._has_cycle(adjacency):
            raise ValueError("Workflow graph must not contain cycles")

        reachable = self._reachable_from(trigger_id, adjacency)
        unreachable = [node_id for node_id in node_ids if node_id not in reachable]
        if unreachable:
            raise ValueError(f"Nodes not reachable from trigger: {unreachable}")

        return self

    @property
    def trigger_node(self) -> TriggerNode:
        for node in self.nodes:
            if isinstance(node, TriggerNode):
                return node
        raise ValueError("Workflow has no trigger node")

    def node(self, node_id: str) -> WorkflowNode:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        return [edge for edge in self.edges if edge.from_node == node_id]

    def adjacency(self) -> dict[str, list[str]]:
        """Edges plus condition branch targets, in authored order."""
        adjacency: dict[str, list[str]] = {node.id: [] for node in self.nodes}
        for edge in self.edges:
            adjacency[edge.from_node].append(edge.to_node)
        for node in self.nodes:
            if isinstance(node, ConditionNode):
                for target in (node.config.true_node_id, node.config.false_node_id):
                    if target is not None and target not in adjacency[node.id]:
                        adjacency[node.id].append(target)
        return adjacency

    def _has_cycle(self, adjacency: dict[str, list[str]]) -> bool:
        visiting: set[str] = set()
        visited: set[str] = set()

        def dfs(node_id: str) -> bool:
            if node_id in visiting:
                return True
            if node_id in visited:
                return False

            visiting.add(node_id)
            for neighbor in adjacency.get(node_id, []):
                if dfs(neighbor):
                    return True
            visiting.remove(node_id)
            visited.add(node_id)
            return False

        return any(dfs(node_id) for node_id in adjacency)

    def _reachable_from(self, start: str, adjacency: dict[str, list[str]]) -> set[str]:
        seen = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for neighbor in adjacency.get(current, []):
                if neighbor not in seen:
                    seen.add(neighbor)
                    stack.append(neighbor)
        return seen


class WorkflowDefinition(BaseModel):
    """Stored workflow owned by a user."""

    model_config = {"frozen": True}

    workflow_id: str
    user_id: str
    name: str = Field(default="")
    description: str = Field(default="")
    is_active: bool = Field(default=True)
    graph: WorkflowGraph
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ─── Collaborator payloads ─────────────────────────────────────


class IntegrationCredential(BaseModel):
    """Opaque third-party credential handed to runners read-only."""

    model_config = {"frozen": True}

    integration_id: str
    provider: str = Field(default="")
    access_token: str | None = Field(default=None, validation_alias=AliasChoices("access_token", "accessToken"))
    refresh_token: str | None = Field(default=None, validation_alias=AliasChoices("refresh_token", "refreshToken"))
    api_key: str | None = Field(default=None, validation_alias=AliasChoices("api_key", "apiKey"))
    scopes: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolFieldSpec(BaseModel):
    """Declared input field of a marketplace tool."""

    model_config = {"frozen": True}

    type: str = Field(default="text")
    required: bool = Field(default=False)
    min: float | None = Field(default=None)
    max: float | None = Field(default=None)
    step: float | None = Field(default=None)
    options: list[Any] = Field(default_factory=list)
    label: str = Field(default="")


class ToolDefinition(BaseModel):
    model_config = {"frozen": True}

    tool_id: str
    title: str = Field(default="")
    code_kind: ToolCodeKind
    code_ref: str = Field(default="")
    input_schema: dict[str, ToolFieldSpec] = Field(default_factory=dict)
    builder_config: dict[str, Any] | None = Field(default=None)


# ─── Execution records ─────────────────────────────────────────


class ExecutionLog(BaseModel):
    model_config = {"frozen": True}

    step_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    level: LogLevel = Field(default="info")
    message: str
    data: Any = Field(default=None)


class StepRecord(BaseModel):
    """Persisted per-node execution detail."""

    model_config = {"frozen": True}

    execution_id: str
    step_id: str
    node_kind: NodeKind
    status: StepStatus = Field(default="running")
    input_data: dict[str, Any] = Field(default_factory=dict)
    output: Any = Field(default=None)
    error: str | None = Field(default=None)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = Field(default=None)
    duration_ms: float | None = Field(default=None)


class ExecutionRecord(BaseModel):
    """Run-level record returned by the invocation entry point."""

    model_config = {"frozen": True}

    execution_id: str
    workflow_id: str
    user_id: str
    status: ExecutionStatus = Field(default="pending")
    trigger_type: TriggerType = Field(default="manual")
    trigger_data: Any = Field(default=None)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = Field(default=None)
    duration_ms: float | None = Field(default=None)
    error: str | None = Field(default=None)
    error_step_id: str | None = Field(default=None)
    step_results: dict[str, Any] = Field(default_factory=dict)
    logs: list[ExecutionLog] = Field(default_factory=list)
