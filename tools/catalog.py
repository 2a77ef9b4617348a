"""Tool-lookup collaborator."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Protocol

from shared.workflow_contracts import ToolDefinition

logger = logging.getLogger(__name__)


class ToolCatalog(Protocol):
    def get(self, tool_id: str) -> ToolDefinition | None:
        ...


class InMemoryToolCatalog:
    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        self._tools[tool.tool_id] = tool

    def get(self, tool_id: str) -> ToolDefinition | None:
        return self._tools.get(tool_id)

    def tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryToolCatalog":
        """Load a JSON list of tool definitions."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"Tool catalog file must contain a JSON list: {path}")
        catalog = cls(ToolDefinition.model_validate(item) for item in raw)
        logger.info("Loaded %d tool(s) from %s", len(catalog.tools()), path)
        return catalog
