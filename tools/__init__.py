"""Marketplace tools invoked from workflow tool nodes."""

from tools.builder import TemplateToolBuilder, ToolBuilder
from tools.builtin import BUILTIN_RESOLVERS
from tools.catalog import InMemoryToolCatalog, ToolCatalog
from tools.schema import ToolInputValidationError, validate_and_coerce_inputs

__all__ = [
    "BUILTIN_RESOLVERS",
    "InMemoryToolCatalog",
    "TemplateToolBuilder",
    "ToolBuilder",
    "ToolCatalog",
    "ToolInputValidationError",
    "validate_and_coerce_inputs",
]
