"""Tools for the conversational AI assistant."""

from flynn.tools.base import ToolContext, ToolDefinition, ToolResult, create_read_only_tool
from flynn.tools.errors import ToolError, ToolRegistrationError

__all__ = [
    "ToolContext",
    "ToolDefinition",
    "ToolError",
    "ToolRegistrationError",
    "ToolResult",
    "create_read_only_tool",
]
