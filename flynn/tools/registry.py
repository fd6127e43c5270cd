"""Tool registry and executor for the AI assistant."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from flynn.models.llm import LLMToolDefinition
from flynn.services.authorization import AuthorizationService
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext, ToolDefinition, ToolResult
from flynn.tools.children import create_get_child_tool, create_list_children_tool
from flynn.tools.errors import InvalidToolInputError, ToolError, ToolNotFoundError, ToolRegistrationError
from flynn.tools.goals import create_create_goal_tool, create_list_goals_tool, create_update_goal_tool
from flynn.tools.notes import create_add_note_tool
from flynn.tools.progress import create_get_progress_summary_tool
from flynn.tools.sessions import (
    create_create_session_tool,
    create_get_session_tool,
    create_list_sessions_tool,
    create_update_session_tool,
)
from flynn.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 30.0

ExecuteTool = Callable[[str, dict[str, Any]], Awaitable[tuple[Any, bool]]]


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as ``loc: msg; loc: msg``."""
    parts = []
    for detail in error.errors():
        loc = ".".join(str(p) for p in detail["loc"]) or "input"
        parts.append(f"{loc}: {detail['msg']}")
    return "; ".join(parts)


class ToolExecutor:
    """Name-keyed tool registry that validates, authorizes and dispatches tool calls.

    One instance is built per process and shared by every conversation; the
    per-call identity travels in the ToolContext, never in the registry.
    """

    def __init__(self, tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS):
        self.tool_timeout_seconds = tool_timeout_seconds
        self._tools: dict[str, ToolDefinition] = {}

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool. Names are unique."""
        if tool.name in self._tools:
            raise ToolRegistrationError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool {tool.name} (read_only={tool.read_only})")

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def get_tool(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def unregister_tool(self, name: str) -> bool:
        """Remove a tool. Returns False if it was not registered."""
        return self._tools.pop(name, None) is not None

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def clear(self) -> None:
        self._tools.clear()

    def get_tool_definitions(self) -> list[LLMToolDefinition]:
        """Model-facing definitions for every registered tool."""
        return [
            LLMToolDefinition(name=tool.name, description=tool.description, input_schema=tool.get_json_schema())
            for tool in self._tools.values()
        ]

    def read_only_tool_names(self) -> list[str]:
        return [name for name, tool in self._tools.items() if tool.read_only]

    def write_tool_names(self) -> list[str]:
        return [name for name, tool in self._tools.items() if not tool.read_only]

    async def execute_tool(self, name: str, raw_input: dict[str, Any], context: ToolContext) -> ToolResult:
        """Dispatch one tool call. Never raises: every failure becomes a failed ToolResult."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Model requested unknown tool {name}")
            return ToolResult.fail(ToolNotFoundError(name).message)

        try:
            params = tool.parse_input(raw_input or {})
        except ValidationError as e:
            error = InvalidToolInputError(format_validation_error(e))
            logger.info(f"Invalid input for tool {name}: {error.details}")
            return ToolResult.fail(error.message)

        try:
            result = await asyncio.wait_for(tool.handler(params, context), timeout=self.tool_timeout_seconds)
        except TimeoutError:
            logger.warning(f"Tool {name} timed out after {self.tool_timeout_seconds}s")
            return ToolResult.fail(f"Tool {name} timed out after {self.tool_timeout_seconds:g}s")
        except ToolError as e:
            logger.info(f"Tool {name} failed: {e}")
            return ToolResult.fail(str(e))
        except Exception as e:
            logger.error(f"Tool {name} raised unexpectedly: {e}", exc_info=True)
            return ToolResult.fail(str(e) or type(e).__name__)

        return result

    def create_executor(self, context: ToolContext) -> ExecuteTool:
        """Bind a context and return ``(name, raw_input) -> (result, is_error)``."""

        async def execute(name: str, raw_input: dict[str, Any]) -> tuple[Any, bool]:
            result = await self.execute_tool(name, raw_input, context)
            if result.success:
                return ("Success" if result.data is None else result.data), False
            return result.error or "Tool failed", True

        return execute


def register_default_tools(
    executor: ToolExecutor, family_repo: FamilyRepository, authorization: AuthorizationService
) -> None:
    """Register the built-in family tools, skipping any name already present."""
    tools = [
        create_list_children_tool(family_repo, authorization),
        create_get_child_tool(family_repo, authorization),
        create_list_goals_tool(family_repo, authorization),
        create_create_goal_tool(family_repo, authorization),
        create_update_goal_tool(family_repo, authorization),
        create_add_note_tool(family_repo, authorization),
        create_list_sessions_tool(family_repo, authorization),
        create_get_session_tool(family_repo, authorization),
        create_create_session_tool(family_repo, authorization),
        create_update_session_tool(family_repo, authorization),
        create_get_progress_summary_tool(family_repo, authorization),
    ]

    for tool in tools:
        if executor.has_tool(tool.name):
            logger.debug(f"Skipping default tool {tool.name}: already registered")
            continue
        executor.register_tool(tool)
