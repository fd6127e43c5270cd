"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True)
class ToolContext:
    """Who is calling a tool, and for which conversation. Immutable for a whole loop run."""

    user_id: str
    conversation_id: str
    child_id: str | None = None
    family_id: str | None = None


class ToolResult(BaseModel):
    """Outcome of a single tool dispatch."""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)


ToolHandler = Callable[[BaseModel, ToolContext], Awaitable[ToolResult]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    read_only: bool = False

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input, using the camelCase field aliases."""
        return self.input_schema_class.model_json_schema(by_alias=True)

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)


def create_read_only_tool(
    name: str,
    description: str,
    input_schema_class: type[BaseModel],
    getter: Callable[[BaseModel, ToolContext], Awaitable[Any]],
) -> ToolDefinition:
    """Wrap a data getter as a read-only tool whose return value becomes the result data."""

    async def handler(params: BaseModel, context: ToolContext) -> ToolResult:
        return ToolResult.ok(await getter(params, context))

    return ToolDefinition(
        name=name,
        description=description,
        input_schema_class=input_schema_class,
        handler=handler,
        read_only=True,
    )
