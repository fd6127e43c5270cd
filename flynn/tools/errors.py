"""Tool error types."""


class ToolError(Exception):
    """Base error raised by tool handlers and the executor.

    The string form is prefixed with the lowercase error code so the model
    sees what kind of failure happened, e.g. ``unauthorized: ...``.
    """

    code = "TOOL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code.lower()}: {self.message}"


class UnauthorizedError(ToolError):
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "You don't have access to this child"):
        super().__init__(message)


class ChildNotFoundError(ToolError):
    code = "CHILD_NOT_FOUND"

    def __init__(self, child_id: str):
        super().__init__(f"Child not found: {child_id}")
        self.child_id = child_id


class GoalNotFoundError(ToolError):
    code = "GOAL_NOT_FOUND"

    def __init__(self, goal_id: str):
        super().__init__(f"Goal not found: {goal_id}")
        self.goal_id = goal_id


class SessionNotFoundError(ToolError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class UserIdRequiredError(ToolError):
    code = "USER_ID_REQUIRED"

    def __init__(self):
        super().__init__("A user id is required to use this tool")


class ToolNotFoundError(ToolError):
    code = "TOOL_NOT_FOUND"

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidToolInputError(ToolError):
    code = "INVALID_INPUT"

    def __init__(self, details: str):
        super().__init__(f"Invalid input: {details}")
        self.details = details


class ToolRegistrationError(ValueError):
    """Raised when a tool name is registered twice."""
