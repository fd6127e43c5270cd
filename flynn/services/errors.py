"""Errors raised by the model provider, the conversation loop and the chat service."""


class ModelError(Exception):
    """A model call failed. Fatal to the current loop run."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        retryable: bool = False,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.status_code = status_code


class ModelRateLimitError(ModelError):
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, code="RATE_LIMIT", retryable=True, status_code=429)


class ModelAPIError(ModelError):
    def __init__(self, message: str, status_code: int | None = None):
        retryable = status_code is None or status_code >= 500
        super().__init__(message, code="API_ERROR", retryable=retryable, status_code=status_code)


class ModelTimeoutError(ModelError):
    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Model did not respond within {timeout_seconds:g}s", code="MODEL_TIMEOUT", retryable=True
        )
        self.timeout_seconds = timeout_seconds


class ConversationLoopError(Exception):
    """The loop stopped for a reason of its own (not a model failure)."""

    code = "LOOP_ERROR"
    retryable = False


class MaxTurnsExceededError(ConversationLoopError):
    code = "MAX_TURNS_EXCEEDED"

    def __init__(self, max_turns: int):
        super().__init__(f"Conversation exceeded the maximum of {max_turns} model turns")
        self.max_turns = max_turns


class ConversationNotFoundError(Exception):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class CaregiverNotFoundError(Exception):
    def __init__(self, caregiver_id: str):
        super().__init__(f"Caregiver not found: {caregiver_id}")
        self.caregiver_id = caregiver_id
