"""Anthropic API client with rate limiting, streaming and error handling."""

import asyncio
import json
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal

import anthropic
import tiktoken
from anthropic import AsyncAnthropic
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from flynn.config import DEFAULT_MODEL
from flynn.models.llm import (
    LLMMessage,
    LLMToolDefinition,
    LLMUsage,
    MessageComplete,
    StreamDelta,
    TextBlock,
    TextDelta,
    ToolCallDelta,
    ToolResultBlock,
    ToolUseBlock,
)
from flynn.services.errors import ModelAPIError, ModelError, ModelRateLimitError
from flynn.utils.logging import get_logger

logger = get_logger(__name__)


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.7
    max_retries: int = 3
    retry_delay: float = 1.0

    # Token limits for truncation
    max_conversation_tokens: int = 200000  # Claude Sonnet default context window
    token_headroom: int = 4096  # Reserve tokens for response


class AnthropicRateLimiter:
    """Client-side rate limiter using the limits library."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the request and token windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        cost = min(max(estimated_tokens, 1), self.token_limit.amount)
        if not self.limiter.hit(self.token_limit, token_identifier, cost=cost):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


def to_model_error(error: Exception) -> ModelError:
    """Map an SDK exception to the ModelError hierarchy."""
    if isinstance(error, ModelError):
        return error
    if isinstance(error, anthropic.RateLimitError):
        return ModelRateLimitError()
    if isinstance(error, anthropic.APITimeoutError):
        return ModelAPIError(f"Anthropic request timed out: {error}")
    if isinstance(error, anthropic.APIStatusError):
        return ModelAPIError(error.message, status_code=error.status_code)
    if isinstance(error, anthropic.APIConnectionError):
        return ModelAPIError(f"Could not reach Anthropic: {error}")
    return ModelError(str(error) or "An unexpected error occurred")


def _retry_after_seconds(error: anthropic.APIStatusError, default: float) -> float:
    try:
        return float(error.response.headers.get("retry-after", default))
    except (AttributeError, TypeError, ValueError):
        return default


class AnthropicClient:
    """Streaming Anthropic API client implementing the ModelProvider protocol."""

    tokenizer: tiktoken.Encoding | None = None
    api_key: str
    client: AsyncAnthropic
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter

    def __init__(
        self,
        api_key: str | None = None,
        config: AnthropicConfig | None = None,
        rate_limiter: AnthropicRateLimiter | None = None,
    ):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key
            config: Client configuration
            rate_limiter: Shared rate limiter (a fresh one per client by default)
        """
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY is required")

        self.api_key = api_key
        # Retries are handled here so they can stop once streaming has started
        self.client = AsyncAnthropic(api_key=self.api_key, max_retries=0)
        self.config = config or AnthropicConfig()
        self.rate_limiter = rate_limiter or AnthropicRateLimiter()

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    async def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
    ) -> AsyncIterator[StreamDelta]:
        """Stream one assistant turn.

        Transient failures (429, 5xx, connection) are retried with exponential
        backoff only until the first delta has been yielded; after that any
        failure is raised as a ModelError.
        """
        anthropic_tools = self._to_anthropic_tools(tools)
        truncated = self.truncate_conversation(messages, system_prompt, anthropic_tools)

        estimated_tokens = self._estimate_tokens(truncated, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system_prompt,
            "messages": [self._to_anthropic_message(m) for m in truncated],
        }
        if anthropic_tools:
            request_params["tools"] = [t.model_dump(exclude_none=True) for t in anthropic_tools]

        logger.debug(
            f"Streaming from {self.config.model} with {len(truncated)} messages, {len(anthropic_tools)} tools"
        )

        for attempt in range(max(self.config.max_retries, 1)):
            yielded = False
            try:
                async with self.client.messages.stream(**request_params) as stream:
                    async for event in stream:
                        if event.type == "text":
                            yielded = True
                            yield TextDelta(text=event.text)
                        elif event.type == "content_block_stop" and event.content_block.type == "tool_use":
                            yielded = True
                            block = event.content_block
                            yield ToolCallDelta(
                                tool_use=ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {}))
                            )

                    final = await stream.get_final_message()

                usage = LLMUsage(
                    input_tokens=final.usage.input_tokens,
                    output_tokens=final.usage.output_tokens,
                    total_tokens=final.usage.input_tokens + final.usage.output_tokens,
                    cache_creation_input_tokens=final.usage.cache_creation_input_tokens or 0,
                    cache_read_input_tokens=final.usage.cache_read_input_tokens or 0,
                )
                logger.debug(f"Stream complete - stop reason: {final.stop_reason}, usage: {usage}")
                yield MessageComplete(stop_reason=final.stop_reason, usage=usage, model=final.model)
                return

            except anthropic.APIError as e:
                error = to_model_error(e)
                last_attempt = attempt >= self.config.max_retries - 1
                if yielded or not error.retryable or last_attempt:
                    logger.error(f"Anthropic stream failed ({error.code}): {error.message}")
                    raise error from e

                if isinstance(error, ModelRateLimitError) and isinstance(e, anthropic.APIStatusError):
                    delay = _retry_after_seconds(e, self.config.retry_delay * (2**attempt))
                else:
                    delay = self.config.retry_delay * (2**attempt)
                logger.warning(f"Anthropic call failed ({error.code}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

    def _to_anthropic_tools(self, tools: list[LLMToolDefinition] | None) -> list[AnthropicTool]:
        if not tools:
            return []
        anthropic_tools = [
            AnthropicTool(name=t.name, description=t.description, input_schema=t.input_schema) for t in tools
        ]
        # Cache control on the last tool caches all tool definitions
        anthropic_tools[-1].cache_control = CacheControl(type="ephemeral", ttl="5m")
        return anthropic_tools

    @staticmethod
    def _to_anthropic_message(message: LLMMessage) -> dict[str, Any]:
        if isinstance(message.content, str):
            return {"role": message.role, "content": message.content}
        return {"role": message.role, "content": [block.model_dump() for block in message.content]}

    @staticmethod
    def _message_text(message: LLMMessage) -> str:
        if isinstance(message.content, str):
            return message.content
        parts = []
        for block in message.content:
            if isinstance(block, TextBlock):
                parts.append(block.text)
            elif isinstance(block, ToolUseBlock):
                parts.append(block.name + json.dumps(block.input))
            elif isinstance(block, ToolResultBlock):
                parts.append(block.content)
        return "".join(parts)

    def _estimate_tokens(self, messages: list[LLMMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting."""
        text_content = system_prompt + "".join(self._message_text(m) for m in messages)
        return self.estimate_message_tokens(text_content)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def truncate_conversation(
        self, messages: list[LLMMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[LLMMessage]:
        """Drop the oldest turns until the conversation fits within token limits.

        The kept history always starts at a plain user message, so a
        tool_result turn is never separated from the tool_use it answers.
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom
        available_tokens -= self.estimate_message_tokens(system_prompt)
        if tools:
            tool_content = "".join(t.name + t.description + str(t.input_schema) for t in tools)
            available_tokens -= self.estimate_message_tokens(tool_content)

        start = len(messages)
        current_tokens = 0
        for index in range(len(messages) - 1, -1, -1):
            message_tokens = self.estimate_message_tokens(self._message_text(messages[index]))
            if current_tokens + message_tokens > available_tokens:
                break
            current_tokens += message_tokens
            start = index

        # Advance to a turn boundary the API accepts as the first message
        while start < len(messages) and not (
            messages[start].role == "user" and isinstance(messages[start].content, str)
        ):
            start += 1

        if start >= len(messages):
            # Nothing fits: keep the latest turn and let the API decide
            logger.warning(f"Conversation does not fit in {available_tokens} tokens; sending only the last turn")
            return messages[-1:]

        if start > 0:
            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(messages) - start} messages "
                f"to fit within {available_tokens} token limit"
            )

        return messages[start:]
