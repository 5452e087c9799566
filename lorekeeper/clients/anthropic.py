"""Anthropic API client with rate limiting, prompt caching and streaming."""

import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import tiktoken
from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from lorekeeper.models.llm import ContentBlock, LLMMessage, LLMToolDefinition, TextBlock, ToolUseBlock
from lorekeeper.services.stream import ConversationStream
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)

STRUCTURED_OUTPUT_BETA = "structured-outputs-2025-11-13"


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
class CacheBreakpoints:
    """Which request prefixes to mark as cacheable."""

    system: bool = True
    tools: bool = True
    history: bool = True


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 4096
    temperature: float = 0.7
    max_retries: int = 3
    retry_delay: float = 1.0

    max_message_tokens: int = 8000  # Maximum tokens per individual user message
    requests_per_minute: int = 50
    tokens_per_minute: int = 400_000

    # Encoding used to approximate Claude token counts; None disables tiktoken
    tokenizer_model: str | None = "gpt-4"


@dataclass
class StreamRequest:
    """Everything needed to open one streamed model turn."""

    system_prompt: str
    messages: list[LLMMessage]
    tools: list[LLMToolDefinition] = field(default_factory=list)
    model: str | None = None
    max_tokens: int | None = None
    output_schema: type[BaseModel] | None = None
    cache: CacheBreakpoints = field(default_factory=CacheBreakpoints)


class AnthropicRateLimiter:
    """Client-side moving-window rate limiter for requests and tokens."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 400_000):
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
        """Wait until the request fits within both limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        cost = min(max(estimated_tokens, 1), self.token_limit.amount)
        if not self.limiter.hit(self.token_limit, token_identifier, cost=cost):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit: Any, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        # reset_time is wall-clock epoch seconds
        wait_time = max(0.0, window_stats.reset_time - time.time())
        if wait_time > 0:
            logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)


class AnthropicClient:
    """Explicit Anthropic API handle shared by the agent runner and its streams."""

    api_key: str
    client: AsyncAnthropic
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter

    def __init__(
        self,
        api_key: str | None = None,
        config: AnthropicConfig | None = None,
        client: AsyncAnthropic | None = None,
    ):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
            client: Pre-built transport, mostly for tests
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.api_key = anthropic_api_key
        self.config = config or AnthropicConfig()
        self.client = client or AsyncAnthropic(api_key=self.api_key, max_retries=0)
        self.rate_limiter = AnthropicRateLimiter(self.config.requests_per_minute, self.config.tokens_per_minute)

        self._tokenizer: tiktoken.Encoding | None = None
        self._tokenizer_loaded = self.config.tokenizer_model is None

    @property
    def tokenizer(self) -> tiktoken.Encoding | None:
        """Token encoder, loaded on first use."""
        if not self._tokenizer_loaded:
            self._tokenizer_loaded = True
            try:
                # Close approximation for Claude
                self._tokenizer = tiktoken.encoding_for_model(self.config.tokenizer_model)
            except Exception as e:
                logger.warning(f"Tokenizer unavailable, falling back to character estimate: {e}")
                self._tokenizer = None
        return self._tokenizer

    @tokenizer.setter
    def tokenizer(self, value: tiktoken.Encoding | None) -> None:
        self._tokenizer = value
        self._tokenizer_loaded = True

    def stream_message(self, request: StreamRequest, cancel: asyncio.Event | None = None) -> ConversationStream:
        """Open a streamed model turn.

        Args:
            request: Model, prompt, history, tools and options for this turn
            cancel: Event that aborts the stream when set

        Returns:
            A channel yielding text deltas and the final message
        """
        params = self.build_request_params(request)
        estimated_tokens = self._estimate_tokens(request.messages, request.system_prompt)
        logger.debug(
            f"Opening stream with {len(request.messages)} messages, {len(request.tools)} tools, "
            f"~{estimated_tokens} input tokens"
        )
        return ConversationStream(
            self,
            params,
            output_schema=request.output_schema,
            cancel=cancel,
            estimated_tokens=estimated_tokens,
        )

    def build_request_params(self, request: StreamRequest) -> dict[str, Any]:
        """Build Messages API parameters, adding cache breakpoints where requested."""
        cache_control = CacheControl().model_dump()

        system_block: dict[str, Any] = {"type": "text", "text": request.system_prompt}
        if request.cache.system:
            system_block["cache_control"] = cache_control

        params: dict[str, Any] = {
            "model": request.model or self.config.model,
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": [system_block],
            "messages": self._message_dicts(request.messages, request.cache.history),
        }

        if request.tools:
            anthropic_tools = []
            for i, tool in enumerate(request.tools):
                # The last tool's breakpoint caches every tool definition before it
                is_last = i == len(request.tools) - 1
                anthropic_tools.append(
                    AnthropicTool(
                        name=tool.name,
                        description=tool.description,
                        input_schema=tool.input_schema,
                        cache_control=CacheControl() if is_last and request.cache.tools else None,
                    ).model_dump(exclude_none=True)
                )
            params["tools"] = anthropic_tools

        if request.output_schema is not None:
            params["extra_headers"] = {"anthropic-beta": STRUCTURED_OUTPUT_BETA}
            params["extra_body"] = {
                "output_format": {"type": "json_schema", "schema": request.output_schema.model_json_schema()}
            }

        return params

    @staticmethod
    def _message_dicts(messages: list[LLMMessage], cache_history: bool) -> list[dict[str, Any]]:
        message_dicts = [message.model_dump() for message in messages]
        if not cache_history or not message_dicts:
            return message_dicts

        last = message_dicts[-1]
        if isinstance(last["content"], str):
            last["content"] = [{"type": "text", "text": last["content"]}]
        if last["content"]:
            last["content"][-1]["cache_control"] = CacheControl().model_dump()
        return message_dicts

    def retry_delay(self, error: Exception, attempt: int) -> float | None:
        """Seconds to wait before retrying a failed request, or None when it should not be retried."""
        if attempt >= self.config.max_retries - 1:
            return None

        if isinstance(error, APIStatusError):
            if error.status_code == 429:
                retry_after = 60.0
                if error.response is not None:
                    try:
                        retry_after = float(error.response.headers.get("retry-after", 60))
                    except ValueError:
                        pass
                return retry_after if retry_after < 120 else None
            if error.status_code >= 500:
                return self.config.retry_delay * (2**attempt)
            return None

        if isinstance(error, APIConnectionError):
            return self.config.retry_delay * (2**attempt)

        return None

    def convert_content_blocks(self, anthropic_content: list[Any]) -> list[ContentBlock]:
        """Convert Anthropic content blocks to our ContentBlock types."""
        converted_blocks: list[ContentBlock] = []
        for block in anthropic_content:
            if hasattr(block, "model_dump"):
                block_dict = block.model_dump()
            elif isinstance(block, dict):
                block_dict = dict(block)
            else:
                block_dict = vars(block)

            block_type = block_dict.get("type")
            if block_type == "text":
                converted_blocks.append(TextBlock.model_validate(block_dict))
            elif block_type == "tool_use":
                converted_blocks.append(ToolUseBlock.model_validate(block_dict))
            else:
                logger.warning(f"Skipping unsupported content block type: {block_type}")

        return converted_blocks

    def _estimate_tokens(self, messages: list[LLMMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting."""
        text_content = system_prompt

        for message in messages:
            if isinstance(message.content, str):
                text_content += message.content
                continue
            for block in message.content:
                if isinstance(block, TextBlock):
                    text_content += block.text
                elif isinstance(block, ToolUseBlock):
                    text_content += str(block.input)
                else:
                    text_content += block.content

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
            # Roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Args:
            message: Message content

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )
