"""Agent runner: the multi-iteration loop alternating streamed model turns and tool execution."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

from lorekeeper.clients.anthropic import AnthropicClient, CacheBreakpoints, StreamRequest
from lorekeeper.models.llm import LLMMessage, LLMToolDefinition, LLMUsage, StreamResult, ToolResultBlock
from lorekeeper.models.work_items import WorkItem
from lorekeeper.services.prompts import build_system_prompt
from lorekeeper.services.stream import StreamAbortedError, StructuredOutputError
from lorekeeper.services.work_items import WorkItemTracker
from lorekeeper.tools.base import ToolCategory, ToolContext
from lorekeeper.tools.registry import ToolsRegistry
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)

EventType = Literal["assistant_text", "tool_start", "tool_result"]
EventVisibility = Literal["ephemeral", "narrated", "silent"]

# How each tool category is surfaced to the user; dispatch is identical for all of them
_VISIBILITY: dict[str, EventVisibility] = {"read": "ephemeral", "write": "narrated", "internal": "silent"}


@dataclass
class AgentConfig:
    """Configuration for one agent run."""

    model: str | None = None  # None uses the client's configured model
    max_iterations: int = 20
    max_tokens: int = 4096
    system_prompt: str = field(default_factory=build_system_prompt)
    output_schema: type[BaseModel] | None = None
    cache: CacheBreakpoints = field(default_factory=CacheBreakpoints)


class AgentEvent(BaseModel):
    """Progress notification emitted while the agent runs."""

    type: EventType
    content: str
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    category: ToolCategory | None = None
    visibility: EventVisibility = "narrated"
    is_error: bool = False
    data: Any = None


@dataclass
class AgentRunResult:
    """Terminal state of an agent run. Every run produces one, whatever happened."""

    response: str
    iterations: int
    usage: LLMUsage
    messages: list[LLMMessage]
    work_items: list[WorkItem]
    completed: bool
    cancelled: bool = False
    error: str | None = None
    stop_reason: str | None = None
    structured_output: Any = None


TextDeltaCallback = Callable[[str], None]
EventCallback = Callable[[AgentEvent], None]
UsageCallback = Callable[[LLMUsage, LLMUsage], None]


def describe_tool_call(name: str, tool_input: dict[str, Any]) -> str:
    """Short present-tense description of a tool call for progress indicators."""
    match name:
        case "search_entities":
            return f'Searching for "{tool_input.get("query", "")}"'
        case "get_entity":
            return f"Reading {tool_input.get('entity_type', 'entity')} details"
        case "get_relationships":
            return "Finding connections"
        case "get_location_hierarchy":
            return "Mapping the surrounding locations"
        case "get_timeline":
            return "Reviewing the timeline"
        case "get_campaign_context":
            return "Reviewing the campaign"
        case "get_page_context":
            return "Looking at the current page"
        case "propose_create":
            entity_name = (tool_input.get("data") or {}).get("name")
            subject = f'{tool_input.get("entity_type", "entity")} "{entity_name}"' if entity_name else "a new entity"
            return f"Drafting {subject}"
        case "propose_update" | "propose_patch":
            return f"Drafting changes to a {tool_input.get('entity_type', 'entity')}"
        case "propose_relationship":
            return "Drafting a relationship"
        case "add_work_item" | "update_work_item" | "list_work_items":
            return "Planning"
        case _:
            return f"Using {name}"


class AgentRunner:
    """Drives a conversation until the model answers, the caller cancels or the iteration cap is hit.

    One runner can serve many runs; each run keeps its own usage totals and history copy. Tool calls within a turn
    run strictly in order.
    """

    def __init__(
        self,
        client: AnthropicClient,
        registry: ToolsRegistry,
        config: AgentConfig | None = None,
        *,
        context: ToolContext | None = None,
        work_items: WorkItemTracker | None = None,
    ):
        """Initialize the runner.

        Args:
            client: Anthropic client handle used to open streams
            registry: Tools available to the model
            config: Run configuration
            context: Tool context, overriding the registry's default
            work_items: Planning tracker whose items are reported with the result
        """
        self.client = client
        self.registry = registry
        self.config = config or AgentConfig()
        self.context = context
        self.work_items = work_items

    async def run(
        self,
        messages: list[LLMMessage],
        *,
        on_text_delta: TextDeltaCallback | None = None,
        on_event: EventCallback | None = None,
        on_usage: UsageCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AgentRunResult:
        """Run the agent loop over a conversation history.

        Args:
            messages: Conversation so far, ending with the user's turn
            on_text_delta: Called with each streamed text delta
            on_event: Called with progress events (assistant text, tool start, tool result)
            on_usage: Called after each model turn with that turn's usage and the running totals
            cancel: Setting this event stops the run at the next checkpoint, aborting any open stream

        Returns:
            The run result; this method does not raise
        """
        history = list(messages)
        usage = LLMUsage()
        tools = self.registry.get_tool_schemas()
        max_iterations = self.config.max_iterations
        iterations = 0
        final_text = ""

        def finish(response: str, completed: bool, **kwargs: Any) -> AgentRunResult:
            return AgentRunResult(
                response=response,
                iterations=iterations,
                usage=usage.copy(),
                messages=history,
                work_items=self.work_items.list() if self.work_items else [],
                completed=completed,
                **kwargs,
            )

        def emit(event: AgentEvent) -> None:
            if on_event:
                on_event(event)

        logger.info(
            f"Starting agent run with {len(history)} messages, {len(tools)} tools, max_iterations: {max_iterations}"
        )

        try:
            while iterations < max_iterations:
                if cancel is not None and cancel.is_set():
                    logger.info(f"Agent run cancelled before iteration {iterations + 1}")
                    return finish(final_text, completed=False, cancelled=True)

                iterations += 1
                logger.debug(f"Agent iteration {iterations}/{max_iterations}")

                buffer: list[str] = []
                try:
                    turn = await self._stream_turn(history, tools, buffer, on_text_delta, cancel)
                except StreamAbortedError:
                    logger.info(f"Agent run cancelled while streaming iteration {iterations}")
                    return finish("".join(buffer) or final_text, completed=False, cancelled=True)
                except StructuredOutputError as e:
                    logger.error(f"Structured output failed twice in iteration {iterations}: {e}")
                    usage.add(e.usage)
                    if on_usage:
                        on_usage(e.usage, usage.copy())
                    return finish(final_text, completed=False, error=str(e))

                usage.add(turn.usage)
                if on_usage:
                    on_usage(turn.usage, usage.copy())

                if turn.text:
                    final_text = turn.text
                    emit(AgentEvent(type="assistant_text", content=turn.text))

                history.append(LLMMessage(role="assistant", content=turn.content))

                tool_blocks = turn.tool_use_blocks
                if not tool_blocks:
                    if turn.stop_reason != "end_turn":
                        logger.warning(f"Model stopped with {turn.stop_reason} and no tool calls, ending run")
                        return finish(
                            final_text,
                            completed=False,
                            stop_reason=turn.stop_reason,
                            error=f"Model stopped before finishing its answer (stop reason: {turn.stop_reason})",
                        )
                    logger.info(f"Agent run completed in {iterations} iterations")
                    return finish(
                        final_text, completed=True, stop_reason=turn.stop_reason, structured_output=turn.parsed
                    )

                logger.info(f"Model requested {len(tool_blocks)} tool calls")
                tool_results: list[ToolResultBlock] = []
                for block in tool_blocks:
                    if cancel is not None and cancel.is_set():
                        # Unanswered tool calls must not stay in the history
                        history.pop()
                        logger.info(f"Agent run cancelled before tool {block.name}")
                        return finish(final_text, completed=False, cancelled=True)

                    category = self.registry.category_of(block.name)
                    visibility = _VISIBILITY[category]
                    emit(
                        AgentEvent(
                            type="tool_start",
                            content=block.input.get("flavor") or describe_tool_call(block.name, block.input),
                            tool_name=block.name,
                            tool_input=block.input,
                            category=category,
                            visibility=visibility,
                        )
                    )

                    logger.debug(f"Executing tool: {block.name} with input: {block.input}")
                    result = await self.registry.execute(block.name, block.input, self.context)
                    if not result.success:
                        logger.info(f"Tool {block.name} returned an error: {result.content[:100]}")

                    emit(
                        AgentEvent(
                            type="tool_result",
                            content=result.content,
                            tool_name=block.name,
                            category=category,
                            visibility=visibility,
                            is_error=not result.success,
                            data=result.data,
                        )
                    )
                    tool_results.append(
                        ToolResultBlock(tool_use_id=block.id, content=result.content, is_error=not result.success)
                    )

                history.append(LLMMessage(role="user", content=tool_results))

            logger.warning(f"Agent run reached max iterations ({max_iterations})")
            return finish(final_text, completed=False, error=f"Reached maximum iterations ({max_iterations})")

        except Exception as e:
            logger.error(f"Agent run failed: {e}", exc_info=True)
            return finish(final_text, completed=False, error=str(e))

    async def _stream_turn(
        self,
        history: list[LLMMessage],
        tools: list[LLMToolDefinition],
        buffer: list[str],
        on_text_delta: TextDeltaCallback | None,
        cancel: asyncio.Event | None,
    ) -> StreamResult:
        """Stream one model turn, retrying once if structured output fails to parse."""
        request = StreamRequest(
            system_prompt=self.config.system_prompt,
            messages=history,
            tools=tools,
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            output_schema=self.config.output_schema,
            cache=self.config.cache,
        )

        try:
            return await self._stream_once(request, buffer, on_text_delta, cancel)
        except StructuredOutputError as e:
            logger.warning(f"{e}, retrying once")
            discarded = e.usage

        # The rejected attempt was billed too
        buffer.clear()
        try:
            turn = await self._stream_once(request, buffer, on_text_delta, cancel)
        except StructuredOutputError as e:
            e.usage.add(discarded)
            raise
        turn.usage.add(discarded)
        return turn

    async def _stream_once(
        self,
        request: StreamRequest,
        buffer: list[str],
        on_text_delta: TextDeltaCallback | None,
        cancel: asyncio.Event | None,
    ) -> StreamResult:
        stream = self.client.stream_message(request, cancel=cancel)
        try:
            async for delta in stream.text_deltas():
                buffer.append(delta)
                if on_text_delta:
                    on_text_delta(delta)
            return await stream.final_message()
        except (StreamAbortedError, StructuredOutputError):
            raise
        except BaseException:
            stream.abort()
            raise
