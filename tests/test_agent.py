"""Tests for the agent runner loop."""

import asyncio

import pytest
from pydantic import BaseModel

from lorekeeper.models.llm import LLMMessage, LLMUsage, ToolResultBlock
from lorekeeper.services.agent import AgentConfig, AgentRunner, describe_tool_call

from tests.conftest import ScriptedTurn, text_turn, tool_turn


class Answer(BaseModel):
    summary: str


def user(text: str) -> list[LLMMessage]:
    return [LLMMessage(role="user", content=text)]


class TestAgentRunner:
    """Tests for turns, tool dispatch and termination."""

    @pytest.fixture
    def make_runner(self, make_client, registry, work_items):
        def factory(*turns: ScriptedTurn, **config) -> AgentRunner:
            return AgentRunner(make_client(*turns), registry, AgentConfig(**config), work_items=work_items)

        return factory

    @pytest.mark.asyncio
    async def test_plain_answer_completes_in_one_iteration(self, make_runner):
        """Test that a turn without tool calls ends the run."""
        runner = make_runner(text_turn("Port Vael is a harbor town."))
        deltas: list[str] = []

        result = await runner.run(user("Tell me about Port Vael"), on_text_delta=deltas.append)

        assert result.completed is True
        assert result.cancelled is False
        assert result.error is None
        assert result.iterations == 1
        assert result.stop_reason == "end_turn"
        assert result.response == "Port Vael is a harbor town."
        assert "".join(deltas) == "Port Vael is a harbor town."
        assert [message.role for message in result.messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self, make_runner):
        """Test that tool results are fed back and the next turn answers."""
        runner = make_runner(
            tool_turn(("tu_1", "search_entities", {"query": "Aldric"}), text="Let me look into Aldric."),
            text_turn("Aldric captains the harbor watch."),
        )
        events = []

        result = await runner.run(user("Who is Aldric?"), on_event=events.append)

        assert result.completed is True
        assert result.iterations == 2
        assert result.response == "Aldric captains the harbor watch."
        assert [message.role for message in result.messages] == ["user", "assistant", "user", "assistant"]

        tool_results = result.messages[2].content
        assert len(tool_results) == 1
        assert isinstance(tool_results[0], ToolResultBlock)
        assert tool_results[0].tool_use_id == "tu_1"
        assert tool_results[0].is_error is False
        assert "Captain Aldric" in tool_results[0].content

        assert [event.type for event in events] == ["assistant_text", "tool_start", "tool_result", "assistant_text"]
        assert events[1].content == 'Searching for "Aldric"'
        assert events[1].visibility == "ephemeral"
        assert events[1].category == "read"

    @pytest.mark.asyncio
    async def test_search_and_propose_in_one_turn(self, make_runner, proposals, backend):
        """Test that several tool calls in one turn run in order and share one result message."""
        runner = make_runner(
            tool_turn(
                ("tu_1", "search_entities", {"query": "Saltwind"}),
                (
                    "tu_2",
                    "propose_create",
                    {
                        "entity_type": "organization",
                        "data": {"name": "Night Knives", "org_type": "criminal"},
                        "reasoning": "The guild needs a rival.",
                    },
                ),
            ),
            text_turn("I drafted a rival guild for you to review."),
        )
        events = []

        result = await runner.run(user("Create a rival for the Saltwind Guild"), on_event=events.append)

        assert result.completed is True
        tool_results = result.messages[2].content
        assert [block.tool_use_id for block in tool_results] == ["tu_1", "tu_2"]
        assert all(not block.is_error for block in tool_results)

        pending = proposals.pending()
        assert len(pending) == 1
        assert pending[0].name == "Night Knives"
        # Proposals never write to the backend
        assert not any(command.startswith("create_") for command, _ in backend.commands)

        write_events = [event for event in events if event.tool_name == "propose_create"]
        assert [event.visibility for event in write_events] == ["narrated", "narrated"]
        assert write_events[0].content == 'Drafting organization "Night Knives"'

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_the_model(self, make_runner):
        """Test that an unknown tool becomes an error result instead of failing the run."""
        runner = make_runner(tool_turn(("tu_1", "summon_dragon", {})), text_turn("I can't do that."))
        events = []

        result = await runner.run(user("Summon a dragon"), on_event=events.append)

        assert result.completed is True
        block = result.messages[2].content[0]
        assert block.is_error is True
        assert block.content == "Unknown tool: summon_dragon"
        assert events[-2].type == "tool_result"
        assert events[-2].is_error is True

    @pytest.mark.asyncio
    async def test_invalid_tool_input_is_reported_to_the_model(self, make_runner):
        """Test that schema violations come back as a readable error result."""
        runner = make_runner(tool_turn(("tu_1", "search_entities", {})), text_turn("Let me try again."))

        result = await runner.run(user("Search"))

        block = result.messages[2].content[0]
        assert block.is_error is True
        assert block.content.startswith("Invalid input for search_entities:")
        assert "query" in block.content

    @pytest.mark.asyncio
    async def test_flavor_text_replaces_tool_description(self, make_runner):
        """Test that the model's flavor text is used as the progress label."""
        runner = make_runner(
            tool_turn(("tu_1", "search_entities", {"query": "guild", "flavor": "Digging through records"})),
            text_turn("Found it."),
        )
        events = []

        await runner.run(user("Find the guild"), on_event=events.append)

        starts = [event for event in events if event.type == "tool_start"]
        assert starts[0].content == "Digging through records"

    @pytest.mark.asyncio
    async def test_planning_tools_are_silent_and_reported(self, make_runner):
        """Test that work items are surfaced silently and returned with the result."""
        runner = make_runner(
            tool_turn(("tu_1", "add_work_item", {"description": "Find Aldric's allies"})),
            text_turn("Done."),
        )
        events = []

        result = await runner.run(user("Who are Aldric's allies?"), on_event=events.append)

        tool_events = [event for event in events if event.tool_name == "add_work_item"]
        assert {event.visibility for event in tool_events} == {"silent"}
        assert [item.description for item in result.work_items] == ["Find Aldric's allies"]

    @pytest.mark.asyncio
    async def test_max_iterations_stops_the_run(self, make_runner):
        """Test that hitting the iteration cap ends the run with an error."""
        runner = make_runner(
            tool_turn(("tu_1", "search_entities", {"query": "Aldric"}), text="Searching."), max_iterations=1
        )

        result = await runner.run(user("Who is Aldric?"))

        assert result.completed is False
        assert result.cancelled is False
        assert result.iterations == 1
        assert result.error == "Reached maximum iterations (1)"
        assert result.response == "Searching."
        assert [message.role for message in result.messages] == ["user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_max_tokens_stop_is_not_completed(self, make_runner):
        """Test that a truncated turn with no tool calls ends the run as incomplete."""
        runner = make_runner(text_turn("The answer was cut", stop_reason="max_tokens"))

        result = await runner.run(user("Write me an epic"))

        assert result.completed is False
        assert result.cancelled is False
        assert result.stop_reason == "max_tokens"
        assert result.error == "Model stopped before finishing its answer (stop reason: max_tokens)"
        assert result.response == "The answer was cut"
        assert result.iterations == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_returned_not_raised(self, make_runner):
        """Test that a failed model request produces an error result."""
        runner = make_runner(ScriptedTurn(error=RuntimeError("transport exploded")))

        result = await runner.run(user("Hello"))

        assert result.completed is False
        assert result.cancelled is False
        assert result.error == "transport exploded"
        assert result.iterations == 1

    @pytest.mark.asyncio
    async def test_input_history_is_not_mutated(self, make_runner):
        """Test that the caller's message list is left untouched."""
        runner = make_runner(tool_turn(("tu_1", "search_entities", {"query": "Aldric"})), text_turn("Done."))
        messages = user("Who is Aldric?")

        result = await runner.run(messages)

        assert len(messages) == 1
        assert len(result.messages) == 4


class TestAgentCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, make_client, registry):
        """Test that a pre-set cancel signal stops the run before any model call."""
        client = make_client(text_turn("Never sent"))
        runner = AgentRunner(client, registry)
        cancel = asyncio.Event()
        cancel.set()

        result = await runner.run(user("Hello"), cancel=cancel)

        assert result.cancelled is True
        assert result.completed is False
        assert result.iterations == 0
        assert result.response == ""
        assert client.client.messages.calls == []

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_keeps_partial_text(self, make_client, registry, work_items):
        """Test that aborting a stream returns the text so far and runs no tools."""
        turn = ScriptedTurn(
            deltas=["Let me ", "think"],
            content=[{"type": "tool_use", "id": "tu_1", "name": "add_work_item", "input": {"description": "x"}}],
            stop_reason="tool_use",
            hang=True,
        )
        runner = AgentRunner(make_client(turn), registry, work_items=work_items)
        cancel = asyncio.Event()
        deltas: list[str] = []

        def on_text_delta(delta: str) -> None:
            deltas.append(delta)
            if len(deltas) == 2:
                cancel.set()

        result = await asyncio.wait_for(
            runner.run(user("Hello"), on_text_delta=on_text_delta, cancel=cancel), timeout=5
        )

        assert result.cancelled is True
        assert result.completed is False
        assert result.response == "Let me think"
        assert result.usage.input_tokens == 0
        assert work_items.list() == []
        assert [message.role for message in result.messages] == ["user"]

    @pytest.mark.asyncio
    async def test_cancel_between_tools_drops_unanswered_turn(self, make_client, registry, work_items):
        """Test that cancelling inside a tool batch leaves no dangling tool calls in the history."""
        runner = AgentRunner(
            make_client(
                tool_turn(
                    ("tu_1", "add_work_item", {"description": "First"}),
                    ("tu_2", "add_work_item", {"description": "Second"}),
                    text="Planning.",
                )
            ),
            registry,
            work_items=work_items,
        )
        cancel = asyncio.Event()

        def on_event(event) -> None:
            if event.type == "tool_result":
                cancel.set()

        result = await runner.run(user("Plan it"), on_event=on_event, cancel=cancel)

        assert result.cancelled is True
        assert result.response == "Planning."
        assert [item.description for item in work_items.list()] == ["First"]
        assert [message.role for message in result.messages] == ["user"]


class TestStructuredOutput:
    """Tests for schema-constrained final answers."""

    @pytest.mark.asyncio
    async def test_fenced_json_is_parsed(self, make_client, registry):
        """Test that a fenced JSON answer is parsed into the schema."""
        runner = AgentRunner(
            make_client(text_turn('```json\n{"summary": "A harbor town"}\n```')),
            registry,
            AgentConfig(output_schema=Answer),
        )

        result = await runner.run(user("Summarize Port Vael"))

        assert result.completed is True
        assert result.structured_output == Answer(summary="A harbor town")

    @pytest.mark.asyncio
    async def test_parse_failure_is_retried_once(self, make_client, registry):
        """Test that an unparseable answer is requested again."""
        client = make_client(text_turn("Not JSON at all"), text_turn('{"summary": "Second try"}'))
        runner = AgentRunner(client, registry, AgentConfig(output_schema=Answer))
        deltas: list[str] = []

        result = await runner.run(user("Summarize"), on_text_delta=deltas.append)

        assert result.completed is True
        assert result.structured_output.summary == "Second try"
        assert result.response == '{"summary": "Second try"}'
        assert len(client.client.messages.calls) == 2
        # Both attempts reach the caller
        assert "".join(deltas) == 'Not JSON at all{"summary": "Second try"}'

    @pytest.mark.asyncio
    async def test_second_parse_failure_ends_the_run(self, make_client, registry):
        """Test that a second parse failure is reported as an error without a third request."""
        client = make_client(text_turn("Nope"), text_turn("Still nope"))
        runner = AgentRunner(client, registry, AgentConfig(output_schema=Answer))

        result = await runner.run(user("Summarize"))

        assert result.completed is False
        assert "Structured output did not match Answer" in result.error
        assert len(client.client.messages.calls) == 2

    @pytest.mark.asyncio
    async def test_retried_attempt_usage_is_counted(self, make_client, registry):
        """Test that the tokens of the rejected attempt are added to the run totals."""
        client = make_client(
            text_turn("Not JSON", input_tokens=100, output_tokens=40),
            text_turn('{"summary": "ok"}', input_tokens=100, output_tokens=10),
        )
        runner = AgentRunner(client, registry, AgentConfig(output_schema=Answer))
        reported: list[LLMUsage] = []

        result = await runner.run(user("Summarize"), on_usage=lambda turn, total: reported.append(turn))

        assert result.completed is True
        assert result.usage.input_tokens == 200
        assert result.usage.output_tokens == 50
        assert [turn.output_tokens for turn in reported] == [50]

    @pytest.mark.asyncio
    async def test_failed_retry_usage_is_counted(self, make_client, registry):
        """Test that both failed attempts are billed when the run ends on a parse error."""
        client = make_client(
            text_turn("Nope", input_tokens=100, output_tokens=20),
            text_turn("Still nope", input_tokens=100, output_tokens=30),
        )
        runner = AgentRunner(client, registry, AgentConfig(output_schema=Answer))
        totals: list[LLMUsage] = []

        result = await runner.run(user("Summarize"), on_usage=lambda turn, total: totals.append(total))

        assert result.completed is False
        assert result.usage.input_tokens == 200
        assert result.usage.output_tokens == 50
        assert totals[-1].output_tokens == 50

    @pytest.mark.asyncio
    async def test_schema_is_sent_with_the_request(self, make_client, registry):
        """Test that the output schema is attached to the request body."""
        client = make_client(text_turn('{"summary": "ok"}'))
        runner = AgentRunner(client, registry, AgentConfig(output_schema=Answer))

        await runner.run(user("Summarize"))

        params = client.client.messages.calls[0]
        assert params["extra_body"]["output_format"]["schema"]["properties"]["summary"]["type"] == "string"
        assert "anthropic-beta" in params["extra_headers"]


class TestUsageAccounting:
    """Tests for per-run usage totals."""

    @pytest.mark.asyncio
    async def test_usage_reported_after_each_turn(self, make_client, registry):
        """Test that running totals never decrease and match the final result."""
        runner = AgentRunner(
            make_client(
                tool_turn(("tu_1", "search_entities", {"query": "Aldric"}), input_tokens=100, output_tokens=20),
                text_turn("Done.", input_tokens=150, output_tokens=30, cache_read_input_tokens=80),
            ),
            registry,
        )
        reports = []

        result = await runner.run(user("Who is Aldric?"), on_usage=lambda turn, totals: reports.append((turn, totals)))

        assert [turn.input_tokens for turn, _ in reports] == [100, 150]
        assert [totals.input_tokens for _, totals in reports] == [100, 250]
        assert [totals.output_tokens for _, totals in reports] == [20, 50]
        assert result.usage.input_tokens == 250
        assert result.usage.cache_read_input_tokens == 80
        assert result.usage.total_tokens == 300

    @pytest.mark.asyncio
    async def test_usage_resets_between_runs(self, make_client, registry):
        """Test that a reused runner starts each run from zero."""
        runner = AgentRunner(
            make_client(text_turn("One.", input_tokens=40), text_turn("Two.", input_tokens=60)), registry
        )

        first = await runner.run(user("First"))
        second = await runner.run(user("Second"))

        assert first.usage.input_tokens == 40
        assert second.usage.input_tokens == 60


class TestDescribeToolCall:
    """Tests for progress labels."""

    def test_known_tools(self):
        """Test that common tools get descriptive labels."""
        assert describe_tool_call("search_entities", {"query": "tower"}) == 'Searching for "tower"'
        assert describe_tool_call("get_entity", {"entity_type": "quest"}) == "Reading quest details"
        assert describe_tool_call("propose_create", {"entity_type": "location"}) == "Drafting a new entity"
        assert describe_tool_call("update_work_item", {}) == "Planning"

    def test_unknown_tool(self):
        """Test that unknown tools fall back to their name."""
        assert describe_tool_call("roll_dice", {}) == "Using roll_dice"
