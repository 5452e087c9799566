"""Shared fixtures: a scripted stand-in for the Anthropic streaming API and a seeded campaign."""

import asyncio
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest

from lorekeeper.clients.anthropic import AnthropicClient, AnthropicConfig
from lorekeeper.clients.backend import InMemoryBackend
from lorekeeper.services.proposals import ProposalTracker
from lorekeeper.services.work_items import WorkItemTracker
from lorekeeper.tools.base import ToolContext
from lorekeeper.tools.registry import build_tools_registry

CAMPAIGN_ID = "campaign-1"


@dataclass
class ScriptedTurn:
    """One model turn the fake transport will play back."""

    deltas: list[str] = field(default_factory=list)
    content: list[dict[str, Any]] = field(default_factory=list)
    stop_reason: str = "end_turn"
    input_tokens: int = 10
    output_tokens: int = 5
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    error: Exception | None = None  # raised when the stream is opened
    error_after_deltas: Exception | None = None  # raised mid-stream
    hang: bool = False  # block after the deltas until cancelled


def text_turn(text: str, *, stop_reason: str = "end_turn", chunks: int = 2, **usage: int) -> ScriptedTurn:
    size = max(1, len(text) // chunks)
    deltas = [text[i : i + size] for i in range(0, len(text), size)]
    return ScriptedTurn(deltas=deltas, content=[{"type": "text", "text": text}], stop_reason=stop_reason, **usage)


def tool_turn(*calls: tuple[str, str, dict[str, Any]], text: str = "", **usage: int) -> ScriptedTurn:
    content: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    for call_id, name, tool_input in calls:
        content.append({"type": "tool_use", "id": call_id, "name": name, "input": tool_input})
    return ScriptedTurn(deltas=[text] if text else [], content=content, stop_reason="tool_use", **usage)


class FakeStream:
    def __init__(self, turn: ScriptedTurn):
        self.turn = turn

    async def __aenter__(self) -> "FakeStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    @property
    def text_stream(self):
        return self._text()

    async def _text(self):
        for delta in self.turn.deltas:
            yield delta
            await asyncio.sleep(0)
        if self.turn.error_after_deltas is not None:
            raise self.turn.error_after_deltas
        if self.turn.hang:
            await asyncio.Event().wait()

    async def get_final_message(self) -> SimpleNamespace:
        return SimpleNamespace(
            content=self.turn.content,
            stop_reason=self.turn.stop_reason,
            usage=SimpleNamespace(
                input_tokens=self.turn.input_tokens,
                output_tokens=self.turn.output_tokens,
                cache_creation_input_tokens=self.turn.cache_creation_input_tokens,
                cache_read_input_tokens=self.turn.cache_read_input_tokens,
            ),
            model="claude-test",
        )


class FakeMessages:
    def __init__(self, turns: list[ScriptedTurn]):
        self.turns = list(turns)
        self.calls: list[dict[str, Any]] = []

    def stream(self, **params: Any) -> FakeStream:
        self.calls.append(params)
        if not self.turns:
            raise AssertionError("The model was called more times than scripted")
        turn = self.turns.pop(0)
        if turn.error is not None:
            raise turn.error
        return FakeStream(turn)


class FakeAnthropic:
    """Mimics the `AsyncAnthropic().messages.stream(...)` surface."""

    def __init__(self, turns: list[ScriptedTurn]):
        self.messages = FakeMessages(turns)


@pytest.fixture
def make_client():
    """Build an AnthropicClient whose transport plays back the given turns."""

    def factory(*turns: ScriptedTurn, **config: Any) -> AnthropicClient:
        config.setdefault("tokenizer_model", None)
        config.setdefault("retry_delay", 0.0)
        return AnthropicClient(api_key="test-key", config=AnthropicConfig(**config), client=FakeAnthropic(list(turns)))

    return factory


@pytest.fixture
def backend() -> InMemoryBackend:
    """A small campaign: a captain, his city, and the city's guild."""
    store = InMemoryBackend()
    store.seed("campaign", id=CAMPAIGN_ID, name="Shattered Crown", system="D&D 5e", description="A fractured realm.")
    city = store.seed("location", campaign_id=CAMPAIGN_ID, name="Port Vael", location_type="settlement")
    store.seed(
        "character",
        campaign_id=CAMPAIGN_ID,
        name="Captain Aldric",
        description="A weary captain of the harbor watch.\nHe owes the guild a debt.\n",
        secrets="He sold the harbor keys.",
        location_id=city["id"],
    )
    store.seed("organization", campaign_id=CAMPAIGN_ID, name="Saltwind Guild", org_type="mercantile")
    return store


def find_entity(store: InMemoryBackend, entity_type: str, name: str) -> dict[str, Any]:
    return next(record for record in store.entities[entity_type].values() if record.get("name") == name)


@pytest.fixture
def aldric(backend: InMemoryBackend) -> dict[str, Any]:
    return find_entity(backend, "character", "Captain Aldric")


@pytest.fixture
def context() -> ToolContext:
    return ToolContext(campaign_id=CAMPAIGN_ID)


@pytest.fixture
def proposals() -> ProposalTracker:
    return ProposalTracker()


@pytest.fixture
def work_items() -> WorkItemTracker:
    return WorkItemTracker()


@pytest.fixture
def registry(backend, context, work_items, proposals):
    """The full session tool set over the seeded campaign."""
    return build_tools_registry(backend, context, work_items=work_items, proposals=proposals)
