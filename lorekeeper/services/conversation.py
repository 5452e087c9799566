"""Conversation service: runs the agent for a session message and keeps the session's history."""

import asyncio

from lorekeeper.clients.anthropic import AnthropicClient
from lorekeeper.clients.backend import DataBackend
from lorekeeper.models.llm import LLMMessage
from lorekeeper.models.session import Session
from lorekeeper.services.agent import (
    AgentConfig,
    AgentRunner,
    AgentRunResult,
    EventCallback,
    TextDeltaCallback,
    UsageCallback,
)
from lorekeeper.services.proposal_handler import ProposalHandler
from lorekeeper.services.prompts import build_system_prompt, infer_task_type
from lorekeeper.services.work_items import WorkItemTracker
from lorekeeper.tools.base import ToolContext
from lorekeeper.tools.registry import build_tools_registry
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)


class SessionBusyError(RuntimeError):
    """The session already has a run in progress."""


class ConversationService:
    """Service for handling conversational AI interactions for campaign sessions."""

    def __init__(
        self,
        client: AnthropicClient,
        backend: DataBackend,
        *,
        model: str | None = None,
        max_iterations: int = 20,
    ):
        """Initialize conversation service.

        Args:
            client: Anthropic client handle shared by every run
            backend: Campaign data backend the tools read from
            model: Model override; None uses the client's configured model
            max_iterations: Iteration cap for each run
        """
        self.client = client
        self.backend = backend
        self.model = model
        self.max_iterations = max_iterations

    async def process_message(
        self,
        message: str,
        session: Session,
        *,
        on_text_delta: TextDeltaCallback | None = None,
        on_event: EventCallback | None = None,
        on_usage: UsageCallback | None = None,
    ) -> AgentRunResult:
        """Run the agent on a user message and store the resulting history on the session.

        Raises:
            ValueError: If message exceeds token limit
            SessionBusyError: If the session is already running
        """
        if session.is_running:
            raise SessionBusyError(f"Session {session.session_id} is already processing a message")
        self.client.validate_message_tokens(message)

        cancel = asyncio.Event()
        session.active_cancel = cancel

        work_items = WorkItemTracker()
        context = ToolContext(campaign_id=session.campaign_id, page_context=session.page_context)
        registry = build_tools_registry(self.backend, context, work_items=work_items, proposals=session.proposals)
        task_type = infer_task_type(message)
        config = AgentConfig(
            model=self.model,
            max_iterations=self.max_iterations,
            system_prompt=build_system_prompt(task_type, session.page_context),
        )
        runner = AgentRunner(self.client, registry, config, work_items=work_items)

        logger.info(f"Processing message for session {session.session_id} as {task_type}: {message[:50]}...")
        try:
            result = await runner.run(
                [*session.history, LLMMessage(role="user", content=message)],
                on_text_delta=on_text_delta,
                on_event=on_event,
                on_usage=on_usage,
                cancel=cancel,
            )
        finally:
            session.active_cancel = None
            session.update_activity()

        session.history = result.messages
        session.usage.add(result.usage)
        logger.info(
            f"Session {session.session_id} run finished: completed={result.completed}, "
            f"cancelled={result.cancelled}, iterations={result.iterations}"
        )
        return result

    def cancel(self, session: Session) -> bool:
        """Signal the session's running agent to stop. Returns False when nothing is running."""
        if session.active_cancel is None:
            return False
        logger.info(f"Cancelling run for session {session.session_id}")
        session.active_cancel.set()
        return True

    def proposal_handler(self, session: Session) -> ProposalHandler:
        return ProposalHandler(self.backend, session.proposals, session.campaign_id)
