"""Session state for one campaign conversation."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from lorekeeper.models.entities import PageContext
from lorekeeper.models.llm import LLMMessage, LLMUsage
from lorekeeper.services.proposals import ProposalTracker
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """Conversation state kept between messages: history, proposals and the active run's cancel signal."""

    session_id: str
    campaign_id: str
    page_context: PageContext | None = None
    history: list[LLMMessage] = field(default_factory=list)
    proposals: ProposalTracker = field(default_factory=ProposalTracker)
    usage: LLMUsage = field(default_factory=LLMUsage)
    active_cancel: asyncio.Event | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_running(self) -> bool:
        return self.active_cancel is not None

    def as_dict(self) -> dict[str, Any]:
        """Return the session as a dictionary."""
        return {
            "session_id": self.session_id,
            "campaign_id": self.campaign_id,
            "page_context": self.page_context.model_dump() if self.page_context else None,
            "message_count": len(self.history),
            "proposal_count": len(self.proposals.list()),
            "is_running": self.is_running,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }

    def update_activity(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity = datetime.now(UTC)

    def set_page_context(self, page_context: PageContext | None) -> None:
        logger.debug(f"Session {self.session_id} page context: {page_context}")
        self.page_context = page_context
        self.update_activity()
