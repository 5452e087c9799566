"""API request and response models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from lorekeeper.models.entities import PageContext
from lorekeeper.models.proposals import Proposal
from lorekeeper.models.work_items import WorkItem


class CreateSessionRequest(BaseModel):
    """Request model for starting a conversation."""

    campaign_id: str = Field(..., min_length=1)
    page_context: PageContext | None = None


class SessionResponse(BaseModel):
    """Response model describing a session."""

    session_id: str
    campaign_id: str
    created_at: datetime
    message_count: int = 0


class MessageRequest(BaseModel):
    """Request model for sending a message."""

    message: str = Field(..., min_length=1)
    page_context: PageContext | None = Field(
        default=None, description="What the user is viewing now; replaces the session's page context when given"
    )


class UsageResponse(BaseModel):
    """Token usage and estimated cost of a run."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_hit_rate: float = 0.0
    cache_savings: float = 0.0  # percent of input cost saved by cache reads, net of cache writes
    cost: str = "$0.00"


class MessageResponse(BaseModel):
    """Response model for a completed agent run."""

    session_id: str
    response: str
    completed: bool
    cancelled: bool = False
    error: str | None = None
    stop_reason: str | None = None
    iterations: int
    usage: UsageResponse
    work_items: list[WorkItem] = Field(default_factory=list)
    proposals: list[Proposal] = Field(default_factory=list, description="Proposals created during this run")


class ProposalListResponse(BaseModel):
    """Response model for listing a session's proposals."""

    session_id: str
    proposals: list[Proposal]


class AcceptProposalRequest(BaseModel):
    """Request model for accepting a proposal, optionally with the user's edits."""

    edited_data: dict[str, Any] | None = None


class ProposalActionResponse(BaseModel):
    """Response model for accept and reject actions."""

    proposal: Proposal
    entity: dict[str, Any] | None = None
    relationships: list[dict[str, Any]] = Field(default_factory=list)
    skipped_relationships: list[str] = Field(default_factory=list)


class CancelResponse(BaseModel):
    """Response model for cancelling a run."""

    session_id: str
    cancelled: bool


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
