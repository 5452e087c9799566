"""API endpoints for the campaign assistant."""

import asyncio
import json
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from lorekeeper import __version__
from lorekeeper.clients.backend import BackendError
from lorekeeper.models.conversation import (
    AcceptProposalRequest,
    CancelResponse,
    CreateSessionRequest,
    HealthResponse,
    MessageRequest,
    MessageResponse,
    ProposalActionResponse,
    ProposalListResponse,
    SessionResponse,
    UsageResponse,
)
from lorekeeper.models.llm import LLMUsage
from lorekeeper.models.session import Session
from lorekeeper.services.agent import AgentEvent, AgentRunResult
from lorekeeper.services.conversation import ConversationService, SessionBusyError
from lorekeeper.services.proposals import ProposalNotFoundError, ProposalStateError
from lorekeeper.services.session_manager import InMemorySessionManager
from lorekeeper.utils.logging import get_logger
from lorekeeper.utils.patches import PatchApplicationError
from lorekeeper.utils.pricing import calculate_cost, format_cost

logger = get_logger(__name__)

router = APIRouter()


def get_session_manager(request: Request) -> InMemorySessionManager:
    return request.app.state.session_manager


def get_conversation_service(request: Request) -> ConversationService:
    return request.app.state.conversation_service


SessionManagerDep = Annotated[InMemorySessionManager, Depends(get_session_manager)]
ConversationServiceDep = Annotated[ConversationService, Depends(get_conversation_service)]


def _require_session(session_manager: InMemorySessionManager, session_id: str) -> Session:
    session = session_manager.get_session(session_id)
    if session is None:
        logger.warning(f"Unknown session ID: {session_id}")
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        campaign_id=session.campaign_id,
        created_at=session.created_at,
        message_count=len(session.history),
    )


def _usage_response(service: ConversationService, usage: LLMUsage) -> UsageResponse:
    model = service.model or service.client.config.model
    return UsageResponse(
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        cache_creation_input_tokens=usage.cache_creation_input_tokens,
        cache_read_input_tokens=usage.cache_read_input_tokens,
        cache_hit_rate=usage.cache_hit_rate,
        cache_savings=usage.cost_savings_percentage,
        cost=format_cost(calculate_cost(model, usage)),
    )


def _message_response(
    service: ConversationService, session: Session, result: AgentRunResult, known_proposals: set[str]
) -> MessageResponse:
    return MessageResponse(
        session_id=session.session_id,
        response=result.response,
        completed=result.completed,
        cancelled=result.cancelled,
        error=result.error,
        stop_reason=result.stop_reason,
        iterations=result.iterations,
        usage=_usage_response(service, result.usage),
        work_items=result.work_items,
        proposals=[proposal for proposal in session.proposals.list() if proposal.id not in known_proposals],
    )


def _prepare_message(service: ConversationService, session: Session, body: MessageRequest) -> set[str]:
    """Check the session can take the message and apply its page context. Returns the already-known proposal ids."""
    if session.is_running:
        raise HTTPException(status_code=409, detail=f"Session {session.session_id} is already processing a message")
    try:
        service.client.validate_message_tokens(body.message)
    except ValueError as e:
        logger.warning(f"Message validation error for session {session.session_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    if body.page_context is not None:
        session.set_page_context(body.page_context)
    return {proposal.id for proposal in session.proposals.list()}


@router.post("/sessions", response_model=SessionResponse, status_code=201, tags=["Sessions"])
async def create_session(body: CreateSessionRequest, session_manager: SessionManagerDep) -> SessionResponse:
    """Start a conversation about a campaign."""
    session = session_manager.create_session(body.campaign_id, body.page_context)
    return _session_response(session)


@router.get("/sessions/{session_id}", response_model=SessionResponse, tags=["Sessions"])
async def get_session(session_id: str, session_manager: SessionManagerDep) -> SessionResponse:
    return _session_response(_require_session(session_manager, session_id))


@router.delete("/sessions/{session_id}", status_code=204, tags=["Sessions"])
async def delete_session(session_id: str, session_manager: SessionManagerDep) -> None:
    if not session_manager.delete_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")


@router.post("/sessions/{session_id}/messages", response_model=MessageResponse, tags=["Conversation"])
async def send_message(
    session_id: str,
    body: MessageRequest,
    session_manager: SessionManagerDep,
    service: ConversationServiceDep,
) -> MessageResponse:
    """Send a message and wait for the agent's complete answer."""
    session = _require_session(session_manager, session_id)
    known_proposals = _prepare_message(service, session, body)

    try:
        result = await service.process_message(body.message, session)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return _message_response(service, session, result, known_proposals)


@router.post("/sessions/{session_id}/messages/stream", tags=["Conversation"])
async def stream_message(
    session_id: str,
    body: MessageRequest,
    session_manager: SessionManagerDep,
    service: ConversationServiceDep,
) -> EventSourceResponse:
    """Send a message and stream the run as Server-Sent Events.

    Events: `delta` (text), `tool_start`, `tool_result`, `assistant_text`, `usage` (running totals), then a final
    `result` carrying the MessageResponse, or `error`. Disconnecting cancels the run.
    """
    session = _require_session(session_manager, session_id)
    known_proposals = _prepare_message(service, session, body)
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def on_text_delta(delta: str) -> None:
        queue.put_nowait({"event": "delta", "data": json.dumps({"text": delta})})

    def on_event(event: AgentEvent) -> None:
        queue.put_nowait({"event": event.type, "data": event.model_dump_json()})

    def on_usage(increment: LLMUsage, totals: LLMUsage) -> None:
        queue.put_nowait({"event": "usage", "data": json.dumps(totals.as_dict())})

    async def run() -> None:
        try:
            result = await service.process_message(
                body.message, session, on_text_delta=on_text_delta, on_event=on_event, on_usage=on_usage
            )
            response = _message_response(service, session, result, known_proposals)
            queue.put_nowait({"event": "result", "data": response.model_dump_json()})
        except Exception as e:
            logger.error(f"Streaming run failed for session {session_id}: {e}", exc_info=True)
            queue.put_nowait({"event": "error", "data": json.dumps({"detail": str(e)})})
        finally:
            queue.put_nowait(None)

    async def event_generator():
        task = asyncio.create_task(run())
        try:
            while (item := await queue.get()) is not None:
                yield item
        finally:
            if not task.done():
                logger.info(f"Client disconnected from stream for session {session_id}")
                service.cancel(session)

    return EventSourceResponse(event_generator())


@router.post("/sessions/{session_id}/cancel", response_model=CancelResponse, tags=["Conversation"])
async def cancel_run(
    session_id: str, session_manager: SessionManagerDep, service: ConversationServiceDep
) -> CancelResponse:
    """Stop the session's running agent at its next checkpoint."""
    session = _require_session(session_manager, session_id)
    return CancelResponse(session_id=session_id, cancelled=service.cancel(session))


@router.get("/sessions/{session_id}/proposals", response_model=ProposalListResponse, tags=["Proposals"])
async def list_proposals(session_id: str, session_manager: SessionManagerDep) -> ProposalListResponse:
    session = _require_session(session_manager, session_id)
    return ProposalListResponse(session_id=session_id, proposals=session.proposals.list())


@router.post(
    "/sessions/{session_id}/proposals/{proposal_id}/accept",
    response_model=ProposalActionResponse,
    tags=["Proposals"],
)
async def accept_proposal(
    session_id: str,
    proposal_id: str,
    session_manager: SessionManagerDep,
    service: ConversationServiceDep,
    body: AcceptProposalRequest | None = None,
) -> ProposalActionResponse:
    """Apply a proposal to the campaign data, optionally with the user's edits."""
    session = _require_session(session_manager, session_id)
    handler = service.proposal_handler(session)

    try:
        outcome = await handler.accept(proposal_id, body.edited_data if body else None)
    except ProposalNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Proposal not found: {proposal_id}") from e
    except (ProposalStateError, PatchApplicationError) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except BackendError as e:
        logger.error(f"Backend rejected proposal {proposal_id}: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=str(e)) from e

    return ProposalActionResponse(
        proposal=outcome.proposal,
        entity=outcome.entity,
        relationships=outcome.relationships,
        skipped_relationships=outcome.skipped_relationships,
    )


@router.post(
    "/sessions/{session_id}/proposals/{proposal_id}/reject",
    response_model=ProposalActionResponse,
    tags=["Proposals"],
)
async def reject_proposal(
    session_id: str, proposal_id: str, session_manager: SessionManagerDep, service: ConversationServiceDep
) -> ProposalActionResponse:
    session = _require_session(session_manager, session_id)

    try:
        proposal = service.proposal_handler(session).reject(proposal_id)
    except ProposalNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Proposal not found: {proposal_id}") from e
    except ProposalStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return ProposalActionResponse(proposal=proposal)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
