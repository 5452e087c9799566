"""Proposal tracker: reviewable entity mutations created by the assistant's tools.

The tracker never touches the data backend. Accepting a proposal (performing the real mutation) is the job of
`ProposalHandler`, which only transitions the status here once the backend has confirmed.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, assert_never

from cuid2 import cuid_wrapper

from lorekeeper.models.proposals import (
    CreateProposal,
    FieldPatch,
    PatchProposal,
    Proposal,
    ProposalStatus,
    RelationshipProposal,
    SuggestedRelationship,
    UpdateProposal,
)
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

_STATUS_LABELS: dict[str, str] = {"pending": "[Pending]", "accepted": "[Accepted]", "rejected": "[Rejected]"}


class ProposalNotFoundError(KeyError):
    """No proposal with the given id."""


class ProposalStateError(ValueError):
    """The proposal has already been accepted or rejected."""


def describe_proposal(proposal: Proposal) -> str:
    """One-line markdown summary of a proposal."""
    status = _STATUS_LABELS[proposal.status]
    match proposal:
        case CreateProposal():
            return f"{status} Create {proposal.entity_type}: **{proposal.name}** (id: {proposal.id})"
        case UpdateProposal():
            fields = ", ".join(proposal.changes)
            return (
                f"{status} Update {proposal.entity_type} ({proposal.entity_id}): fields [{fields}] (id: {proposal.id})"
            )
        case PatchProposal():
            fields = ", ".join(patch.field for patch in proposal.patches)
            return (
                f"{status} Patch {proposal.entity_type} ({proposal.entity_id}): fields [{fields}] (id: {proposal.id})"
            )
        case RelationshipProposal():
            return (
                f"{status} Relationship: {proposal.source_name} → {proposal.relationship_type} → "
                f"{proposal.target_name} (id: {proposal.id})"
            )
        case _:
            assert_never(proposal)


class ProposalTracker:
    """Append-only store of proposals for one conversation session."""

    def __init__(self, on_proposal_created: Callable[[Proposal], None] | None = None):
        self._proposals: dict[str, Proposal] = {}
        self._applying: set[str] = set()
        self.on_proposal_created = on_proposal_created

    def _new_id(self) -> str:
        return f"proposal_{cuid()}"

    def _store(self, proposal: Proposal) -> None:
        self._proposals[proposal.id] = proposal
        logger.info(f"Created {proposal.operation} proposal {proposal.id}")
        if self.on_proposal_created:
            self.on_proposal_created(proposal)

    def add_create_proposal(
        self,
        entity_type: str,
        data: dict[str, Any],
        *,
        reasoning: str | None = None,
        suggested_relationships: list[SuggestedRelationship] | None = None,
        parent_id: str | None = None,
    ) -> CreateProposal:
        proposal = CreateProposal(
            id=self._new_id(),
            entity_type=entity_type,
            data=data,
            reasoning=reasoning,
            suggested_relationships=suggested_relationships,
            parent_id=parent_id,
        )
        self._store(proposal)
        return proposal

    def add_update_proposal(
        self,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
        *,
        reasoning: str | None = None,
        current_data: dict[str, Any] | None = None,
    ) -> UpdateProposal:
        proposal = UpdateProposal(
            id=self._new_id(),
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes,
            reasoning=reasoning,
            current_data=current_data,
        )
        self._store(proposal)
        return proposal

    def add_patch_proposal(
        self,
        entity_type: str,
        entity_id: str,
        patches: list[FieldPatch],
        *,
        reasoning: str | None = None,
        current_data: dict[str, Any] | None = None,
        preview_data: dict[str, Any] | None = None,
    ) -> PatchProposal:
        proposal = PatchProposal(
            id=self._new_id(),
            entity_type=entity_type,
            entity_id=entity_id,
            patches=patches,
            reasoning=reasoning,
            current_data=current_data,
            preview_data=preview_data,
        )
        self._store(proposal)
        return proposal

    def add_relationship_proposal(
        self,
        source_type: str,
        source_id: str,
        source_name: str,
        target_type: str,
        target_id: str,
        target_name: str,
        relationship_type: str,
        *,
        description: str | None = None,
        is_bidirectional: bool = True,
        reasoning: str | None = None,
    ) -> RelationshipProposal:
        proposal = RelationshipProposal(
            id=self._new_id(),
            source_type=source_type,
            source_id=source_id,
            source_name=source_name,
            target_type=target_type,
            target_id=target_id,
            target_name=target_name,
            relationship_type=relationship_type,
            description=description,
            is_bidirectional=is_bidirectional,
            reasoning=reasoning,
        )
        self._store(proposal)
        return proposal

    def get(self, proposal_id: str) -> Proposal | None:
        return self._proposals.get(proposal_id)

    def require(self, proposal_id: str) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def list(self) -> list[Proposal]:
        return list(self._proposals.values())

    def pending(self) -> list[Proposal]:
        return [proposal for proposal in self._proposals.values() if proposal.status == "pending"]

    def accepted(self) -> list[Proposal]:
        return [proposal for proposal in self._proposals.values() if proposal.status == "accepted"]

    def rejected(self) -> list[Proposal]:
        return [proposal for proposal in self._proposals.values() if proposal.status == "rejected"]

    def has_pending(self) -> bool:
        return any(proposal.status == "pending" for proposal in self._proposals.values())

    def accept(self, proposal_id: str) -> Proposal:
        return self._transition(proposal_id, "accepted")

    def reject(self, proposal_id: str) -> Proposal:
        return self._transition(proposal_id, "rejected")

    @contextmanager
    def applying(self, proposal_id: str) -> Iterator[Proposal]:
        """Reserve a pending proposal while its mutation runs against the backend.

        Any other accept or reject of the same proposal is refused until the block exits. The status is left
        untouched; the caller calls `accept` after a successful mutation.

        Raises:
            ProposalNotFoundError: If no proposal has this id
            ProposalStateError: If the proposal is resolved or already being applied
        """
        proposal = self._require_open(proposal_id)
        self._applying.add(proposal_id)
        try:
            yield proposal
        finally:
            self._applying.discard(proposal_id)

    def _require_open(self, proposal_id: str) -> Proposal:
        proposal = self.require(proposal_id)
        if proposal.status != "pending":
            raise ProposalStateError(f"Proposal {proposal_id} is already {proposal.status}")
        if proposal_id in self._applying:
            raise ProposalStateError(f"Proposal {proposal_id} is already being applied")
        return proposal

    def _transition(self, proposal_id: str, status: ProposalStatus) -> Proposal:
        """Move a pending proposal to a terminal status.

        Raises:
            ProposalNotFoundError: If no proposal has this id
            ProposalStateError: If the proposal is no longer pending or is being applied
        """
        proposal = self._require_open(proposal_id).model_copy(update={"status": status})
        self._proposals[proposal_id] = proposal
        logger.info(f"Proposal {proposal_id} {status}")
        return proposal

    def to_markdown(self) -> str:
        proposals = self.list()
        if not proposals:
            return "No proposals."
        return "\n".join(describe_proposal(proposal) for proposal in proposals)
