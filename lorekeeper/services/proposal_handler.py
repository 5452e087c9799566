"""Applies reviewed proposals to the data backend."""

from dataclasses import dataclass, field
from typing import Any, assert_never

from lorekeeper.clients.backend import BackendError, DataBackend
from lorekeeper.models.proposals import (
    CreateProposal,
    PatchProposal,
    Proposal,
    RelationshipProposal,
    UpdateProposal,
)
from lorekeeper.services.proposals import ProposalTracker
from lorekeeper.utils.logging import get_logger
from lorekeeper.utils.patches import apply_field_patches

logger = get_logger(__name__)


@dataclass
class ProposalOutcome:
    """Result of accepting a proposal."""

    proposal: Proposal
    entity: dict[str, Any] | None = None
    relationships: list[dict[str, Any]] = field(default_factory=list)
    skipped_relationships: list[str] = field(default_factory=list)


class ProposalHandler:
    """Performs the real mutation for an accepted proposal, then resolves it in the tracker.

    The tracker status only changes once the backend has confirmed the mutation. If the backend call fails the
    proposal stays pending and the error propagates to the caller. While the mutation runs, any other accept or
    reject of the same proposal is refused.
    """

    def __init__(self, backend: DataBackend, tracker: ProposalTracker, campaign_id: str):
        self.backend = backend
        self.tracker = tracker
        self.campaign_id = campaign_id

    async def accept(self, proposal_id: str, edited_data: dict[str, Any] | None = None) -> ProposalOutcome:
        """Apply a pending proposal.

        Args:
            proposal_id: Proposal to apply
            edited_data: User edits replacing the proposal's field map (create and update only)

        Raises:
            ProposalNotFoundError: If no proposal has this id
            ProposalStateError: If the proposal was already resolved or is being applied
            BackendError: If the backend rejects the mutation
            PatchApplicationError: If a patch no longer applies to the current entity
        """
        with self.tracker.applying(proposal_id) as proposal:
            logger.info(f"Applying {proposal.operation} proposal {proposal_id}")
            match proposal:
                case CreateProposal():
                    outcome = await self._apply_create(proposal, edited_data)
                case UpdateProposal():
                    outcome = await self._apply_update(proposal, edited_data)
                case PatchProposal():
                    outcome = await self._apply_patch(proposal)
                case RelationshipProposal():
                    outcome = await self._apply_relationship(proposal)
                case _:
                    assert_never(proposal)

        outcome.proposal = self.tracker.accept(proposal_id)
        return outcome

    def reject(self, proposal_id: str) -> Proposal:
        return self.tracker.reject(proposal_id)

    async def _apply_create(self, proposal: CreateProposal, edited_data: dict[str, Any] | None) -> ProposalOutcome:
        data = {**(edited_data or proposal.data), "campaign_id": self.campaign_id}
        if proposal.entity_type == "location" and proposal.parent_id:
            data["parent_id"] = proposal.parent_id

        entity = await self.backend.invoke(f"create_{proposal.entity_type}", {"data": data})
        outcome = ProposalOutcome(proposal=proposal, entity=entity)

        for suggestion in proposal.suggested_relationships or []:
            if suggestion.is_new_entity:
                outcome.skipped_relationships.append(suggestion.target_name)
                continue

            target = await self._find_by_name(suggestion.target_type, suggestion.target_name)
            if target is None:
                logger.warning(
                    f"Skipping suggested relationship to {suggestion.target_type} '{suggestion.target_name}': not found"
                )
                outcome.skipped_relationships.append(suggestion.target_name)
                continue

            try:
                relationship = await self.backend.invoke(
                    "create_relationship",
                    {
                        "campaign_id": self.campaign_id,
                        "source_type": proposal.entity_type,
                        "source_id": entity["id"],
                        "target_type": suggestion.target_type,
                        "target_id": target["entity_id"],
                        "relationship_type": suggestion.relationship_type,
                        "description": suggestion.description,
                        "is_bidirectional": False,
                    },
                )
            except BackendError as e:
                # Entity already created; a failed link only skips this suggestion
                logger.warning(f"Failed to create suggested relationship to '{suggestion.target_name}': {e}")
                outcome.skipped_relationships.append(suggestion.target_name)
                continue
            outcome.relationships.append(relationship)

        return outcome

    async def _apply_update(self, proposal: UpdateProposal, edited_data: dict[str, Any] | None) -> ProposalOutcome:
        entity = await self.backend.invoke(
            f"update_{proposal.entity_type}", {"id": proposal.entity_id, "changes": edited_data or proposal.changes}
        )
        return ProposalOutcome(proposal=proposal, entity=entity)

    async def _apply_patch(self, proposal: PatchProposal) -> ProposalOutcome:
        # The entity may have changed since the proposal was made
        current = await self.backend.invoke(f"get_{proposal.entity_type}", {"id": proposal.entity_id})
        patched = apply_field_patches(current, proposal.patches)
        changes = {patch.field: patched[patch.field] for patch in proposal.patches}

        entity = await self.backend.invoke(
            f"update_{proposal.entity_type}", {"id": proposal.entity_id, "changes": changes}
        )
        return ProposalOutcome(proposal=proposal, entity=entity)

    async def _apply_relationship(self, proposal: RelationshipProposal) -> ProposalOutcome:
        relationship = await self.backend.invoke(
            "create_relationship",
            {
                "campaign_id": self.campaign_id,
                "source_type": proposal.source_type,
                "source_id": proposal.source_id,
                "target_type": proposal.target_type,
                "target_id": proposal.target_id,
                "relationship_type": proposal.relationship_type,
                "description": proposal.description,
                "is_bidirectional": proposal.is_bidirectional,
            },
        )
        return ProposalOutcome(proposal=proposal, relationships=[relationship])

    async def _find_by_name(self, entity_type: str, name: str) -> dict[str, Any] | None:
        results = await self.backend.invoke(
            "search_entities",
            {"campaign_id": self.campaign_id, "query": name, "entity_types": [entity_type], "limit": 10},
        )
        wanted = name.strip().lower()
        return next((result for result in results if result["name"].strip().lower() == wanted), None)
