"""Proposal models: reviewable entity mutations suggested by the assistant."""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

ProposalStatus = Literal["pending", "accepted", "rejected"]
PatchType = Literal["unified_diff", "json_patch"]


class SuggestedRelationship(BaseModel):
    """A relationship the assistant suggests alongside a new entity."""

    target_type: str = Field(..., description="Entity type of the relationship target")
    target_name: str = Field(..., description="Name of the relationship target")
    relationship_type: str = Field(..., description="Relationship label, e.g. 'member_of' or 'rival'")
    description: str | None = Field(default=None, description="Optional note about the relationship")
    is_new_entity: bool = Field(
        default=False,
        description="True when the target does not exist yet and would be proposed separately",
    )


class FieldPatch(BaseModel):
    """A patch against a single entity field."""

    field: str = Field(..., description="Name of the field to patch")
    patch_type: PatchType = Field(
        ...,
        description="'unified_diff' for text fields, 'json_patch' (RFC 6902) for JSON fields",
    )
    patch: str = Field(..., description="The patch body: a unified diff, or a JSON array of patch operations")


class BaseProposal(BaseModel):
    """Fields shared by every proposal kind. Immutable: the tracker swaps in a copy when the status changes."""

    id: str
    reasoning: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: ProposalStatus = "pending"

    class Config:
        frozen = True

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


class CreateProposal(BaseProposal):
    """Create a new entity."""

    operation: Literal["create"] = "create"
    entity_type: str
    data: dict[str, Any]
    suggested_relationships: list[SuggestedRelationship] | None = None
    parent_id: str | None = None

    @property
    def name(self) -> str:
        return str(self.data.get("name", "Unnamed"))


class UpdateProposal(BaseProposal):
    """Replace some fields of an existing entity."""

    operation: Literal["update"] = "update"
    entity_type: str
    entity_id: str
    changes: dict[str, Any]
    current_data: dict[str, Any] | None = None


class PatchProposal(BaseProposal):
    """Apply per-field patches to an existing entity."""

    operation: Literal["patch"] = "patch"
    entity_type: str
    entity_id: str
    patches: list[FieldPatch]
    current_data: dict[str, Any] | None = None
    preview_data: dict[str, Any] | None = None


class RelationshipProposal(BaseProposal):
    """Link two existing entities."""

    operation: Literal["relationship"] = "relationship"
    source_type: str
    source_id: str
    source_name: str
    target_type: str
    target_id: str
    target_name: str
    relationship_type: str
    description: str | None = None
    is_bidirectional: bool = True


Proposal = Annotated[
    CreateProposal | UpdateProposal | PatchProposal | RelationshipProposal,
    Field(discriminator="operation"),
]
