"""Mutation tools. They never write to the data backend; each one records a proposal for the user to review."""

from typing import Any

from pydantic import BaseModel, Field

from lorekeeper.clients.backend import DataBackend, EntityNotFoundError
from lorekeeper.models.entities import (
    LOCATION_TYPES,
    MAX_NAME_LENGTH,
    ORGANIZATION_TYPES,
    QUEST_PLOT_TYPES,
    QUEST_STATUSES,
    EntityType,
    UpdatableEntityType,
    entity_name,
)
from lorekeeper.models.proposals import FieldPatch, SuggestedRelationship
from lorekeeper.services.proposals import ProposalTracker
from lorekeeper.tools.base import ToolContext, ToolDefinition, ToolResult
from lorekeeper.tools.entities import fetch_entity
from lorekeeper.utils.patches import apply_field_patches, validate_field_patches

REVIEW_FOOTER = "The user will see this proposal in the chat and can accept, edit, or reject it."

# Vocabulary fields the backend requires per entity type
_REQUIRED_VOCABULARIES: dict[str, tuple[tuple[str, tuple[str, ...]], ...]] = {
    "location": (("location_type", LOCATION_TYPES),),
    "organization": (("org_type", ORGANIZATION_TYPES),),
    "quest": (("plot_type", QUEST_PLOT_TYPES), ("status", QUEST_STATUSES)),
}

_PREVIEW_LENGTH = 50


def validate_proposal_data(entity_type: str, data: dict[str, Any]) -> str | None:
    """Check the fields the backend will insist on. Returns an error message, or None when valid."""
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return "name is required and must be a non-empty string"
    if len(name) > MAX_NAME_LENGTH:
        return f"name must be {MAX_NAME_LENGTH} characters or less"

    for field, allowed in _REQUIRED_VOCABULARIES.get(entity_type, ()):
        value = data.get(field)
        if not value:
            return f"{field} is required. Must be one of: {', '.join(allowed)}"
        if value not in allowed:
            return f'{field} "{value}" is invalid. Must be one of: {", ".join(allowed)}'

    return None


def _preview(value: Any) -> str:
    text = str(value)
    return text[:_PREVIEW_LENGTH] + ("..." if len(text) > _PREVIEW_LENGTH else "")


def _not_found(entity_type: str, entity_id: str) -> ToolResult:
    return ToolResult.fail(
        f'Could not find {entity_type} with ID "{entity_id}". Use search_entities to find the correct ID.'
    )


def _with_footer(lines: list[str], reasoning: str | None) -> str:
    if reasoning:
        lines.extend([f"**Reasoning:** {reasoning}", ""])
    lines.append(REVIEW_FOOTER)
    return "\n".join(lines)


class ProposeCreateInput(BaseModel):
    """Input schema for propose_create."""

    entity_type: EntityType = Field(..., description="Type of entity to create")
    data: dict[str, Any] = Field(
        ...,
        description=(
            "Entity fields. 'name' is always required. Locations need location_type, organizations need "
            "org_type, quests need plot_type and status. Use markdown in descriptions."
        ),
        examples=[{"name": "Khazdurim", "location_type": "territory", "description": "A dwarven mountain realm."}],
    )
    reasoning: str = Field(..., min_length=1, description="Why this entity fits the campaign")
    suggested_relationships: list[SuggestedRelationship] | None = Field(
        default=None, description="Relationships to create once the entity exists"
    )
    parent_id: str | None = Field(default=None, description="Parent location UUID (locations only)")


class ProposeUpdateInput(BaseModel):
    """Input schema for propose_update."""

    entity_type: UpdatableEntityType = Field(..., description="Type of entity to update")
    entity_id: str = Field(..., description="UUID of the entity. Find it with search_entities first.")
    changes: dict[str, Any] = Field(..., description="Only the fields to change, with their new values")
    reasoning: str = Field(..., min_length=1, description="Why these changes are needed")


class ProposePatchInput(BaseModel):
    """Input schema for propose_patch."""

    entity_type: UpdatableEntityType = Field(..., description="Type of entity to patch")
    entity_id: str = Field(..., description="UUID of the entity. Find it with search_entities first.")
    patches: list[FieldPatch] = Field(..., min_length=1, description="Ordered field patches")
    reasoning: str = Field(..., min_length=1, description="Why these changes are needed")


class ProposeRelationshipInput(BaseModel):
    """Input schema for propose_relationship."""

    source_type: EntityType = Field(..., description="Type of the source entity")
    source_id: str = Field(..., description="UUID of the source entity")
    target_type: EntityType = Field(..., description="Type of the target entity")
    target_id: str = Field(..., description="UUID of the target entity")
    relationship_type: str = Field(
        ...,
        min_length=1,
        description="Relationship label, e.g. ally_of, enemy_of, member_of, located_in, related_to",
    )
    description: str | None = Field(default=None, description="Context for the relationship")
    is_bidirectional: bool = Field(default=True, description="Whether the relationship applies both ways")
    reasoning: str = Field(..., min_length=1, description="Why these entities should be linked")


def create_propose_create_tool(tracker: ProposalTracker) -> ToolDefinition:
    async def propose_create(params: ProposeCreateInput, context: ToolContext) -> ToolResult:
        validation_error = validate_proposal_data(params.entity_type, params.data)
        if validation_error:
            return ToolResult.fail(
                f"Proposal validation failed: {validation_error}\n\nPlease fix the data and try again."
            )

        proposal = tracker.add_create_proposal(
            params.entity_type,
            params.data,
            reasoning=params.reasoning,
            suggested_relationships=params.suggested_relationships,
            parent_id=params.parent_id,
        )

        lines = [
            f"Created proposal to make a new {params.entity_type}:",
            "",
            f"**Name:** {params.data['name']}",
            f"**Proposal ID:** {proposal.id}",
            "",
        ]
        if params.suggested_relationships:
            lines.append("**Suggested Relationships:**")
            for relationship in params.suggested_relationships:
                new_tag = " (new entity)" if relationship.is_new_entity else ""
                lines.append(
                    f"- {relationship.relationship_type} → {relationship.target_type}: "
                    f"{relationship.target_name}{new_tag}"
                )
            lines.append("")

        return ToolResult.ok(_with_footer(lines, params.reasoning), data=proposal.model_dump(mode="json"))

    return ToolDefinition(
        name="propose_create",
        description=(
            "Propose creating a new entity in the campaign. This does NOT create the entity immediately: "
            "the user reviews the proposal and can edit, accept or reject it."
        ),
        input_schema_class=ProposeCreateInput,
        handler=propose_create,
        category="write",
    )


def create_propose_update_tool(backend: DataBackend, tracker: ProposalTracker) -> ToolDefinition:
    async def propose_update(params: ProposeUpdateInput, context: ToolContext) -> ToolResult:
        if not params.changes:
            return ToolResult.fail("Changes object is empty. Specify at least one field to update.")

        try:
            current_data = await fetch_entity(backend, params.entity_type, params.entity_id)
        except EntityNotFoundError:
            return _not_found(params.entity_type, params.entity_id)

        proposal = tracker.add_update_proposal(
            params.entity_type,
            params.entity_id,
            params.changes,
            reasoning=params.reasoning,
            current_data=current_data,
        )

        lines = [
            f"Created proposal to update {params.entity_type}: **{entity_name(current_data)}**",
            "",
            f"**Entity ID:** {params.entity_id}",
            f"**Proposal ID:** {proposal.id}",
            "",
            "**Proposed Changes:**",
        ]
        for field, value in params.changes.items():
            current = _preview(current_data[field]) if current_data.get(field) is not None else "(not set)"
            lines.append(f'- **{field}:** "{current}" → "{_preview(value)}"')
        lines.append("")

        return ToolResult.ok(_with_footer(lines, params.reasoning), data=proposal.model_dump(mode="json"))

    return ToolDefinition(
        name="propose_update",
        description=(
            "Propose replacing fields of an existing entity. Use search_entities or get_entity first to find "
            "the entity_id. The user reviews and approves before changes are applied."
        ),
        input_schema_class=ProposeUpdateInput,
        handler=propose_update,
        category="write",
    )


def create_propose_patch_tool(backend: DataBackend, tracker: ProposalTracker) -> ToolDefinition:
    async def propose_patch(params: ProposePatchInput, context: ToolContext) -> ToolResult:
        try:
            current_data = await fetch_entity(backend, params.entity_type, params.entity_id)
        except EntityNotFoundError:
            return _not_found(params.entity_type, params.entity_id)

        errors = validate_field_patches(current_data, params.patches)
        if errors:
            messages = "\n".join(f"- {error.field}: {error}" for error in errors)
            return ToolResult.fail(
                f"Patches cannot be applied:\n{messages}\n\n"
                "Try re-reading the entity to get current content, or use propose_update for full field "
                "replacement."
            )

        patched = apply_field_patches(current_data, params.patches)
        preview_data = {patch.field: patched[patch.field] for patch in params.patches}

        proposal = tracker.add_patch_proposal(
            params.entity_type,
            params.entity_id,
            params.patches,
            reasoning=params.reasoning,
            current_data=current_data,
            preview_data=preview_data,
        )

        lines = [
            f"Created patch proposal for {params.entity_type}: **{entity_name(current_data)}**",
            "",
            f"**Entity ID:** {params.entity_id}",
            f"**Proposal ID:** {proposal.id}",
            "",
            "**Patches:**",
        ]
        for patch in params.patches:
            lines.extend([f"- **{patch.field}** ({patch.patch_type}):", "```", patch.patch.strip(), "```"])
        lines.append("")

        return ToolResult.ok(_with_footer(lines, params.reasoning), data=proposal.model_dump(mode="json"))

    return ToolDefinition(
        name="propose_patch",
        description=(
            "Propose targeted changes to an entity using diffs: a unified diff for text fields or an RFC 6902 "
            "JSON Patch array for JSON fields. Patches are checked against the current content. "
            "The user reviews and approves before changes are applied."
        ),
        input_schema_class=ProposePatchInput,
        handler=propose_patch,
        category="write",
    )


def create_propose_relationship_tool(backend: DataBackend, tracker: ProposalTracker) -> ToolDefinition:
    async def propose_relationship(params: ProposeRelationshipInput, context: ToolContext) -> ToolResult:
        try:
            source = await fetch_entity(backend, params.source_type, params.source_id)
        except EntityNotFoundError:
            return _not_found(params.source_type, params.source_id)
        try:
            target = await fetch_entity(backend, params.target_type, params.target_id)
        except EntityNotFoundError:
            return _not_found(params.target_type, params.target_id)

        proposal = tracker.add_relationship_proposal(
            params.source_type,
            params.source_id,
            entity_name(source),
            params.target_type,
            params.target_id,
            entity_name(target),
            params.relationship_type,
            description=params.description,
            is_bidirectional=params.is_bidirectional,
            reasoning=params.reasoning,
        )

        arrow = "↔" if params.is_bidirectional else "→"
        lines = [
            "Created proposal to link entities:",
            "",
            f"**{proposal.source_name}** ({params.source_type}) {arrow} **{params.relationship_type}** {arrow} "
            f"**{proposal.target_name}** ({params.target_type})",
            "",
            f"**Proposal ID:** {proposal.id}",
            f"**Bidirectional:** {'Yes' if params.is_bidirectional else 'No'}",
        ]
        if params.description:
            lines.append(f"**Description:** {params.description}")
        lines.append("")

        return ToolResult.ok(_with_footer(lines, params.reasoning), data=proposal.model_dump(mode="json"))

    return ToolDefinition(
        name="propose_relationship",
        description=(
            "Propose a relationship between two existing entities. "
            "The user reviews and approves before the relationship is created."
        ),
        input_schema_class=ProposeRelationshipInput,
        handler=propose_relationship,
        category="write",
    )


def create_proposal_tools(backend: DataBackend, tracker: ProposalTracker) -> list[ToolDefinition]:
    return [
        create_propose_create_tool(tracker),
        create_propose_update_tool(backend, tracker),
        create_propose_patch_tool(backend, tracker),
        create_propose_relationship_tool(backend, tracker),
    ]
