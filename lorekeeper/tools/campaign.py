"""Campaign overview tools and the full read-only tool set."""

import asyncio

from pydantic import BaseModel, Field

from lorekeeper.clients.backend import BackendError, DataBackend
from lorekeeper.models.entities import ENTITY_PLURALS
from lorekeeper.tools.base import FlavoredInput, ToolContext, ToolDefinition, ToolResult
from lorekeeper.tools.entities import create_get_entity_tool, create_search_entities_tool, fetch_entity
from lorekeeper.tools.relationships import (
    create_get_location_hierarchy_tool,
    create_get_relationships_tool,
    format_location_hierarchy,
    format_relationships,
    get_location_ancestors,
)
from lorekeeper.tools.timeline import create_get_timeline_tool

_COUNTED_TYPES: tuple[tuple[str, str], ...] = (
    ("character", "Characters"),
    ("location", "Locations"),
    ("organization", "Organizations"),
    ("quest", "Quests"),
    ("hero", "Player Heroes"),
    ("session", "Sessions"),
    ("timeline_event", "Timeline Events"),
)

_NAME_LIST_LIMIT = 20


class GetCampaignContextInput(BaseModel):
    """get_campaign_context takes no parameters."""


class GetPageContextInput(FlavoredInput):
    """Input schema for get_page_context."""

    include_relationships: bool = Field(default=True, description="Include the entity's relationships")
    include_hierarchy: bool = Field(default=True, description="Include the location hierarchy for locations")


def _name_list(title: str, records: list[dict]) -> list[str]:
    lines = [f"## {title}"]
    lines.extend(f"- {record.get('name', 'Unnamed')}" for record in records[:_NAME_LIST_LIMIT])
    if len(records) > _NAME_LIST_LIMIT:
        lines.append(f"- ... and {len(records) - _NAME_LIST_LIMIT} more")
    lines.append("")
    return lines


def create_get_campaign_context_tool(backend: DataBackend) -> ToolDefinition:
    async def get_campaign_context(params: GetCampaignContextInput, context: ToolContext) -> ToolResult:
        try:
            campaign = await backend.invoke("get_campaign", {"id": context.campaign_id})
            listings = await asyncio.gather(
                *(
                    backend.invoke(f"list_{ENTITY_PLURALS[entity_type]}", {"campaign_id": context.campaign_id})
                    for entity_type, _ in _COUNTED_TYPES
                )
            )
        except BackendError as e:
            return ToolResult.fail(f"Failed to get campaign context: {e}")

        by_type = {entity_type: records for (entity_type, _), records in zip(_COUNTED_TYPES, listings, strict=True)}
        stats = {entity_type: len(records) for entity_type, records in by_type.items()}

        lines = ["---", f"name: {campaign.get('name')}"]
        if campaign.get("system"):
            lines.append(f"system: {campaign['system']}")
        lines.extend([f"id: {campaign.get('id')}", "---", ""])

        if campaign.get("description"):
            lines.extend(["## Description", campaign["description"], ""])

        lines.extend(["## Campaign Statistics", "", "| Entity Type | Count |", "|-------------|-------|"])
        lines.extend(f"| {label} | {stats[entity_type]} |" for entity_type, label in _COUNTED_TYPES)
        lines.append("")

        if by_type["character"]:
            lines.extend(_name_list("Characters (names)", by_type["character"]))
        if by_type["location"]:
            lines.extend(_name_list("Locations (names)", by_type["location"]))
        if by_type["hero"]:
            lines.append("## Player Heroes")
            for hero in by_type["hero"]:
                classes = f" ({hero['classes']})" if hero.get("classes") else ""
                lines.append(f"- {hero.get('name', 'Unnamed')}{classes}")
            lines.append("")

        return ToolResult.ok("\n".join(lines).rstrip(), data={"campaign": campaign, "stats": stats})

    return ToolDefinition(
        name="get_campaign_context",
        description=(
            "Get a high-level overview of the campaign including its description, game system, and entity "
            "counts. Use this to understand the campaign before diving into specifics."
        ),
        input_schema_class=GetCampaignContextInput,
        handler=get_campaign_context,
    )


def create_get_page_context_tool(backend: DataBackend) -> ToolDefinition:
    async def get_page_context(params: GetPageContextInput, context: ToolContext) -> ToolResult:
        page = context.page_context
        if page is None or not page.has_entity:
            return ToolResult.ok(
                "No specific entity page is being viewed. The user is on a list page or the main dashboard. "
                "Ask what they'd like to explore, or use search_entities to find something specific.",
                data={"no_context": True},
            )

        entity_type, entity_id = page.entity_type, page.entity_id
        if entity_type not in ENTITY_PLURALS:
            return ToolResult.fail(f"Unknown entity type: {entity_type}")

        try:
            entity = await fetch_entity(backend, entity_type, entity_id)
            lines = [f"# {page.entity_name or entity.get('name', 'Unknown')} ({entity_type})", ""]
            if entity.get("description"):
                lines.extend([str(entity["description"]), ""])

            if entity_type == "location" and params.include_hierarchy:
                ancestors = await get_location_ancestors(backend, entity)
                children = await backend.invoke(
                    "get_location_children", {"campaign_id": context.campaign_id, "parent_id": entity_id}
                )
                lines.extend(["## Location Hierarchy", ""])
                lines.extend(format_location_hierarchy(entity, ancestors, children))
                lines.append("")

            if params.include_relationships:
                relationships = await backend.invoke(
                    "get_entity_relationships", {"entity_type": entity_type, "entity_id": entity_id}
                )
                lines.extend(["## Relationships", "", format_relationships(relationships, entity_id)])
        except BackendError as e:
            return ToolResult.fail(f"Failed to get page context: {e}")

        return ToolResult.ok(
            "\n".join(lines).rstrip(),
            data={"entity_type": entity_type, "entity_id": entity_id, "entity_name": page.entity_name},
        )

    return ToolDefinition(
        name="get_page_context",
        description=(
            "Get details about the entity the user is currently viewing, including its relationships and, "
            "for locations, its hierarchy."
        ),
        input_schema_class=GetPageContextInput,
        handler=get_page_context,
    )


def create_campaign_tools(backend: DataBackend) -> list[ToolDefinition]:
    """All read-only campaign tools."""
    return [
        create_search_entities_tool(backend),
        create_get_entity_tool(backend),
        create_get_relationships_tool(backend),
        create_get_location_hierarchy_tool(backend),
        create_get_timeline_tool(backend),
        create_get_campaign_context_tool(backend),
        create_get_page_context_tool(backend),
    ]
