"""Timeline tool."""

from pydantic import Field

from lorekeeper.clients.backend import BackendError, DataBackend
from lorekeeper.tools.base import FlavoredInput, ToolContext, ToolDefinition, ToolResult


class GetTimelineInput(FlavoredInput):
    """Input schema for get_timeline."""

    limit: int | None = Field(default=None, ge=1, description="Maximum number of events to return")
    include_hidden: bool = Field(default=True, description="Include events that are not public to the players")


def create_get_timeline_tool(backend: DataBackend) -> ToolDefinition:
    async def get_timeline(params: GetTimelineInput, context: ToolContext) -> ToolResult:
        try:
            events = await backend.invoke("list_timeline_events", {"campaign_id": context.campaign_id})
        except BackendError as e:
            return ToolResult.fail(f"Failed to get timeline: {e}")

        if not params.include_hidden:
            events = [event for event in events if event.get("is_public")]
        events = sorted(events, key=lambda event: float(event.get("sort_order") or 0))
        if params.limit:
            events = events[: params.limit]

        if not events:
            return ToolResult.ok("No timeline events found for this campaign.", data=[])

        entries = []
        for event in events:
            visibility = "" if event.get("is_public") else " [SECRET]"
            significance = f" [{event['significance']}]" if event.get("significance") else ""
            entry = f"### {event.get('title', 'Untitled event')}{visibility}"
            entry += f"\n**Date:** {event.get('date_display', 'Unknown')}{significance}"
            if event.get("description"):
                entry += f"\n\n{event['description']}"
            entries.append(entry)

        return ToolResult.ok("## Campaign Timeline\n\n" + "\n\n---\n\n".join(entries), data=events)

    return ToolDefinition(
        name="get_timeline",
        description="Get the campaign's timeline of events in chronological order.",
        input_schema_class=GetTimelineInput,
        handler=get_timeline,
    )
