"""Planning tools backed by the work item tracker."""

from pydantic import BaseModel, Field

from lorekeeper.models.work_items import WorkItemStatus
from lorekeeper.services.work_items import WorkItemNotFoundError, WorkItemTracker
from lorekeeper.tools.base import ToolContext, ToolDefinition, ToolResult


class AddWorkItemInput(BaseModel):
    """Input schema for add_work_item."""

    description: str = Field(
        ...,
        min_length=1,
        description="What needs to be looked up or done",
        examples=["Find Captain Aldric's allies", "Check the timeline around the siege"],
    )


class UpdateWorkItemInput(BaseModel):
    """Input schema for update_work_item."""

    id: str = Field(..., description="The work item id (e.g., wi_1)", examples=["wi_1"])
    status: WorkItemStatus = Field(..., description="New status")
    result: str | None = Field(default=None, description="Brief summary of what was found")


class ListWorkItemsInput(BaseModel):
    """list_work_items takes no parameters."""


def create_work_item_tools(tracker: WorkItemTracker) -> list[ToolDefinition]:
    async def add_work_item(params: AddWorkItemInput, context: ToolContext) -> ToolResult:
        item = tracker.add(params.description)
        return ToolResult.ok(f"Added work item {item.id}: {item.description}", data=item.model_dump(mode="json"))

    async def update_work_item(params: UpdateWorkItemInput, context: ToolContext) -> ToolResult:
        try:
            item = tracker.update(params.id, params.status, params.result)
        except WorkItemNotFoundError:
            return ToolResult.fail(f"Work item {params.id} not found.")

        content = f"Updated {item.id} to {item.status}"
        if item.result:
            content += f": {item.result}"
        return ToolResult.ok(content, data=item.model_dump(mode="json"))

    async def list_work_items(params: ListWorkItemsInput, context: ToolContext) -> ToolResult:
        summary = tracker.summary()
        content = f"## Work Items ({summary.completed}/{summary.total} completed)\n\n{tracker.to_markdown()}"
        return ToolResult.ok(content, data=[item.model_dump(mode="json") for item in tracker.list()])

    return [
        ToolDefinition(
            name="add_work_item",
            description=(
                "Add an item to your research plan. Use this before diving in to track what you need to look up."
            ),
            input_schema_class=AddWorkItemInput,
            handler=add_work_item,
            category="internal",
        ),
        ToolDefinition(
            name="update_work_item",
            description="Update the status of a work item and optionally record what you found.",
            input_schema_class=UpdateWorkItemInput,
            handler=update_work_item,
            category="internal",
        ),
        ToolDefinition(
            name="list_work_items",
            description="Review your research plan and progress.",
            input_schema_class=ListWorkItemsInput,
            handler=list_work_items,
            category="internal",
        ),
    ]
