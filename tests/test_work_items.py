"""Tests for the work item tracker and planning tools."""

import pytest

from lorekeeper.services.work_items import WorkItemNotFoundError, WorkItemTracker
from lorekeeper.tools.base import ToolContext
from lorekeeper.tools.registry import ToolsRegistry
from lorekeeper.tools.work_items import create_work_item_tools


class TestWorkItemTracker:
    """Tests for the planning checklist."""

    @pytest.fixture
    def tracker(self):
        return WorkItemTracker()

    def test_add_assigns_sequential_ids(self, tracker):
        """Test that items get wi_1, wi_2, ... and start pending."""
        first = tracker.add("Find Aldric")
        second = tracker.add("Check the timeline")

        assert (first.id, second.id) == ("wi_1", "wi_2")
        assert first.status == "pending"
        assert first.completed_at is None
        assert tracker.list() == [first, second]

    def test_update_status_and_result(self, tracker):
        """Test that completing an item records its result and completion time."""
        item = tracker.add("Find Aldric")

        tracker.update(item.id, "in_progress")
        assert tracker.get(item.id).status == "in_progress"
        assert tracker.get(item.id).completed_at is None

        tracker.update(item.id, "completed", "He is in Port Vael")
        assert item.status == "completed"
        assert item.result == "He is in Port Vael"
        assert item.completed_at is not None

    def test_update_keeps_previous_result(self, tracker):
        """Test that an update without a result leaves the old one in place."""
        item = tracker.add("Find Aldric")
        tracker.update(item.id, "in_progress", "Partial lead")

        tracker.update(item.id, "completed")

        assert item.result == "Partial lead"

    def test_update_unknown_item(self, tracker):
        """Test that unknown ids raise."""
        with pytest.raises(WorkItemNotFoundError):
            tracker.update("wi_99", "completed")

    def test_views_and_summary(self, tracker):
        """Test the pending/completed views and the status counts."""
        done = tracker.add("Done")
        active = tracker.add("Active")
        todo = tracker.add("Todo")
        tracker.update(done.id, "completed")
        tracker.update(active.id, "in_progress")

        assert tracker.completed() == [done]
        assert tracker.pending() == [active, todo]
        assert not tracker.all_completed()

        summary = tracker.summary()
        assert (summary.total, summary.pending, summary.in_progress, summary.completed) == (3, 1, 1, 1)

    def test_all_completed(self, tracker):
        """Test that an empty tracker is never all completed."""
        assert not tracker.all_completed()

        tracker.update(tracker.add("Only").id, "completed")

        assert tracker.all_completed()

    def test_to_markdown(self, tracker):
        """Test the checklist rendering."""
        assert tracker.to_markdown() == "No work items."

        tracker.add("Find Aldric")
        tracker.update(tracker.add("Check the guild").id, "completed", "They hold his debt")

        assert tracker.to_markdown() == (
            "[ ] wi_1: Find Aldric\n[x] wi_2: Check the guild\n    → They hold his debt"
        )


class TestWorkItemTools:
    """Tests for add/update/list_work_items."""

    @pytest.fixture
    def tracker(self):
        return WorkItemTracker()

    @pytest.fixture
    def registry(self, tracker):
        return ToolsRegistry(create_work_item_tools(tracker), ToolContext(campaign_id="c1"))

    @pytest.mark.asyncio
    async def test_add_and_update(self, registry, tracker):
        """Test the add then update flow through the tools."""
        added = await registry.execute("add_work_item", {"description": "Find Aldric"})
        updated = await registry.execute(
            "update_work_item", {"id": "wi_1", "status": "completed", "result": "Found him"}
        )

        assert added.content == "Added work item wi_1: Find Aldric"
        assert updated.content == "Updated wi_1 to completed: Found him"
        assert updated.data["status"] == "completed"
        assert tracker.get("wi_1").result == "Found him"

    @pytest.mark.asyncio
    async def test_update_missing_item(self, registry):
        """Test that updating an unknown item is a tool failure."""
        result = await registry.execute("update_work_item", {"id": "wi_7", "status": "completed"})

        assert result.success is False
        assert result.content == "Work item wi_7 not found."

    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, registry):
        """Test that statuses outside the vocabulary fail validation."""
        await registry.execute("add_work_item", {"description": "Find Aldric"})

        result = await registry.execute("update_work_item", {"id": "wi_1", "status": "done"})

        assert result.success is False
        assert "status" in result.content

    @pytest.mark.asyncio
    async def test_list(self, registry):
        """Test the progress header of list_work_items."""
        await registry.execute("add_work_item", {"description": "One"})
        await registry.execute("add_work_item", {"description": "Two"})
        await registry.execute("update_work_item", {"id": "wi_2", "status": "completed"})

        result = await registry.execute("list_work_items", {})

        assert result.content.startswith("## Work Items (1/2 completed)")
        assert [item["id"] for item in result.data] == ["wi_1", "wi_2"]
