"""Work item tracker: the assistant's own planning checklist for one run."""

from __future__ import annotations

from datetime import UTC, datetime

from lorekeeper.models.work_items import WorkItem, WorkItemStatus, WorkItemSummary
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)

_STATUS_MARKERS: dict[str, str] = {"completed": "[x]", "in_progress": "[~]", "pending": "[ ]"}


class WorkItemNotFoundError(KeyError):
    """No work item with the given id."""


class WorkItemTracker:
    """In-memory store of work items, in creation order."""

    def __init__(self) -> None:
        self._items: dict[str, WorkItem] = {}
        self._counter = 0

    def add(self, description: str) -> WorkItem:
        self._counter += 1
        item = WorkItem(id=f"wi_{self._counter}", description=description)
        self._items[item.id] = item
        logger.debug(f"Added work item {item.id}: {description}")
        return item

    def update(self, item_id: str, status: WorkItemStatus, result: str | None = None) -> WorkItem:
        """Change an item's status, optionally recording what was found.

        Raises:
            WorkItemNotFoundError: If no item has this id
        """
        item = self._items.get(item_id)
        if item is None:
            raise WorkItemNotFoundError(item_id)

        item.status = status
        if result is not None:
            item.result = result
        if status == "completed":
            item.completed_at = datetime.now(UTC)
        logger.debug(f"Work item {item_id} is now {status}")
        return item

    def get(self, item_id: str) -> WorkItem | None:
        return self._items.get(item_id)

    def list(self) -> list[WorkItem]:
        return list(self._items.values())

    def pending(self) -> list[WorkItem]:
        return [item for item in self._items.values() if item.status != "completed"]

    def completed(self) -> list[WorkItem]:
        return [item for item in self._items.values() if item.status == "completed"]

    def all_completed(self) -> bool:
        return bool(self._items) and all(item.status == "completed" for item in self._items.values())

    def summary(self) -> WorkItemSummary:
        items = self.list()
        return WorkItemSummary(
            total=len(items),
            pending=sum(1 for item in items if item.status == "pending"),
            in_progress=sum(1 for item in items if item.status == "in_progress"),
            completed=sum(1 for item in items if item.status == "completed"),
        )

    def to_markdown(self) -> str:
        """Render the checklist."""
        if not self._items:
            return "No work items."

        lines = []
        for item in self._items.values():
            lines.append(f"{_STATUS_MARKERS[item.status]} {item.id}: {item.description}")
            if item.result:
                lines.append(f"    → {item.result}")
        return "\n".join(lines)
