"""Work item models for the assistant's planning checklist."""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

WorkItemStatus = Literal["pending", "in_progress", "completed"]


class WorkItem(BaseModel):
    """A planning note the assistant writes for itself."""

    id: str
    description: str
    status: WorkItemStatus = "pending"
    result: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None


class WorkItemSummary(BaseModel):
    """Counts by status."""

    total: int
    pending: int
    in_progress: int
    completed: int
