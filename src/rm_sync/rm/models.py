"""Pydantic models for Resource Management API payloads."""

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

BILLABLE_TASK = "Billable"
BUSINESS_DEVELOPMENT_TASK = "Business Development"


class RMUser(BaseModel):
    """RM user model."""

    model_config = ConfigDict(extra="ignore")

    id: int
    email: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str | None = None
    account_id: int | None = None

    @property
    def display_name(self) -> str | None:
        """Full name, falling back to first + last."""
        if self.name:
            return self.name
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return None


class RMProject(BaseModel):
    """RM project (assignable) model."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    code: str | None = None
    client_name: str | None = None
    archived: bool = False


class RMTimeEntry(BaseModel):
    """RM time entry model."""

    model_config = ConfigDict(extra="ignore")

    id: int
    user_id: int | None = None
    assignable_id: int
    date: date
    hours: float
    task: str | None = None
    notes: str | None = None
    is_suggestion: bool = False


class RMTimeEntryInput(BaseModel):
    """Create/update payload for a time entry."""

    assignable_id: int
    date: date
    hours: float
    task: str = BILLABLE_TASK
    notes: str | None = Field(default=None)

    def to_api_dict(self) -> dict[str, Any]:
        """Convert to the JSON body expected by the API.

        Returns:
            Dictionary for API submission; notes omitted when empty.
        """
        payload: dict[str, Any] = {
            "assignable_id": self.assignable_id,
            "date": self.date.isoformat(),
            "hours": round(self.hours, 2),
            "task": self.task,
        }
        if self.notes:
            payload["notes"] = self.notes
        return payload
