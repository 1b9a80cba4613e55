from datetime import datetime, timezone
from enum import Enum

from pydantic import field_validator, model_validator
from pydantic.alias_generators import to_camel
from sqlmodel import Field, SQLModel


# snake_case in Python, camelCase on the wire
WIRE_CONFIG = {"alias_generator": to_camel, "populate_by_name": True}


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2}


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    COMPLETED = "completed"
    DELETED = "deleted"


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _require_title(value):
    if not isinstance(value, str):
        return value
    value = value.strip()
    if not value:
        raise ValueError("Title is required")
    return value


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str
    description: str | None = Field(default=None)
    priority: Priority = Field(default=Priority.MEDIUM)
    due_date: datetime | None = Field(default=None)

    model_config = WIRE_CONFIG


class Task(TaskBase):
    """A task as held in the in-memory collection"""

    id: int
    completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=get_utc_now)
    user_id: int | None = Field(default=None)

    @property
    def is_provisional(self) -> bool:
        return self.id < 0


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    title: str = Field(max_length=200)

    @field_validator("title", mode="before")
    @classmethod
    def title_not_blank(cls, value):
        return _require_title(value)

    @field_validator("description", "due_date", mode="before")
    @classmethod
    def blank_is_none(cls, value):
        return _blank_to_none(value)


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional, only set fields apply"""

    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    completed: bool | None = None
    priority: Priority | None = None
    due_date: datetime | None = Field(default=None)

    model_config = WIRE_CONFIG

    @field_validator("title", mode="before")
    @classmethod
    def title_not_blank(cls, value):
        return _require_title(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def blank_due_date_clears(cls, value):
        return _blank_to_none(value)

    @model_validator(mode="after")
    def required_fields_not_cleared(self):
        # Only description and due date may be cleared with an explicit null
        for name in ("title", "completed", "priority"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> dict:
        """Explicitly set fields, keyed by Python attribute name."""
        return self.model_dump(exclude_unset=True)

    def to_payload(self) -> dict:
        return self.model_dump(exclude_unset=True, by_alias=True, mode="json")


class ActivityLogEntry(SQLModel):
    """Server-owned snapshot of a task at the moment of an action"""

    id: int
    user_id: int
    action: ActivityAction
    task_id: int | None = None
    task_title: str | None = None
    task_description: str | None = None
    task_due_date: datetime | None = None
    task_completed: bool | None = None
    created_at: datetime

    model_config = WIRE_CONFIG
