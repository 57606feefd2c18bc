from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from enum import Enum
from datetime import date, datetime, timezone
from typing import Optional, Union
import uuid

class TaskStatus(str, Enum):
    pending = "pending"
    completed = "completed"

    def toggled(self) -> "TaskStatus":
        return TaskStatus.pending if self is TaskStatus.completed else TaskStatus.completed

class TaskPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"

_PRIORITY_RANK = {
    TaskPriority.urgent: 4,
    TaskPriority.high: 3,
    TaskPriority.medium: 2,
    TaskPriority.low: 1,
}

class _Record(BaseModel):
    # wire names are camelCase (dueDate, createdAt, ...); python code uses snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("due_date", mode="before", check_fields=False)
    @classmethod
    def _blank_date_is_none(cls, v):
        # stored records use "" for "no due date"
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if isinstance(v, str) and "T" in v:
            return datetime.fromisoformat(v.replace("Z", "+00:00")).date()
        if isinstance(v, datetime):
            return v.date()
        return v

class TaskCreate(_Record):
    title: str = Field(max_length=140)
    description: str = Field(default="", max_length=4000)
    priority: TaskPriority = TaskPriority.medium
    due_date: Optional[date] = None

class TaskUpdate(_Record):
    """Partial edit. Only fields explicitly set are applied."""
    title: Optional[str] = Field(default=None, max_length=140)
    description: Optional[str] = Field(default=None, max_length=4000)
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    status: Optional[TaskStatus] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)

class Task(TaskCreate):
    id: str
    status: TaskStatus = TaskStatus.pending
    created_at: datetime
    updated_at: datetime

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title required")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def _naive_is_utc(cls, v: datetime) -> datetime:
        # timestamps stored without an offset are read as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _updated_after_created(self) -> "Task":
        if self.updated_at < self.created_at:
            raise ValueError("updatedAt precedes createdAt")
        return self

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

def new_task_id() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def priority_rank(priority: Union[TaskPriority, str]) -> int:
    return _PRIORITY_RANK[TaskPriority(priority)]

def is_overdue(task: Task, now: Union[date, datetime]) -> bool:
    """Due strictly before today (date-only) and still pending."""
    if task.due_date is None or task.status == TaskStatus.completed:
        return False
    today = now.date() if isinstance(now, datetime) else now
    return task.due_date < today
