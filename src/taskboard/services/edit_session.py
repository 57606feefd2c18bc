from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel

from taskboard.domain.task_models import Task, TaskPriority
from taskboard.services.task_engine import OperationResult, TaskEngine


class TaskDraft(BaseModel):
    title: str = ""
    description: str = ""
    priority: TaskPriority = TaskPriority.medium
    due_date: Optional[date] = None


class EditSession:
    """
    Working copy of a task's editable fields while a form is open.
    Nothing here is persisted; `submit` hands the draft to the engine.
    """

    def __init__(self):
        self.draft = TaskDraft()
        self.editing_id: Optional[str] = None
        self.is_open = False

    @property
    def is_editing(self) -> bool:
        return self.editing_id is not None

    def begin_create(self) -> None:
        self.draft = TaskDraft()
        self.editing_id = None
        self.is_open = True

    def begin_edit(self, task: Task) -> None:
        self.draft = TaskDraft(
            title=task.title,
            description=task.description,
            priority=task.priority,
            due_date=task.due_date,
        )
        self.editing_id = task.id
        self.is_open = True

    def change(self, **fields) -> None:
        self.draft = TaskDraft.model_validate({**self.draft.model_dump(), **fields})

    def cancel(self) -> None:
        self.draft = TaskDraft()
        self.editing_id = None
        self.is_open = False

    async def submit(self, engine: TaskEngine) -> OperationResult:
        data = self.draft.model_dump()
        if self.editing_id is None:
            result = await engine.create_task(data)
        else:
            result = await engine.update_task(self.editing_id, data)
        if result.ok:
            self.cancel()
        return result
