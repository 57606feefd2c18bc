from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from taskboard.domain.errors import ErrorKind, ProviderConnectionError, TaskError, TaskNotFound, TaskValidationError
from taskboard.domain.task_models import Task, TaskCreate, TaskStatus, TaskUpdate, new_task_id, utcnow
from taskboard.domain.task_view import SortKey, TaskFilter, TaskView, build_view
from taskboard.infra.providers.base import SyncStrategy, TaskProvider

logger = logging.getLogger("taskboard.tasks")

DEFAULT_TIMEOUT_SECONDS = 5.0


class OperationResult(BaseModel):
    ok: bool
    kind: Optional[ErrorKind] = None
    message: str = ""
    task: Optional[Task] = None


class TaskEngine:
    """
    In-memory task collection kept in step with a persistence provider.

    Mutations are applied optimistically and rolled back when the provider
    call fails. Failures never escape an operation; they come back as an
    OperationResult and are remembered in `last_error`.
    """

    def __init__(
        self,
        provider: TaskProvider,
        *,
        clock: Callable[[], datetime] = utcnow,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.clock = clock
        self.timeout_seconds = timeout_seconds
        self.filter: Union[TaskFilter, str] = TaskFilter.all
        # opens sorted by due date, like the dashboard; unknown keys fall back to createdAt
        self.sort_key: Union[SortKey, str] = SortKey.due_date
        self.last_error: Optional[OperationResult] = None
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._save_lock = asyncio.Lock()

    # --- read side ---

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def view(self) -> TaskView:
        return build_view(self._tasks.values(), self.filter, self.sort_key)

    def set_filter(self, value: Union[TaskFilter, str]) -> None:
        self.filter = value

    def set_sort(self, value: Union[SortKey, str]) -> None:
        self.sort_key = value

    # --- plumbing ---

    def _ok(self, event: str, task: Optional[Task] = None, message: str = "") -> OperationResult:
        logger.info(
            event,
            extra={"category": "tasks", "event": event, "task_id": task.id if task else None},
        )
        return OperationResult(ok=True, task=task, message=message)

    def _fail(self, event: str, err: TaskError, task_id: Optional[str] = None) -> OperationResult:
        logger.warning(
            event,
            extra={
                "category": "tasks",
                "event": event,
                "task_id": task_id,
                "error_kind": err.kind.value,
                "error": err.message,
            },
        )
        result = OperationResult(ok=False, kind=err.kind, message=err.message)
        self.last_error = result
        return result

    def _now(self, previous: Optional[datetime] = None) -> datetime:
        now = self.clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        return self._locks.setdefault(task_id, asyncio.Lock())

    async def _call(self, coro: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(coro, self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProviderConnectionError(
                f"Storage did not answer within {self.timeout_seconds:g}s"
            ) from e

    def _commit_scope(self) -> Any:
        # a snapshot carries every task, so only one change may be uncommitted at a time
        if self.provider.strategy == SyncStrategy.snapshot:
            return self._save_lock
        return contextlib.nullcontext()

    async def _save_snapshot(self) -> None:
        # caller holds _commit_scope()
        await self._call(self.provider.save(list(self._tasks.values())))

    def _restore(self, index: int, task: Task) -> None:
        items = list(self._tasks.items())
        items.insert(index, (task.id, task))
        self._tasks = dict(items)

    # --- lifecycle ---

    async def initialize(self) -> OperationResult:
        try:
            loaded = await self._call(self.provider.load())
        except TaskError as e:
            self._tasks = {}
            return self._fail("tasks.load_failed", e)
        self._tasks = {t.id: t for t in loaded}
        return self._ok("tasks.loaded", message=f"{len(self._tasks)} tasks loaded")

    # --- mutations ---

    async def create_task(self, data: Union[TaskCreate, Mapping[str, Any]]) -> OperationResult:
        try:
            draft = data if isinstance(data, TaskCreate) else TaskCreate.model_validate(data)
        except ValidationError as e:
            return self._fail("task.create_rejected", TaskValidationError(_first_error(e)))
        title = draft.title.strip()
        if not title:
            return self._fail("task.create_rejected", TaskValidationError("title required"))

        now = self._now()
        task = Task(
            id=new_task_id(),
            title=title,
            description=draft.description.strip(),
            priority=draft.priority,
            due_date=draft.due_date,
            status=TaskStatus.pending,
            created_at=now,
            updated_at=now,
        )
        async with self._lock_for(task.id), self._commit_scope():
            self._tasks[task.id] = task
            try:
                if self.provider.strategy == SyncStrategy.record:
                    stored = await self._call(self.provider.create(task))
                else:
                    await self._save_snapshot()
                    stored = task
            except TaskError as e:
                self._tasks.pop(task.id, None)
                return self._fail("task.create_failed", e, task.id)
            self._tasks[task.id] = stored
        return self._ok("task.create", stored, "Task created successfully!")

    async def update_task(self, task_id: str, data: Union[TaskUpdate, Mapping[str, Any]]) -> OperationResult:
        if task_id not in self._tasks:
            return self._fail("task.update_failed", TaskNotFound(task_id), task_id)
        try:
            patch = data if isinstance(data, TaskUpdate) else TaskUpdate.model_validate(data)
        except ValidationError as e:
            return self._fail("task.update_rejected", TaskValidationError(_first_error(e)), task_id)

        changes = patch.changes()
        # None on these fields means "leave as is"; due_date None clears the date
        for key in ("title", "description", "priority", "status"):
            if key in changes and changes[key] is None:
                del changes[key]
        if "title" in changes:
            changes["title"] = changes["title"].strip()
            if not changes["title"]:
                return self._fail("task.update_rejected", TaskValidationError("title required"), task_id)
        if "description" in changes:
            changes["description"] = changes["description"].strip()

        return await self._apply("task.update", task_id, lambda _: changes, "Task updated successfully!")

    async def toggle_status(self, task_id: str) -> OperationResult:
        if task_id not in self._tasks:
            return self._fail("task.toggle_failed", TaskNotFound(task_id), task_id)
        result = await self._apply("task.toggle", task_id, lambda t: {"status": t.status.toggled()})
        if result.ok and result.task:
            result.message = f"Task marked as {result.task.status.value}!"
        return result

    async def _apply(
        self,
        event: str,
        task_id: str,
        make_changes: Callable[[Task], dict[str, Any]],
        message: str = "",
    ) -> OperationResult:
        async with self._lock_for(task_id), self._commit_scope():
            previous = self._tasks.get(task_id)
            if previous is None:
                # deleted while we waited for the lock
                return self._fail(f"{event}_failed", TaskNotFound(task_id), task_id)
            changes = dict(make_changes(previous))
            changes["updated_at"] = self._now(previous.updated_at)
            updated = previous.model_copy(update=changes)
            self._tasks[task_id] = updated
            try:
                if self.provider.strategy == SyncStrategy.record:
                    stored = await self._call(self.provider.update(task_id, changes))
                else:
                    await self._save_snapshot()
                    stored = updated
            except TaskError as e:
                self._tasks[task_id] = previous
                return self._fail(f"{event}_failed", e, task_id)
            self._tasks[task_id] = stored
        return self._ok(event, stored, message)

    async def delete_task(self, task_id: str) -> OperationResult:
        if task_id not in self._tasks:
            return self._fail("task.delete_failed", TaskNotFound(task_id), task_id)
        async with self._lock_for(task_id), self._commit_scope():
            if task_id not in self._tasks:
                return self._fail("task.delete_failed", TaskNotFound(task_id), task_id)
            index = list(self._tasks).index(task_id)
            removed = self._tasks.pop(task_id)
            try:
                if self.provider.strategy == SyncStrategy.record:
                    await self._call(self.provider.delete(task_id))
                else:
                    await self._save_snapshot()
            except TaskError as e:
                self._restore(index, removed)
                return self._fail("task.delete_failed", e, task_id)
        self._locks.pop(task_id, None)
        return self._ok("task.delete", removed, "Task deleted successfully!")


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    where = ".".join(str(p) for p in err.get("loc", ()))
    return f"{where}: {err.get('msg')}" if where else str(err.get("msg"))
