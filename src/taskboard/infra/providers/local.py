from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from taskboard.domain.errors import DeserializationError, ProviderError, TaskNotFound, TaskValidationError
from taskboard.domain.task_models import Task
from taskboard.infra.db.kv_store import KeyValueStore
from taskboard.infra.providers.base import SyncStrategy

logger = logging.getLogger("taskboard.providers")

DEFAULT_STORAGE_KEY = "taskboard-tasks"

_task_list = TypeAdapter(list[Task])


class LocalTaskProvider:
    """
    The whole collection as one JSON array in a single key-value slot.
    Read once at startup, written back in full after every mutation.
    """

    strategy = SyncStrategy.snapshot

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_STORAGE_KEY):
        self.store = store
        self.key = key

    async def _read_raw(self) -> Optional[str]:
        try:
            return await self.store.get(self.key)
        except (OSError, SQLAlchemyError) as e:
            raise ProviderError(f"Failed to read local storage: {e}") from e

    async def load(self) -> list[Task]:
        raw = await self._read_raw()
        if raw is None or not raw.strip():
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DeserializationError(f"Stored tasks are not valid JSON: {e.msg}") from e
        if not isinstance(data, list):
            raise DeserializationError("Stored tasks must be a JSON array")
        try:
            tasks = _task_list.validate_python(data)
        except ValidationError as e:
            raise DeserializationError(f"Stored tasks failed validation ({e.error_count()} errors)") from e
        logger.debug(
            "local.load",
            extra={"category": "providers", "event": "local.load", "key": self.key, "count": len(tasks)},
        )
        return tasks

    async def save(self, tasks: Sequence[Task]) -> None:
        payload = json.dumps([t.to_record() for t in tasks], ensure_ascii=False)
        try:
            await self.store.put(self.key, payload)
        except (OSError, SQLAlchemyError) as e:
            raise ProviderError(f"Failed to write local storage: {e}") from e
        logger.debug(
            "local.save",
            extra={"category": "providers", "event": "local.save", "key": self.key, "count": len(tasks)},
        )

    async def get(self, task_id: str) -> Optional[Task]:
        for t in await self.load():
            if t.id == task_id:
                return t
        return None

    async def create(self, task: Task) -> Task:
        tasks = await self.load()
        if any(t.id == task.id for t in tasks):
            raise TaskValidationError(f"Duplicate task id: {task.id}")
        tasks.append(task)
        await self.save(tasks)
        return task

    async def update(self, task_id: str, patch: dict[str, Any]) -> Task:
        tasks = await self.load()
        for i, t in enumerate(tasks):
            if t.id == task_id:
                merged = t.model_dump()
                merged.update(patch)
                merged["id"] = t.id
                merged["created_at"] = t.created_at
                try:
                    updated = Task.model_validate(merged)
                except ValidationError as e:
                    raise TaskValidationError(str(e)) from e
                tasks[i] = updated
                await self.save(tasks)
                return updated
        raise TaskNotFound(task_id)

    async def delete(self, task_id: str) -> None:
        tasks = await self.load()
        remaining = [t for t in tasks if t.id != task_id]
        if len(remaining) == len(tasks):
            raise TaskNotFound(task_id)
        await self.save(remaining)
