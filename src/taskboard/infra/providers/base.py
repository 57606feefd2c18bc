from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Protocol, Sequence

from taskboard.domain.task_models import Task


class SyncStrategy(str, Enum):
    # full overwrite of the collection after every mutation
    snapshot = "snapshot"
    # one create/update/delete call per mutation
    record = "record"


class TaskProvider(Protocol):
    """
    Durable storage behind the engine. Implementations signal failure by
    raising taskboard.domain.errors.TaskError subclasses.
    """

    strategy: SyncStrategy

    async def load(self) -> list[Task]: ...
    async def save(self, tasks: Sequence[Task]) -> None: ...
    async def get(self, task_id: str) -> Optional[Task]: ...
    async def create(self, task: Task) -> Task: ...
    async def update(self, task_id: str, patch: dict[str, Any]) -> Task: ...
    async def delete(self, task_id: str) -> None: ...
