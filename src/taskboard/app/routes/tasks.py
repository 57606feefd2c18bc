from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from taskboard.domain.errors import ErrorKind
from taskboard.domain.task_models import Task, TaskCreate, TaskUpdate
from taskboard.domain.task_view import TaskStats, TaskView, build_view, compute_stats
from taskboard.services.task_engine import OperationResult, TaskEngine

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

_STATUS_BY_KIND = {
    ErrorKind.validation: 422,
    ErrorKind.not_found: 404,
    ErrorKind.connection: 503,
    ErrorKind.provider: 502,
    ErrorKind.deserialization: 500,
}


def get_engine() -> TaskEngine:
    # Overridden in main.py:
    # app.dependency_overrides[get_engine] = lambda: engine
    raise RuntimeError("TaskEngine not wired")


def _unwrap(result: OperationResult) -> OperationResult:
    if not result.ok:
        raise HTTPException(
            status_code=_STATUS_BY_KIND.get(result.kind, 500),
            detail={"kind": result.kind.value if result.kind else None, "message": result.message},
        )
    return result


@router.get("", response_model=TaskView)
def list_tasks(
    filter: Optional[str] = None,
    sort: Optional[str] = None,
    engine: TaskEngine = Depends(get_engine),
):
    # query params shape this response only; PUT /view changes the saved selection
    return build_view(
        engine.tasks,
        filter if filter is not None else engine.filter,
        sort if sort is not None else engine.sort_key,
    )


class ViewSelection(BaseModel):
    filter: Optional[str] = None
    sort: Optional[str] = None


@router.put("/view", response_model=TaskView)
def select_view(payload: ViewSelection, engine: TaskEngine = Depends(get_engine)):
    if payload.filter is not None:
        engine.set_filter(payload.filter)
    if payload.sort is not None:
        engine.set_sort(payload.sort)
    return engine.view()


@router.get("/stats", response_model=TaskStats)
def task_stats(engine: TaskEngine = Depends(get_engine)):
    return compute_stats(engine.tasks)


@router.post("", response_model=Task, status_code=201)
async def create_task(payload: TaskCreate, engine: TaskEngine = Depends(get_engine)):
    return _unwrap(await engine.create_task(payload)).task


@router.get("/{task_id}", response_model=Task)
def get_task(task_id: str, engine: TaskEngine = Depends(get_engine)):
    task = engine.get(task_id)
    if not task:
        raise HTTPException(status_code=404, detail={"kind": ErrorKind.not_found.value, "message": "Task not found"})
    return task


@router.patch("/{task_id}", response_model=Task)
async def update_task(task_id: str, payload: TaskUpdate, engine: TaskEngine = Depends(get_engine)):
    return _unwrap(await engine.update_task(task_id, payload)).task


@router.post("/{task_id}/toggle", response_model=Task)
async def toggle_task(task_id: str, engine: TaskEngine = Depends(get_engine)):
    return _unwrap(await engine.toggle_status(task_id)).task


@router.delete("/{task_id}")
async def delete_task(task_id: str, engine: TaskEngine = Depends(get_engine)):
    result = _unwrap(await engine.delete_task(task_id))
    return {"deleted": True, "id": task_id, "message": result.message}
