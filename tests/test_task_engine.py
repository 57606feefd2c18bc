# tests/test_task_engine.py

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest

from taskboard.domain.errors import (
    DeserializationError,
    ErrorKind,
    ProviderConnectionError,
    ProviderError,
    TaskValidationError,
)
from taskboard.domain.task_models import TaskPriority, TaskStatus
from taskboard.domain.task_view import SortKey, TaskFilter
from taskboard.infra.providers.base import SyncStrategy
from taskboard.services.task_engine import TaskEngine

from .fakes import FakeClock, FakeProvider, make_task


@pytest.mark.asyncio
async def test_create_assigns_defaults_and_persists(engine: TaskEngine, provider: FakeProvider) -> None:
    result = await engine.create_task({"title": "  Buy milk  ", "description": " 2 litres "})

    assert result.ok
    task = result.task
    assert task.title == "Buy milk"
    assert task.description == "2 litres"
    assert task.status == TaskStatus.pending
    assert task.priority == TaskPriority.medium
    assert task.created_at == task.updated_at
    assert engine.get(task.id) == task
    assert provider.calls == [("create", task.id)]


@pytest.mark.asyncio
@pytest.mark.parametrize("title", ["", "   "])
async def test_create_rejects_blank_title(engine: TaskEngine, provider: FakeProvider, title: str) -> None:
    result = await engine.create_task({"title": title})

    assert not result.ok
    assert result.kind is ErrorKind.validation
    assert result.message == "title required"
    assert engine.tasks == []
    assert provider.calls == []
    assert engine.last_error == result


@pytest.mark.asyncio
async def test_create_rejects_unknown_priority(engine: TaskEngine) -> None:
    result = await engine.create_task({"title": "x", "priority": "critical"})

    assert result.kind is ErrorKind.validation
    assert engine.tasks == []


@pytest.mark.asyncio
async def test_create_rolls_back_when_provider_fails(engine: TaskEngine, provider: FakeProvider) -> None:
    provider.fail_next("create", ProviderConnectionError("offline"))

    result = await engine.create_task({"title": "Call mom"})

    assert result.kind is ErrorKind.connection
    assert result.message == "offline"
    assert engine.tasks == []


@pytest.mark.asyncio
async def test_toggle_twice_restores_status_but_advances_updated_at(engine: TaskEngine) -> None:
    created = (await engine.create_task({"title": "Stretch"})).task

    first = (await engine.toggle_status(created.id)).task
    second = (await engine.toggle_status(created.id)).task

    assert first.status == TaskStatus.completed
    assert second.status == TaskStatus.pending
    assert created.updated_at < first.updated_at < second.updated_at
    assert second.created_at == created.created_at


@pytest.mark.asyncio
async def test_toggle_message_names_new_status(engine: TaskEngine) -> None:
    created = (await engine.create_task({"title": "Stretch"})).task
    assert (await engine.toggle_status(created.id)).message == "Task marked as completed!"


@pytest.mark.asyncio
async def test_updated_at_advances_even_if_clock_stands_still(provider: FakeProvider) -> None:
    frozen = FakeClock(step=timedelta(0))
    engine = TaskEngine(provider, clock=frozen)

    created = (await engine.create_task({"title": "Nap"})).task
    toggled = (await engine.toggle_status(created.id)).task

    assert toggled.updated_at > created.updated_at


@pytest.mark.asyncio
async def test_toggle_rolls_back_on_failure(engine: TaskEngine, provider: FakeProvider) -> None:
    created = (await engine.create_task({"title": "Stretch"})).task
    provider.fail_next("update", ProviderConnectionError("offline"))

    result = await engine.toggle_status(created.id)

    assert not result.ok
    assert engine.get(created.id) == created


@pytest.mark.asyncio
async def test_unknown_ids_report_not_found(engine: TaskEngine, provider: FakeProvider) -> None:
    await engine.create_task({"title": "Keep"})
    before = engine.tasks

    for result in (
        await engine.delete_task("missing"),
        await engine.toggle_status("missing"),
        await engine.update_task("missing", {"title": "x"}),
    ):
        assert result.kind is ErrorKind.not_found

    assert engine.tasks == before
    assert [op for op, _ in provider.calls] == ["create"]


@pytest.mark.asyncio
async def test_update_preserves_identity_and_status(engine: TaskEngine) -> None:
    created = (await engine.create_task({"title": "Draft", "priority": "low"})).task
    await engine.toggle_status(created.id)

    result = await engine.update_task(created.id, {"title": " Final ", "dueDate": "2024-05-01"})

    task = result.task
    assert result.ok
    assert task.id == created.id
    assert task.created_at == created.created_at
    assert task.title == "Final"
    assert task.priority == TaskPriority.low
    assert task.status == TaskStatus.completed
    assert task.due_date == date(2024, 5, 1)
    assert task.updated_at > created.updated_at


@pytest.mark.asyncio
async def test_update_can_set_status_explicitly(engine: TaskEngine) -> None:
    created = (await engine.create_task({"title": "Draft"})).task
    task = (await engine.update_task(created.id, {"status": "completed"})).task
    assert task.status == TaskStatus.completed


@pytest.mark.asyncio
async def test_update_rejects_blank_title(engine: TaskEngine) -> None:
    created = (await engine.create_task({"title": "Draft"})).task

    result = await engine.update_task(created.id, {"title": "  "})

    assert result.kind is ErrorKind.validation
    assert engine.get(created.id) == created


@pytest.mark.asyncio
async def test_update_rolls_back_on_persistence_failure(engine: TaskEngine, provider: FakeProvider) -> None:
    created = (await engine.create_task({"title": "Draft", "priority": "high"})).task
    provider.fail_next("update", TaskValidationError("title: too long"))

    result = await engine.update_task(created.id, {"title": "Final", "priority": "urgent"})

    assert result.kind is ErrorKind.validation
    assert engine.get(created.id) == created
    assert provider.stored[created.id] == created


@pytest.mark.asyncio
async def test_delete_removes_and_restores_position_on_failure(engine: TaskEngine, provider: FakeProvider) -> None:
    ids = [(await engine.create_task({"title": t})).task.id for t in ("a", "b", "c")]
    provider.fail_next("delete", ProviderConnectionError("offline"))

    failed = await engine.delete_task(ids[1])

    assert failed.kind is ErrorKind.connection
    assert [t.id for t in engine.tasks] == ids

    ok = await engine.delete_task(ids[1])
    assert ok.ok
    assert [t.id for t in engine.tasks] == [ids[0], ids[2]]
    assert ids[1] not in provider.stored


@pytest.mark.asyncio
async def test_initialize_replaces_collection() -> None:
    stored = [make_task("a"), make_task("b")]
    engine = TaskEngine(FakeProvider(stored))

    result = await engine.initialize()

    assert result.ok
    assert engine.tasks == stored


@pytest.mark.asyncio
async def test_initialize_failure_leaves_collection_empty() -> None:
    provider = FakeProvider([make_task("a")])
    provider.fail_next("load", DeserializationError("bad json"))
    engine = TaskEngine(provider)

    result = await engine.initialize()

    assert result.kind is ErrorKind.deserialization
    assert engine.tasks == []
    assert engine.last_error == result


@pytest.mark.asyncio
async def test_slow_provider_times_out_as_connection_error(provider: FakeProvider, clock: FakeClock) -> None:
    engine = TaskEngine(provider, clock=clock, timeout_seconds=0.01)
    provider.gate = asyncio.Event()  # never set

    result = await engine.create_task({"title": "Slow"})

    assert result.kind is ErrorKind.connection
    assert engine.tasks == []


@pytest.mark.asyncio
async def test_same_id_mutations_run_one_at_a_time(engine: TaskEngine, provider: FakeProvider) -> None:
    created = (await engine.create_task({"title": "Shared"})).task
    provider.gate = asyncio.Event()

    first = asyncio.create_task(engine.toggle_status(created.id))
    second = asyncio.create_task(engine.update_task(created.id, {"title": "Renamed"}))
    await asyncio.sleep(0.01)

    assert provider.in_flight == 1
    provider.gate.set()
    r1, r2 = await asyncio.gather(first, second)

    assert r1.ok and r2.ok
    final = engine.get(created.id)
    assert final.status == TaskStatus.completed
    assert final.title == "Renamed"


@pytest.mark.asyncio
async def test_different_ids_proceed_concurrently(engine: TaskEngine, provider: FakeProvider) -> None:
    a = (await engine.create_task({"title": "a"})).task
    b = (await engine.create_task({"title": "b"})).task
    provider.gate = asyncio.Event()

    pending = [asyncio.create_task(engine.toggle_status(a.id)), asyncio.create_task(engine.toggle_status(b.id))]
    await asyncio.sleep(0.01)

    assert provider.in_flight == 2
    provider.gate.set()
    assert all(r.ok for r in await asyncio.gather(*pending))


@pytest.mark.asyncio
async def test_mutation_queued_behind_delete_reports_not_found(engine: TaskEngine, provider: FakeProvider) -> None:
    created = (await engine.create_task({"title": "Shared"})).task
    provider.gate = asyncio.Event()

    delete = asyncio.create_task(engine.delete_task(created.id))
    await asyncio.sleep(0)
    toggle = asyncio.create_task(engine.toggle_status(created.id))
    await asyncio.sleep(0.01)
    provider.gate.set()

    assert (await delete).ok
    assert (await toggle).kind is ErrorKind.not_found


@pytest.mark.asyncio
async def test_view_applies_selectors(engine: TaskEngine) -> None:
    await engine.create_task({"title": "b", "priority": "low"})
    urgent = (await engine.create_task({"title": "a", "priority": "urgent"})).task
    await engine.toggle_status(urgent.id)

    engine.set_filter("completed")
    engine.set_sort("title")
    view = engine.view()

    assert [t.title for t in view.tasks] == ["a"]
    assert view.filter is TaskFilter.completed
    assert view.sort is SortKey.title
    assert (view.stats.total, view.stats.completed, view.stats.urgent) == (2, 1, 0)


def test_selectors_default_and_accept_anything(engine: TaskEngine) -> None:
    assert engine.view().filter is TaskFilter.all
    assert engine.view().sort is SortKey.due_date

    engine.set_filter("nonsense")
    engine.set_sort("nonsense")

    assert engine.view().filter is TaskFilter.all
    assert engine.view().sort is SortKey.created_at


@pytest.mark.asyncio
async def test_snapshot_strategy_saves_whole_collection(clock: FakeClock) -> None:
    provider = FakeProvider(strategy=SyncStrategy.snapshot)
    engine = TaskEngine(provider, clock=clock)

    a = (await engine.create_task({"title": "a"})).task
    b = (await engine.create_task({"title": "b"})).task
    await engine.delete_task(a.id)

    assert [op for op, _ in provider.calls] == ["save", "save", "save"]
    assert list(provider.stored) == [b.id]


@pytest.mark.asyncio
async def test_snapshot_failure_rolls_back_update(clock: FakeClock) -> None:
    provider = FakeProvider(strategy=SyncStrategy.snapshot)
    engine = TaskEngine(provider, clock=clock)
    created = (await engine.create_task({"title": "a"})).task
    provider.fail_next("save", ProviderConnectionError("disk gone"))

    result = await engine.update_task(created.id, {"description": "changed"})

    assert not result.ok
    assert engine.get(created.id) == created
    assert provider.stored[created.id] == created


@pytest.mark.asyncio
async def test_failed_snapshot_save_never_reaches_the_store(clock: FakeClock) -> None:
    tasks = [make_task(name) for name in ("a", "b", "c")]
    provider = FakeProvider(tasks, strategy=SyncStrategy.snapshot)
    engine = TaskEngine(provider, clock=clock)
    assert (await engine.initialize()).ok
    provider.gate = asyncio.Event()
    provider.fail_next("save", ProviderError("disk full"), skip=2)

    pending = [asyncio.create_task(engine.update_task(t.id, {"title": t.title.upper()})) for t in tasks]
    await asyncio.sleep(0.01)

    # whole-collection saves run one change at a time
    assert provider.in_flight == 1
    provider.gate.set()
    results = await asyncio.gather(*pending)

    assert [r.ok for r in results] == [True, True, False]
    assert [t.title for t in engine.tasks] == ["A", "B", "c"]
    assert [t.title for t in provider.stored.values()] == ["A", "B", "c"]
    assert engine.tasks == list(provider.stored.values())
