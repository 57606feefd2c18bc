from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx
from pydantic import ValidationError
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from taskboard.domain.errors import (
    DeserializationError,
    FieldError,
    ProviderConnectionError,
    ProviderError,
    TaskNotFound,
    TaskValidationError,
)
from taskboard.domain.task_models import Task
from taskboard.infra.providers.base import SyncStrategy

logger = logging.getLogger("taskboard.providers")

# Columns owned by the hosted table itself; kept out of the domain model.
SYSTEM_FIELDS = ("Id", "Name", "Tags", "Owner", "CreatedOn", "CreatedBy", "ModifiedOn", "ModifiedBy")
DOMAIN_FIELDS = ("clientId", "title", "description", "priority", "dueDate", "status", "createdAt", "updatedAt")
TABLE_FIELDS = list(SYSTEM_FIELDS + DOMAIN_FIELDS)


def make_http_client(base_url: str, *, project_id: str = "", public_key: str = "", timeout: float = 5.0) -> httpx.AsyncClient:
    headers = {"Accept": "application/json"}
    if project_id:
        headers["X-Project-Id"] = project_id
    if public_key:
        headers["X-Api-Key"] = public_key
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)


def _collect_failures(failed: list[dict]) -> Exception:
    fields: list[FieldError] = []
    messages: list[str] = []
    for result in failed:
        errors = result.get("errors") or []
        if errors:
            for err in errors:
                fields.append(FieldError(str(err.get("fieldLabel", "")), str(err.get("message", ""))))
        elif result.get("message"):
            messages.append(str(result["message"]))
    if fields:
        return TaskValidationError.from_fields(fields)
    return ProviderError(", ".join(messages) or "Record operation failed")


class RecordApiClient:
    """Thin wrapper over the hosted table endpoints. Returns raw JSON payloads."""

    def __init__(self, http: httpx.AsyncClient, table: str = "task"):
        self.http = http
        self.table = table

    async def _send(self, method: str, path: str, body: Optional[dict] = None) -> Optional[dict]:
        url = f"/tables/{self.table}/records{path}"
        try:
            resp = await self.http.request(method, url, json=body)
        except httpx.TimeoutException as e:
            raise ProviderConnectionError(f"Timed out talking to record API: {method} {url}") from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(f"Record API unreachable: {e}") from e

        logger.debug(
            "remote.response",
            extra={"category": "providers", "event": "remote.response", "method": method, "url": url, "status_code": resp.status_code},
        )
        if resp.status_code == 404:
            return None
        try:
            payload = resp.json()
        except ValueError as e:
            if resp.is_error:
                raise ProviderError(f"Record API error {resp.status_code}") from e
            raise DeserializationError(f"Record API returned non-JSON body for {method} {url}") from e
        if resp.is_error:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise ProviderError(message or f"Record API error {resp.status_code}")
        if not isinstance(payload, dict):
            raise DeserializationError("Record API payload must be an object")
        return payload

    async def fetch_records(self, params: dict) -> list[dict]:
        payload = await self._send("POST", "/query", params)
        if not payload or not payload.get("data"):
            return []
        if not isinstance(payload["data"], list):
            raise DeserializationError("Record API data must be a list")
        return payload["data"]

    async def get_record(self, record_id: Any) -> Optional[dict]:
        payload = await self._send("GET", f"/{record_id}")
        if not payload or not payload.get("data"):
            return None
        return payload["data"]

    async def _batch(self, method: str, body: dict) -> Optional[list[dict]]:
        """Per-record results of a batch call; None when the endpoint answers 404."""
        payload = await self._send(method, "", body)
        if payload is None:
            return None
        if not payload.get("success") or not isinstance(payload.get("results"), list):
            raise ProviderError(payload.get("message") or "Record operation failed")
        return payload["results"]

    async def create_records(self, records: list[dict]) -> list[dict]:
        return await self._batch("POST", {"records": records}) or []

    async def update_records(self, records: list[dict]) -> Optional[list[dict]]:
        return await self._batch("PATCH", {"records": records})

    async def delete_records(self, record_ids: list[Any]) -> Optional[list[dict]]:
        return await self._batch("DELETE", {"RecordIds": record_ids})


def raise_for_failures(results: list[dict]) -> None:
    # a batch may partially succeed; callers keep the successes, then report every failure
    failed = [r for r in results if not r.get("success")]
    if failed:
        raise _collect_failures(failed)


class RemoteTaskProvider:
    """
    Per-record persistence against the hosted table API.

    Task ids are generated client-side and stored in the `clientId` column;
    the server's own `Id` and the other system columns are remembered here
    and never handed to the engine.
    """

    strategy = SyncStrategy.record

    def __init__(self, api: RecordApiClient):
        self.api = api
        self._meta: dict[str, dict[str, Any]] = {}

    async def aclose(self) -> None:
        await self.api.http.aclose()

    # --- record <-> task ---

    def _to_task(self, record: Any, client_id: Optional[str] = None) -> Task:
        if not isinstance(record, dict):
            raise DeserializationError("Record API returned a malformed record")
        task_id = client_id or record.get("clientId") or (str(record["Id"]) if record.get("Id") is not None else None)
        if not task_id:
            raise DeserializationError("Record has neither clientId nor Id")
        try:
            task = Task.model_validate({**record, "id": task_id})
        except ValidationError as e:
            raise DeserializationError(f"Record {task_id} failed validation ({e.error_count()} errors)") from e
        self._meta.setdefault(task.id, {}).update({k: record[k] for k in SYSTEM_FIELDS if k in record})
        return task

    def _to_record(self, task: Task) -> dict:
        rec = task.to_record()
        rec.pop("id")
        rec["clientId"] = task.id
        rec["Name"] = task.title
        rec["dueDate"] = rec["dueDate"] or ""
        tags = self._meta.get(task.id, {}).get("Tags")
        if tags:
            rec["Tags"] = tags
        return rec

    def _patch_to_record(self, patch: dict[str, Any]) -> dict:
        rec = {to_camel(k): to_jsonable_python(v) for k, v in patch.items() if k not in ("id", "created_at")}
        if "dueDate" in rec and rec["dueDate"] is None:
            rec["dueDate"] = ""
        if "title" in rec:
            rec["Name"] = rec["title"]
        return rec

    def _server_id(self, task_id: str) -> Any:
        meta = self._meta.get(task_id)
        if not meta or meta.get("Id") is None:
            raise TaskNotFound(task_id)
        return meta["Id"]

    # --- provider interface ---

    async def fetch(
        self,
        *,
        status: Optional[str] = None,
        sort_by: str = "createdAt",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Task]:
        params: dict[str, Any] = {
            "fields": TABLE_FIELDS,
            "orderBy": [{"fieldName": sort_by or "createdAt", "SortType": "DESC"}],
        }
        if status and status != "all":
            params["where"] = [{"fieldName": "status", "operator": "ExactMatch", "values": [status]}]
        if limit or offset:
            params["pagingInfo"] = {"limit": limit or 20, "offset": offset or 0}
        records = await self.api.fetch_records(params)
        return [self._to_task(r) for r in records]

    async def load(self) -> list[Task]:
        self._meta.clear()
        tasks = await self.fetch()
        logger.info(
            "remote.load",
            extra={"category": "providers", "event": "remote.load", "table": self.api.table, "count": len(tasks)},
        )
        return tasks

    async def get(self, task_id: str) -> Optional[Task]:
        meta = self._meta.get(task_id)
        if not meta or meta.get("Id") is None:
            return None
        record = await self.api.get_record(meta["Id"])
        return self._to_task(record, client_id=task_id) if record else None

    async def create(self, task: Task) -> Task:
        results = await self.api.create_records([self._to_record(task)])
        raise_for_failures(results)
        data = results[0].get("data") if results else None
        if not data:
            raise ProviderError("Failed to create task")
        return self._to_task(data, client_id=task.id)

    async def update(self, task_id: str, patch: dict[str, Any]) -> Task:
        record = {"Id": self._server_id(task_id), **self._patch_to_record(patch)}
        results = await self.api.update_records([record])
        if results is None:
            raise TaskNotFound(task_id)
        raise_for_failures(results)
        data = results[0].get("data") if results else None
        if not data:
            refreshed = await self.get(task_id)
            if refreshed is None:
                raise ProviderError("Failed to update task")
            return refreshed
        return self._to_task(data, client_id=task_id)

    async def delete(self, task_id: str) -> None:
        results = await self.api.delete_records([self._server_id(task_id)])
        if results is None:
            raise TaskNotFound(task_id)
        raise_for_failures(results)
        self._meta.pop(task_id, None)

    async def save(self, tasks: Sequence[Task]) -> None:
        """Bring the remote table in line with `tasks` using batch calls."""
        wanted = {t.id for t in tasks}
        synced = {tid for tid, meta in self._meta.items() if meta.get("Id") is not None}
        new = [t for t in tasks if t.id not in synced]
        known = [t for t in tasks if t.id in synced]
        stale = [tid for tid in synced if tid not in wanted]
        results: list[dict] = []

        if new:
            created = await self.api.create_records([self._to_record(t) for t in new])
            for t, result in zip(new, created):
                if result.get("success") and result.get("data"):
                    self._to_task(result["data"], client_id=t.id)
            results.extend(created)
        if known:
            updated = await self.api.update_records(
                [{"Id": self._meta[t.id]["Id"], **self._to_record(t)} for t in known]
            )
            results.extend(updated or [])
        if stale:
            deleted = await self.api.delete_records([self._meta[tid]["Id"] for tid in stale])
            for tid, result in zip(stale, deleted or []):
                if result.get("success"):
                    self._meta.pop(tid, None)
            results.extend(deleted or [])
        raise_for_failures(results)
