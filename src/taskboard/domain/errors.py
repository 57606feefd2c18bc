from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    validation = "validation"
    not_found = "not_found"
    provider = "provider"
    connection = "connection"
    deserialization = "deserialization"


@dataclass(frozen=True)
class FieldError:
    field_label: str
    message: str

    def __str__(self) -> str:
        return f"{self.field_label}: {self.message}"


class TaskError(Exception):
    """Base for every failure the engine reports instead of raising."""

    kind: ErrorKind = ErrorKind.provider

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TaskValidationError(TaskError):
    kind = ErrorKind.validation

    def __init__(self, message: str, fields: Optional[list[FieldError]] = None):
        super().__init__(message)
        self.fields = list(fields or [])

    @classmethod
    def from_fields(cls, fields: list[FieldError]) -> "TaskValidationError":
        return cls(", ".join(str(f) for f in fields), fields)


class TaskNotFound(TaskError):
    kind = ErrorKind.not_found

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class ProviderError(TaskError):
    kind = ErrorKind.provider


class ProviderConnectionError(ProviderError):
    kind = ErrorKind.connection


class DeserializationError(TaskError):
    kind = ErrorKind.deserialization
