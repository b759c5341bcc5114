"""
Domain records shared by every store backend.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class TaskStatus(str, Enum):
    TODO = "todo"
    DOING = "doing"
    DONE = "done"

    @classmethod
    def parse(cls, value: Union["TaskStatus", str]) -> "TaskStatus":
        """Return the member for ``value``; raises ValueError if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(status.value for status in cls)
            raise ValueError(
                f"invalid task status {value!r} (expected one of: {allowed})"
            ) from None


@dataclass(frozen=True)
class Project:
    id: uuid.UUID
    name: str
    created_at: datetime

    def as_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Task:
    id: uuid.UUID
    project_id: uuid.UUID
    title: str
    description: str
    status: TaskStatus
    created_at: datetime

    def as_dict(self) -> dict:
        return {
            "id": str(self.id),
            "projectId": str(self.project_id),
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class TaskUpdate:
    """
    Partial update for a task.

    ``None`` means the field was not supplied and stays as stored. An empty
    string is a real value (e.g. clearing a description).
    """

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None

    def __post_init__(self):
        if self.status is not None:
            self.status = TaskStatus.parse(self.status)

    def is_empty(self) -> bool:
        return self.title is None and self.description is None and self.status is None

    def apply(self, task: Task) -> Task:
        changes = {}
        if self.title is not None:
            changes["title"] = self.title
        if self.description is not None:
            changes["description"] = self.description
        if self.status is not None:
            changes["status"] = self.status
        return dataclasses.replace(task, **changes)
