"""
Expected failure outcomes raised by store backends.

Callers branch on the exception class. Engine and connectivity errors are not
part of this hierarchy and propagate unchanged.
"""

from __future__ import annotations

import uuid
from typing import Optional


class StoreError(Exception):
    """Base class for expected, caller-recoverable store outcomes."""


class NotFound(StoreError):
    """No project exists with the requested id."""

    def __init__(self, project_id: Optional[uuid.UUID] = None):
        self.project_id = project_id
        super().__init__(f"project {project_id} not found" if project_id else "not found")


class ProjectNotFound(StoreError):
    """A task operation referenced a project that does not exist."""

    def __init__(self, project_id: uuid.UUID):
        self.project_id = project_id
        super().__init__(f"project {project_id} not found")


class TaskNotFound(StoreError):
    """The project exists but has no task with the requested id."""

    def __init__(self, project_id: uuid.UUID, task_id: uuid.UUID):
        self.project_id = project_id
        self.task_id = task_id
        super().__init__(f"task {task_id} not found in project {project_id}")
