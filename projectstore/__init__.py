"""
Storage layer for projects and their tasks.

One contract (``ProjectStore``) with two interchangeable backends: a
thread-safe in-memory store and a SQLAlchemy store for Postgres.
"""

from projectstore.db import InMemoryProjectStore, PostgresProjectStore, ProjectStore
from projectstore.domain import Project, Task, TaskStatus, TaskUpdate
from projectstore.errors import NotFound, ProjectNotFound, StoreError, TaskNotFound

__all__ = [
    "InMemoryProjectStore",
    "NotFound",
    "PostgresProjectStore",
    "Project",
    "ProjectNotFound",
    "ProjectStore",
    "StoreError",
    "Task",
    "TaskNotFound",
    "TaskStatus",
    "TaskUpdate",
]
