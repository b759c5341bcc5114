"""
Relational schema for the project store.

The store itself never issues DDL. ``create_schema`` is what the startup
migration step (and the test suite) runs once against a fresh database.
"""

from __future__ import annotations

import logging

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class TaskRow(Base):
    __tablename__ = "tasks"
    __table_args__ = (Index("ix_tasks_project_created", "project_id", "created_at"),)

    id = Column(Uuid, primary_key=True)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="todo")
    created_at = Column(DateTime(timezone=True), nullable=False)


projects = ProjectRow.__table__
tasks = TaskRow.__table__


def create_schema(engine: Engine) -> None:
    """Create the ``projects`` and ``tasks`` tables if they are missing."""
    Base.metadata.create_all(engine)
    logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))
