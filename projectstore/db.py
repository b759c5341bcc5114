"""
Project/task store contract with an in-memory and a SQLAlchemy implementation.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import (
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    TypeVar,
    Union,
)

from sqlalchemy import bindparam, create_engine, event, func, insert, select, update
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from projectstore.domain import Project, Task, TaskStatus, TaskUpdate
from projectstore.errors import NotFound, ProjectNotFound, TaskNotFound
from projectstore.locks import ReadWriteLock
from projectstore.schema import ProjectRow, projects, tasks

logger = logging.getLogger(__name__)

FOREIGN_KEY_VIOLATION = "23503"

Clock = Callable[[], datetime]


class ProjectStore(Protocol):
    """Interface every project/task backend satisfies.

    ``timeout`` (seconds) bounds a single call where the backend blocks on I/O.
    """

    def insert_project(self, name: str, *, timeout: Optional[float] = None) -> Project:
        ...

    def get_project(
        self, project_id: uuid.UUID, *, timeout: Optional[float] = None
    ) -> Project:
        ...

    def list_projects(self, *, timeout: Optional[float] = None) -> List[Project]:
        ...

    def insert_task(
        self,
        project_id: uuid.UUID,
        title: str,
        description: str,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        ...

    def list_tasks(
        self, project_id: uuid.UUID, *, timeout: Optional[float] = None
    ) -> List[Task]:
        ...

    def update_task(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        update: TaskUpdate,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        ...

    def close(self) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


Record = TypeVar("Record", Project, Task)


def _newest_first(records: Iterable[Record]) -> List[Record]:
    # Equal timestamps fall back to the id's canonical string, descending.
    return sorted(records, key=lambda r: (r.created_at, str(r.id)), reverse=True)


class InMemoryProjectStore:
    """
    Thread-safe in-memory store for development and tests.

    Calls never block on I/O, so ``timeout`` is accepted and ignored.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.projects: Dict[uuid.UUID, Project] = {}
        self.tasks: Dict[uuid.UUID, Dict[uuid.UUID, Task]] = {}
        self._lock = ReadWriteLock()
        self._clock = clock or _utcnow

    def _now(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    def insert_project(self, name: str, *, timeout: Optional[float] = None) -> Project:
        project = Project(id=uuid.uuid4(), name=name, created_at=self._now())
        with self._lock.write_lock():
            self.projects[project.id] = project
        logger.debug("Inserted project %s", project.id)
        return project

    def get_project(
        self, project_id: uuid.UUID, *, timeout: Optional[float] = None
    ) -> Project:
        with self._lock.read_lock():
            project = self.projects.get(project_id)
        if project is None:
            raise NotFound(project_id)
        return project

    def list_projects(self, *, timeout: Optional[float] = None) -> List[Project]:
        with self._lock.read_lock():
            snapshot = list(self.projects.values())
        return _newest_first(snapshot)

    def insert_task(
        self,
        project_id: uuid.UUID,
        title: str,
        description: str,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        with self._lock.write_lock():
            if project_id not in self.projects:
                raise ProjectNotFound(project_id)
            task = Task(
                id=uuid.uuid4(),
                project_id=project_id,
                title=title,
                description=description,
                status=TaskStatus.TODO,
                created_at=self._now(),
            )
            self.tasks.setdefault(project_id, {})[task.id] = task
        logger.debug("Inserted task %s into project %s", task.id, project_id)
        return task

    def list_tasks(
        self, project_id: uuid.UUID, *, timeout: Optional[float] = None
    ) -> List[Task]:
        with self._lock.read_lock():
            if project_id not in self.projects:
                raise ProjectNotFound(project_id)
            snapshot = list(self.tasks.get(project_id, {}).values())
        return _newest_first(snapshot)

    def update_task(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        update: TaskUpdate,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        with self._lock.write_lock():
            if project_id not in self.projects:
                raise ProjectNotFound(project_id)
            project_tasks = self.tasks.get(project_id)
            task = project_tasks.get(task_id) if project_tasks else None
            if task is None:
                raise TaskNotFound(project_id, task_id)
            updated = update.apply(task)
            project_tasks[task_id] = updated
        logger.debug("Updated task %s in project %s", task_id, project_id)
        return updated

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock.write_lock():
            self.projects.clear()
            self.tasks.clear()

    def close(self) -> None:
        pass


_PROJECT_COLUMNS = (projects.c.id, projects.c.name, projects.c.created_at)
_TASK_COLUMNS = (
    tasks.c.id,
    tasks.c.project_id,
    tasks.c.title,
    tasks.c.description,
    tasks.c.status,
    tasks.c.created_at,
)

_INSERT_PROJECT = (
    insert(projects)
    .values(
        id=bindparam("p_id", type_=projects.c.id.type),
        name=bindparam("p_name", type_=projects.c.name.type),
        created_at=bindparam("p_created_at", type_=projects.c.created_at.type),
    )
    .returning(*_PROJECT_COLUMNS)
)

_LIST_PROJECTS = select(*_PROJECT_COLUMNS).order_by(
    projects.c.created_at.desc(), projects.c.id.desc()
)

_INSERT_TASK = (
    insert(tasks)
    .values(
        id=bindparam("p_id", type_=tasks.c.id.type),
        project_id=bindparam("p_project_id", type_=tasks.c.project_id.type),
        title=bindparam("p_title", type_=tasks.c.title.type),
        description=bindparam("p_description", type_=tasks.c.description.type),
        status=bindparam("p_status", type_=tasks.c.status.type),
        created_at=bindparam("p_created_at", type_=tasks.c.created_at.type),
    )
    .returning(*_TASK_COLUMNS)
)

_LIST_TASKS = (
    select(*_TASK_COLUMNS)
    .where(tasks.c.project_id == bindparam("p_project_id"))
    .order_by(tasks.c.created_at.desc(), tasks.c.id.desc())
)

# NULL parameters keep the stored value; empty strings overwrite it.
_UPDATE_TASK = (
    update(tasks)
    .where(
        tasks.c.project_id == bindparam("p_project_id"),
        tasks.c.id == bindparam("p_task_id"),
    )
    .values(
        title=func.coalesce(bindparam("p_title", type_=tasks.c.title.type), tasks.c.title),
        description=func.coalesce(
            bindparam("p_description", type_=tasks.c.description.type),
            tasks.c.description,
        ),
        status=func.coalesce(bindparam("p_status", type_=tasks.c.status.type), tasks.c.status),
    )
    .returning(*_TASK_COLUMNS)
)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code:
        return code == FOREIGN_KEY_VIOLATION
    return "FOREIGN KEY constraint failed" in str(orig)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _database_url(database_url: Union[str, URL]) -> URL:
    url = make_url(database_url)
    if url.drivername == "postgresql":
        # psycopg2 is the driver we ship; a bare URL would pick SQLAlchemy's default.
        url = url.set(drivername="postgresql+psycopg2")
    return url


def _engine_options(
    database_url: Union[str, URL],
    *,
    pool_size: int,
    max_overflow: int,
    pool_timeout: float,
    pool_recycle: int,
    statement_timeout_ms: Optional[int],
) -> dict:
    url = _database_url(database_url)
    options: dict = {"future": True, "pool_pre_ping": True}
    backend = url.get_backend_name()
    if backend == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            # One shared connection keeps the in-memory database alive.
            options["poolclass"] = StaticPool
        return options

    options.update(
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )
    if statement_timeout_ms and backend == "postgresql":
        options["connect_args"] = {
            "options": f"-c statement_timeout={int(statement_timeout_ms)}"
        }
    return options


def _clear_sqlite_deadline(dbapi_connection, connection_record) -> None:
    dbapi_connection.set_progress_handler(None, 0)


class PostgresProjectStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Expects the ``projects``/``tasks`` schema to exist already, see
    ``projectstore.schema.create_schema``. Every operation takes an optional
    ``timeout`` in seconds bounding that call's statements; an overrun raises
    the engine's ``OperationalError``.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: float = 30.0,
        pool_recycle: int = 1800,
        statement_timeout_ms: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresProjectStore")
        url = _database_url(database_url)
        self.engine = create_engine(
            url,
            **_engine_options(
                url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                statement_timeout_ms=statement_timeout_ms,
            ),
        )
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
            event.listen(self.engine, "checkin", _clear_sqlite_deadline)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self._clock = clock or _utcnow
        try:
            self.ping()
        except Exception:
            logger.error(
                "Database ping failed for %s", url.render_as_string(hide_password=True)
            )
            self.engine.dispose()
            raise

    def ping(self) -> None:
        """Round-trip to the database; raises the engine's error if unreachable."""
        with self.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

    @contextmanager
    def _session(self, timeout: Optional[float] = None) -> Iterator[Session]:
        with self.Session() as session:
            if timeout is not None:
                self._bound_transaction(session, timeout)
            yield session

    def _bound_transaction(self, session: Session, timeout: float) -> None:
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            # is_local=true scopes the setting to the current transaction.
            ms = max(1, int(timeout * 1000))
            session.execute(select(func.set_config("statement_timeout", str(ms), True)))
        elif dialect == "sqlite":
            # Cleared again when the connection is checked back into the pool.
            deadline = time.monotonic() + timeout
            dbapi_connection = session.connection().connection.dbapi_connection
            dbapi_connection.set_progress_handler(
                lambda: int(time.monotonic() > deadline), 1000
            )

    def _now(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    def _to_project(self, row) -> Project:
        return Project(id=row.id, name=row.name, created_at=_as_utc(row.created_at))

    def _to_task(self, row) -> Task:
        return Task(
            id=row.id,
            project_id=row.project_id,
            title=row.title,
            description=row.description,
            status=TaskStatus(row.status),
            created_at=_as_utc(row.created_at),
        )

    def insert_project(self, name: str, *, timeout: Optional[float] = None) -> Project:
        params = {"p_id": uuid.uuid4(), "p_name": name, "p_created_at": self._now()}
        with self._session(timeout) as session:
            row = session.execute(_INSERT_PROJECT, params).one()
            session.commit()
        logger.debug("Inserted project %s", row.id)
        return self._to_project(row)

    def get_project(
        self, project_id: uuid.UUID, *, timeout: Optional[float] = None
    ) -> Project:
        with self._session(timeout) as session:
            row = session.get(ProjectRow, project_id)
            if row is None:
                raise NotFound(project_id)
            return self._to_project(row)

    def list_projects(self, *, timeout: Optional[float] = None) -> List[Project]:
        with self._session(timeout) as session:
            rows = session.execute(_LIST_PROJECTS).all()
        return [self._to_project(row) for row in rows]

    def insert_task(
        self,
        project_id: uuid.UUID,
        title: str,
        description: str,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        params = {
            "p_id": uuid.uuid4(),
            "p_project_id": project_id,
            "p_title": title,
            "p_description": description,
            "p_status": TaskStatus.TODO.value,
            "p_created_at": self._now(),
        }
        with self._session(timeout) as session:
            try:
                row = session.execute(_INSERT_TASK, params).one()
                session.commit()
            except IntegrityError as exc:
                if _is_foreign_key_violation(exc):
                    raise ProjectNotFound(project_id) from exc
                raise
        logger.debug("Inserted task %s into project %s", row.id, project_id)
        return self._to_task(row)

    def list_tasks(
        self, project_id: uuid.UUID, *, timeout: Optional[float] = None
    ) -> List[Task]:
        with self._session(timeout) as session:
            rows = session.execute(_LIST_TASKS, {"p_project_id": project_id}).all()
        if not rows:
            self._require_project(project_id, timeout)
            return []
        return [self._to_task(row) for row in rows]

    def update_task(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        update: TaskUpdate,
        *,
        timeout: Optional[float] = None,
    ) -> Task:
        params = {
            "p_project_id": project_id,
            "p_task_id": task_id,
            "p_title": update.title,
            "p_description": update.description,
            "p_status": update.status.value if update.status is not None else None,
        }
        with self._session(timeout) as session:
            row = session.execute(_UPDATE_TASK, params).one_or_none()
            session.commit()
        if row is None:
            # The update alone cannot tell a missing project from a missing task.
            self._require_project(project_id, timeout)
            raise TaskNotFound(project_id, task_id)
        logger.debug("Updated task %s in project %s", task_id, project_id)
        return self._to_task(row)

    def _require_project(
        self, project_id: uuid.UUID, timeout: Optional[float] = None
    ) -> Project:
        try:
            return self.get_project(project_id, timeout=timeout)
        except NotFound as exc:
            raise ProjectNotFound(project_id) from exc

    def close(self) -> None:
        self.engine.dispose()
