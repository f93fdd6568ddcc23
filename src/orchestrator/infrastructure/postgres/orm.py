from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.orchestrator.domain.models.task_state import TaskState


class Base(DeclarativeBase):
    pass


class TaskRow(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    skill_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    task_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inputs: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    validation_criteria: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    parent_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    has_subtasks: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    subtasks_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    state: Mapped[TaskState] = mapped_column(
        Enum(
            TaskState,
            name="task_state",
            values_callable=lambda states: [state.value for state in states],
        ),
        nullable=False,
        index=True,
    )
    failure: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    retry_feedback: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timeout_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    result: Mapped[Any | None] = mapped_column(JSON)
    batch_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    dependency_links: Mapped[list["TaskDependencyRow"]] = relationship(
        foreign_keys="TaskDependencyRow.task_id",
        order_by="TaskDependencyRow.position",
        cascade="all, delete-orphan",
    )
    feedback_entries: Mapped[list["TaskRetryFeedbackRow"]] = relationship(
        order_by="TaskRetryFeedbackRow.id",
        cascade="all, delete-orphan",
    )


class TaskDependencyRow(Base):
    __tablename__ = "task_dependencies"

    task_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True
    )
    depends_on_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TaskRetryFeedbackRow(Base):
    __tablename__ = "task_retry_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    issues: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    suggestion: Mapped[str | None] = mapped_column(Text)
    critique_task_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class PostgresOrm:
    """
    SQLAlchemy async ORM holder. Create once and inject where needed.
    """

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self._engine: AsyncEngine = create_async_engine(database_url, echo=echo)
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def create_schema(self) -> None:
        """Create tables directly, for throwaway databases. Deployments use Alembic."""
        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()
