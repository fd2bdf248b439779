"""Async database manager for mentor-meter (single-DB)."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mentor_meter.common.config import MentorSettings, get_settings
from mentor_meter.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import mentor_meter.subscriptions.models  # noqa: F401
import mentor_meter.usage.models  # noqa: F401
import mentor_meter.conversations.models  # noqa: F401
import mentor_meter.webhooks.models  # noqa: F401


async def insert_if_absent(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True if a row was inserted.

    A losing concurrent insert is not an error; callers re-select the row.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"insert_if_absent does not support dialect {dialect!r}")

    stmt = insert(model).values(**values).on_conflict_do_nothing(
        index_elements=conflict_columns,
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


class DatabaseManager:
    """Manages a single async database engine."""

    def __init__(self, settings: MentorSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._settings.db_url
        self.engine = create_async_engine(url, echo=False)
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized; call init() first")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized; call init() first")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
