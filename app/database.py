"""Database utilities for the Movieboxd service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Importing the models registers their tables on ``Base.metadata``.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = set(inspector.get_table_names())

        def _ensure_column(
            table: str, name: str, ddl: str, init_sql: str | None = None
        ) -> None:
            if table not in table_names:
                return
            existing_columns = {
                column["name"] for column in inspector.get_columns(table)
            }
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))

        _ensure_column(
            "titles",
            "original_title",
            "ALTER TABLE titles ADD COLUMN original_title VARCHAR(512)",
        )
        _ensure_column(
            "reviews",
            "user_id",
            "ALTER TABLE reviews ADD COLUMN user_id VARCHAR(36)",
        )
        _ensure_column(
            "reviews",
            "contains_spoilers",
            "ALTER TABLE reviews ADD COLUMN contains_spoilers BOOLEAN DEFAULT 0",
            "UPDATE reviews SET contains_spoilers = 0 WHERE contains_spoilers IS NULL",
        )
        _ensure_column(
            "diary_entries",
            "rewatch",
            "ALTER TABLE diary_entries ADD COLUMN rewatch BOOLEAN DEFAULT 0",
            "UPDATE diary_entries SET rewatch = 0 WHERE rewatch IS NULL",
        )

    async def ping(self) -> None:
        """Run a trivial query, raising when the database is unreachable."""

        async with self._engine.connect() as connection:
            await connection.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session
