# hdas/database.py
"""Connection pool, transactions and startup migrations."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from alembic import command
from alembic.config import Config
from alembic.util.exc import CommandError
from sqlalchemy import event
from sqlalchemy.exc import ArgumentError, InvalidRequestError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .errors import StoreError

logger = logging.getLogger("hdas.database")

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _alembic_config() -> Config:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    return config


def _upgrade(connection, config: Config) -> None:
    config.attributes["connection"] = connection
    command.upgrade(config, "head")


class Database:
    """Handle on the relational store.

    Build it with ``await Database.open(url)``; that call applies every
    pending migration before returning, so the schema is current for all
    users of the handle.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    async def open(cls, url: str) -> "Database":
        try:
            engine = create_async_engine(url, future=True, echo=False)
        except (ArgumentError, InvalidRequestError, ImportError, ValueError) as e:
            raise StoreError(f"invalid database url: {e}") from e

        if engine.dialect.name == "sqlite":
            event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        try:
            async with engine.begin() as conn:
                await conn.run_sync(_upgrade, _alembic_config())
        except (SQLAlchemyError, CommandError, OSError) as e:
            await engine.dispose()
            raise StoreError(f"unable to migrate database: {e}") from e

        logger.info("Database ready (%s)", engine.url.render_as_string(hide_password=True))
        return cls(engine)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside one transaction.

        Commits when the block exits normally, rolls back when it raises.
        Driver errors come out as ``StoreError``.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database pool closed")
