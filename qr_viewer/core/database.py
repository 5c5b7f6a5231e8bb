"""
Database handle

One Database instance per process, created by the application lifespan (or
by a Celery task) and passed to every component that needs storage.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from qr_viewer.core.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless this is set per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _ensure_sqlite_directory(url: str):
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    if parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


class Database:
    """Async engine plus session factory."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        _ensure_sqlite_directory(url)

        self.engine = create_async_engine(url, echo=echo, future=True)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.session_maker = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def backend(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Scoped session; rolled back on error and always closed."""
        async with self.session_maker() as session:
            try:
                yield session
            except BaseException:
                await session.rollback()
                raise

    async def ping(self):
        """Round-trip a trivial query. Raises if the store is unreachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def table_names(self) -> List[str]:
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    async def dispose(self):
        await self.engine.dispose()
        logger.info("database_disposed", backend=self.backend)
