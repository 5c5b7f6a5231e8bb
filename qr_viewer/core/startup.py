"""
Startup supervisor

Nothing is served until the database answers and the schema is current:
a bounded number of connection attempts with the delay doubling between
them, then the migration steps. Running out of attempts raises
PersistenceError, which aborts application startup.
"""

import asyncio
from typing import Awaitable, Callable, List

from sqlalchemy.exc import SQLAlchemyError

from qr_viewer.core.config import Settings
from qr_viewer.core.database import Database
from qr_viewer.core.exceptions import PersistenceError
from qr_viewer.core.logging import get_logger
from qr_viewer.core.migrations import apply_migrations

logger = get_logger(__name__)


async def wait_for_database(
    db: Database,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> int:
    """Ping the database until it answers. Returns the attempt that succeeded.

    Waits base_delay, 2*base_delay, 4*base_delay... between attempts.
    """
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        try:
            await db.ping()
            logger.info("database_connected", attempt=attempt, backend=db.backend)
            return attempt
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "database_connection_failed",
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(e),
            )
            if attempt == max_attempts:
                raise PersistenceError(
                    f"Database unreachable after {max_attempts} attempts: {e}",
                    details={"attempts": max_attempts},
                ) from e
            logger.info("database_connection_retry", delay_seconds=delay)
            await sleep(delay)
            delay *= 2


async def prepare_database(db: Database, settings: Settings) -> List[str]:
    """Connect with retry, then bring the schema up to date."""
    await wait_for_database(
        db,
        max_attempts=settings.DB_CONNECT_MAX_ATTEMPTS,
        base_delay=settings.DB_CONNECT_BASE_DELAY_SECONDS,
    )
    try:
        applied = await apply_migrations(db)
    except SQLAlchemyError as e:
        raise PersistenceError(f"Schema migration failed: {e}") from e
    logger.info("database_ready", migrations_applied=applied)
    return applied
