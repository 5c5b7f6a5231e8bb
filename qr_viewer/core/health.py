"""
Health checks

- full(): database connectivity and schema, host memory, uptime, detection backend
- quick(): cheap enough to poll frequently
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil
from sqlalchemy.exc import SQLAlchemyError

from qr_viewer.core.config import Settings
from qr_viewer.core.database import Database
from qr_viewer.core.logging import get_logger
from qr_viewer.core.migrations import CORE_TABLES

logger = get_logger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


def _megabytes(value: float) -> int:
    return int(round(value / (1024 * 1024)))


class HealthChecker:
    def __init__(self, db: Database, settings: Settings, scheduler=None, started_at: Optional[float] = None):
        self.db = db
        self.settings = settings
        self.scheduler = scheduler
        self.started_at = started_at or time.time()

    @property
    def uptime_seconds(self) -> float:
        return round(time.time() - self.started_at, 1)

    async def check_database(self) -> Dict[str, Any]:
        try:
            table_names = await self.db.table_names()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("health_database_unreachable", error=str(e))
            return {"connected": False, "tablesExist": False, "tableCount": 0, "error": str(e)}

        required = {table.name for table in CORE_TABLES}
        return {
            "connected": True,
            "tablesExist": required.issubset(table_names),
            "tableCount": len(table_names),
        }

    def check_memory(self) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        used = memory.total - memory.available
        return {
            "totalMB": _megabytes(memory.total),
            "usedMB": _megabytes(used),
            "freeMB": _megabytes(memory.available),
            "percentage": round(memory.percent, 1),
            "healthy": memory.percent < self.settings.MEMORY_HEALTHY_PERCENT,
        }

    async def full(self) -> Dict[str, Any]:
        start = time.time()
        database = await self.check_database()
        memory = self.check_memory()

        if not database["connected"] or not database["tablesExist"]:
            status = UNHEALTHY
        elif not memory["healthy"]:
            status = DEGRADED
        else:
            status = HEALTHY

        return {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "uptime": self.uptime_seconds,
            "responseTimeMs": int((time.time() - start) * 1000),
            "environment": self.settings.ENVIRONMENT,
            "version": self.settings.APP_VERSION,
            "database": database,
            "memory": memory,
            "detection": {
                "backend": self.scheduler.backend if self.scheduler else None,
                "inFlight": self.scheduler.in_flight if self.scheduler else None,
            },
        }

    async def quick(self) -> Dict[str, Any]:
        try:
            await self.db.ping()
            connected = True
        except (SQLAlchemyError, OSError):
            connected = False

        return {
            "status": HEALTHY if connected else UNHEALTHY,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "uptime": self.uptime_seconds,
            "database": connected,
            "memoryMB": _megabytes(psutil.Process().memory_info().rss),
        }
