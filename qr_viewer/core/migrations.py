"""
Schema migrations

Ordered steps applied at startup. Each step inspects the live schema and
does nothing when its target already exists, so running the list twice is
the same as running it once.

Steps:
- create_core_tables: uploads and qr_results
- add_upload_artifact_columns: qr_generated, generated_qr_path, qr_generated_at
- add_code_type_column: qr_results.qr_type
- create_indexes: status, upload time, qr_results.upload_id
"""

from dataclasses import dataclass
from typing import Callable, Dict, List

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection

from qr_viewer.core.database import Database
from qr_viewer.core.logging import get_logger
from qr_viewer.modules.uploads.models import DetectedCode, UploadItem

logger = get_logger(__name__)

CORE_TABLES = [UploadItem.__table__, DetectedCode.__table__]

# Server defaults for columns added to tables that may already hold rows
_ADDED_COLUMN_DEFAULTS: Dict[str, str] = {
    "qr_generated": "FALSE",
    "qr_type": "'text'",
}


@dataclass(frozen=True)
class MigrationStep:
    name: str
    apply: Callable[[Connection], bool]  # True when the step changed the schema


def _create_core_tables(conn: Connection) -> bool:
    existing = set(inspect(conn).get_table_names())
    missing = [table for table in CORE_TABLES if table.name not in existing]
    if not missing:
        return False
    UploadItem.metadata.create_all(conn, tables=missing, checkfirst=True)
    return True


def _add_missing_columns(table, column_names: List[str]) -> Callable[[Connection], bool]:
    def apply(conn: Connection) -> bool:
        existing = {column["name"] for column in inspect(conn).get_columns(table.name)}
        added = False
        for name in column_names:
            if name in existing:
                continue
            column = table.c[name]
            ddl = f"ALTER TABLE {table.name} ADD COLUMN {name} {column.type.compile(dialect=conn.dialect)}"
            if name in _ADDED_COLUMN_DEFAULTS:
                ddl += f" DEFAULT {_ADDED_COLUMN_DEFAULTS[name]}"
            conn.execute(text(ddl))
            logger.info("migration_column_added", table=table.name, column=name)
            added = True
        return added
    return apply


def _create_missing_indexes(conn: Connection) -> bool:
    inspector = inspect(conn)
    created = False
    for table in CORE_TABLES:
        existing = {index["name"] for index in inspector.get_indexes(table.name)}
        for index in table.indexes:
            if index.name in existing:
                continue
            index.create(conn)
            logger.info("migration_index_created", table=table.name, index=index.name)
            created = True
    return created


MIGRATION_STEPS: List[MigrationStep] = [
    MigrationStep("create_core_tables", _create_core_tables),
    MigrationStep(
        "add_upload_artifact_columns",
        _add_missing_columns(UploadItem.__table__, ["qr_generated", "generated_qr_path", "qr_generated_at"]),
    ),
    MigrationStep("add_code_type_column", _add_missing_columns(DetectedCode.__table__, ["qr_type"])),
    MigrationStep("create_indexes", _create_missing_indexes),
]


async def apply_migrations(db: Database, steps: List[MigrationStep] = None) -> List[str]:
    """Run every step in order inside one transaction; return the names that changed something."""
    applied = []
    async with db.engine.begin() as conn:
        for step in steps or MIGRATION_STEPS:
            changed = await conn.run_sync(step.apply)
            if changed:
                applied.append(step.name)
                logger.info("migration_applied", step=step.name)
            else:
                logger.debug("migration_skipped", step=step.name)
    return applied
