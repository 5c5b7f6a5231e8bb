"""
Celery tasks

Worker-side entry points for DETECTION_BACKEND=celery. A task owns its
Database handle for the length of one run and runs the same coroutine the
in-process scheduler runs.
"""

import asyncio
from typing import Optional

from qr_viewer.core.celery_app import celery_app
from qr_viewer.core.config import settings
from qr_viewer.core.database import Database
from qr_viewer.core.logging import get_logger, log_context
from qr_viewer.core.storage import LocalStorage
from qr_viewer.engines.detection.services import QRDetectionService
from qr_viewer.modules.uploads.services import UploadTracker
from qr_viewer.pipeline.processing import process_upload

logger = get_logger(__name__)


def _run(coro):
    """Run a coroutine on a private event loop (workers are synchronous)."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _detect(upload_id: str, image_path: str) -> str:
    db = Database(settings.DATABASE_URL)
    try:
        return await process_upload(db, QRDetectionService.from_settings(settings), upload_id, image_path)
    finally:
        await db.dispose()


async def _cleanup(max_age_days: int) -> int:
    db = Database(settings.DATABASE_URL)
    try:
        tracker = UploadTracker(db, LocalStorage(settings.UPLOAD_DIR), settings)
        return await tracker.cleanup_old_uploads(max_age_days)
    finally:
        await db.dispose()


@celery_app.task(
    bind=True,
    name="qr_viewer.pipeline.tasks.detect_codes",
    max_retries=0,
    acks_late=False,
    ignore_result=True
)
def detect_codes_task(self, upload_id: str, image_path: str) -> str:
    """Detect codes in one stored upload. Delivered at most once, never retried."""
    with log_context(upload_id=upload_id, stage="detection"):
        logger.info("task_detection_received", task_id=self.request.id, image_path=image_path)
        status = _run(_detect(upload_id, image_path))
        logger.info("task_detection_finished", task_id=self.request.id, status=status)
        return status


@celery_app.task(name="qr_viewer.pipeline.tasks.cleanup_old_uploads")
def cleanup_old_uploads_task(max_age_days: Optional[int] = None) -> int:
    days = max_age_days if max_age_days is not None else settings.CLEANUP_MAX_AGE_DAYS
    with log_context(stage="retention"):
        removed = _run(_cleanup(days))
    logger.info("task_cleanup_finished", removed=removed, max_age_days=days)
    return removed
