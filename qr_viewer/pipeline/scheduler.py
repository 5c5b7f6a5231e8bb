"""
Detection scheduling

The upload request never waits for detection. It hands the upload to a
scheduler and returns; the scheduler runs detection out-of-band exactly once.

- LocalDetectionScheduler: asyncio tasks in this process, bounded by a
  semaphore, drained on shutdown with a grace period
- CeleryDetectionScheduler: enqueues detect_codes on the broker
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from qr_viewer.core.config import Settings
from qr_viewer.core.database import Database
from qr_viewer.core.exceptions import SchedulingError
from qr_viewer.core.logging import get_logger
from qr_viewer.engines.detection.services import QRDetectionService
from qr_viewer.pipeline.processing import mark_failed, process_upload

logger = get_logger(__name__)

INTERRUPTED_MESSAGE = "Processing interrupted by shutdown"


class DetectionScheduler(ABC):
    backend: str = "unknown"

    @abstractmethod
    def schedule(self, upload_id: str, image_path: str):
        """Start detection for an upload. Raises SchedulingError if it cannot."""
        pass

    @property
    def in_flight(self) -> Optional[int]:
        return None

    async def shutdown(self, grace_period: float):
        pass


class LocalDetectionScheduler(DetectionScheduler):
    """In-process background detection."""

    backend = "local"

    def __init__(
        self,
        db: Database,
        detector: QRDetectionService,
        max_concurrency: int = 4,
        runner=process_upload
    ):
        self.db = db
        self.detector = detector
        self._runner = runner
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Dict[asyncio.Task, str] = {}
        self._closed = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def schedule(self, upload_id: str, image_path: str):
        if self._closed:
            raise SchedulingError("Detection scheduler is shutting down", upload_id=upload_id)

        task = asyncio.create_task(self._run(upload_id, image_path), name=f"detect-{upload_id}")
        self._tasks[task] = upload_id
        task.add_done_callback(self._on_done)
        logger.info("detection_scheduled", upload_id=upload_id, in_flight=len(self._tasks))

    async def _run(self, upload_id: str, image_path: str) -> str:
        async with self._semaphore:
            return await self._runner(self.db, self.detector, upload_id, image_path)

    def _on_done(self, task: asyncio.Task):
        upload_id = self._tasks.pop(task, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("detection_task_error", upload_id=upload_id, error=str(error))

    async def drain(self, timeout: Optional[float] = None) -> List[str]:
        """Wait for in-flight runs. Returns ids still running at the timeout."""
        if not self._tasks:
            return []
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return [self._tasks[task] for task in pending if task in self._tasks]

    async def shutdown(self, grace_period: float):
        """Stop accepting work, wait up to grace_period, then fail what is left."""
        self._closed = True
        if not self._tasks:
            return

        logger.info("detection_draining", in_flight=len(self._tasks), grace_period_seconds=grace_period)
        interrupted = await self.drain(timeout=grace_period)
        if not interrupted:
            logger.info("detection_drained")
            return

        still_running = [task for task, upload_id in self._tasks.items() if upload_id in interrupted]
        for task in still_running:
            task.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)

        for upload_id in interrupted:
            await mark_failed(self.db, upload_id, INTERRUPTED_MESSAGE)
        logger.warning("detection_interrupted", upload_ids=interrupted)


class CeleryDetectionScheduler(DetectionScheduler):
    """Hands detection to a Celery worker."""

    backend = "celery"

    def __init__(self, task=None):
        if task is None:
            from qr_viewer.pipeline.tasks import detect_codes_task
            task = detect_codes_task
        self._task = task

    def schedule(self, upload_id: str, image_path: str):
        try:
            result = self._task.apply_async(args=[upload_id, str(image_path)], queue="detection")
        except Exception as e:
            raise SchedulingError(f"Failed to enqueue detection: {e}", upload_id=upload_id) from e
        logger.info("detection_enqueued", upload_id=upload_id, task_id=result.id)


def build_scheduler(settings: Settings, db: Database, detector: QRDetectionService) -> DetectionScheduler:
    backend = settings.DETECTION_BACKEND.lower()
    if backend == "celery":
        return CeleryDetectionScheduler()
    if backend == "local":
        return LocalDetectionScheduler(db, detector, max_concurrency=settings.DETECTION_MAX_CONCURRENCY)
    raise ValueError(f"Unknown DETECTION_BACKEND: {settings.DETECTION_BACKEND}")
