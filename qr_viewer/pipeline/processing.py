"""
Detection run for one upload

The single code path behind both scheduling backends: detect, then write the
terminal state. Codes and `completed` are written together; a raster decode
failure writes `failed` with the error text and no codes.
"""

import time
import traceback
from pathlib import Path
from typing import Optional, Union

from qr_viewer.core.database import Database
from qr_viewer.core.exceptions import ProcessingError
from qr_viewer.core.logging import get_logger, log_context
from qr_viewer.core.metrics import active_detections_gauge, record_detection_outcome
from qr_viewer.engines.detection.services import QRDetectionService
from qr_viewer.modules.uploads.models import DetectedCode, UploadStatus
from qr_viewer.modules.uploads.repository import UploadRepository

logger = get_logger(__name__)

SKIPPED = "skipped"


async def mark_failed(db: Database, upload_id: str, error_message: str, processing_time_ms: Optional[int] = None) -> bool:
    async with db.session() as session:
        return await UploadRepository(session).fail(upload_id, error_message, processing_time_ms)


async def process_upload(
    db: Database,
    detector: QRDetectionService,
    upload_id: str,
    image_path: Union[str, Path]
) -> str:
    """Run detection for one upload and persist the outcome. Returns the final status."""
    start_time = time.time()
    active_detections_gauge.inc()

    with log_context(upload_id=upload_id, stage="detection"):
        logger.info("detection_started", image_path=str(image_path))
        try:
            try:
                symbols = await detector.detect(upload_id, image_path)
            except ProcessingError as e:
                elapsed_ms = int((time.time() - start_time) * 1000)
                await mark_failed(db, upload_id, e.message, elapsed_ms)
                record_detection_outcome("failed", time.time() - start_time)
                logger.warning("detection_failed", error=e.message, processing_time_ms=elapsed_ms)
                return UploadStatus.FAILED.value

            elapsed_ms = int((time.time() - start_time) * 1000)
            codes = [
                DetectedCode(
                    upload_id=upload_id,
                    content=symbol.content,
                    qr_type=symbol.code_type.value,
                    position_x=symbol.position.x if symbol.position else None,
                    position_y=symbol.position.y if symbol.position else None,
                    confidence=symbol.confidence,
                )
                for symbol in symbols
            ]

            async with db.session() as session:
                written = await UploadRepository(session).complete(upload_id, codes, elapsed_ms)

            if not written:
                # Deleted or already terminal while detection ran
                return SKIPPED

            record_detection_outcome(
                "completed",
                time.time() - start_time,
                code_types=[symbol.code_type.value for symbol in symbols],
            )
            logger.info("detection_completed", codes_found=len(codes), processing_time_ms=elapsed_ms)
            return UploadStatus.COMPLETED.value

        except Exception as e:
            # Anything past this point would leave the item stuck in `processing`
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "detection_crashed",
                error=str(e),
                error_type=type(e).__name__,
                traceback=traceback.format_exc(),
            )
            record_detection_outcome("failed", time.time() - start_time)
            try:
                await mark_failed(db, upload_id, f"Processing error: {e}", elapsed_ms)
            except Exception as mark_error:
                logger.error("detection_mark_failed_error", error=str(mark_error))
            return UploadStatus.FAILED.value
        finally:
            active_detections_gauge.dec()
