"""
Upload services

- IngestionGateway: validates an upload, records it as `processing`, and
  schedules detection without waiting for it
- UploadTracker: status and result reads, paginated listing, deletion, and
  age-based cleanup
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from qr_viewer.core.config import Settings
from qr_viewer.core.database import Database
from qr_viewer.core.exceptions import (
    ErrorCode,
    FileTooLargeError,
    NotFoundError,
    ValidationError,
)
from qr_viewer.core.files import (
    format_for_extension,
    format_for_mime,
    format_megabytes,
    safe_original_name,
    sniff_image_format,
)
from qr_viewer.core.logging import get_logger
from qr_viewer.core.metrics import record_upload
from qr_viewer.core.storage import LocalStorage
from qr_viewer.modules.uploads.models import DetectedCode, UploadItem, UploadStatus, utcnow
from qr_viewer.modules.uploads.repository import UploadRepository
from qr_viewer.pipeline.processing import mark_failed
from qr_viewer.pipeline.scheduler import DetectionScheduler

logger = get_logger(__name__)


# =============================================================================
# Ingestion
# =============================================================================

class IngestionGateway:
    """Accepts uploads and hands them to detection."""

    def __init__(
        self,
        db: Database,
        storage: LocalStorage,
        scheduler: DetectionScheduler,
        settings: Settings
    ):
        self.db = db
        self.storage = storage
        self.scheduler = scheduler
        self.settings = settings

    @property
    def max_file_size(self) -> int:
        return self.settings.MAX_FILE_SIZE

    def validate(self, data: bytes, mime_type: Optional[str], filename: str) -> str:
        """Check size, declared type, extension and signature. Returns the sniffed format."""
        if not data:
            raise ValidationError("Uploaded file is empty", code=ErrorCode.INVALID_FILE)

        if len(data) > self.max_file_size:
            raise FileTooLargeError(
                f"File too large. Maximum size is {format_megabytes(self.max_file_size)}",
                details={"maxBytes": self.max_file_size},
            )

        declared_mime = (mime_type or "").split(";")[0].strip().lower()
        if declared_mime not in self.settings.allowed_mime_types:
            raise ValidationError(
                f"Invalid file type {declared_mime or 'unknown'}. "
                f"Allowed types: {', '.join(self.settings.allowed_mime_types)}",
                code=ErrorCode.INVALID_FILE_TYPE,
            )

        extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if f".{extension}" not in self.settings.allowed_extensions:
            raise ValidationError(
                f"Invalid file extension. Allowed extensions: {', '.join(self.settings.allowed_extensions)}",
                code=ErrorCode.INVALID_FILE_TYPE,
            )

        detected = sniff_image_format(data)
        if detected is None:
            raise ValidationError("File content is not a supported image", code=ErrorCode.INVALID_FILE)

        expected = {format_for_mime(declared_mime), format_for_extension(filename)}
        if expected != {detected}:
            raise ValidationError(
                "File content does not match its declared type",
                code=ErrorCode.INVALID_FILE,
                details={"detected": detected, "declaredType": declared_mime, "filename": filename},
            )
        return detected

    async def submit(self, data: bytes, mime_type: Optional[str], original_name: Optional[str]) -> UploadItem:
        """Validate, store and record an upload, then schedule detection.

        Returns the recorded item. Its status is `processing`, or `failed`
        when detection could not be scheduled.
        """
        original_name = safe_original_name(original_name)
        try:
            detected = self.validate(data, mime_type, original_name)
        except ValidationError as e:
            record_upload("rejected")
            logger.info("upload_rejected", code=e.code.value, reason=e.message, original_name=original_name)
            raise

        storage_key = await self.storage.save(data, original_name)
        item = UploadItem(
            filename=storage_key,
            original_name=original_name,
            file_size=len(data),
            mime_type=mime_type.split(";")[0].strip().lower(),
        )
        try:
            async with self.db.session() as session:
                item = await UploadRepository(session).add(item)
        except SQLAlchemyError:
            await self.storage.delete(storage_key)
            raise

        logger.info(
            "upload_accepted",
            upload_id=item.id,
            storage_key=storage_key,
            size=item.file_size,
            format=detected,
        )

        try:
            self.scheduler.schedule(item.id, str(self.storage.path_for(storage_key)))
        except Exception as e:
            message = f"Failed to schedule processing: {e}"
            logger.error("detection_scheduling_failed", upload_id=item.id, error=str(e))
            record_upload("scheduling_failed")
            try:
                await mark_failed(self.db, item.id, message)
            except SQLAlchemyError as mark_error:
                logger.error("detection_mark_failed_error", upload_id=item.id, error=str(mark_error))
            item.processing_status = UploadStatus.FAILED.value
            item.error_message = message
            return item

        record_upload("accepted", item.file_size)
        return item


# =============================================================================
# Tracking
# =============================================================================

@dataclass
class UploadPage:
    rows: List[Tuple[UploadItem, int]]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


class UploadTracker:
    """Reads over persisted state; never waits on a running detection."""

    def __init__(self, db: Database, storage: LocalStorage, settings: Settings):
        self.db = db
        self.storage = storage
        self.settings = settings

    async def get_status(self, upload_id: str) -> UploadItem:
        async with self.db.session() as session:
            return await UploadRepository(session).get_or_raise(upload_id)

    async def get_results(self, upload_id: str) -> Tuple[UploadItem, List[DetectedCode]]:
        async with self.db.session() as session:
            repo = UploadRepository(session)
            item = await repo.get_or_raise(upload_id)
            codes = await repo.get_codes(upload_id)
        return item, codes

    def normalize_page(self, limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
        if not limit or limit < 1:
            limit = self.settings.LIST_DEFAULT_LIMIT
        limit = min(limit, self.settings.LIST_MAX_LIMIT)
        offset = max(0, offset or 0)
        return limit, offset

    async def list_uploads(self, limit: Optional[int] = None, offset: Optional[int] = None) -> UploadPage:
        limit, offset = self.normalize_page(limit, offset)
        async with self.db.session() as session:
            repo = UploadRepository(session)
            rows = await repo.list_page(limit, offset)
            total = await repo.count()
        return UploadPage(rows=rows, total=total, limit=limit, offset=offset)

    async def delete(self, upload_id: str) -> UploadItem:
        """Remove the stored file(s), then the item and its codes together."""
        async with self.db.session() as session:
            item = await UploadRepository(session).get_or_raise(upload_id)

        await self.storage.delete(item.filename)
        if item.generated_qr_path:
            await self.storage.delete(item.generated_qr_path)

        async with self.db.session() as session:
            deleted = await UploadRepository(session).delete(upload_id)
        if not deleted:
            raise NotFoundError(f"Upload {upload_id} not found", upload_id=upload_id)

        logger.info("upload_deleted", upload_id=upload_id, storage_key=item.filename)
        return item

    async def cleanup_old_uploads(self, max_age_days: Optional[int] = None) -> int:
        """Delete uploads older than max_age_days. Returns how many were removed."""
        days = max_age_days if max_age_days is not None else self.settings.CLEANUP_MAX_AGE_DAYS
        cutoff = utcnow() - timedelta(days=days)

        async with self.db.session() as session:
            expired = await UploadRepository(session).list_older_than(cutoff)

        removed = 0
        for item in expired:
            try:
                await self.delete(item.id)
                removed += 1
            except NotFoundError:
                # Deleted concurrently
                continue

        logger.info("uploads_cleaned_up", removed=removed, max_age_days=days)
        return removed
