"""
Upload repository

Owns every statement against the uploads and qr_results tables. Terminal
writes are conditional on the row still being in `processing`, and codes are
inserted in the same transaction as the `completed` write.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from qr_viewer.core.exceptions import NotFoundError
from qr_viewer.core.logging import get_logger
from qr_viewer.modules.uploads.models import DetectedCode, UploadItem, UploadStatus, utcnow

logger = get_logger(__name__)


class UploadRepository:
    """Repository for upload items and their detected codes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, upload_id: str) -> Optional[UploadItem]:
        result = await self.session.execute(
            select(UploadItem).where(UploadItem.id == upload_id)
        )
        return result.scalar_one_or_none()

    async def get_or_raise(self, upload_id: str) -> UploadItem:
        item = await self.get(upload_id)
        if item is None:
            raise NotFoundError(f"Upload {upload_id} not found", upload_id=upload_id)
        return item

    async def get_codes(self, upload_id: str) -> List[DetectedCode]:
        """Codes in the order detection produced them."""
        result = await self.session.execute(
            select(DetectedCode)
            .where(DetectedCode.upload_id == upload_id)
            .order_by(DetectedCode.id)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(UploadItem))
        return result.scalar_one()

    async def list_page(self, limit: int, offset: int) -> List[Tuple[UploadItem, int]]:
        """Newest first, each item paired with its code count."""
        qr_count = (
            select(func.count(DetectedCode.id))
            .where(DetectedCode.upload_id == UploadItem.id)
            .correlate(UploadItem)
            .scalar_subquery()
        )
        result = await self.session.execute(
            select(UploadItem, qr_count.label("qr_count"))
            .order_by(UploadItem.upload_time.desc(), UploadItem.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def list_older_than(self, cutoff: datetime) -> List[UploadItem]:
        result = await self.session.execute(
            select(UploadItem).where(UploadItem.upload_time < cutoff)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Writes
    # =========================================================================

    async def add(self, item: UploadItem) -> UploadItem:
        self.session.add(item)
        await self.session.commit()
        await self.session.refresh(item)
        return item

    async def complete(
        self,
        upload_id: str,
        codes: Sequence[DetectedCode],
        processing_time_ms: int
    ) -> bool:
        """Persist codes and flip the item to `completed` in one transaction.

        Returns False (and writes nothing) when the item is gone or already terminal.
        """
        result = await self.session.execute(
            update(UploadItem)
            .where(
                UploadItem.id == upload_id,
                UploadItem.processing_status == UploadStatus.PROCESSING.value,
            )
            .values(
                processing_status=UploadStatus.COMPLETED.value,
                processing_time=processing_time_ms,
                error_message=None,
            )
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.warning("terminal_write_skipped", upload_id=upload_id, target="completed")
            return False

        for code in codes:
            code.upload_id = upload_id
            self.session.add(code)
        await self.session.commit()
        return True

    async def fail(
        self,
        upload_id: str,
        error_message: str,
        processing_time_ms: Optional[int] = None
    ) -> bool:
        """Flip the item to `failed`. No codes are written."""
        result = await self.session.execute(
            update(UploadItem)
            .where(
                UploadItem.id == upload_id,
                UploadItem.processing_status == UploadStatus.PROCESSING.value,
            )
            .values(
                processing_status=UploadStatus.FAILED.value,
                processing_time=processing_time_ms,
                error_message=error_message,
            )
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.warning("terminal_write_skipped", upload_id=upload_id, target="failed")
            return False
        await self.session.commit()
        return True

    async def record_artifact(self, upload_id: str, path: str) -> bool:
        """Store the generated QR reference once. False if one is already recorded."""
        result = await self.session.execute(
            update(UploadItem)
            .where(UploadItem.id == upload_id, UploadItem.qr_generated == False)  # noqa: E712
            .values(
                qr_generated=True,
                generated_qr_path=path,
                qr_generated_at=utcnow(),
            )
        )
        if result.rowcount != 1:
            await self.session.rollback()
            return False
        await self.session.commit()
        return True

    async def delete(self, upload_id: str) -> bool:
        """Remove the item and its codes together. False if it did not exist."""
        await self.session.execute(
            delete(DetectedCode).where(DetectedCode.upload_id == upload_id)
        )
        result = await self.session.execute(
            delete(UploadItem).where(UploadItem.id == upload_id)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            return False
        await self.session.commit()
        return True
