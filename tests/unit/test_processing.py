import pytest
from unittest.mock import AsyncMock, MagicMock

from qr_viewer.core.exceptions import ProcessingError
from qr_viewer.engines.detection.schemas import CodePosition, DetectedSymbol
from qr_viewer.modules.uploads.models import CodeType, UploadItem, UploadStatus
from qr_viewer.modules.uploads.repository import UploadRepository
from qr_viewer.pipeline.processing import SKIPPED, process_upload


async def _add_processing_upload(db) -> UploadItem:
    async with db.session() as session:
        return await UploadRepository(session).add(
            UploadItem(filename="f.png", original_name="f.png", file_size=1, mime_type="image/png")
        )


async def _load(db, upload_id):
    async with db.session() as session:
        repo = UploadRepository(session)
        return await repo.get(upload_id), await repo.get_codes(upload_id)


def _detector(**kwargs):
    detector = MagicMock()
    detector.detect = AsyncMock(**kwargs)
    return detector


@pytest.mark.asyncio
async def test_successful_detection_completes_with_codes(db):
    item = await _add_processing_upload(db)
    detector = _detector(return_value=[
        DetectedSymbol(
            content="https://example.com",
            position=CodePosition(x=40, y=40),
            code_type=CodeType.URL,
            strategy="original",
        ),
        DetectedSymbol(content="plain", code_type=CodeType.TEXT, strategy="contrast_1"),
    ])

    status = await process_upload(db, detector, item.id, "/tmp/f.png")

    stored, codes = await _load(db, item.id)
    assert status == UploadStatus.COMPLETED.value
    assert stored.processing_status == UploadStatus.COMPLETED.value
    assert stored.processing_time is not None
    assert [c.to_dict() for c in codes] == [
        {"content": "https://example.com", "type": "url", "position": {"x": 40, "y": 40}, "confidence": 1.0},
        {"content": "plain", "type": "text", "position": None, "confidence": 1.0},
    ]


@pytest.mark.asyncio
async def test_no_codes_is_still_completed(db):
    item = await _add_processing_upload(db)

    status = await process_upload(db, _detector(return_value=[]), item.id, "/tmp/f.png")

    stored, codes = await _load(db, item.id)
    assert status == UploadStatus.COMPLETED.value
    assert stored.processing_status == UploadStatus.COMPLETED.value
    assert codes == []


@pytest.mark.asyncio
async def test_decode_failure_marks_failed(db):
    item = await _add_processing_upload(db)
    detector = _detector(side_effect=ProcessingError("Unable to decode image: truncated"))

    status = await process_upload(db, detector, item.id, "/tmp/f.png")

    stored, codes = await _load(db, item.id)
    assert status == UploadStatus.FAILED.value
    assert stored.error_message == "Unable to decode image: truncated"
    assert codes == []


@pytest.mark.asyncio
async def test_unexpected_error_marks_failed(db):
    item = await _add_processing_upload(db)
    detector = _detector(side_effect=RuntimeError("out of memory"))

    status = await process_upload(db, detector, item.id, "/tmp/f.png")

    stored, _ = await _load(db, item.id)
    assert status == UploadStatus.FAILED.value
    assert stored.processing_status == UploadStatus.FAILED.value
    assert stored.error_message == "Processing error: out of memory"


@pytest.mark.asyncio
async def test_upload_deleted_mid_detection_is_skipped(db):
    item = await _add_processing_upload(db)

    async def delete_then_return(upload_id, image_path):
        async with db.session() as session:
            await UploadRepository(session).delete(upload_id)
        return [DetectedSymbol(content="late", strategy="original")]

    detector = MagicMock()
    detector.detect = delete_then_return

    status = await process_upload(db, detector, item.id, "/tmp/f.png")

    stored, codes = await _load(db, item.id)
    assert status == SKIPPED
    assert stored is None
    assert codes == []
