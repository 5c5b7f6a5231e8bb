import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import OperationalError

from qr_viewer.core.exceptions import (
    ErrorCode,
    FileTooLargeError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from qr_viewer.modules.uploads.models import UploadItem, UploadStatus
from qr_viewer.modules.uploads.repository import UploadRepository
from qr_viewer.modules.uploads.services import IngestionGateway, UploadTracker


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def gateway(db, storage, scheduler, test_settings):
    return IngestionGateway(db, storage, scheduler, test_settings)


@pytest.fixture
def tracker(db, storage, test_settings):
    return UploadTracker(db, storage, test_settings)


async def _count(db) -> int:
    async with db.session() as session:
        return await UploadRepository(session).count()


def _stored_files(storage):
    return [p for p in Path(storage.base_path).rglob("*") if p.is_file()]


@pytest.mark.asyncio
@pytest.mark.parametrize("data_name, mime, filename, error_code", [
    ("empty", "image/png", "a.png", ErrorCode.INVALID_FILE),
    ("png", "text/plain", "a.png", ErrorCode.INVALID_FILE_TYPE),
    ("png", "image/png", "a.txt", ErrorCode.INVALID_FILE_TYPE),
    ("text", "image/png", "a.png", ErrorCode.INVALID_FILE),
    ("jpeg", "image/png", "a.png", ErrorCode.INVALID_FILE),
    ("png", "image/jpeg", "a.jpg", ErrorCode.INVALID_FILE),
])
async def test_rejected_uploads_persist_nothing(
    gateway, db, storage, scheduler, blank_png, jpeg_bytes, data_name, mime, filename, error_code
):
    data = {"empty": b"", "png": blank_png, "jpeg": jpeg_bytes, "text": b"just some text"}[data_name]

    with pytest.raises(ValidationError) as exc_info:
        await gateway.submit(data, mime, filename)

    assert exc_info.value.code == error_code
    assert exc_info.value.status_code == 400
    assert await _count(db) == 0
    assert _stored_files(storage) == []
    scheduler.schedule.assert_not_called()


@pytest.mark.asyncio
async def test_oversized_upload_is_413(gateway, db, test_settings, blank_png):
    test_settings.MAX_FILE_SIZE = len(blank_png) - 1

    with pytest.raises(FileTooLargeError) as exc_info:
        await gateway.submit(blank_png, "image/png", "big.png")

    assert exc_info.value.status_code == 413
    assert exc_info.value.code == ErrorCode.FILE_TOO_LARGE
    assert await _count(db) == 0


@pytest.mark.asyncio
async def test_accepted_upload_is_processing_and_scheduled(gateway, db, storage, scheduler, blank_png):
    item = await gateway.submit(blank_png, "image/png", "../scans/blank.png")

    assert item.processing_status == UploadStatus.PROCESSING.value
    assert item.original_name == "blank.png"
    assert item.file_size == len(blank_png)
    assert storage.path_for(item.filename).read_bytes() == blank_png
    scheduler.schedule.assert_called_once_with(item.id, str(storage.path_for(item.filename)))

    async with db.session() as session:
        stored = await UploadRepository(session).get(item.id)
    assert stored.processing_status == UploadStatus.PROCESSING.value


@pytest.mark.asyncio
async def test_accepts_jpeg_with_jpg_extension(gateway, jpeg_bytes):
    item = await gateway.submit(jpeg_bytes, "image/jpeg", "photo.JPG")
    assert item.mime_type == "image/jpeg"


@pytest.mark.asyncio
async def test_scheduling_failure_marks_item_failed(gateway, db, scheduler, blank_png):
    scheduler.schedule.side_effect = SchedulingError("broker down")

    item = await gateway.submit(blank_png, "image/png", "a.png")

    assert item.processing_status == UploadStatus.FAILED.value
    assert "broker down" in item.error_message
    async with db.session() as session:
        stored = await UploadRepository(session).get(item.id)
    assert stored.processing_status == UploadStatus.FAILED.value
    assert stored.error_message == item.error_message


@pytest.mark.asyncio
async def test_unrecordable_scheduling_failure_still_reports_failed(gateway, scheduler, blank_png, monkeypatch):
    scheduler.schedule.side_effect = SchedulingError("broker down")
    monkeypatch.setattr(
        "qr_viewer.modules.uploads.services.mark_failed",
        AsyncMock(side_effect=OperationalError("UPDATE uploads", {}, Exception("database is locked"))),
    )

    item = await gateway.submit(blank_png, "image/png", "a.png")

    assert item.processing_status == UploadStatus.FAILED.value
    assert "broker down" in item.error_message


@pytest.mark.asyncio
async def test_timestamps_are_utc_aware(gateway, db, blank_png):
    fresh = UploadItem(filename="x.png", original_name="x.png", file_size=1, mime_type="image/png")
    assert fresh.upload_time.tzinfo is not None

    item = await gateway.submit(blank_png, "image/png", "a.png")

    async with db.session() as session:
        stored = await UploadRepository(session).get(item.id)
    assert stored.upload_time.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_tracker_unknown_id_raises_not_found(tracker):
    with pytest.raises(NotFoundError) as exc_info:
        await tracker.get_status("does-not-exist")
    assert exc_info.value.code == ErrorCode.UPLOAD_NOT_FOUND
    assert exc_info.value.status_code == 404

    with pytest.raises(NotFoundError):
        await tracker.get_results("does-not-exist")


@pytest.mark.parametrize("limit, offset, expected", [
    (None, None, (50, 0)),
    (0, 0, (50, 0)),
    (10, 20, (10, 20)),
    (500, 0, (100, 0)),
    (-5, -3, (50, 0)),
])
def test_normalize_page(tracker, limit, offset, expected):
    assert tracker.normalize_page(limit, offset) == expected


@pytest.mark.asyncio
async def test_delete_removes_file_and_rows(gateway, tracker, storage, blank_png):
    item = await gateway.submit(blank_png, "image/png", "a.png")

    await tracker.delete(item.id)

    assert not storage.path_for(item.filename).exists()
    with pytest.raises(NotFoundError):
        await tracker.get_status(item.id)
    with pytest.raises(NotFoundError):
        await tracker.delete(item.id)


@pytest.mark.asyncio
async def test_delete_tolerates_missing_file(gateway, tracker, storage, blank_png):
    item = await gateway.submit(blank_png, "image/png", "a.png")
    storage.path_for(item.filename).unlink()

    deleted = await tracker.delete(item.id)

    assert deleted.id == item.id
    with pytest.raises(NotFoundError):
        await tracker.get_status(item.id)


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_uploads(db, tracker):
    async with db.session() as session:
        repo = UploadRepository(session)
        old = await repo.add(UploadItem(
            filename="old.png", original_name="old.png", file_size=1, mime_type="image/png",
            upload_time=datetime.now(timezone.utc) - timedelta(days=30),
        ))
    async with db.session() as session:
        recent = await UploadRepository(session).add(UploadItem(
            filename="new.png", original_name="new.png", file_size=1, mime_type="image/png",
        ))

    removed = await tracker.cleanup_old_uploads(max_age_days=7)

    assert removed == 1
    with pytest.raises(NotFoundError):
        await tracker.get_status(old.id)
    assert (await tracker.get_status(recent.id)).id == recent.id
