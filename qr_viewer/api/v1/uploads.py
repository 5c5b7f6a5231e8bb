"""
Uploads Endpoints

GET    /api/v1/uploads           - Paginated list, newest first
GET    /api/v1/uploads/{item_id} - Item details with codes
DELETE /api/v1/uploads/{item_id} - Remove the item, its codes and its files
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from qr_viewer.api.dependencies import get_storage, get_upload_tracker
from qr_viewer.api.v1.schemas import (
    DeleteResponse,
    DetectedCodeSchema,
    Pagination,
    UploadDetailResponse,
    UploadListResponse,
    UploadSummary,
)
from qr_viewer.core.storage import LocalStorage
from qr_viewer.modules.uploads.services import UploadTracker

router = APIRouter()


@router.get("", response_model=UploadListResponse)
async def list_uploads(
    limit: Optional[int] = Query(None, description="Page size; capped at the configured maximum"),
    offset: Optional[int] = Query(None, ge=0),
    tracker: UploadTracker = Depends(get_upload_tracker),
    storage: LocalStorage = Depends(get_storage)
):
    page = await tracker.list_uploads(limit=limit, offset=offset)
    return UploadListResponse(
        uploads=[UploadSummary.build(item, qr_count, storage) for item, qr_count in page.rows],
        pagination=Pagination(
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        ),
    )


@router.get("/{item_id}", response_model=UploadDetailResponse)
async def get_upload(
    item_id: str,
    tracker: UploadTracker = Depends(get_upload_tracker),
    storage: LocalStorage = Depends(get_storage)
):
    item, codes = await tracker.get_results(item_id)
    summary = UploadSummary.build(item, len(codes), storage)
    return UploadDetailResponse(
        **summary.model_dump(),
        error=item.error_message,
        qr_codes=[DetectedCodeSchema.from_model(code) for code in codes],
        qr_generated=item.qr_generated,
        generated_qr_url=storage.url_for(item.generated_qr_path) if item.generated_qr_path else None,
        qr_generated_at=item.qr_generated_at,
    )


@router.delete("/{item_id}", response_model=DeleteResponse)
async def delete_upload(item_id: str, tracker: UploadTracker = Depends(get_upload_tracker)):
    await tracker.delete(item_id)
    return DeleteResponse(message="Upload deleted successfully")
