"""
Results Endpoints

GET /api/v1/results/{item_id}        - Status plus decoded codes
GET /api/v1/results/{item_id}/status - Status only, for frequent polling

While detection runs both return status `processing` with no codes.
"""

from fastapi import APIRouter, Depends

from qr_viewer.api.dependencies import get_upload_tracker
from qr_viewer.api.v1.schemas import DetectedCodeSchema, ResultsResponse, StatusResponse
from qr_viewer.modules.uploads.services import UploadTracker

router = APIRouter()


@router.get("/{item_id}", response_model=ResultsResponse)
async def get_results(item_id: str, tracker: UploadTracker = Depends(get_upload_tracker)):
    item, codes = await tracker.get_results(item_id)
    status = StatusResponse.from_item(item)
    return ResultsResponse(
        **status.model_dump(),
        upload_time=item.upload_time,
        original_name=item.original_name,
        qr_codes=[DetectedCodeSchema.from_model(code) for code in codes],
    )


@router.get("/{item_id}/status", response_model=StatusResponse)
async def get_status(item_id: str, tracker: UploadTracker = Depends(get_upload_tracker)):
    item = await tracker.get_status(item_id)
    return StatusResponse.from_item(item)
