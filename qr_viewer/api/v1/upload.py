"""
Upload Endpoint

POST /api/v1/upload - Accept an image and schedule QR detection.
Responds 202 as soon as the upload is recorded; poll /results/{id}.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from qr_viewer.api.dependencies import get_ingestion_gateway, get_storage
from qr_viewer.api.v1.schemas import UploadAcceptedResponse
from qr_viewer.core.exceptions import ErrorCode, ValidationError
from qr_viewer.core.logging import get_logger
from qr_viewer.core.storage import LocalStorage
from qr_viewer.modules.uploads.models import UploadStatus
from qr_viewer.modules.uploads.services import IngestionGateway

logger = get_logger(__name__)
router = APIRouter()


@router.post("/upload", status_code=202, response_model=UploadAcceptedResponse)
async def upload_image(
    image: Optional[UploadFile] = File(None),
    gateway: IngestionGateway = Depends(get_ingestion_gateway),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Upload an image for QR detection.

    The multipart field is `image`. Accepted formats: JPEG, PNG, GIF, WebP.
    """
    if image is None:
        raise ValidationError("No file uploaded", code=ErrorCode.NO_FILE)

    # One byte past the ceiling is enough to know it is too large
    data = await image.read(gateway.max_file_size + 1)
    item = await gateway.submit(data, image.content_type, image.filename)

    if item.processing_status == UploadStatus.FAILED.value:
        message = "File uploaded but QR processing could not be started"
    else:
        message = "File uploaded successfully. QR processing started."

    return UploadAcceptedResponse(
        item_id=item.id,
        status=item.processing_status,
        message=message,
        image_url=storage.url_for(item.filename),
    )
