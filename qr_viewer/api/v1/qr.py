"""
Generated QR Endpoints

POST /api/v1/generate-qr/{item_id} - Create (once) a shareable QR for an upload
GET  /api/v1/qr/{item_id}          - Fetch that QR's reference
POST /api/v1/generate-custom-qr    - Render arbitrary text as a PNG data URL
"""

from fastapi import APIRouter, Depends

from qr_viewer.api.dependencies import get_artifact_service, get_storage
from qr_viewer.api.v1.schemas import ArtifactResponse, CustomQRRequest, CustomQRResponse
from qr_viewer.core.exceptions import ErrorCode, ValidationError
from qr_viewer.core.storage import LocalStorage
from qr_viewer.engines.artifacts.services import QRArtifactService

router = APIRouter()


@router.post("/generate-qr/{item_id}", response_model=ArtifactResponse)
async def generate_qr(
    item_id: str,
    artifacts: QRArtifactService = Depends(get_artifact_service),
    storage: LocalStorage = Depends(get_storage)
):
    item, already_existed = await artifacts.generate_for_upload(item_id)
    return ArtifactResponse(
        item_id=item.id,
        qr_url=storage.url_for(item.generated_qr_path),
        already_existed=already_existed,
        generated_at=item.qr_generated_at,
    )


@router.get("/qr/{item_id}", response_model=ArtifactResponse)
async def get_qr(
    item_id: str,
    artifacts: QRArtifactService = Depends(get_artifact_service),
    storage: LocalStorage = Depends(get_storage)
):
    item = await artifacts.get_artifact(item_id)
    return ArtifactResponse(
        item_id=item.id,
        qr_url=storage.url_for(item.generated_qr_path),
        already_existed=True,
        generated_at=item.qr_generated_at,
    )


@router.post("/generate-custom-qr", response_model=CustomQRResponse)
async def generate_custom_qr(
    request: CustomQRRequest,
    artifacts: QRArtifactService = Depends(get_artifact_service)
):
    if not request.text or not request.text.strip():
        raise ValidationError("Text is required", code=ErrorCode.MISSING_TEXT)

    data_url = await artifacts.render_data_url(
        request.text,
        size=request.size,
        error_correction=request.error_correction,
        border=request.margin,
        dark_color=request.dark_color,
        light_color=request.light_color,
    )
    return CustomQRResponse(data_url=data_url)
