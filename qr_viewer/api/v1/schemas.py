"""
Response and request bodies for the v1 API

Fields are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from qr_viewer.core.storage import LocalStorage
from qr_viewer.modules.uploads.models import DetectedCode, UploadItem


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CodePositionSchema(CamelModel):
    x: int
    y: int


class DetectedCodeSchema(CamelModel):
    content: str
    type: str
    position: Optional[CodePositionSchema] = None
    confidence: float

    @classmethod
    def from_model(cls, code: DetectedCode) -> "DetectedCodeSchema":
        return cls(**code.to_dict())


# =============================================================================
# Upload
# =============================================================================

class UploadAcceptedResponse(CamelModel):
    success: bool = True
    item_id: str
    status: str
    message: str
    image_url: str


# =============================================================================
# Status & Results
# =============================================================================

class StatusResponse(CamelModel):
    success: bool = True
    item_id: str
    status: str
    processing_time_ms: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_item(cls, item: UploadItem) -> "StatusResponse":
        return cls(
            item_id=item.id,
            status=item.processing_status,
            processing_time_ms=item.processing_time,
            error=item.error_message,
        )


class ResultsResponse(StatusResponse):
    upload_time: datetime
    original_name: str
    qr_codes: List[DetectedCodeSchema] = Field(default_factory=list)


# =============================================================================
# Listing & Details
# =============================================================================

class UploadSummary(CamelModel):
    id: str
    original_name: str
    filename: str
    file_size: int
    mime_type: str
    upload_time: datetime
    status: str
    processing_time_ms: Optional[int] = None
    qr_count: int = 0
    image_url: str

    @classmethod
    def build(cls, item: UploadItem, qr_count: int, storage: LocalStorage) -> "UploadSummary":
        return cls(
            id=item.id,
            original_name=item.original_name,
            filename=item.filename,
            file_size=item.file_size,
            mime_type=item.mime_type,
            upload_time=item.upload_time,
            status=item.processing_status,
            processing_time_ms=item.processing_time,
            qr_count=qr_count,
            image_url=storage.url_for(item.filename),
        )


class UploadDetailResponse(UploadSummary):
    success: bool = True
    error: Optional[str] = None
    qr_codes: List[DetectedCodeSchema] = Field(default_factory=list)
    qr_generated: bool = False
    generated_qr_url: Optional[str] = None
    qr_generated_at: Optional[datetime] = None


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class UploadListResponse(CamelModel):
    success: bool = True
    uploads: List[UploadSummary]
    pagination: Pagination


class DeleteResponse(CamelModel):
    success: bool = True
    message: str


# =============================================================================
# Generated QR
# =============================================================================

class ArtifactResponse(CamelModel):
    success: bool = True
    item_id: str
    qr_url: str
    already_existed: bool = False
    generated_at: Optional[datetime] = None


class CustomQRRequest(CamelModel):
    text: Optional[str] = None
    size: int = Field(default=256, ge=64, le=1024)
    error_correction: Literal["L", "M", "Q", "H"] = "M"
    margin: int = Field(default=1, ge=0, le=10)
    dark_color: str = Field(default="#000000", pattern=r"^#[0-9a-fA-F]{6}$")
    light_color: str = Field(default="#FFFFFF", pattern=r"^#[0-9a-fA-F]{6}$")


class CustomQRResponse(CamelModel):
    success: bool = True
    data_url: str
