"""
Upload and detected-code tables

An UploadItem moves through exactly one transition, processing -> completed
or processing -> failed. DetectedCode rows hang off completed items only and
are removed with their parent.
"""

import uuid
from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """ISO 8601 in UTC with a trailing Z; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    SQLite keeps no offset, so values are normalised to UTC on the way in and
    tagged as UTC on the way out.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class UploadStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {UploadStatus.COMPLETED.value, UploadStatus.FAILED.value}


class CodeType(str, Enum):
    URL = "url"
    EMAIL = "email"
    PHONE = "phone"
    WIFI = "wifi"
    VCARD = "vcard"
    GEO = "geo"
    SMS = "sms"
    TEXT = "text"


class UploadItem(SQLModel, table=True):
    """An accepted image upload and its processing outcome."""
    __tablename__ = "uploads"
    __table_args__ = (
        Index("idx_uploads_status", "processing_status"),
        Index("idx_uploads_time", "upload_time"),
    )

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )

    # File
    filename: str
    original_name: str
    file_size: int
    mime_type: str
    upload_time: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime, nullable=False)
    )

    # Processing
    processing_status: str = Field(default=UploadStatus.PROCESSING.value)
    processing_time: Optional[int] = None  # milliseconds
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    # Generated QR artifact
    qr_generated: bool = Field(default=False)
    generated_qr_path: Optional[str] = None
    qr_generated_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))

    @property
    def is_terminal(self) -> bool:
        return self.processing_status in TERMINAL_STATUSES


class DetectedCode(SQLModel, table=True):
    """One unique QR payload found in an upload."""
    __tablename__ = "qr_results"
    __table_args__ = (
        Index("idx_qr_results_upload_id", "upload_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    upload_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("uploads.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    content: str = Field(sa_column=Column(Text, nullable=False))
    qr_type: str = Field(default=CodeType.TEXT.value)
    position_x: Optional[int] = None
    position_y: Optional[int] = None
    confidence: float = Field(default=1.0)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))

    def to_dict(self) -> Dict[str, Any]:
        position = None
        if self.position_x is not None and self.position_y is not None:
            position = {"x": self.position_x, "y": self.position_y}
        return {
            "content": self.content,
            "type": self.qr_type,
            "position": position,
            "confidence": self.confidence,
        }
