"""
Uploads Module

Upload items, their detected codes, and the services that accept and track them.
"""

from qr_viewer.modules.uploads.models import (
    UploadItem,
    DetectedCode,
    UploadStatus,
    CodeType,
    TERMINAL_STATUSES,
)

__all__ = ["UploadItem", "DetectedCode", "UploadStatus", "CodeType", "TERMINAL_STATUSES"]
