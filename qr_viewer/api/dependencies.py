"""
FastAPI Dependencies

Services are built once in the application lifespan and kept on app.state;
these accessors hand them to route handlers.
"""

from fastapi import Request

from qr_viewer.core.storage import LocalStorage
from qr_viewer.engines.artifacts.services import QRArtifactService
from qr_viewer.modules.uploads.services import IngestionGateway, UploadTracker


def get_storage(request: Request) -> LocalStorage:
    return request.app.state.storage


def get_ingestion_gateway(request: Request) -> IngestionGateway:
    return request.app.state.gateway


def get_upload_tracker(request: Request) -> UploadTracker:
    return request.app.state.tracker


def get_artifact_service(request: Request) -> QRArtifactService:
    return request.app.state.artifacts