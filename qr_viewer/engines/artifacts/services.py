"""
Generated QR artifacts

Renders a shareable QR image for an upload (once, on first request) and
arbitrary text to a data URL.
"""

import asyncio
import base64
import io
import json
from typing import Tuple

import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from qrcode.exceptions import DataOverflowError
from qrcode.image.pil import PilImage
from PIL import Image

from qr_viewer.core.config import Settings
from qr_viewer.core.database import Database
from qr_viewer.core.exceptions import ArtifactError, ErrorCode, NotFoundError
from qr_viewer.core.logging import get_logger
from qr_viewer.core.storage import LocalStorage
from qr_viewer.modules.uploads.models import UploadItem, isoformat_utc, utcnow
from qr_viewer.modules.uploads.repository import UploadRepository

logger = get_logger(__name__)

ERROR_CORRECTION_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}


def render_qr_png(
    text: str,
    size: int = 256,
    error_correction: str = "M",
    border: int = 1,
    dark_color: str = "#000000",
    light_color: str = "#FFFFFF"
) -> bytes:
    """Render text as a square PNG of roughly `size` pixels."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECTION_LEVELS[error_correction.upper()],
        box_size=1,
        border=border,
    )
    qr.add_data(text)
    qr.make(fit=True)

    modules = qr.modules_count + 2 * border
    qr.box_size = max(1, size // modules)
    image = qr.make_image(
        image_factory=PilImage,
        fill_color=dark_color,
        back_color=light_color,
    ).get_image()
    if image.size != (size, size):
        image = image.resize((size, size), Image.NEAREST)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class QRArtifactService:
    """Creates and looks up the generated QR image for an upload."""

    def __init__(self, db: Database, storage: LocalStorage, settings: Settings):
        self.db = db
        self.storage = storage
        self.settings = settings

    def _payload(self, item: UploadItem) -> str:
        return json.dumps({
            "type": "image_upload",
            "uploadId": item.id,
            "imageUrl": f"{self.settings.PUBLIC_BASE_URL}{self.storage.url_for(item.filename)}",
            "originalName": item.original_name,
            "uploadTime": isoformat_utc(item.upload_time),
            "viewUrl": f"{self.settings.FRONTEND_URL}/view/{item.id}",
            "generatedAt": isoformat_utc(utcnow()),
        })

    async def generate_for_upload(self, upload_id: str) -> Tuple[UploadItem, bool]:
        """Create the artifact if missing. Returns the item and whether it already existed."""
        async with self.db.session() as session:
            item = await UploadRepository(session).get_or_raise(upload_id)

        if item.qr_generated and item.generated_qr_path:
            return item, True

        timestamp = int(utcnow().timestamp() * 1000)
        storage_key = f"{self.settings.ARTIFACT_SUBDIR}/qr-{item.id}-{timestamp}.png"
        try:
            png = await asyncio.to_thread(render_qr_png, self._payload(item))
            await self.storage.save_as(png, storage_key)
        except (ValueError, OSError, DataOverflowError) as e:
            raise ArtifactError(f"Failed to generate QR code: {e}", upload_id=upload_id) from e

        try:
            async with self.db.session() as session:
                repo = UploadRepository(session)
                recorded = await repo.record_artifact(upload_id, storage_key)
                item = await repo.get_or_raise(upload_id)
        except NotFoundError:
            # Upload deleted while the image was rendering
            await self.storage.delete(storage_key)
            raise

        if not recorded:
            # A concurrent request recorded its own artifact first
            await self.storage.delete(storage_key)
            return item, True

        logger.info("qr_artifact_generated", upload_id=upload_id, storage_key=storage_key)
        return item, False

    async def get_artifact(self, upload_id: str) -> UploadItem:
        async with self.db.session() as session:
            item = await UploadRepository(session).get_or_raise(upload_id)
        if not item.qr_generated or not item.generated_qr_path:
            raise NotFoundError(
                "QR code not generated for this upload",
                code=ErrorCode.QR_NOT_FOUND,
                upload_id=upload_id,
            )
        return item

    async def render_data_url(self, text: str, **options) -> str:
        try:
            png = await asyncio.to_thread(render_qr_png, text, **options)
        except (ValueError, KeyError, DataOverflowError) as e:
            raise ArtifactError(f"Failed to generate QR code: {e}") from e
        return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
