import io
import pytest
import numpy as np
import qrcode
from httpx import AsyncClient, ASGITransport
from PIL import Image
from typing import AsyncGenerator

from qr_viewer.core.config import Settings
from qr_viewer.core.database import Database
from qr_viewer.core.migrations import apply_migrations
from qr_viewer.core.storage import LocalStorage
from qr_viewer.main import create_app


def make_qr_png(payload: str, box_size: int = 10, border: int = 4) -> bytes:
    qr = qrcode.QRCode(box_size=box_size, border=border)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def make_blank_png(size: int = 300) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def make_jpeg(size: int = 64) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), (200, 30, 30)).save(buffer, format="JPEG")
    return buffer.getvalue()


def make_corrupt_png() -> bytes:
    # Random pixels compress badly, so cutting the file in half loses image data
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 255, size=(200, 200, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    data = buffer.getvalue()
    return data[: len(data) // 2]


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        DETECTION_BACKEND="local",
        DB_CONNECT_BASE_DELAY_SECONDS=0.01,
        SHUTDOWN_GRACE_PERIOD_SECONDS=5.0,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
async def db(test_settings) -> AsyncGenerator[Database, None]:
    database = Database(test_settings.DATABASE_URL)
    await apply_migrations(database)
    yield database
    await database.dispose()


@pytest.fixture
def storage(test_settings) -> LocalStorage:
    return LocalStorage(test_settings.UPLOAD_DIR)


@pytest.fixture
async def app(test_settings):
    application = create_app(test_settings)
    # Trigger lifespan events (startup/shutdown)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def settle(app):
    """Wait until every scheduled detection has written its terminal state."""
    async def _settle():
        remaining = await app.state.scheduler.drain(timeout=30)
        assert remaining == []
    return _settle


@pytest.fixture
def qr_png():
    return make_qr_png


@pytest.fixture
def blank_png() -> bytes:
    return make_blank_png()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg()


@pytest.fixture
def corrupt_png() -> bytes:
    return make_corrupt_png()
