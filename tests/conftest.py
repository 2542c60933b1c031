"""Shared fixtures.

Hey future me - service tests use a real temporary SQLite FILE, never ":memory:". Every
aiosqlite connection to ":memory:" gets its own empty database, so the ledger session and
the scanner session would not see each other's rows.
"""

from collections.abc import AsyncGenerator, Callable, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from PIL import Image

from artshelf.config import (
    DatabaseSettings,
    ProgressSettings,
    ScannerSettings,
    Settings,
    StorageSettings,
)
from artshelf.infrastructure.persistence import Database

ImageFactory = Callable[..., Path]


@pytest.fixture
def scan_root(tmp_path: Path) -> Path:
    """Empty library root."""
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path, scan_root: Path) -> Settings:
    """Settings pointing at temporary paths, tuned for fast tests."""
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        storage=StorageSettings(scan_path=scan_root),
        scanner=ScannerSettings(batch_size=2, concurrency=4, cancel_poll_interval=0),
        progress=ProgressSettings(persist_interval_ms=0, heartbeat_seconds=30),
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Database with the schema created."""
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


def _write_image(path: Path, size: tuple[int, int] = (4, 3), color: str = "red") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    image_format = "JPEG" if path.suffix.lower() in {".jpg", ".jpeg"} else "PNG"
    Image.new("RGB", size, color=color).save(path, format=image_format)
    return path


@pytest.fixture
def make_image() -> ImageFactory:
    """Write a small real image file (PNG unless the suffix says JPEG)."""
    return _write_image


@pytest.fixture
def make_artwork(scan_root: Path) -> Callable[..., Path]:
    """Create "{artist} ({user_id})/{artwork_dir}" with images and an optional sidecar.

    Returns the artwork directory.
    """

    def _make(
        artwork_id: str,
        pages: int = 1,
        artist: str = "Mika",
        user_id: str = "12345",
        folder: str | None = None,
        sidecar: str | None = None,
    ) -> Path:
        directory = scan_root / f"{artist} ({user_id})" / (folder or artwork_id)
        directory.mkdir(parents=True, exist_ok=True)
        for page in range(pages):
            _write_image(directory / f"{artwork_id}_p{page}.png", size=(4 + page, 3))
        if sidecar is not None:
            (directory / f"{artwork_id}-meta.txt").write_text(sidecar, encoding="utf-8")
        return directory

    return _make


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    """TestClient running the full lifespan against temporary paths."""
    from artshelf.main import create_app

    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
