"""Helpers for API tests running against the full application."""

import time
from collections.abc import Callable
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from artshelf.infrastructure.persistence import Database
from artshelf.infrastructure.persistence.models import ImageModel
from artshelf.infrastructure.persistence.repositories import ArtworkRepository

TERMINAL = {"completed", "failed", "cancelled"}


@pytest.fixture
def wait_for_job(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Poll /api/jobs/{id} until the job reaches a terminal status."""

    def _wait(job_id: str, timeout: float = 10.0) -> dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            job = client.get(f"/api/jobs/{job_id}").json()
            if job["status"] in TERMINAL:
                return job
            if time.monotonic() > deadline:
                raise AssertionError(f"Job {job_id} still {job['status']} after {timeout}s")
            time.sleep(0.05)

    return _wait


async def _artwork_row(db: Database, external_id: str) -> dict[str, Any] | None:
    async with db.session_scope() as session:
        repo = ArtworkRepository(session)
        artwork = await repo.get_by_external_id(external_id)
        if artwork is None:
            return None
        paths = await session.scalars(
            select(ImageModel.path)
            .where(ImageModel.artwork_id == artwork.id)
            .order_by(ImageModel.sort_order, ImageModel.path)
        )
        return {
            "id": artwork.id,
            "title": artwork.title,
            "image_count": artwork.image_count,
            "paths": list(paths),
        }


@pytest.fixture
def artwork_row(client: TestClient) -> Callable[[str], dict[str, Any] | None]:
    """Read an artwork straight from the app's database, on the app's event loop."""

    def _lookup(external_id: str) -> dict[str, Any] | None:
        return client.portal.call(_artwork_row, client.app.state.db, external_id)

    return _lookup
