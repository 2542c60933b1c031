"""Integration tests for the scan endpoints."""

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sse_starlette.sse import AppStatus

from artshelf.domain.entities import JobType


@pytest.fixture(autouse=True)
def _fresh_sse_exit_event(monkeypatch: pytest.MonkeyPatch) -> None:
    # sse-starlette keeps its shutdown event on a class attribute, bound to the first
    # event loop that used it. Every TestClient runs its own loop.
    monkeypatch.setattr(AppStatus, "should_exit_event", None, raising=False)


def _read_events(client: TestClient, params: dict[str, Any]) -> list[tuple[str, dict]]:
    events: list[tuple[str, dict]] = []
    current: str | None = None
    with client.stream("GET", "/api/scan/stream", params=params) as response:
        assert response.status_code == 200
        for line in response.iter_lines():
            if line.startswith("event:"):
                current = line.split(":", 1)[1].strip()
            elif line.startswith("data:") and current is not None:
                events.append((current, json.loads(line.split(":", 1)[1].strip())))
                current = None
    return events


def _active_scan(client: TestClient) -> str:
    ledger = client.app.state.job_ledger
    job = client.portal.call(ledger.create_job, JobType.SCAN)
    return job.id


def test_status_before_any_scan(client: TestClient) -> None:
    response = client.get("/api/scan/status")

    assert response.status_code == 200
    assert response.json() == {
        "scanning": False,
        "job_id": None,
        "status": None,
        "message": None,
        "progress": 0,
    }


def test_background_scan_catalogs_library(
    client: TestClient, make_artwork, wait_for_job, artwork_row
) -> None:
    make_artwork("100", pages=2)
    make_artwork("200", artist="Aoi", user_id="777")

    response = client.post("/api/scan", json={})

    assert response.status_code == 202
    job_id = response.json()["job_id"]
    job = wait_for_job(job_id)
    assert job["status"] == "completed"
    assert job["progress"] == 100
    assert job["result"]["new_artworks"] == 2
    assert job["result"]["total_images"] == 3

    row = artwork_row("100")
    assert row is not None
    assert row["image_count"] == 2
    assert row["paths"] == ["Mika (12345)/100/100_p0.png", "Mika (12345)/100/100_p1.png"]

    status = client.get("/api/scan/status").json()
    assert status["scanning"] is False
    assert status["job_id"] == job_id
    assert status["status"] == "completed"
    assert status["progress"] == 100


def test_second_scan_is_unchanged(client: TestClient, make_artwork, wait_for_job) -> None:
    make_artwork("100")
    wait_for_job(client.post("/api/scan", json={}).json()["job_id"])

    job = wait_for_job(client.post("/api/scan", json={}).json()["job_id"])

    assert job["result"]["new_artworks"] == 0
    assert job["result"]["unchanged_artworks"] == 1


def test_list_scan_only_touches_listed_paths(
    client: TestClient, make_artwork, wait_for_job, artwork_row
) -> None:
    make_artwork("100")
    make_artwork("200", artist="Aoi", user_id="777")

    response = client.post("/api/scan", json={"type": "list", "paths": ["Aoi (777)"]})
    job = wait_for_job(response.json()["job_id"])

    assert job["status"] == "completed"
    assert job["result"]["scan_type"] == "list"
    assert artwork_row("200") is not None
    assert artwork_row("100") is None


class TestScanRequestValidation:
    """Invalid scan requests are refused before a job exists."""

    @pytest.mark.parametrize(
        "body",
        [
            {"type": "list"},
            {"type": "list", "paths": ["   "]},
            {"type": "list", "paths": ["../elsewhere"]},
        ],
    )
    def test_bad_list_scan_is_422(self, client: TestClient, body: dict) -> None:
        """List scans need paths inside the scan root."""
        response = client.post("/api/scan", json=body)

        assert response.status_code == 422
        assert client.get("/api/jobs").json() == []

    def test_unknown_type_is_422(self, client: TestClient) -> None:
        """The request schema only knows full and list."""
        response = client.post("/api/scan", json={"type": "partial"})

        assert response.status_code == 422


class TestScanConflict:
    """Only one scan runs at a time."""

    def test_second_scan_conflicts(self, client: TestClient) -> None:
        """409 names the job that holds the lock."""
        active_id = _active_scan(client)

        response = client.post("/api/scan", json={})

        assert response.status_code == 409
        assert response.json()["active_job_id"] == active_id

    def test_status_reports_active_scan(self, client: TestClient) -> None:
        """An active scan row means scanning is true."""
        active_id = _active_scan(client)

        status = client.get("/api/scan/status").json()

        assert status["scanning"] is True
        assert status["job_id"] == active_id


class TestScanStream:
    """GET /api/scan/stream runs a scan and streams its progress."""

    def test_stream_ends_with_single_complete(self, client: TestClient, make_artwork) -> None:
        """Connection first, exactly one terminal event, and it is the last one."""
        make_artwork("100", pages=2)

        events = _read_events(client, {"type": "full"})
        names = [name for name, _ in events]

        assert names[0] == "connection"
        assert names[-1] == "complete"
        assert sum(name in {"complete", "error", "cancelled"} for name in names) == 1

        job_id = events[0][1]["job_id"]
        complete = events[-1][1]
        assert complete["job_id"] == job_id
        assert complete["percentage"] == 100
        assert complete["result"]["new_artworks"] == 1

        percentages = [data["percentage"] for name, data in events if name == "progress"]
        assert percentages == sorted(percentages)

        job = client.get(f"/api/jobs/{job_id}").json()
        assert job["status"] == "completed"

    def test_invalid_stream_request_yields_error(self, client: TestClient) -> None:
        """A refused request produces one error event and no job."""
        events = _read_events(client, {"type": "list"})

        assert [name for name, _ in events] == ["error"]
        assert "path" in events[0][1]["error"]
        assert client.get("/api/jobs").json() == []

    def test_stream_during_active_scan_yields_error(self, client: TestClient) -> None:
        """A conflicting stream gets an error event instead of a second scan."""
        _active_scan(client)

        events = _read_events(client, {"type": "full"})

        assert [name for name, _ in events] == ["error"]
        assert "already in progress" in events[0][1]["error"]
