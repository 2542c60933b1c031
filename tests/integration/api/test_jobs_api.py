"""Integration tests for the job endpoints."""

from fastapi.testclient import TestClient

from artshelf.domain.entities import JobType


def _running_job(client: TestClient, job_type: JobType = JobType.SCAN) -> str:
    # A ledger row without a worker task behind it, so its status only moves
    # through the control endpoints.
    job = client.portal.call(client.app.state.job_ledger.create_job, job_type)
    return job.id


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_jobs_start_empty(client: TestClient) -> None:
    response = client.get("/api/jobs")

    assert response.status_code == 200
    assert response.json() == []


class TestJobQueries:
    """Listing and fetching jobs."""

    def test_get_job(self, client: TestClient, wait_for_job) -> None:
        """A finished scan is readable with its result."""
        job_id = client.post("/api/scan", json={}).json()["job_id"]

        job = wait_for_job(job_id)

        assert job["id"] == job_id
        assert job["type"] == "scan"
        assert job["error"] is None
        assert job["result"]["scan_type"] == "full"
        assert job["created_at"] is not None

    def test_unknown_job_is_404(self, client: TestClient) -> None:
        """Unknown ids answer 404."""
        response = client.get("/api/jobs/does-not-exist")

        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    def test_list_filters_by_type(self, client: TestClient) -> None:
        """type= narrows the history to one job type."""
        scan_id = _running_job(client, JobType.SCAN)
        refill_id = _running_job(client, JobType.REFILL_META_SOURCE)

        all_ids = {job["id"] for job in client.get("/api/jobs").json()}
        scans = client.get("/api/jobs", params={"type": "scan"}).json()

        assert all_ids == {scan_id, refill_id}
        assert [job["id"] for job in scans] == [scan_id]

    def test_list_rejects_unknown_type(self, client: TestClient) -> None:
        """Only real job types are accepted as a filter."""
        response = client.get("/api/jobs", params={"type": "download"})

        assert response.status_code == 422

    def test_list_limit(self, client: TestClient) -> None:
        """limit caps the number of returned jobs."""
        _running_job(client, JobType.SCAN)
        _running_job(client, JobType.REFILL_META_SOURCE)

        response = client.get("/api/jobs", params={"limit": 1})

        assert len(response.json()) == 1


class TestJobControl:
    """Cancel, pause and resume."""

    def test_pause_and_resume(self, client: TestClient) -> None:
        """RUNNING goes to PAUSED and back."""
        job_id = _running_job(client)

        paused = client.post(f"/api/jobs/{job_id}/pause").json()
        resumed = client.post(f"/api/jobs/{job_id}/resume").json()

        assert paused == {"job_id": job_id, "action": "pause", "applied": True, "status": "paused"}
        assert resumed["applied"] is True
        assert resumed["status"] == "running"

    def test_resume_running_job_is_not_applied(self, client: TestClient) -> None:
        """Transitions that don't apply are reported, not raised."""
        job_id = _running_job(client)

        response = client.post(f"/api/jobs/{job_id}/resume")

        assert response.status_code == 200
        assert response.json()["applied"] is False
        assert response.json()["status"] == "running"

    def test_cancel_moves_to_cancelling(self, client: TestClient) -> None:
        """Cancellation is a request, the job finishes it at a checkpoint."""
        job_id = _running_job(client)

        response = client.post(f"/api/jobs/{job_id}/cancel")

        assert response.json()["applied"] is True
        assert response.json()["status"] == "cancelling"
        # Still holds the scan lock until the worker acknowledges
        assert client.post("/api/scan", json={}).status_code == 409

    def test_cancel_finished_job_is_not_applied(self, client: TestClient, wait_for_job) -> None:
        """Terminal jobs stay terminal."""
        job_id = client.post("/api/scan", json={}).json()["job_id"]
        wait_for_job(job_id)

        response = client.post(f"/api/jobs/{job_id}/cancel")

        assert response.json()["applied"] is False
        assert response.json()["status"] == "completed"

    def test_control_unknown_job_is_404(self, client: TestClient) -> None:
        """Unknown ids answer 404 for every action."""
        for action in ("cancel", "pause", "resume"):
            assert client.post(f"/api/jobs/nope/{action}").status_code == 404


class TestRefillMetaSource:
    """POST /api/jobs/refill-meta-source."""

    def test_refill_fills_missing_meta_source(
        self, client: TestClient, make_artwork, wait_for_job
    ) -> None:
        """Artworks scanned before their sidecar appeared get it recorded."""
        directory = make_artwork("100")
        wait_for_job(client.post("/api/scan", json={}).json()["job_id"])
        (directory / "100-meta.txt").write_text("Title: Late\n", encoding="utf-8")

        response = client.post("/api/jobs/refill-meta-source")

        assert response.status_code == 202
        job = wait_for_job(response.json()["job_id"])
        assert job["type"] == "refill_meta_source"
        assert job["status"] == "completed"
        assert job["result"]["checked"] == 1
        assert job["result"]["updated"] == 1

    def test_refill_conflict(self, client: TestClient) -> None:
        """Only one refill at a time."""
        active_id = _running_job(client, JobType.REFILL_META_SOURCE)

        response = client.post("/api/jobs/refill-meta-source")

        assert response.status_code == 409
        assert response.json()["active_job_id"] == active_id
