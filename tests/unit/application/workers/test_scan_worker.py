"""Tests for ScanWorker and the shared background job lifecycle."""

import asyncio
from pathlib import Path
from typing import Any

import pytest

from artshelf.application.services.cancellation import CancellationToken
from artshelf.application.services.directory_scanner import DirectoryScanner, ScanResult
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.services.media_collector import MediaCollector
from artshelf.application.services.progress_channel import ProgressEvent
from artshelf.application.workers.base import SHUTDOWN_ERROR
from artshelf.application.workers.scan_worker import ScanWorker
from artshelf.config import Settings
from artshelf.domain.entities import JobStatus, JobType, ScanJobResult
from artshelf.domain.exceptions import JobConflictError, StorageIOError, ValidationError
from artshelf.infrastructure.persistence import Database
from artshelf.infrastructure.storage import MediaProber


class RecordingSink:
    """Keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    async def send(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [event.event for event in self.events]


class BlockingScanner:
    """Scans "forever", checking the token between fake artworks."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def scan(self, scan_root: Path, **kwargs: Any) -> ScanResult:
        token: CancellationToken = kwargs["cancel_token"]
        self.started.set()
        while True:
            await token.checkpoint()
            await asyncio.sleep(0.01)


class FailingScanner:
    """Fails the way a vanished scan root does."""

    async def scan(self, scan_root: Path, **kwargs: Any) -> ScanResult:
        raise StorageIOError("Scan root is not a directory", str(scan_root))


class LateCancelScanner:
    """Finishes its work, but a cancel request lands right before completion."""

    def __init__(self, ledger: JobLedger) -> None:
        self._ledger = ledger

    async def scan(self, scan_root: Path, **kwargs: Any) -> ScanResult:
        token: CancellationToken = kwargs["cancel_token"]
        await self._ledger.cancel_job(token.job_id)
        return ScanResult()


@pytest.fixture
def ledger(db: Database) -> JobLedger:
    """Ledger on the temporary database."""
    return JobLedger(db)


def make_worker(ledger: JobLedger, scanner: Any, settings: Settings) -> ScanWorker:
    return ScanWorker(
        ledger,
        scanner,
        settings.storage.scan_path,
        settings.progress,
        cancel_poll_interval=0,
    )


@pytest.fixture
def worker(ledger: JobLedger, db: Database, settings: Settings) -> ScanWorker:
    """Worker running the real scanner."""
    scanner = DirectoryScanner(db, MediaCollector(), MediaProber(), settings.scanner)
    return make_worker(ledger, scanner, settings)


class TestScanLifecycle:
    """Test the events and ledger transitions of a scan job."""

    @pytest.mark.asyncio
    async def test_empty_root_completes(self, worker: ScanWorker, ledger: JobLedger) -> None:
        """Test connection → progress 0..100 → exactly one complete event."""
        sink = RecordingSink()

        job = await worker.start_scan(sink=sink)
        await worker.wait(job.id)

        assert sink.names[0] == "connection"
        assert sink.names[-1] == "complete"
        assert sum(name in {"complete", "error", "cancelled"} for name in sink.names) == 1
        percentages = [e.data["percentage"] for e in sink.events if e.event == "progress"]
        assert percentages[0] == 0
        assert percentages[-1] == 100
        assert percentages == sorted(percentages)

        stored = await ledger.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.progress == 100
        assert isinstance(stored.result, ScanJobResult)
        assert sink.events[-1].data["result"]["new_artworks"] == 0

    @pytest.mark.asyncio
    async def test_scan_catalogs_artworks(
        self, worker: ScanWorker, ledger: JobLedger, make_artwork
    ) -> None:
        """Test that the job result carries the scan counters."""
        make_artwork("100", pages=2)

        job = await worker.start_scan(force=True)
        await worker.wait(job.id)

        stored = await ledger.get_job(job.id)
        assert isinstance(stored.result, ScanJobResult)
        assert stored.result.new_artworks == 1
        assert stored.result.total_images == 2

    @pytest.mark.asyncio
    async def test_cancel_running_scan(
        self, ledger: JobLedger, settings: Settings
    ) -> None:
        """Test that a cancel request ends the job CANCELLED with a cancelled event."""
        scanner = BlockingScanner()
        worker = make_worker(ledger, scanner, settings)
        sink = RecordingSink()

        job = await worker.start_scan(sink=sink)
        await scanner.started.wait()
        assert await ledger.cancel_job(job.id)
        await worker.wait(job.id)

        assert (await ledger.get_job(job.id)).status == JobStatus.CANCELLED
        assert sink.names[-1] == "cancelled"
        assert worker.running_job_ids == []

    @pytest.mark.asyncio
    async def test_cancel_before_completion_wins(
        self, ledger: JobLedger, settings: Settings
    ) -> None:
        """Test that a cancel landing after the last checkpoint isn't lost."""
        worker = make_worker(ledger, LateCancelScanner(ledger), settings)

        job = await worker.start_scan()
        await worker.wait(job.id)

        assert (await ledger.get_job(job.id)).status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_failure_marks_job_failed(
        self, ledger: JobLedger, settings: Settings
    ) -> None:
        """Test that an exception in the scan becomes FAILED plus an error event."""
        worker = make_worker(ledger, FailingScanner(), settings)
        sink = RecordingSink()

        job = await worker.start_scan(sink=sink)
        await worker.wait(job.id)

        stored = await ledger.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "Scan root is not a directory"
        assert sink.names[-1] == "error"
        assert sink.events[-1].data["error"] == "Scan root is not a directory"

    @pytest.mark.asyncio
    async def test_shutdown_stops_running_jobs(
        self, ledger: JobLedger, settings: Settings
    ) -> None:
        """Test that shutdown cancels cooperatively and releases the lock."""
        scanner = BlockingScanner()
        worker = make_worker(ledger, scanner, settings)

        job = await worker.start_scan()
        await scanner.started.wait()
        await worker.shutdown(timeout=5)

        assert (await ledger.get_job(job.id)).status == JobStatus.CANCELLED
        assert await ledger.get_active_job(JobType.SCAN) is None

    @pytest.mark.asyncio
    async def test_task_cancellation_fails_job(
        self, ledger: JobLedger, settings: Settings
    ) -> None:
        """Test that a hard task cancel records the shutdown error."""

        class StubbornScanner:
            async def scan(self, scan_root: Path, **kwargs: Any) -> ScanResult:
                await asyncio.sleep(60)
                return ScanResult()

        worker = make_worker(ledger, StubbornScanner(), settings)
        job = await worker.start_scan()
        await asyncio.sleep(0.05)
        await worker.shutdown(timeout=0.05)

        stored = await ledger.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == SHUTDOWN_ERROR


class TestScanRequests:
    """Test request validation and the one-scan-at-a-time rule."""

    @pytest.mark.asyncio
    async def test_second_scan_conflicts(self, ledger: JobLedger, settings: Settings) -> None:
        """Test that a running scan refuses a second one."""
        scanner = BlockingScanner()
        worker = make_worker(ledger, scanner, settings)

        job = await worker.start_scan()
        with pytest.raises(JobConflictError) as exc_info:
            await worker.start_scan()
        assert exc_info.value.active_job_id == job.id

        await ledger.cancel_job(job.id)
        await worker.wait(job.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("scan_type", "paths"),
        [("partial", None), ("list", None), ("list", []), ("list", ["../outside"])],
    )
    async def test_invalid_requests_create_no_job(
        self,
        worker: ScanWorker,
        ledger: JobLedger,
        scan_type: str,
        paths: list[str] | None,
    ) -> None:
        """Test that validation happens before any job row exists."""
        with pytest.raises(ValidationError):
            await worker.start_scan(scan_type, paths)
        assert await ledger.list_jobs() == []

    @pytest.mark.asyncio
    async def test_list_scan(self, worker: ScanWorker, ledger: JobLedger, make_artwork) -> None:
        """Test that a list scan reports its type."""
        make_artwork("100")

        job = await worker.start_scan("list", ["Mika (12345)/100"])
        await worker.wait(job.id)

        stored = await ledger.get_job(job.id)
        assert isinstance(stored.result, ScanJobResult)
        assert stored.result.scan_type == "list"
        assert stored.result.new_artworks == 1


class TestScanStatus:
    """Test the status summary."""

    @pytest.mark.asyncio
    async def test_status_without_scans(self, worker: ScanWorker) -> None:
        """Test the idle answer."""
        assert await worker.status() == {
            "scanning": False,
            "job_id": None,
            "message": None,
            "progress": 0,
        }

    @pytest.mark.asyncio
    async def test_status_running_then_finished(
        self, ledger: JobLedger, settings: Settings
    ) -> None:
        """Test that status follows the active job, then the latest one."""
        scanner = BlockingScanner()
        worker = make_worker(ledger, scanner, settings)
        job = await worker.start_scan()
        await scanner.started.wait()

        running = await worker.status()
        assert running["scanning"] is True
        assert running["job_id"] == job.id

        await ledger.cancel_job(job.id)
        await worker.wait(job.id)
        finished = await worker.status()
        assert finished["scanning"] is False
        assert finished["status"] == "cancelled"
