"""Runs SCAN jobs in the background."""

import functools
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from artshelf.application.services.cancellation import CancellationToken
from artshelf.application.services.directory_scanner import (
    DirectoryScanner,
    resolve_restrict_paths,
)
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.services.progress_channel import ProgressChannel, ProgressSink
from artshelf.application.workers.base import BackgroundJobWorker
from artshelf.config import ProgressSettings
from artshelf.domain.entities import Job, JobType, ScanJobResult
from artshelf.domain.exceptions import ValidationError

logger = logging.getLogger(__name__)

SCAN_TYPES = ("full", "list")


class ScanWorker(BackgroundJobWorker):
    """Starts scans, one at a time, and reports on them."""

    job_type = JobType.SCAN

    def __init__(
        self,
        ledger: JobLedger,
        scanner: DirectoryScanner,
        scan_root: Path,
        progress_settings: ProgressSettings,
        cancel_poll_interval: float = 0.5,
    ) -> None:
        super().__init__(ledger, progress_settings, cancel_poll_interval)
        self._scanner = scanner
        self._scan_root = scan_root

    def validate_request(
        self, scan_type: str, paths: Sequence[str] | None
    ) -> list[str] | None:
        """Check a scan request before any job row exists.

        Returns:
            The restrict paths for a list scan, None for a full scan

        Raises:
            ValidationError: Unknown scan type, list scan without paths, or a path
                outside the scan root
        """
        if scan_type not in SCAN_TYPES:
            raise ValidationError(f"Unknown scan type {scan_type!r}, expected full or list")
        if scan_type == "full":
            return None

        cleaned = [path for path in (paths or []) if path and path.strip()]
        if not cleaned:
            raise ValidationError("A list scan requires at least one path")
        resolve_restrict_paths(self._scan_root, cleaned)
        return cleaned

    async def start_scan(
        self,
        scan_type: str = "full",
        paths: Sequence[str] | None = None,
        force: bool = False,
        sink: ProgressSink | None = None,
    ) -> Job:
        """Validate the request, create the SCAN job and run it in the background.

        Raises:
            ValidationError: Invalid request (no job is created)
            JobConflictError: A scan is already active
        """
        restrict = self.validate_request(scan_type, paths)
        job = await self._launch(
            functools.partial(self._scan, restrict=restrict, force=force), sink
        )
        logger.info(
            "Started %s scan job %s (force=%s, paths=%s)",
            scan_type,
            job.id,
            force,
            restrict,
        )
        return job

    async def _scan(
        self,
        job: Job,
        channel: ProgressChannel,
        token: CancellationToken,
        *,
        restrict: list[str] | None,
        force: bool,
    ) -> ScanJobResult:
        result = await self._scanner.scan(
            self._scan_root,
            force_update=force,
            restrict_to_paths=restrict,
            on_progress=channel.publish,
            cancel_token=token,
        )
        return result.to_job_result()

    async def status(self) -> dict[str, Any]:
        """Whether a scan is running, plus the message/progress of the current or last one."""
        job = await self._ledger.get_active_job(JobType.SCAN)
        scanning = job is not None
        if job is None:
            job = await self._ledger.get_latest_job(JobType.SCAN)
        if job is None:
            return {"scanning": False, "job_id": None, "message": None, "progress": 0}
        return {
            "scanning": scanning,
            "job_id": job.id,
            "status": job.status.value,
            "message": job.message,
            "progress": job.progress,
        }
