"""REFILL_META_SOURCE job: point artworks at sidecars that appeared after they were cataloged.

Catalog rows created before their sidecar existed (or by an older scanner) have no
meta_source. This walks those artworks page by page and sets meta_source when
"{first image dir}/{externalId}-meta.txt" exists. It does not re-read the sidecar content,
the next scan picks the metadata up through its normal change detection.
"""

import asyncio
import logging
from pathlib import Path, PurePosixPath

from artshelf.application.services.cancellation import CancellationToken
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.services.progress_channel import ProgressChannel, ProgressSink
from artshelf.application.workers.base import BackgroundJobWorker
from artshelf.config import ProgressSettings
from artshelf.domain.entities import Job, JobType, RefillJobResult
from artshelf.domain.value_objects.folder_parsing import sidecar_filename
from artshelf.infrastructure.persistence.database import Database
from artshelf.infrastructure.persistence.repositories import ArtworkRepository

logger = logging.getLogger(__name__)


class MetaSourceRefillWorker(BackgroundJobWorker):
    """Fills missing Artwork.meta_source values from sidecars on disk."""

    job_type = JobType.REFILL_META_SOURCE

    def __init__(
        self,
        ledger: JobLedger,
        db: Database,
        scan_root: Path,
        progress_settings: ProgressSettings,
        batch_size: int = 100,
        cancel_poll_interval: float = 0.5,
    ) -> None:
        super().__init__(ledger, progress_settings, cancel_poll_interval)
        self._db = db
        self._scan_root = scan_root
        self._batch_size = batch_size

    async def start(self, sink: ProgressSink | None = None) -> Job:
        """Create the job and run it in the background.

        Raises:
            JobConflictError: A refill is already active
        """
        job = await self._launch(self._refill, sink)
        logger.info("Started meta source refill job %s", job.id)
        return job

    @staticmethod
    def _find_sidecars(
        root: Path, candidates: list[tuple[str, str, str]]
    ) -> dict[str, str]:
        """artwork id -> sidecar path relative to root, for sidecars that exist (sync)."""
        found: dict[str, str] = {}
        for artwork_id, external_id, image_path in candidates:
            relative = PurePosixPath(image_path).parent / sidecar_filename(external_id)
            if (root / relative).is_file():
                found[artwork_id] = relative.as_posix()
        return found

    async def _refill(
        self, job: Job, channel: ProgressChannel, token: CancellationToken
    ) -> RefillJobResult:
        root = self._scan_root.resolve()
        result = RefillJobResult()

        async with self._db.session_scope() as session:
            total = await ArtworkRepository(session).count_without_meta_source()
        await channel.publish(
            {
                "message": f"Checking {total} artwork(s)",
                "current": 0,
                "total": total,
                "percentage": 0,
            }
        )

        after_id: str | None = None
        while True:
            await token.checkpoint()
            async with self._db.session_scope() as session:
                repo = ArtworkRepository(session)
                page = await repo.list_without_meta_source(self._batch_size, after_id)
                first_paths = await repo.get_first_image_paths(
                    [artwork_id for artwork_id, _ in page]
                )
            if not page:
                break
            after_id = page[-1][0]

            candidates = [
                (artwork_id, external_id, first_paths[artwork_id])
                for artwork_id, external_id in page
                if artwork_id in first_paths
            ]
            found = await asyncio.to_thread(self._find_sidecars, root, candidates)

            if found:
                async with self._db.session_scope() as session:
                    repo = ArtworkRepository(session)
                    for artwork_id, meta_source in found.items():
                        await repo.set_meta_source(artwork_id, meta_source)

            result.checked += len(page)
            result.updated += len(found)
            result.missing += len(page) - len(found)
            await channel.publish(
                {
                    "message": f"Checked {result.checked}/{total} artwork(s)",
                    "current": result.checked,
                    "total": total,
                    "percentage": round(100 * result.checked / max(total, 1), 1),
                }
            )

        logger.info(
            "Meta source refill finished: %d checked, %d updated, %d without sidecar",
            result.checked,
            result.updated,
            result.missing,
        )
        return result
