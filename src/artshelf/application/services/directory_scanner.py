"""Walk the library tree, diff it against the catalog and persist changes.

Hey future me - the scan runs in phases, each with its own slice of the percentage bar:

    counting   0      list artist dirs and their artwork dirs, establish the total
    scanning   5-60   per artwork: parse names, sidecar, collect media (bounded concurrency)
    creating   60-95  probe + persist new/changed artworks, one transaction per batch
    cleanup    95     full scans only: drop (or flag) artworks whose directory is gone
    complete   100

Robustness rules:
- A malformed directory name is logged and skipped, never fatal.
- A directory the collector can't read is logged, counted as an error and skipped.
- Duplicate external ids: first one in sorted walk order wins, the rest are conflicts.
- Cancellation is checked between artworks and between batches. Committed batches stay
  committed, a cancelled scan is simply resumed by the next one (scans are idempotent).

Never await the cancellation token or the progress callback while a catalog
transaction is open: both can hit the job ledger, and SQLite allows one writer.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from artshelf.application.services.cancellation import CancellationToken
from artshelf.application.services.media_collector import MediaCollector
from artshelf.config import ScannerSettings
from artshelf.domain.entities import (
    ArtworkSnapshot,
    DiscoveredArtist,
    DiscoveredArtwork,
    ProbedMedia,
    ScanJobResult,
)
from artshelf.domain.exceptions import (
    JobCancelledError,
    SidecarParseError,
    StorageIOError,
    ValidationError,
)
from artshelf.domain.value_objects.folder_parsing import (
    BACKUP_DIR_PREFIX,
    parse_artist_folder,
    parse_artwork_folder,
    sidecar_filename,
)
from artshelf.domain.value_objects.sidecar_metadata import SidecarMetadata, parse_sidecar
from artshelf.infrastructure.persistence.batch_utils import chunked, commit_in_batches
from artshelf.infrastructure.persistence.database import Database
from artshelf.infrastructure.persistence.models import utc_now
from artshelf.infrastructure.persistence.repositories import (
    ArtistRepository,
    ArtworkRepository,
    TagRepository,
)
from artshelf.infrastructure.storage.media_probe import MediaProber

logger = logging.getLogger(__name__)

PHASE_COUNTING = "counting"
PHASE_SCANNING = "scanning"
PHASE_CREATING = "creating"
PHASE_CLEANUP = "cleanup"
PHASE_COMPLETE = "complete"

MAX_ERROR_DETAILS = 50

# (start, end) of each phase on the 0-100 bar
PHASE_RANGES: dict[str, tuple[float, float]] = {
    PHASE_COUNTING: (0.0, 0.0),
    PHASE_SCANNING: (5.0, 60.0),
    PHASE_CREATING: (60.0, 95.0),
    PHASE_CLEANUP: (95.0, 95.0),
    PHASE_COMPLETE: (100.0, 100.0),
}


@dataclass
class ScanProgress:
    """One progress update."""

    phase: str
    message: str
    current: int
    total: int
    percentage: float
    estimated_seconds_remaining: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class ScanResult:
    """Counters of one scan run."""

    scan_type: str = "full"
    new_artworks: int = 0
    updated_artworks: int = 0
    unchanged_artworks: int = 0
    removed_artworks: int = 0
    flagged_artworks: int = 0
    removed_artists: int = 0
    removed_tags: int = 0
    total_images: int = 0
    skipped_directories: int = 0
    duplicate_conflicts: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    error_details: list[str] = field(default_factory=list)

    def to_job_result(self) -> ScanJobResult:
        return ScanJobResult(
            scan_type=self.scan_type,
            new_artworks=self.new_artworks,
            updated_artworks=self.updated_artworks,
            unchanged_artworks=self.unchanged_artworks,
            removed_artworks=self.removed_artworks,
            flagged_artworks=self.flagged_artworks,
            removed_artists=self.removed_artists,
            removed_tags=self.removed_tags,
            total_images=self.total_images,
            skipped_directories=self.skipped_directories,
            duplicate_conflicts=self.duplicate_conflicts,
            errors=self.errors,
            duration_seconds=round(self.duration_seconds, 3),
            extra={"error_details": self.error_details[:MAX_ERROR_DETAILS]},
        )


@dataclass
class ScanTarget:
    """An artist directory plus the artwork directories to inspect inside it.

    ``artwork_names`` None means every artwork directory of the artist.
    """

    artist_dir: Path
    artwork_names: set[str] | None = None


@dataclass
class _PlannedArtist:
    artist: DiscoveredArtist
    artwork_dirs: list[Path]


@dataclass
class _PendingWrite:
    artwork: DiscoveredArtwork
    snapshot: ArtworkSnapshot | None
    replace_media: bool
    media: list[ProbedMedia] = field(default_factory=list)


class _PhaseClock:
    """Linear ETA from elapsed time in the current phase."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._started = clock()

    def eta(self, current: int, total: int) -> float | None:
        if current <= 0 or total <= 0 or current >= total:
            return 0.0 if total > 0 and current >= total else None
        elapsed = self._clock() - self._started
        return round(elapsed / current * (total - current), 1)


def resolve_restrict_paths(scan_root: Path, paths: Sequence[str]) -> list[ScanTarget]:
    """Turn user supplied restrict paths into scan targets.

    Each path is relative to the scan root (absolute paths inside the root are fine
    too) and names either an artist directory or an artwork directory directly under
    an artist directory.

    Raises:
        ValidationError: A path escapes the root, doesn't exist, or is nested deeper
            than artist/artwork
    """
    root = scan_root.resolve()
    targets: dict[Path, ScanTarget] = {}

    for raw in paths:
        if not raw or not raw.strip():
            raise ValidationError("Empty path in restrict list")
        candidate = Path(raw.strip())
        resolved = (candidate if candidate.is_absolute() else root / candidate).resolve()
        try:
            relative = resolved.relative_to(root)
        except ValueError:
            raise ValidationError(f"Path {raw!r} is outside the scan root") from None

        if not resolved.is_dir():
            raise ValidationError(f"Path {raw!r} is not a directory")

        parts = relative.parts
        if len(parts) == 1:
            # Whole artist wins over any single-artwork entry for the same artist
            targets[resolved] = ScanTarget(artist_dir=resolved)
        elif len(parts) == 2:
            artist_dir = resolved.parent
            target = targets.setdefault(
                artist_dir, ScanTarget(artist_dir=artist_dir, artwork_names=set())
            )
            if target.artwork_names is not None:
                target.artwork_names.add(parts[1])
        else:
            raise ValidationError(
                f"Path {raw!r} must name an artist or an artwork directory"
            )

    if not targets:
        raise ValidationError("A list scan requires at least one path")
    return sorted(targets.values(), key=lambda target: target.artist_dir.name)


class DirectoryScanner:
    """Reconciles the artist/artwork directory tree with the catalog."""

    def __init__(
        self,
        db: Database,
        collector: MediaCollector,
        prober: MediaProber,
        settings: ScannerSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._db = db
        self._collector = collector
        self._prober = prober
        self._settings = settings
        self._clock = clock

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def scan(
        self,
        scan_root: Path,
        force_update: bool = False,
        restrict_to_paths: Sequence[str] | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ScanResult:
        """Run one scan.

        Args:
            scan_root: Root of the library tree
            force_update: Re-apply metadata and media of every discovered artwork
            restrict_to_paths: Only scan these artist/artwork directories (list scan,
                never runs cleanup)
            on_progress: Awaited with each progress dict
            cancel_token: Checked between artworks and batches

        Raises:
            JobCancelledError: Cancellation observed at a checkpoint
            StorageIOError: The scan root is missing or unreadable
            ValidationError: A restrict path is invalid
        """
        started = self._clock()
        root = scan_root.resolve()
        is_list_scan = restrict_to_paths is not None
        result = ScanResult(scan_type="list" if is_list_scan else "full")

        if not await asyncio.to_thread(root.is_dir):
            raise StorageIOError(f"Scan root {root} is not a directory", str(root))

        if is_list_scan:
            targets = resolve_restrict_paths(root, restrict_to_paths or [])
        else:
            targets = await self._list_artist_targets(root)

        logger.info(
            "Starting %s scan of %s (%d artist target(s), force=%s)",
            result.scan_type,
            root,
            len(targets),
            force_update,
        )

        async def report(progress: ScanProgress) -> None:
            if on_progress is not None:
                await on_progress(progress.to_dict())

        async def checkpoint() -> None:
            if cancel_token is not None:
                await cancel_token.checkpoint()

        # ---- counting ----
        plan = await self._plan(root, targets, result)
        total = sum(len(item.artwork_dirs) for item in plan)
        await report(
            ScanProgress(
                PHASE_COUNTING, f"Found {total} artwork directories", total, total, 0.0
            )
        )
        logger.info("Found %d artwork directorie(s) in %d artist(s)", total, len(plan))

        # ---- scanning ----
        discovered = await self._scan_phase(root, plan, total, result, report, checkpoint)

        # ---- diff ----
        async with self._db.session_scope() as session:
            snapshots = await ArtworkRepository(session).load_snapshots(
                None if not is_list_scan else [art.external_id for art in discovered]
            )
        pending = self._diff(discovered, snapshots, force_update, result)

        # ---- creating ----
        await self._creating_phase(root, pending, result, report, checkpoint)

        # ---- cleanup ----
        if not is_list_scan:
            await checkpoint()
            cleanup_start = PHASE_RANGES[PHASE_CLEANUP][0]
            await report(
                ScanProgress(PHASE_CLEANUP, "Cleaning up catalog", 0, 0, cleanup_start)
            )
            seen = {art.external_id for art in discovered}
            await self._cleanup_phase(root, snapshots, seen, result)

        result.duration_seconds = self._clock() - started
        await report(
            ScanProgress(
                PHASE_COMPLETE,
                f"Scan complete: {result.new_artworks} new, "
                f"{result.updated_artworks} updated, {result.removed_artworks} removed",
                total,
                total,
                100.0,
                0.0,
            )
        )
        logger.info(
            "Scan finished in %.1fs: %d new, %d updated, %d unchanged, %d removed, "
            "%d flagged, %d skipped, %d conflicts, %d errors",
            result.duration_seconds,
            result.new_artworks,
            result.updated_artworks,
            result.unchanged_artworks,
            result.removed_artworks,
            result.flagged_artworks,
            result.skipped_directories,
            result.duplicate_conflicts,
            result.errors,
        )
        return result

    # =========================================================================
    # COUNTING
    # =========================================================================

    @staticmethod
    def _list_subdirectories(directory: Path) -> list[Path]:
        """Sorted, non-hidden subdirectories (sync, runs in thread pool)."""
        return sorted(
            (
                entry
                for entry in directory.iterdir()
                if entry.is_dir() and not entry.name.startswith(".")
            ),
            key=lambda entry: entry.name,
        )

    async def _list_artist_targets(self, root: Path) -> list[ScanTarget]:
        try:
            artist_dirs = await asyncio.to_thread(self._list_subdirectories, root)
        except OSError as e:
            raise StorageIOError(f"Cannot read scan root {root}: {e}", str(root)) from e
        return [ScanTarget(artist_dir=artist_dir) for artist_dir in artist_dirs]

    async def _plan(
        self, root: Path, targets: list[ScanTarget], result: ScanResult
    ) -> list[_PlannedArtist]:
        plan: list[_PlannedArtist] = []
        for target in targets:
            parsed = parse_artist_folder(target.artist_dir.name)
            if parsed is None:
                result.skipped_directories += 1
                logger.warning(
                    "Skipping directory with unexpected artist name: %s",
                    target.artist_dir.name,
                )
                continue

            try:
                artwork_dirs = await asyncio.to_thread(
                    self._list_subdirectories, target.artist_dir
                )
            except OSError as e:
                self._record_error(result, f"Cannot read {target.artist_dir}: {e}")
                continue

            if target.artwork_names is not None:
                artwork_dirs = [d for d in artwork_dirs if d.name in target.artwork_names]

            plan.append(
                _PlannedArtist(
                    artist=DiscoveredArtist(
                        external_id=parsed.external_id,
                        name=parsed.name,
                        relative_path=target.artist_dir.relative_to(root).as_posix(),
                    ),
                    artwork_dirs=artwork_dirs,
                )
            )
        return plan

    # =========================================================================
    # SCANNING
    # =========================================================================

    async def _scan_phase(
        self,
        root: Path,
        plan: list[_PlannedArtist],
        total: int,
        result: ScanResult,
        report: Callable[[ScanProgress], Awaitable[None]],
        checkpoint: Callable[[], Awaitable[None]],
    ) -> list[DiscoveredArtwork]:
        start, end = PHASE_RANGES[PHASE_SCANNING]
        phase_clock = _PhaseClock(self._clock)
        await report(ScanProgress(PHASE_SCANNING, "Scanning directories", 0, total, start))

        semaphore = asyncio.Semaphore(self._settings.concurrency)
        discovered: list[DiscoveredArtwork] = []
        first_seen: dict[str, str] = {}
        done = 0

        async def inspect_one(
            artist: DiscoveredArtist, artwork_dir: Path
        ) -> DiscoveredArtwork | None:
            nonlocal done
            async with semaphore:
                await checkpoint()
                try:
                    return await self._inspect_artwork(root, artist, artwork_dir, result)
                finally:
                    done += 1
                    await report(
                        ScanProgress(
                            PHASE_SCANNING,
                            f"Scanning {artist.name}",
                            done,
                            total,
                            round(start + (end - start) * done / max(total, 1), 1),
                            phase_clock.eta(done, total),
                        )
                    )

        for item in plan:
            await checkpoint()
            outcomes = await asyncio.gather(
                *(inspect_one(item.artist, d) for d in item.artwork_dirs),
                return_exceptions=True,
            )
            for artwork_dir, outcome in zip(item.artwork_dirs, outcomes, strict=True):
                if isinstance(outcome, (JobCancelledError, asyncio.CancelledError)):
                    raise outcome
                if isinstance(outcome, BaseException):
                    self._record_error(result, f"Failed to inspect {artwork_dir}: {outcome}")
                    logger.error(
                        "Failed to inspect %s", artwork_dir, exc_info=outcome
                    )
                    continue
                if outcome is None:
                    continue

                # Gather keeps input order, so "first" is deterministic (sorted walk order)
                owner = first_seen.get(outcome.external_id)
                if owner is not None:
                    result.duplicate_conflicts += 1
                    logger.warning(
                        "Duplicate artwork id %s in %s, already found in %s - skipping",
                        outcome.external_id,
                        outcome.relative_path,
                        owner,
                    )
                    continue
                first_seen[outcome.external_id] = outcome.relative_path
                discovered.append(outcome)

        return discovered

    async def _inspect_artwork(
        self,
        root: Path,
        artist: DiscoveredArtist,
        artwork_dir: Path,
        result: ScanResult,
    ) -> DiscoveredArtwork | None:
        """Parse one artwork directory. None means skipped (already logged)."""
        if artwork_dir.name.startswith(BACKUP_DIR_PREFIX):
            return None
        parsed = parse_artwork_folder(artwork_dir.name)
        if parsed is None:
            result.skipped_directories += 1
            logger.warning("Skipping directory with unexpected artwork name: %s", artwork_dir)
            return None

        collection = await self._collector.collect(artwork_dir, parsed.external_id)
        if not collection.success:
            self._record_error(result, f"{artwork_dir}: {collection.error}")
            return None
        if not collection.media_files:
            result.skipped_directories += 1
            logger.info("Skipping %s: no media files for id %s", artwork_dir, parsed.external_id)
            return None

        relative_path = artwork_dir.relative_to(root).as_posix()
        sidecar_path = artwork_dir / sidecar_filename(parsed.external_id)
        metadata, meta_source = await self._read_sidecar(root, sidecar_path)

        title = (metadata.title if metadata else None) or parsed.title or parsed.external_id
        if metadata and metadata.user and not artist.username:
            artist.username = metadata.user

        return DiscoveredArtwork(
            external_id=parsed.external_id,
            artist=artist,
            relative_path=relative_path,
            title=title,
            description=(metadata.description if metadata else None) or "",
            tags=list(metadata.tags) if metadata else [],
            meta_source=meta_source,
            directory_created_at=await self._directory_created_at(artwork_dir),
            media_files=collection.media_files,
        )

    async def _read_sidecar(
        self, root: Path, sidecar_path: Path
    ) -> tuple[SidecarMetadata | None, str | None]:
        """Read and parse a sidecar. Missing file → (None, None).

        A present but unparsable sidecar still counts as the meta source, only its
        fields fall back to folder-derived values.
        """
        try:
            text = await asyncio.to_thread(
                sidecar_path.read_text, encoding="utf-8", errors="replace"
            )
        except FileNotFoundError:
            return None, None
        except OSError as e:
            logger.warning("Cannot read sidecar %s: %s", sidecar_path, e)
            return None, None

        meta_source = sidecar_path.relative_to(root).as_posix()
        try:
            return parse_sidecar(text, meta_source), meta_source
        except SidecarParseError as e:
            logger.warning("%s - falling back to folder metadata", e.message)
            return None, meta_source

    @staticmethod
    async def _directory_created_at(directory: Path) -> datetime | None:
        try:
            stat = await asyncio.to_thread(directory.stat)
        except OSError:
            return None
        # st_birthtime only exists on macOS/BSD/Windows
        timestamp = getattr(stat, "st_birthtime", None) or stat.st_mtime
        return datetime.fromtimestamp(timestamp, tz=UTC)

    # =========================================================================
    # DIFF
    # =========================================================================

    def _diff(
        self,
        discovered: list[DiscoveredArtwork],
        snapshots: dict[str, ArtworkSnapshot],
        force_update: bool,
        result: ScanResult,
    ) -> list[_PendingWrite]:
        pending: list[_PendingWrite] = []
        for artwork in discovered:
            snapshot = snapshots.get(artwork.external_id)
            if snapshot is None:
                result.new_artworks += 1
                pending.append(_PendingWrite(artwork, None, replace_media=True))
                continue

            media_changed = artwork.media_signature() != snapshot.media
            metadata_changed = (
                artwork.title != snapshot.title
                or artwork.description != snapshot.description
                or frozenset(artwork.tags) != snapshot.tags
                or artwork.meta_source != snapshot.meta_source
                or snapshot.missing_since is not None
            )
            if force_update or media_changed or metadata_changed:
                result.updated_artworks += 1
                pending.append(
                    _PendingWrite(
                        artwork, snapshot, replace_media=force_update or media_changed
                    )
                )
            else:
                result.unchanged_artworks += 1
        return pending

    # =========================================================================
    # CREATING
    # =========================================================================

    async def _probe_media(self, root: Path, write: _PendingWrite) -> None:
        artwork_dir = root / write.artwork.relative_path
        media: list[ProbedMedia] = []
        for item in write.artwork.media_files:
            probe = await self._prober.probe_lenient(artwork_dir / item.filename)
            media.append(
                ProbedMedia(
                    path=f"{write.artwork.relative_path}/{item.filename}",
                    sort_order=item.page_index,
                    size=item.size,
                    width=probe.width if probe else None,
                    height=probe.height if probe else None,
                )
            )
        write.media = media

    async def _creating_phase(
        self,
        root: Path,
        pending: list[_PendingWrite],
        result: ScanResult,
        report: Callable[[ScanProgress], Awaitable[None]],
        checkpoint: Callable[[], Awaitable[None]],
    ) -> None:
        start, end = PHASE_RANGES[PHASE_CREATING]
        total = len(pending)
        phase_clock = _PhaseClock(self._clock)
        await report(ScanProgress(PHASE_CREATING, "Saving changes", 0, total, start))
        if not pending:
            return

        semaphore = asyncio.Semaphore(self._settings.concurrency)

        async def probe_one(write: _PendingWrite) -> None:
            async with semaphore:
                await self._probe_media(root, write)

        async def prepare(batch: Sequence[_PendingWrite]) -> Sequence[_PendingWrite]:
            await checkpoint()
            await asyncio.gather(*(probe_one(write) for write in batch if write.replace_media))
            return batch

        async def stage(session: AsyncSession, batch: Sequence[_PendingWrite]) -> None:
            await self._persist_batch(session, batch, result)

        async def committed(count: int) -> None:
            await report(
                ScanProgress(
                    PHASE_CREATING,
                    f"Saved {count}/{total} artworks",
                    count,
                    total,
                    round(start + (end - start) * count / total, 1),
                    phase_clock.eta(count, total),
                )
            )

        await commit_in_batches(
            self._db,
            pending,
            stage,
            batch_size=self._settings.batch_size,
            prepare=prepare,
            on_batch_committed=committed,
        )

    async def _persist_batch(
        self, session: AsyncSession, batch: Sequence[_PendingWrite], result: ScanResult
    ) -> None:
        artists = ArtistRepository(session)
        artworks = ArtworkRepository(session)
        tags = TagRepository(session)
        artist_ids: dict[str, str] = {}

        for write in batch:
            discovered = write.artwork
            artist = discovered.artist
            if artist.external_id not in artist_ids:
                model = await artists.upsert(artist.external_id, artist.name, artist.username)
                artist_ids[artist.external_id] = model.id

            artwork = await artworks.save_metadata(
                external_id=discovered.external_id,
                artist_id=artist_ids[artist.external_id],
                title=discovered.title,
                description=discovered.description,
                meta_source=discovered.meta_source,
                directory_created_at=discovered.directory_created_at,
            )
            await tags.replace_for_artwork(artwork.id, discovered.tags)
            if write.replace_media:
                result.total_images += await artworks.replace_images(artwork.id, write.media)

    # =========================================================================
    # CLEANUP
    # =========================================================================

    @staticmethod
    def _backing_directory_exists(root: Path, snapshot: ArtworkSnapshot) -> bool:
        if snapshot.first_image_path is None:
            return False
        directory = root / PurePosixPath(snapshot.first_image_path).parent
        return directory.is_dir()

    async def _cleanup_phase(
        self,
        root: Path,
        snapshots: dict[str, ArtworkSnapshot],
        seen: set[str],
        result: ScanResult,
    ) -> None:
        missing: list[ArtworkSnapshot] = []
        for external_id, snapshot in snapshots.items():
            if external_id in seen:
                continue
            exists = await asyncio.to_thread(self._backing_directory_exists, root, snapshot)
            if exists:
                # Directory still there but unusable this run (unreadable, no media).
                # Keep the row, the next scan will pick it up again.
                logger.info(
                    "Keeping artwork %s: directory exists but was not scanned", external_id
                )
                continue
            missing.append(snapshot)

        policy = self._settings.removal_policy
        if missing:
            logger.info(
                "%d artwork(s) lost their directory, applying '%s' policy",
                len(missing),
                policy,
            )

        if policy == "flag":
            now = utc_now()
            for batch in chunked([snapshot.id for snapshot in missing], self._settings.batch_size):
                async with self._db.session_scope() as session:
                    result.flagged_artworks += await ArtworkRepository(session).flag_missing(
                        batch, now
                    )
            return

        for batch in chunked([snapshot.id for snapshot in missing], self._settings.batch_size):
            async with self._db.session_scope() as session:
                result.removed_artworks += await ArtworkRepository(session).delete_by_ids(batch)

        async with self._db.session_scope() as session:
            result.removed_artists = await ArtistRepository(session).delete_empty()
            result.removed_tags = await TagRepository(session).delete_unused()
        if result.removed_artists or result.removed_tags:
            logger.info(
                "Pruned %d empty artist(s) and %d unused tag(s)",
                result.removed_artists,
                result.removed_tags,
            )

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _record_error(result: ScanResult, detail: str) -> None:
        result.errors += 1
        if len(result.error_details) < MAX_ERROR_DETAILS:
            result.error_details.append(detail)
        logger.warning("Scan error: %s", detail)
