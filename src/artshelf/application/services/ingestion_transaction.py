"""Replace the media files of one artwork, on disk and in the catalog, all or nothing.

Hey future me - this is a hand-rolled two-phase commit between the filesystem and the DB:

    validate → resolve target dir → move old media into .backup-{hex}/ → stream new files
    → probe each → ONE transaction replacing Image rows + image_count
    → success: rmtree(backup) in the background
    → any failure after the backup: delete written files, move backups back, drop the
      backup dir (and every directory we created), re-raise

The target directory ends up byte-for-byte as it was before the call. Known gap: there is
no persisted manifest, so a process crash between "backup" and "restore" leaves a
.backup-* directory behind. The scanner ignores dot-directories so it does no harm, but
nothing cleans it up automatically either.

Callers must not run two replace() calls for the same artwork at the same time.
"""

import asyncio
import logging
import os
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from artshelf.domain.entities import ProbedMedia
from artshelf.domain.exceptions import (
    EntityNotFoundException,
    StorageIOError,
    TransactionError,
    ValidationError,
)
from artshelf.domain.value_objects.folder_parsing import (
    BACKUP_DIR_PREFIX,
    is_media_file,
    parse_artist_folder,
    parse_artwork_folder,
    parse_page_index,
)
from artshelf.infrastructure.persistence.database import Database
from artshelf.infrastructure.persistence.repositories import ArtworkRepository
from artshelf.infrastructure.storage.media_probe import MediaProber

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


class IncomingFile(Protocol):
    """An uploaded file. FastAPI's UploadFile satisfies this."""

    filename: str | None

    async def read(self, size: int = -1) -> bytes: ...


@dataclass
class IngestionResult:
    """Outcome of a successful replace()."""

    success: bool
    count: int
    directory: str


@dataclass
class _ArtworkTarget:
    artwork_id: str
    external_id: str
    artist_external_id: str
    artist_name: str
    first_image_path: str | None


@dataclass
class _Undo:
    """What replace() did to the filesystem so far."""

    target: Path
    created_dirs: list[Path] = field(default_factory=list)
    backup_dir: Path | None = None
    moved: list[tuple[Path, Path]] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)


class IngestionTransaction:
    """Atomically swaps an artwork's media files and Image rows."""

    def __init__(
        self,
        db: Database,
        prober: MediaProber,
        scan_root: Path,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._db = db
        self._prober = prober
        self._scan_root = scan_root
        self._chunk_size = chunk_size
        self._background: set[asyncio.Task[None]] = set()

    async def replace(
        self,
        artwork_id: str,
        files: list[IncomingFile],
        directory_hint: str | None = None,
    ) -> IngestionResult:
        """Replace every media file of an artwork with ``files``.

        Args:
            artwork_id: Catalog id of the artwork
            files: Uploaded files, named "{externalId}.ext" or "{externalId}_p{N}.ext"
            directory_hint: Directory (relative to the scan root) to use when the artwork
                has no images yet

        Returns:
            IngestionResult with the new image count

        Raises:
            EntityNotFoundException: Unknown artwork
            ValidationError: Bad filenames, duplicate pages, no files, or a hint that is
                not this artwork's directory under its artist
            StorageIOError: Writing or probing a file failed (directory restored)
            TransactionError: The catalog commit failed (directory restored)
        """
        target_info = await self._load_target(artwork_id)
        pages = self._validate_files(target_info.external_id, files)
        root = self._scan_root.resolve()
        target = self._resolve_directory(root, target_info, directory_hint)

        undo = _Undo(target=target)
        try:
            await asyncio.to_thread(self._prepare_directory, undo)
            media = await self._write_files(root, undo, files, pages)
            media.sort(key=lambda item: (item.sort_order, item.path))
            count = await self._commit(target_info.artwork_id, media)
        except (Exception, asyncio.CancelledError) as e:
            logger.warning(
                "Replacing media of artwork %s failed, rolling back %s: %s",
                artwork_id,
                target,
                e,
            )
            await asyncio.to_thread(self._rollback, undo)
            raise

        if undo.backup_dir is not None:
            self._schedule_backup_removal(undo.backup_dir)

        relative = target.relative_to(root).as_posix()
        logger.info(
            "Replaced media of artwork %s with %d file(s) in %s", artwork_id, count, relative
        )
        return IngestionResult(success=True, count=count, directory=relative)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def _load_target(self, artwork_id: str) -> _ArtworkTarget:
        async with self._db.session_scope() as session:
            artwork = await ArtworkRepository(session).get_by_id(artwork_id)
            if artwork is None:
                raise EntityNotFoundException("Artwork", artwork_id)
            # images relationship is ordered by sort_order
            first = artwork.images[0].path if artwork.images else None
            return _ArtworkTarget(
                artwork_id=artwork.id,
                external_id=artwork.external_id,
                artist_external_id=artwork.artist.external_id,
                artist_name=artwork.artist.name,
                first_image_path=first,
            )

    @staticmethod
    def _validate_files(external_id: str, files: list[IncomingFile]) -> list[int]:
        if not files:
            raise ValidationError("At least one file is required")

        pages: list[int] = []
        seen: dict[int, str] = {}
        for incoming in files:
            name = incoming.filename or ""
            if not name or name in (".", "..") or PurePosixPath(name).name != name or "\\" in name:
                raise ValidationError(f"Invalid filename {name!r}")
            page = parse_page_index(name, external_id)
            if page is None:
                raise ValidationError(
                    f"Filename {name!r} does not match artwork {external_id} "
                    f"(expected {external_id}.ext or {external_id}_pN.ext)"
                )
            if page in seen:
                raise ValidationError(
                    f"Duplicate page {page}: {seen[page]!r} and {name!r}"
                )
            seen[page] = name
            pages.append(page)
        return pages

    def _resolve_directory(
        self, root: Path, info: _ArtworkTarget, directory_hint: str | None
    ) -> Path:
        if info.first_image_path:
            return (root / PurePosixPath(info.first_image_path).parent).resolve()

        if directory_hint and directory_hint.strip():
            hint = Path(directory_hint.strip())
            candidate = (hint if hint.is_absolute() else root / hint).resolve()
            try:
                relative = candidate.relative_to(root)
            except ValueError:
                raise ValidationError(
                    f"Directory {directory_hint!r} is outside the scan root"
                ) from None
            self._check_hint_layout(info, directory_hint, relative)
            return candidate

        if not info.artist_external_id or not info.external_id:
            raise ValidationError(f"Cannot determine a directory for artwork {info.artwork_id}")
        # Same layout the scanner parses, so the next scan finds these files
        return root / f"{info.artist_name} ({info.artist_external_id})" / info.external_id

    # Hey future me - step 2 moves every media file of the target into the backup and
    # success deletes the backup. A hint pointing at ANOTHER artwork's folder would wipe
    # that artwork's files while its Image rows still point at them. So the hint must be
    # exactly "{artist} ({artistId})/{thisArtworkId}[ - title]" for this artwork's artist.
    @staticmethod
    def _check_hint_layout(
        info: _ArtworkTarget, directory_hint: str, relative: Path
    ) -> None:
        parts = relative.parts
        if len(parts) != 2:
            raise ValidationError(
                f"Directory {directory_hint!r} must be an artwork directory "
                "inside an artist directory"
            )
        artist = parse_artist_folder(parts[0])
        if artist is None or artist.external_id != info.artist_external_id:
            raise ValidationError(
                f"Directory {directory_hint!r} is not a directory of artist "
                f"{info.artist_external_id}"
            )
        artwork = parse_artwork_folder(parts[1])
        if artwork is None or artwork.external_id != info.external_id:
            raise ValidationError(
                f"Directory {directory_hint!r} does not belong to artwork {info.external_id}"
            )

    # =========================================================================
    # FILESYSTEM (sync parts run in the thread pool)
    # =========================================================================

    @staticmethod
    def _prepare_directory(undo: _Undo) -> None:
        target = undo.target
        if not target.exists():
            missing = [target]
            missing.extend(parent for parent in target.parents if not parent.exists())
            # Outermost first, recorded one by one so a failing mkdir still rolls back
            for directory in sorted(missing, key=lambda path: len(path.parts)):
                directory.mkdir()
                undo.created_dirs.append(directory)
            return
        if not target.is_dir():
            raise StorageIOError(f"{target} exists and is not a directory", str(target))

        existing = sorted(
            entry for entry in target.iterdir() if entry.is_file() and is_media_file(entry.name)
        )
        if not existing:
            return

        backup_dir = target / f"{BACKUP_DIR_PREFIX}{uuid.uuid4().hex}"
        backup_dir.mkdir()
        undo.backup_dir = backup_dir
        for entry in existing:
            destination = backup_dir / entry.name
            os.replace(entry, destination)
            undo.moved.append((entry, destination))
        logger.debug("Backed up %d media file(s) into %s", len(existing), backup_dir)

    async def _write_files(
        self,
        root: Path,
        undo: _Undo,
        files: list[IncomingFile],
        pages: list[int],
    ) -> list[ProbedMedia]:
        media: list[ProbedMedia] = []
        for incoming, page in zip(files, pages, strict=True):
            name = incoming.filename or ""
            path = undo.target / name
            # Track before opening so a half-written file is removed on rollback
            undo.written.append(path)
            await self._stream_to_disk(incoming, path)
            probe = await self._prober.probe(path)
            media.append(
                ProbedMedia(
                    path=path.relative_to(root).as_posix(),
                    sort_order=page,
                    size=probe.size,
                    width=probe.width,
                    height=probe.height,
                )
            )
        return media

    async def _stream_to_disk(self, incoming: IncomingFile, path: Path) -> None:
        try:
            handle = await asyncio.to_thread(open, path, "wb")
        except OSError as e:
            raise StorageIOError(f"Cannot create {path.name}: {e}", str(path)) from e
        try:
            while True:
                chunk = await incoming.read(self._chunk_size)
                if not chunk:
                    break
                await asyncio.to_thread(handle.write, chunk)
        except OSError as e:
            raise StorageIOError(f"Cannot write {path.name}: {e}", str(path)) from e
        finally:
            await asyncio.to_thread(handle.close)

    @staticmethod
    def _rollback(undo: _Undo) -> None:
        for path in reversed(undo.written):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error("Rollback: cannot remove written file %s: %s", path, e)

        restored_all = True
        for original, backup in undo.moved:
            try:
                os.replace(backup, original)
            except OSError as e:
                restored_all = False
                logger.error("Rollback: cannot restore %s from %s: %s", original, backup, e)

        if undo.backup_dir is not None:
            if restored_all:
                try:
                    undo.backup_dir.rmdir()
                except OSError as e:
                    logger.error(
                        "Rollback: backup directory %s not removed: %s", undo.backup_dir, e
                    )
            else:
                logger.error(
                    "Rollback incomplete, original files remain in %s", undo.backup_dir
                )

        # Deepest first: the artwork directory before an artist directory created with it
        for directory in reversed(undo.created_dirs):
            try:
                directory.rmdir()
            except OSError as e:
                logger.error("Rollback: cannot remove created directory %s: %s", directory, e)

    # =========================================================================
    # CATALOG
    # =========================================================================

    async def _commit(self, artwork_id: str, media: list[ProbedMedia]) -> int:
        try:
            async with self._db.session_scope() as session:
                return await ArtworkRepository(session).replace_images(artwork_id, media)
        except SQLAlchemyError as e:
            raise TransactionError(
                f"Failed to update images of artwork {artwork_id}: {e}"
            ) from e

    # =========================================================================
    # BACKGROUND BACKUP REMOVAL
    # =========================================================================

    def _schedule_backup_removal(self, backup_dir: Path) -> None:
        task = asyncio.create_task(
            self._remove_backup(backup_dir), name=f"remove-{backup_dir.name}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _remove_backup(backup_dir: Path) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, backup_dir)
            logger.debug("Removed backup directory %s", backup_dir)
        except OSError as e:
            # Catalog and files are already consistent, a leftover backup is only clutter
            logger.warning("Failed to remove backup directory %s: %s", backup_dir, e)

    async def drain(self) -> None:
        """Wait for pending backup removals (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
