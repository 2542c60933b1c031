"""Enumerate and order the media files of one artwork directory."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from artshelf.domain.entities import MediaFile
from artshelf.domain.value_objects.folder_parsing import parse_page_index

logger = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    """Outcome of collecting one directory.

    A failure is a value, not an exception: the scanner logs it and moves on to the
    next artwork.
    """

    success: bool
    media_files: list[MediaFile] = field(default_factory=list)
    error: str | None = None


class MediaCollector:
    """Finds "{id}.ext" / "{id}_p{N}.ext" files and sorts them by page index."""

    def _collect_sync(self, directory: Path, artwork_id: str) -> list[MediaFile]:
        """Sync listing (runs in thread pool)."""
        media: list[MediaFile] = []
        for entry in directory.iterdir():
            page_index = parse_page_index(entry.name, artwork_id)
            if page_index is None:
                continue
            try:
                if not entry.is_file():
                    continue
                size = entry.stat().st_size
            except OSError as e:
                # File vanished or is unreadable between listing and stat
                logger.warning("Skipping unreadable media file %s: %s", entry, e)
                continue
            media.append(MediaFile(filename=entry.name, page_index=page_index, size=size))

        media.sort(key=lambda item: (item.page_index, item.filename))
        return media

    async def collect(self, directory: Path, artwork_id: str) -> CollectionResult:
        """Collect the media files of an artwork directory.

        Args:
            directory: Artwork directory
            artwork_id: External artwork id every qualifying filename starts with

        Returns:
            CollectionResult with files ordered by page index (ties by filename)
        """
        try:
            media = await asyncio.to_thread(self._collect_sync, directory, artwork_id)
        except OSError as e:
            logger.warning("Cannot read artwork directory %s: %s", directory, e)
            return CollectionResult(success=False, error=f"Cannot read directory: {e}")
        return CollectionResult(success=True, media_files=media)
