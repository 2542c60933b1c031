"""Read dimensions and size of media files.

Future me note:
Pillow only parses the header on Image.open(), pixel data is never decoded, so probing
a 40 MB PNG costs a few KB of IO. Still blocking IO, so it always runs in a thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from artshelf.domain.exceptions import StorageIOError
from artshelf.domain.value_objects.folder_parsing import is_video_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """Size in bytes plus pixel dimensions (None for videos)."""

    size: int
    width: int | None = None
    height: int | None = None


class MediaProber:
    """Probes media files for width/height/size."""

    def _probe_sync(self, path: Path) -> ProbeResult:
        """Sync probing (runs in thread pool)."""
        size = path.stat().st_size
        if is_video_file(path.name):
            return ProbeResult(size=size)
        with Image.open(path) as img:
            width, height = img.size
        return ProbeResult(size=size, width=width, height=height)

    async def probe(self, path: Path) -> ProbeResult:
        """Probe one file.

        Raises:
            StorageIOError: The file is missing, unreadable, or not a decodable image
        """
        try:
            return await asyncio.to_thread(self._probe_sync, path)
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise StorageIOError(f"Cannot probe media file {path.name}: {e}", str(path)) from e

    async def probe_lenient(self, path: Path) -> ProbeResult | None:
        """Probe one file, returning None instead of raising.

        The scanner uses this: a corrupt image still gets an Image row (with its stat
        size and no dimensions) rather than dropping the whole artwork.
        """
        try:
            return await self.probe(path)
        except StorageIOError as e:
            logger.warning("%s", e.message)
            return None
