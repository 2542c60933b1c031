"""Catalog value types produced while walking the library tree."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class MediaFile:
    """One qualifying media file inside an artwork directory."""

    filename: str
    page_index: int
    size: int


@dataclass(frozen=True)
class ProbedMedia:
    """Media file with dimensions, ready to become an Image row.

    ``path`` is relative to the scan root and always uses forward slashes.
    Videos carry no dimensions.
    """

    path: str
    sort_order: int
    size: int
    width: int | None = None
    height: int | None = None


@dataclass
class DiscoveredArtist:
    """Artist directory found on disk."""

    external_id: str
    name: str
    relative_path: str
    username: str | None = None


@dataclass
class DiscoveredArtwork:
    """Artwork directory found on disk, with everything needed to persist it."""

    external_id: str
    artist: DiscoveredArtist
    relative_path: str
    title: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    meta_source: str | None = None
    directory_created_at: datetime | None = None
    media_files: list[MediaFile] = field(default_factory=list)

    def media_signature(self) -> frozenset[tuple[str, int]]:
        """(relative path, size) of every media file, for change detection."""
        return frozenset(
            (f"{self.relative_path}/{media.filename}", media.size)
            for media in self.media_files
        )


@dataclass(frozen=True)
class ArtworkSnapshot:
    """What the catalog currently stores for an artwork, reduced to diffable fields."""

    id: str
    external_id: str
    title: str
    description: str
    tags: frozenset[str]
    meta_source: str | None
    media: frozenset[tuple[str, int]]
    first_image_path: str | None = None
    missing_since: datetime | None = None
