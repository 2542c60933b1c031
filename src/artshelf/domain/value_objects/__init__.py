"""Domain value objects."""

from artshelf.domain.value_objects.folder_parsing import (
    MEDIA_EXTENSIONS,
    ParsedArtistFolder,
    ParsedArtworkFolder,
    is_media_file,
    parse_artist_folder,
    parse_artwork_folder,
    parse_page_index,
    sidecar_filename,
)
from artshelf.domain.value_objects.sidecar_metadata import (
    SidecarMetadata,
    parse_sidecar,
)

__all__ = [
    "MEDIA_EXTENSIONS",
    "ParsedArtistFolder",
    "ParsedArtworkFolder",
    "SidecarMetadata",
    "is_media_file",
    "parse_artist_folder",
    "parse_artwork_folder",
    "parse_page_index",
    "parse_sidecar",
    "sidecar_filename",
]
