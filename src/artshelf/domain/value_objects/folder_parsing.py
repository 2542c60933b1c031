"""Regex patterns and parsers for the artist/artwork directory layout.

Hey future me - this is the on-disk contract of the library! Everything the scanner and the
ingestion path know about names lives here, as pure functions with no filesystem access.

The layout:
1. ARTIST FOLDER: "Display Name (externalUserId)" (e.g., "Mika (12345)")
2. ARTWORK FOLDER: "externalArtworkId" optionally followed by a separator and a title
   (e.g., "98765", "98765 - Sunset", "98765_Sunset")
3. MEDIA FILE: "{artworkId}.ext" for page 0 or "{artworkId}_p{N}.ext" for page N
4. SIDECAR: "{artworkId}-meta.txt" next to the media files

Usage:
    from artshelf.domain.value_objects.folder_parsing import (
        parse_artist_folder,
        parse_artwork_folder,
        parse_page_index,
    )

    artist = parse_artist_folder("Mika (12345)")
    page = parse_page_index("98765_p3.png", "98765")  # -> 3
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

# =============================================================================
# EXTENSIONS
# =============================================================================

IMAGE_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff", ".tif"}
)
VIDEO_EXTENSIONS = frozenset({".mp4", ".avi", ".mov", ".wmv", ".flv", ".mkv", ".webm"})
MEDIA_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS

SIDECAR_SUFFIX = "-meta.txt"
BACKUP_DIR_PREFIX = ".backup-"


# =============================================================================
# REGEX PATTERNS
# =============================================================================

# Artist folder pattern: "Display Name (externalUserId)"
# Examples:
#   "Mika (12345)" → name="Mika", external_id="12345"
#   "Team (A) (777)" → name="Team (A)", external_id="777"
#   "Mika" → no match (the id is mandatory)
ARTIST_FOLDER_PATTERN = re.compile(
    r"^(?P<name>.+?)"  # Display name (non-greedy, may contain parentheses)
    r"\s*\((?P<external_id>\d+)\)"  # Numeric user id in trailing parentheses
    r"$"
)

# Artwork folder pattern: "externalArtworkId" with an optional title
# Examples:
#   "98765" → external_id="98765", title=None
#   "98765 - Sunset" → external_id="98765", title="Sunset"
#   "98765_Sunset" → external_id="98765", title="Sunset"
ARTWORK_FOLDER_PATTERN = re.compile(
    r"^(?P<external_id>\d+)"  # Numeric artwork id
    r"(?:\s*[-_ ]\s*(?P<title>.+?))?"  # Optional separator + title
    r"\s*$"
)

# Page suffix after the artwork id: "_p0", "_p12"
PAGE_SUFFIX_PATTERN = re.compile(r"^_p(?P<page>\d+)$")


# =============================================================================
# PARSED TYPES
# =============================================================================


@dataclass(frozen=True)
class ParsedArtistFolder:
    """Result of parsing an artist directory name."""

    name: str
    external_id: str


@dataclass(frozen=True)
class ParsedArtworkFolder:
    """Result of parsing an artwork directory name."""

    external_id: str
    title: str | None = None


# =============================================================================
# PARSERS
# =============================================================================


def parse_artist_folder(folder_name: str) -> ParsedArtistFolder | None:
    """Parse "Display Name (externalUserId)".

    Returns:
        ParsedArtistFolder, or None when the name doesn't follow the pattern.
    """
    match = ARTIST_FOLDER_PATTERN.match(folder_name.strip())
    if not match:
        return None
    name = match.group("name").strip()
    if not name:
        return None
    return ParsedArtistFolder(name=name, external_id=match.group("external_id"))


def parse_artwork_folder(folder_name: str) -> ParsedArtworkFolder | None:
    """Parse "externalArtworkId[ - title]".

    Returns:
        ParsedArtworkFolder, or None when the name doesn't start with a numeric id.
    """
    match = ARTWORK_FOLDER_PATTERN.match(folder_name.strip())
    if not match:
        return None
    title = match.group("title")
    return ParsedArtworkFolder(
        external_id=match.group("external_id"),
        title=title.strip() if title else None,
    )


def is_media_file(filename: str) -> bool:
    """Check whether the filename has a supported media extension (case-insensitive)."""
    return PurePosixPath(filename).suffix.lower() in MEDIA_EXTENSIONS


def is_video_file(filename: str) -> bool:
    """Check whether the filename is a supported video."""
    return PurePosixPath(filename).suffix.lower() in VIDEO_EXTENSIONS


# Hey future me - parse_page_index is THE naming rule shared by scanner and ingestion!
# Precedence, first hit wins:
#   1. extension not in MEDIA_EXTENSIONS → None ("100_p0.txt" is not media)
#   2. stem == artwork_id → 0 ("100.jpg")
#   3. stem == artwork_id + "_p{digits}" → int(digits) ("100_p2.jpg" → 2)
#   4. anything else → None ("1000.jpg" and "100_cover.jpg" don't belong to artwork 100)
# The id comparison is exact and case-sensitive, only the extension is case-insensitive.
def parse_page_index(filename: str, artwork_id: str) -> int | None:
    """Derive the page index of a media file belonging to an artwork.

    Args:
        filename: Bare filename (no directories)
        artwork_id: External artwork id the file must belong to

    Returns:
        The page index, or None if the file doesn't belong to the artwork.
    """
    path = PurePosixPath(filename)
    if path.name != filename or not artwork_id:
        return None
    if path.suffix.lower() not in MEDIA_EXTENSIONS:
        return None

    stem = filename[: -len(path.suffix)]
    if stem == artwork_id:
        return 0
    if not stem.startswith(artwork_id):
        return None

    match = PAGE_SUFFIX_PATTERN.match(stem[len(artwork_id) :])
    if not match:
        return None
    return int(match.group("page"))


def sidecar_filename(artwork_id: str) -> str:
    """Return the sidecar metadata filename for an artwork ("{id}-meta.txt")."""
    return f"{artwork_id}{SIDECAR_SUFFIX}"
