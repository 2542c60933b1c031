"""Unit tests for artist/artwork folder parsing.

Tests the regex patterns and parsing functions that map directory and file
names of the library tree to catalog identifiers.
"""

import pytest

from artshelf.domain.value_objects.folder_parsing import (
    is_media_file,
    is_video_file,
    parse_artist_folder,
    parse_artwork_folder,
    parse_page_index,
    sidecar_filename,
)


class TestParseArtistFolder:
    """Tests for parse_artist_folder function."""

    def test_parse_name_with_id(self) -> None:
        """Test parsing 'Name (id)' format."""
        result = parse_artist_folder("Mika (12345)")
        assert result is not None
        assert result.name == "Mika"
        assert result.external_id == "12345"

    def test_name_may_contain_parentheses(self) -> None:
        """Only the trailing numeric group is the id."""
        result = parse_artist_folder("Team (A) (777)")
        assert result is not None
        assert result.name == "Team (A)"
        assert result.external_id == "777"

    def test_surrounding_whitespace_is_ignored(self) -> None:
        """Test that stray spaces don't break the match."""
        result = parse_artist_folder("  Mika   (12345) ")
        assert result is not None
        assert result.name == "Mika"

    @pytest.mark.parametrize("name", ["Mika", "Mika (abc)", "(12345)", "Mika (12345) extra", ""])
    def test_malformed_names_return_none(self, name: str) -> None:
        """Test that names without a trailing numeric id are rejected."""
        assert parse_artist_folder(name) is None


class TestParseArtworkFolder:
    """Tests for parse_artwork_folder function."""

    def test_parse_bare_id(self) -> None:
        """Test parsing a folder that is just the id."""
        result = parse_artwork_folder("98765")
        assert result is not None
        assert result.external_id == "98765"
        assert result.title is None

    @pytest.mark.parametrize(
        "name", ["98765 - Sunset", "98765_Sunset", "98765 Sunset", "98765-Sunset"]
    )
    def test_parse_id_with_title(self, name: str) -> None:
        """Test the accepted separators between id and title."""
        result = parse_artwork_folder(name)
        assert result is not None
        assert result.external_id == "98765"
        assert result.title == "Sunset"

    @pytest.mark.parametrize("name", ["Sunset", "abc123", "98765abc", ".backup-1234"])
    def test_non_numeric_prefix_returns_none(self, name: str) -> None:
        """Test that folders not starting with a numeric id are rejected."""
        assert parse_artwork_folder(name) is None


class TestParsePageIndex:
    """Tests for parse_page_index function."""

    def test_bare_id_is_page_zero(self) -> None:
        """Test '{id}.ext' maps to page 0."""
        assert parse_page_index("100.jpg", "100") == 0

    def test_page_suffix(self) -> None:
        """Test '{id}_p{N}.ext' maps to page N."""
        assert parse_page_index("100_p0.jpg", "100") == 0
        assert parse_page_index("100_p2.png", "100") == 2
        assert parse_page_index("100_p12.webp", "100") == 12

    def test_extension_is_case_insensitive(self) -> None:
        """Test upper-case extensions still count as media."""
        assert parse_page_index("100_p1.JPG", "100") == 1

    def test_non_media_extension(self) -> None:
        """Test that a page-like name with a non-media extension is ignored."""
        assert parse_page_index("100_p0.txt", "100") is None
        assert parse_page_index("100-meta.txt", "100") is None

    @pytest.mark.parametrize(
        "filename",
        ["1000.jpg", "10.jpg", "100_cover.jpg", "100_p.jpg", "100_pX.jpg", "200_p0.jpg"],
    )
    def test_files_of_other_artworks(self, filename: str) -> None:
        """Test that the id prefix must match exactly."""
        assert parse_page_index(filename, "100") is None

    def test_paths_are_rejected(self) -> None:
        """Test that only bare filenames are accepted."""
        assert parse_page_index("sub/100_p0.jpg", "100") is None
        assert parse_page_index("../100_p0.jpg", "100") is None

    def test_empty_artwork_id(self) -> None:
        """Test that an empty id never matches."""
        assert parse_page_index(".jpg", "") is None


class TestMediaHelpers:
    """Tests for extension helpers and sidecar naming."""

    def test_is_media_file(self) -> None:
        """Test image and video extensions are media."""
        assert is_media_file("a.png")
        assert is_media_file("a.MP4")
        assert not is_media_file("a.txt")
        assert not is_media_file("noext")

    def test_is_video_file(self) -> None:
        """Test only video extensions are videos."""
        assert is_video_file("clip.webm")
        assert not is_video_file("image.webp")

    def test_sidecar_filename(self) -> None:
        """Test the sidecar naming rule."""
        assert sidecar_filename("98765") == "98765-meta.txt"
