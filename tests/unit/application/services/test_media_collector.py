"""Tests for MediaCollector."""

from pathlib import Path

import pytest

from artshelf.application.services.media_collector import MediaCollector


class TestMediaCollector:
    """Test media file discovery and ordering."""

    @pytest.mark.asyncio
    async def test_collects_pages_in_order(self, tmp_path: Path) -> None:
        """Test that only files of the artwork qualify, ordered by page index."""
        for name in ("100_p2.jpg", "other.txt", "100_p0.jpg", "100-meta.txt", "1000.jpg"):
            (tmp_path / name).write_bytes(b"x" * 3)

        result = await MediaCollector().collect(tmp_path, "100")

        assert result.success
        assert [m.filename for m in result.media_files] == ["100_p0.jpg", "100_p2.jpg"]
        assert [m.page_index for m in result.media_files] == [0, 2]
        assert all(m.size == 3 for m in result.media_files)

    @pytest.mark.asyncio
    async def test_page_zero_tie_is_ordered_by_filename(self, tmp_path: Path) -> None:
        """Test that '{id}.ext' and '{id}_p0.ext' are both page 0, ordered by name."""
        (tmp_path / "100_p0.png").write_bytes(b"a")
        (tmp_path / "100.jpg").write_bytes(b"b")

        result = await MediaCollector().collect(tmp_path, "100")

        assert [m.filename for m in result.media_files] == ["100.jpg", "100_p0.png"]

    @pytest.mark.asyncio
    async def test_directories_are_skipped(self, tmp_path: Path) -> None:
        """Test that a directory with a media-like name is not media."""
        (tmp_path / "100_p1.png").mkdir()
        (tmp_path / "100_p0.png").write_bytes(b"a")

        result = await MediaCollector().collect(tmp_path, "100")

        assert [m.filename for m in result.media_files] == ["100_p0.png"]

    @pytest.mark.asyncio
    async def test_empty_directory(self, tmp_path: Path) -> None:
        """Test that an empty directory is a success with no media."""
        result = await MediaCollector().collect(tmp_path, "100")
        assert result.success
        assert result.media_files == []

    @pytest.mark.asyncio
    async def test_missing_directory_is_a_failure_value(self, tmp_path: Path) -> None:
        """Test that unreadable directories don't raise."""
        result = await MediaCollector().collect(tmp_path / "gone", "100")
        assert not result.success
        assert result.error is not None
