"""Tests for batch persistence helpers."""

from collections.abc import Sequence

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from artshelf.infrastructure.persistence import ArtistRepository, Database
from artshelf.infrastructure.persistence.batch_utils import chunked, commit_in_batches


class TestChunked:
    """Test the slicing helper."""

    def test_slices(self) -> None:
        """Test uneven slicing."""
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self) -> None:
        """Test that nothing is yielded for no items."""
        assert list(chunked([], 3)) == []

    def test_invalid_size(self) -> None:
        """Test that a zero batch size is rejected."""
        with pytest.raises(ValueError):
            list(chunked([1], 0))


class TestCommitInBatches:
    """Test one-transaction-per-batch persistence."""

    @pytest.mark.asyncio
    async def test_prepare_and_progress_callback(self, db: Database) -> None:
        """Test that prepare output is staged and the callback sees running totals."""
        prepared: list[list[str]] = []
        committed_totals: list[int] = []

        async def prepare(batch: Sequence[str]) -> Sequence[str]:
            prepared.append(list(batch))
            return [f"artist-{item}" for item in batch]

        async def processor(session: AsyncSession, batch: Sequence[str]) -> None:
            repo = ArtistRepository(session)
            for name in batch:
                await repo.upsert(name.removeprefix("artist-"), name)

        async def on_committed(total: int) -> None:
            committed_totals.append(total)

        total = await commit_in_batches(
            db,
            ["1", "2", "3"],
            processor,
            batch_size=2,
            prepare=prepare,
            on_batch_committed=on_committed,
        )

        assert total == 3
        assert prepared == [["1", "2"], ["3"]]
        assert committed_totals == [2, 3]
        async with db.session_scope() as session:
            artist = await ArtistRepository(session).get_by_external_id("3")
            assert artist is not None
            assert artist.name == "artist-3"

    @pytest.mark.asyncio
    async def test_failed_batch_keeps_earlier_commits(self, db: Database) -> None:
        """Test that a failing batch rolls back alone."""

        async def processor(session: AsyncSession, batch: Sequence[str]) -> None:
            repo = ArtistRepository(session)
            for external_id in batch:
                await repo.upsert(external_id, f"Artist {external_id}")
            if "3" in batch:
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await commit_in_batches(db, ["1", "2", "3", "4"], processor, batch_size=2)

        async with db.session_scope() as session:
            repo = ArtistRepository(session)
            assert await repo.get_by_external_id("1") is not None
            assert await repo.get_by_external_id("3") is None
