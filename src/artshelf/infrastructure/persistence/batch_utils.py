# Hey future me - these helpers keep SQLite lock windows SHORT!
#
# SQLite locks the whole database on every write transaction. Persisting 5000 artworks in
# one transaction would block job progress writes (and every API request) for the whole
# run. Instead we commit every `batch_size` items in their own session_scope().
#
# GOLDEN RULE: never await anything slow (filesystem, ledger, progress sinks) while one of
# these transactions is open. Do the slow part first, then open the session and write.
"""Batch persistence utilities for bounding transaction size."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from artshelf.infrastructure.persistence.database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def commit_in_batches(
    db: Database,
    items: Sequence[T],
    processor: Callable[[AsyncSession, Sequence[T]], Awaitable[None]],
    batch_size: int,
    prepare: Callable[[Sequence[T]], Awaitable[Sequence[T]]] | None = None,
    on_batch_committed: Callable[[int], Awaitable[None]] | None = None,
) -> int:
    """Run ``processor`` over ``items`` with one transaction per batch.

    A failing batch rolls back on its own and the error propagates, batches committed
    before it stay committed.

    Args:
        db: Database providing session_scope()
        items: Items to persist
        processor: Stages one batch on the session. Must NOT commit.
        batch_size: Items per transaction
        prepare: Awaited with each batch BEFORE its session opens, for the slow part
            (probing files, checking cancellation). Its return value is what gets staged.
        on_batch_committed: Awaited after each commit with the running item count,
            outside the transaction

    Returns:
        Number of items committed
    """
    committed = 0
    for batch in chunked(items, batch_size):
        if prepare is not None:
            batch = await prepare(batch)
        async with db.session_scope() as session:
            await processor(session, batch)
        committed += len(batch)
        logger.debug("Committed batch of %d item(s) (%d total)", len(batch), committed)
        if on_batch_committed is not None:
            await on_batch_committed(committed)
    return committed
