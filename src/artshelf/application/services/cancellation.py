"""Cancellation token threaded through long-running jobs."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol

from artshelf.domain.entities import JobStatus
from artshelf.domain.exceptions import JobCancelledError

logger = logging.getLogger(__name__)


class JobStatusSource(Protocol):
    """Anything that can report a job's status (the JobLedger in production)."""

    async def get_status(self, job_id: str) -> JobStatus | None: ...


# Hey future me - checkpoint() is THE safe point. Call it between units of work (between
# artworks, between batches), never in the middle of a file write. It:
#   - raises JobCancelledError once the ledger says CANCELLING (or CANCELLED),
#   - blocks while the job is PAUSED, until it's resumed or cancelled,
#   - raises immediately after cancel() (used on shutdown, no DB round trip).
# Status reads are throttled to one per poll_interval, so calling it for every artwork
# of a 50k-artwork library costs a handful of queries, not 50k.
class CancellationToken:
    """Cooperative cancellation backed by the job ledger."""

    def __init__(
        self,
        job_id: str,
        status_source: JobStatusSource | None = None,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.job_id = job_id
        self._source = status_source
        self._poll_interval = poll_interval
        self._clock = clock
        self._last_poll: float | None = None
        self._last_status: JobStatus | None = None
        self._cancelled = False

    def cancel(self) -> None:
        """Cancel locally, without going through the ledger."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been observed (locally or from the ledger)."""
        return self._cancelled or self._last_status in (
            JobStatus.CANCELLING,
            JobStatus.CANCELLED,
        )

    async def _poll(self, force: bool = False) -> JobStatus | None:
        if self._source is None:
            return None
        now = self._clock()
        if (
            force
            or self._last_poll is None
            or now - self._last_poll >= self._poll_interval
        ):
            self._last_poll = now
            self._last_status = await self._source.get_status(self.job_id)
        return self._last_status

    async def checkpoint(self) -> None:
        """Raise if cancelled, wait while paused.

        Raises:
            JobCancelledError: Cancellation was requested
        """
        status = await self._poll()
        while status == JobStatus.PAUSED and not self._cancelled:
            logger.debug("Job %s paused, waiting", self.job_id)
            await asyncio.sleep(max(self._poll_interval, 0.05))
            status = await self._poll(force=True)
        if self.cancelled:
            raise JobCancelledError(self.job_id)

    async def is_cancel_requested(self) -> bool:
        """Fresh status read, bypassing the poll throttle."""
        await self._poll(force=True)
        return self.cancelled
