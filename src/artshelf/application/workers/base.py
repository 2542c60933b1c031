"""Shared lifecycle for ledger-tracked background jobs."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import ClassVar

from artshelf.application.services.cancellation import CancellationToken
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.services.progress_channel import ProgressChannel, ProgressSink
from artshelf.config import ProgressSettings
from artshelf.domain.entities import Job, JobResult, JobType, serialize_job_result
from artshelf.domain.exceptions import DomainException, JobCancelledError
from artshelf.infrastructure.observability.logging import correlation_scope

logger = logging.getLogger(__name__)

SHUTDOWN_ERROR = "Interrupted by application shutdown"

JobBody = Callable[[Job, ProgressChannel, CancellationToken], Awaitable[JobResult]]


# Hey future me - every job runs through _run() so the terminal bookkeeping is identical
# for all job types:
#   body returns        → complete_job + `complete` event
#   JobCancelledError   → mark_cancelled + `cancelled` event
#   anything else       → fail_job + `error` event
#   task cancelled      → fail_job (shutdown), then re-raise so the task really ends
# The ledger transition always happens BEFORE the terminal event, so a client that polls
# right after seeing `complete` never reads a RUNNING row.
class BackgroundJobWorker:
    """Starts jobs as asyncio tasks and records their outcome in the ledger."""

    job_type: ClassVar[JobType]

    def __init__(
        self,
        ledger: JobLedger,
        progress_settings: ProgressSettings,
        cancel_poll_interval: float = 0.5,
    ) -> None:
        self._ledger = ledger
        self._progress_settings = progress_settings
        self._cancel_poll_interval = cancel_poll_interval
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._tokens: dict[str, CancellationToken] = {}

    @property
    def running_job_ids(self) -> list[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    async def _launch(self, body: JobBody, sink: ProgressSink | None = None) -> Job:
        """Create the job row and start ``body`` in a task.

        Raises:
            JobConflictError: A job of this type is already active
        """
        job = await self._ledger.create_job(self.job_type)
        channel = ProgressChannel(
            job.id,
            ledger=self._ledger,
            sink=sink,
            persist_interval=self._progress_settings.persist_interval_ms / 1000,
            heartbeat_interval=self._progress_settings.heartbeat_seconds,
        )
        # Connection event goes out before the task can emit anything
        await channel.open()
        token = CancellationToken(
            job.id, status_source=self._ledger, poll_interval=self._cancel_poll_interval
        )

        task = asyncio.create_task(
            self._run(job, channel, token, body), name=f"{job.type.value}-{job.id}"
        )
        self._tasks[job.id] = task
        self._tokens[job.id] = token
        task.add_done_callback(lambda finished, job_id=job.id: self._forget(job_id, finished))
        return job

    def _forget(self, job_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.pop(job_id, None)
        self._tokens.pop(job_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Job task %s ended with an unrecorded error", job_id, exc_info=task.exception()
            )

    async def _run(
        self,
        job: Job,
        channel: ProgressChannel,
        token: CancellationToken,
        body: JobBody,
    ) -> None:
        with correlation_scope(job.id):
            try:
                result = await body(job, channel, token)
                # Cancel that arrived after the last checkpoint still wins over completion
                if await token.is_cancel_requested():
                    raise JobCancelledError(job.id)
                await self._ledger.complete_job(job.id, result)
                await channel.complete(serialize_job_result(result))
            except JobCancelledError:
                logger.info("%s job %s stopped after cancellation", job.type.value, job.id)
                await self._ledger.mark_cancelled(job.id)
                await channel.cancelled()
            except asyncio.CancelledError:
                logger.warning("%s job %s interrupted by shutdown", job.type.value, job.id)
                await self._ledger.fail_job(job.id, SHUTDOWN_ERROR)
                await channel.fail(SHUTDOWN_ERROR)
                raise
            except Exception as e:
                if isinstance(e, DomainException):
                    error = e.message
                else:
                    error = str(e) or type(e).__name__
                logger.exception("%s job %s failed: %s", job.type.value, job.id, error)
                await self._ledger.fail_job(job.id, error)
                await channel.fail(error)
            finally:
                await channel.close()

    async def wait(self, job_id: str) -> None:
        """Wait until a job started by this worker has finished (no-op if unknown)."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Ask running jobs to stop, then cancel whatever outlives ``timeout``."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if not tasks:
            return
        logger.info("Stopping %d running %s job(s)", len(tasks), self.job_type.value)
        for token in self._tokens.values():
            token.cancel()

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
