"""Database-backed job ledger: one active job per type plus the job state machine.

Hey future me - this is the ONLY place that writes job rows. Workers never touch
JobModel directly, they go through these methods so the state machine holds:

    PENDING → RUNNING → {COMPLETED, FAILED}
    RUNNING ⇄ PAUSED
    {PENDING, RUNNING, PAUSED} → CANCELLING → CANCELLED

Mutual exclusion works on two levels:
1. Inside this process an asyncio.Lock serializes create_job(), so two requests arriving
   in the same tick can't both see "no active scan".
2. Across processes the partial unique index on jobs(type) WHERE status is active makes
   the losing INSERT fail with IntegrityError, reported as JobConflictError.

Cancellation is cooperative. cancel_job() only flips the status to CANCELLING, the worker
notices on its next checkpoint (update_progress() raises JobCancelledError, or the
CancellationToken polls the status) and calls mark_cancelled().
"""

import asyncio
import json
import logging
import uuid

from sqlalchemy.exc import IntegrityError

from artshelf.domain.entities import (
    CANCELLABLE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    Job,
    JobResult,
    JobStatus,
    JobType,
    serialize_job_result,
)
from artshelf.domain.exceptions import (
    EntityNotFoundException,
    JobCancelledError,
    JobConflictError,
)
from artshelf.infrastructure.persistence.database import Database
from artshelf.infrastructure.persistence.models import JobModel, utc_now
from artshelf.infrastructure.persistence.repositories import JobRepository

logger = logging.getLogger(__name__)

ORPHANED_JOB_ERROR = "Interrupted by application restart"


class JobLedger:
    """Mutual-exclusion lock and state machine for long-running jobs."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._create_lock = asyncio.Lock()

    async def create_job(self, job_type: JobType) -> Job:
        """Create a RUNNING job, unless one of the same type is still active.

        Raises:
            JobConflictError: Another job of this type is PENDING, RUNNING, CANCELLING
                or PAUSED
        """
        async with self._create_lock:
            try:
                async with self._db.session_scope() as session:
                    repo = JobRepository(session)
                    active = await repo.get_active(job_type)
                    if active is not None:
                        raise JobConflictError(job_type.value, active.id)

                    job = Job(
                        id=str(uuid.uuid4()),
                        type=job_type,
                        status=JobStatus.RUNNING,
                        progress=0,
                        message="Starting",
                    )
                    await repo.add(job)
            except IntegrityError as e:
                # Another process inserted its active job between our check and insert
                logger.warning("Job insert for %s lost the race: %s", job_type.value, e)
                raise JobConflictError(job_type.value) from e

        logger.info("Created %s job %s", job_type.value, job.id)
        return job

    async def _load(self, repo: JobRepository, job_id: str) -> JobModel:
        model = await repo.get_model(job_id)
        if model is None:
            raise EntityNotFoundException("Job", job_id)
        return model

    async def update_progress(
        self, job_id: str, percent: int | float, message: str | None = None
    ) -> None:
        """Record progress of a running job.

        Callers throttle this (ProgressChannel does), the ledger writes every call.

        Raises:
            JobCancelledError: The job is CANCELLING, the caller must stop
        """
        async with self._db.session_scope() as session:
            model = await self._load(JobRepository(session), job_id)
            status = JobStatus(model.status)
            if status == JobStatus.CANCELLING:
                raise JobCancelledError(job_id)
            if status in TERMINAL_JOB_STATUSES:
                # Late write after the job finished, must not resurrect it
                logger.debug("Ignoring progress for %s job %s", status.value, job_id)
                return
            model.progress = max(0, min(100, int(percent)))
            if message is not None:
                model.message = message
            model.updated_at = utc_now()

    async def complete_job(self, job_id: str, result: JobResult | None = None) -> None:
        """Transition into COMPLETED and store the result."""
        payload = serialize_job_result(result)
        async with self._db.session_scope() as session:
            model = await self._load(JobRepository(session), job_id)
            model.status = JobStatus.COMPLETED.value
            model.progress = 100
            model.message = "Completed"
            model.result = json.dumps(payload) if payload is not None else None
            model.updated_at = utc_now()
        logger.info("Job %s completed", job_id)

    async def fail_job(self, job_id: str, error: str) -> None:
        """Transition into FAILED with the captured error message."""
        async with self._db.session_scope() as session:
            model = await self._load(JobRepository(session), job_id)
            model.status = JobStatus.FAILED.value
            model.error = error
            model.message = "Failed"
            model.updated_at = utc_now()
        logger.warning("Job %s failed: %s", job_id, error)

    async def mark_cancelled(self, job_id: str, message: str = "Cancelled") -> None:
        """Transition into CANCELLED. Called by the worker once it stopped."""
        async with self._db.session_scope() as session:
            model = await self._load(JobRepository(session), job_id)
            model.status = JobStatus.CANCELLED.value
            model.message = message
            model.updated_at = utc_now()
        logger.info("Job %s cancelled", job_id)

    async def cancel_job(self, job_id: str) -> bool:
        """Request cooperative cancellation.

        Returns:
            True if the job moved to CANCELLING, False if it wasn't cancellable
        """
        async with self._db.session_scope() as session:
            model = await self._load(JobRepository(session), job_id)
            if JobStatus(model.status) not in CANCELLABLE_JOB_STATUSES:
                return False
            model.status = JobStatus.CANCELLING.value
            model.message = "Cancelling"
            model.updated_at = utc_now()
        logger.info("Cancellation requested for job %s", job_id)
        return True

    async def pause_job(self, job_id: str) -> bool:
        """RUNNING/PENDING → PAUSED. No-op from any other state."""
        return await self._transition(
            job_id, {JobStatus.RUNNING, JobStatus.PENDING}, JobStatus.PAUSED, "Paused"
        )

    async def resume_job(self, job_id: str) -> bool:
        """PAUSED → RUNNING. No-op from any other state."""
        return await self._transition(
            job_id, {JobStatus.PAUSED}, JobStatus.RUNNING, "Resumed"
        )

    async def _transition(
        self,
        job_id: str,
        allowed_from: set[JobStatus],
        target: JobStatus,
        message: str,
    ) -> bool:
        async with self._db.session_scope() as session:
            model = await self._load(JobRepository(session), job_id)
            if JobStatus(model.status) not in allowed_from:
                logger.debug(
                    "Ignoring %s for job %s in status %s",
                    target.value,
                    job_id,
                    model.status,
                )
                return False
            model.status = target.value
            model.message = message
            model.updated_at = utc_now()
        logger.info("Job %s is now %s", job_id, target.value)
        return True

    async def get_job(self, job_id: str) -> Job:
        """Get a job.

        Raises:
            EntityNotFoundException: Unknown job id
        """
        async with self._db.session_scope() as session:
            job = await JobRepository(session).get_by_id(job_id)
        if job is None:
            raise EntityNotFoundException("Job", job_id)
        return job

    async def get_status(self, job_id: str) -> JobStatus | None:
        """Current status, None for unknown ids."""
        async with self._db.session_scope() as session:
            return await JobRepository(session).get_status(job_id)

    async def get_active_job(self, job_type: JobType) -> Job | None:
        """The active job of a type, if any."""
        async with self._db.session_scope() as session:
            return await JobRepository(session).get_active(job_type)

    async def get_latest_job(self, job_type: JobType) -> Job | None:
        """The most recent job of a type, active or not."""
        async with self._db.session_scope() as session:
            return await JobRepository(session).get_latest(job_type)

    async def list_jobs(self, job_type: JobType | None = None, limit: int = 50) -> list[Job]:
        """Job history, newest first."""
        async with self._db.session_scope() as session:
            return await JobRepository(session).list_jobs(job_type, limit)

    # Yo, without this a crash during a scan would leave a RUNNING row behind forever and
    # every later scan request would get a 409! Only call it at startup, before any worker
    # of this process has created a job.
    async def recover_orphaned_jobs(self) -> int:
        """Fail every job left active by a previous process.

        Returns:
            Number of jobs recovered
        """
        async with self._db.session_scope() as session:
            models = await JobRepository(session).list_active_models()
            for model in models:
                logger.warning(
                    "Recovering orphaned %s job %s (was %s)",
                    model.type,
                    model.id,
                    model.status,
                )
                model.status = JobStatus.FAILED.value
                model.error = ORPHANED_JOB_ERROR
                model.message = "Failed"
                model.updated_at = utc_now()
        if models:
            logger.info("Recovered %d orphaned job(s)", len(models))
        return len(models)
