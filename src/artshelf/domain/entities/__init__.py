"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from artshelf.domain.entities.catalog import (
    ArtworkSnapshot,
    DiscoveredArtist,
    DiscoveredArtwork,
    MediaFile,
    ProbedMedia,
)
from artshelf.domain.entities.job_results import (
    JobResult,
    MigrationJobResult,
    RefillJobResult,
    ScanJobResult,
    deserialize_job_result,
    serialize_job_result,
)


class JobType(str, Enum):
    """Long-running job types guarded by the job ledger."""

    SCAN = "scan"
    MIGRATION = "migration"
    REFILL_META_SOURCE = "refill_meta_source"


# Hey future me, the job state machine:
#   PENDING → RUNNING → {COMPLETED, FAILED}
#   RUNNING ⇄ PAUSED
#   {PENDING, RUNNING, PAUSED} → CANCELLING → CANCELLED
# Everything that isn't terminal counts as "active" for the one-job-per-type lock, so a
# CANCELLING job still blocks a new scan until the worker notices and marks it CANCELLED.
class JobStatus(str, Enum):
    """Lifecycle status of a job."""

    PENDING = "pending"
    RUNNING = "running"
    CANCELLING = "cancelling"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_JOB_STATUSES = frozenset(
    {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.CANCELLING, JobStatus.PAUSED}
)
TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)
CANCELLABLE_JOB_STATUSES = frozenset(
    {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED}
)


@dataclass
class Job:
    """A tracked long-running operation (scan, migration, refill)."""

    id: str
    type: JobType
    status: JobStatus = JobStatus.RUNNING
    progress: int = 0
    message: str | None = None
    result: JobResult | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        """Validate job data."""
        if self.progress < 0 or self.progress > 100:
            raise ValueError("Progress must be between 0 and 100")

    @property
    def is_active(self) -> bool:
        """Check if the job still holds the per-type lock."""
        return self.status in ACTIVE_JOB_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached COMPLETED, FAILED or CANCELLED."""
        return self.status in TERMINAL_JOB_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Public representation used by the status endpoints."""
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "result": serialize_job_result(self.result),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


__all__ = [
    "ACTIVE_JOB_STATUSES",
    "CANCELLABLE_JOB_STATUSES",
    "TERMINAL_JOB_STATUSES",
    "ArtworkSnapshot",
    "DiscoveredArtist",
    "DiscoveredArtwork",
    "Job",
    "JobResult",
    "JobStatus",
    "JobType",
    "MediaFile",
    "MigrationJobResult",
    "ProbedMedia",
    "RefillJobResult",
    "ScanJobResult",
    "deserialize_job_result",
    "serialize_job_result",
]
