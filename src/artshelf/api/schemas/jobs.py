"""API schemas for scans, jobs and media replacement."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from artshelf.domain.entities import Job


class ScanRequest(BaseModel):
    """Request schema for starting a background scan."""

    type: Literal["full", "list"] = Field(default="full", description="Scan type")
    paths: list[str] = Field(
        default_factory=list,
        description="Artist or artwork directories relative to the scan root (list scans)",
    )
    force: bool = Field(
        default=False, description="Re-apply metadata and media of unchanged artworks"
    )


class JobStartedResponse(BaseModel):
    """Response schema for a job that was just started."""

    job_id: str
    status: str


class JobResponse(BaseModel):
    """Response schema for one job."""

    id: str
    type: str
    status: str
    progress: int
    message: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(**job.to_dict())


class JobActionResponse(BaseModel):
    """Response schema for cancel/pause/resume."""

    job_id: str
    action: str
    applied: bool = Field(description="False when the job wasn't in a state that allows it")
    status: str


class ScanStatusResponse(BaseModel):
    """Response schema for the scan status endpoint."""

    scanning: bool
    job_id: str | None = None
    status: str | None = None
    message: str | None = None
    progress: int = 0


class ReplaceImagesResponse(BaseModel):
    """Response schema for a successful media replacement."""

    success: bool
    count: int
    directory: str | None = None
