"""Job status and control endpoints."""

import logging

from fastapi import APIRouter, Depends, Query, status

from artshelf.api.dependencies import get_job_ledger, get_refill_worker
from artshelf.api.schemas import JobActionResponse, JobResponse, JobStartedResponse
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.workers.refill_worker import MetaSourceRefillWorker
from artshelf.domain.entities import JobType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.get("")
async def list_jobs(
    job_type: JobType | None = Query(default=None, alias="type"),
    limit: int = Query(default=50, ge=1, le=500),
    ledger: JobLedger = Depends(get_job_ledger),
) -> list[JobResponse]:
    """Job history, newest first."""
    jobs = await ledger.list_jobs(job_type, limit)
    return [JobResponse.from_job(job) for job in jobs]


@router.post("/refill-meta-source", status_code=status.HTTP_202_ACCEPTED)
async def start_refill_meta_source(
    worker: MetaSourceRefillWorker = Depends(get_refill_worker),
) -> JobStartedResponse:
    """Start a REFILL_META_SOURCE job. 409 while another one is active."""
    job = await worker.start()
    return JobStartedResponse(job_id=job.id, status=job.status.value)


@router.get("/{job_id}")
async def get_job(job_id: str, ledger: JobLedger = Depends(get_job_ledger)) -> JobResponse:
    """Status, progress and result (or error) of one job."""
    return JobResponse.from_job(await ledger.get_job(job_id))


async def _apply(ledger: JobLedger, job_id: str, action: str) -> JobActionResponse:
    transitions = {
        "cancel": ledger.cancel_job,
        "pause": ledger.pause_job,
        "resume": ledger.resume_job,
    }
    applied = await transitions[action](job_id)
    job = await ledger.get_job(job_id)
    return JobActionResponse(
        job_id=job_id, action=action, applied=applied, status=job.status.value
    )


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, ledger: JobLedger = Depends(get_job_ledger)) -> JobActionResponse:
    """Request cooperative cancellation. The job ends CANCELLED at its next checkpoint."""
    return await _apply(ledger, job_id, "cancel")


@router.post("/{job_id}/pause")
async def pause_job(job_id: str, ledger: JobLedger = Depends(get_job_ledger)) -> JobActionResponse:
    """Pause a running job at its next checkpoint."""
    return await _apply(ledger, job_id, "pause")


@router.post("/{job_id}/resume")
async def resume_job(job_id: str, ledger: JobLedger = Depends(get_job_ledger)) -> JobActionResponse:
    """Resume a paused job."""
    return await _apply(ledger, job_id, "resume")
