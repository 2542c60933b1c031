"""Scan endpoints: live SSE stream, background start, status."""

import logging
from collections.abc import AsyncIterator
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, status
from sse_starlette.sse import EventSourceResponse

from artshelf.api.dependencies import get_scan_worker
from artshelf.api.schemas import JobStartedResponse, ScanRequest, ScanStatusResponse
from artshelf.application.services.progress_channel import (
    ERROR_EVENT,
    ProgressEvent,
    QueueSink,
)
from artshelf.application.workers.scan_worker import ScanWorker
from artshelf.domain.exceptions import JobConflictError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scan", tags=["Scan"])


# Hey future me - the stream IS the scan for the classic UI: opening it starts the job and
# the events end with exactly one complete/error/cancelled. Closing the tab only detaches
# the sink, the scan keeps running and the job row keeps getting progress. Reconnecting
# clients poll /api/jobs/{id} or /api/scan/status instead of reattaching.
@router.get("/stream")
async def stream_scan(
    request: Request,
    scan_type: Literal["full", "list"] = Query(default="full", alias="type"),
    paths: list[str] | None = Query(default=None),
    force: bool = Query(default=False),
    worker: ScanWorker = Depends(get_scan_worker),
) -> EventSourceResponse:
    """Start a scan and stream its progress as Server-Sent Events."""
    sink = QueueSink()

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        try:
            job = await worker.start_scan(scan_type, paths, force, sink=sink)
        except (ValidationError, JobConflictError) as e:
            logger.info("Refused scan stream request: %s", e.message)
            yield ProgressEvent(ERROR_EVENT, {"error": e.message}).to_sse()
            return

        try:
            async for event in sink.events():
                yield event.to_sse()
                if await request.is_disconnected():
                    logger.info("Client left the stream of scan job %s", job.id)
                    break
        finally:
            sink.close()

    return EventSourceResponse(event_generator())


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def start_scan(
    body: ScanRequest,
    worker: ScanWorker = Depends(get_scan_worker),
) -> JobStartedResponse:
    """Start a scan in the background. 409 while another scan is active."""
    job = await worker.start_scan(body.type, body.paths, body.force)
    return JobStartedResponse(job_id=job.id, status=job.status.value)


@router.get("/status")
async def scan_status(worker: ScanWorker = Depends(get_scan_worker)) -> ScanStatusResponse:
    """Whether a scan is running, with the message and progress of the current or last one."""
    return ScanStatusResponse(**await worker.status())
