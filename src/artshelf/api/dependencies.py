"""Dependency injection for API endpoints."""

import logging
from typing import cast

from fastapi import HTTPException, Request

from artshelf.application.services.ingestion_transaction import IngestionTransaction
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.workers.refill_worker import MetaSourceRefillWorker
from artshelf.application.workers.scan_worker import ScanWorker

logger = logging.getLogger(__name__)


# Hey future me, everything here comes from app.state, built once in lifecycle.py. A missing
# attribute means startup didn't finish, so we answer 503 instead of an AttributeError 500.
def _from_state(request: Request, name: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return value


def get_job_ledger(request: Request) -> JobLedger:
    """Get the process-wide job ledger."""
    return cast(JobLedger, _from_state(request, "job_ledger"))


def get_scan_worker(request: Request) -> ScanWorker:
    """Get the scan worker."""
    return cast(ScanWorker, _from_state(request, "scan_worker"))


def get_refill_worker(request: Request) -> MetaSourceRefillWorker:
    """Get the meta source refill worker."""
    return cast(MetaSourceRefillWorker, _from_state(request, "refill_worker"))


def get_ingestion(request: Request) -> IngestionTransaction:
    """Get the media ingestion service."""
    return cast(IngestionTransaction, _from_state(request, "ingestion"))
