"""Application services - scanning, ingestion, and job bookkeeping."""

from artshelf.application.services.cancellation import CancellationToken
from artshelf.application.services.directory_scanner import (
    DirectoryScanner,
    ScanProgress,
    ScanResult,
    resolve_restrict_paths,
)
from artshelf.application.services.ingestion_transaction import (
    IncomingFile,
    IngestionResult,
    IngestionTransaction,
)
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.services.media_collector import CollectionResult, MediaCollector
from artshelf.application.services.progress_channel import (
    ProgressChannel,
    ProgressEvent,
    QueueSink,
)

__all__ = [
    "CancellationToken",
    "CollectionResult",
    "DirectoryScanner",
    "IncomingFile",
    "IngestionResult",
    "IngestionTransaction",
    "JobLedger",
    "MediaCollector",
    "ProgressChannel",
    "ProgressEvent",
    "QueueSink",
    "ScanProgress",
    "ScanResult",
    "resolve_restrict_paths",
]
