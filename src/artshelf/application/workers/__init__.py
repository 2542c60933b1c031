"""Worker system - Background job processing."""

from artshelf.application.workers.base import BackgroundJobWorker
from artshelf.application.workers.refill_worker import MetaSourceRefillWorker
from artshelf.application.workers.scan_worker import ScanWorker

__all__ = [
    "BackgroundJobWorker",
    "MetaSourceRefillWorker",
    "ScanWorker",
]
