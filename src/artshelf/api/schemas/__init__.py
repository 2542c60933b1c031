"""Request/response schemas."""

from artshelf.api.schemas.jobs import (
    JobActionResponse,
    JobResponse,
    JobStartedResponse,
    ReplaceImagesResponse,
    ScanRequest,
    ScanStatusResponse,
)

__all__ = [
    "JobActionResponse",
    "JobResponse",
    "JobStartedResponse",
    "ReplaceImagesResponse",
    "ScanRequest",
    "ScanStatusResponse",
]
