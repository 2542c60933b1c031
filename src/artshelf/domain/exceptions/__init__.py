"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so handlers can read it without
    # parsing str(exception). Don't raise this directly, always pick a subclass so callers
    # can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationError(DomainException):
    """Input validation failed.

    Raised for malformed paths, restrict paths escaping the scan root, upload
    filenames that don't belong to the artwork, or a missing directory hint.

    HTTP Status: 422
    """

    pass


class SidecarParseError(ValidationError):
    """A sidecar metadata file could not be parsed.

    The scanner catches this and falls back to folder-derived metadata, it never
    aborts a scan.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot parse sidecar {path}: {reason}")
        self.path = path
        self.reason = reason


class JobConflictError(DomainException):
    """Another job of the same type is still active.

    HTTP Status: 409
    """

    def __init__(self, job_type: str, active_job_id: str | None = None) -> None:
        super().__init__(f"A {job_type} job is already in progress")
        self.job_type = job_type
        self.active_job_id = active_job_id


class JobCancelledError(DomainException):
    """Cooperative cancellation was observed at a checkpoint.

    Raised from inside a running job, never surfaced as an HTTP error. The worker
    catches it and marks the job CANCELLED.
    """

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} was cancelled")
        self.job_id = job_id


class StorageIOError(DomainException):
    """Filesystem access failed (unreadable directory, partial write, unprobeable file).

    HTTP Status: 500
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class TransactionError(DomainException):
    """Catalog commit failed.

    For ingestion this is always paired with a physical rollback of the artwork
    directory before it reaches the caller.

    HTTP Status: 500
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    HTTP Status: 503 (Service Unavailable)
    """

    pass


__all__ = [
    "ConfigurationError",
    "DomainException",
    "EntityNotFoundException",
    "JobCancelledError",
    "JobConflictError",
    "SidecarParseError",
    "StorageIOError",
    "TransactionError",
    "ValidationError",
]
