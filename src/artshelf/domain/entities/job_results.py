"""Typed job results, one variant per job type.

Hey future me - the jobs.result column has always been a plain JSON object. These
dataclasses give each job type a typed view of it without changing what lands in the
database: serialize_job_result() writes the same flat object, and keys we don't know
about survive a round trip through ``extra``.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar


@dataclass
class ScanJobResult:
    """Outcome of a SCAN job."""

    job_type: ClassVar[str] = "scan"

    scan_type: str = "full"
    new_artworks: int = 0
    updated_artworks: int = 0
    unchanged_artworks: int = 0
    removed_artworks: int = 0
    flagged_artworks: int = 0
    removed_artists: int = 0
    removed_tags: int = 0
    total_images: int = 0
    skipped_directories: int = 0
    duplicate_conflicts: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefillJobResult:
    """Outcome of a REFILL_META_SOURCE job."""

    job_type: ClassVar[str] = "refill_meta_source"

    checked: int = 0
    updated: int = 0
    missing: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class MigrationJobResult:
    """Outcome of a MIGRATION job."""

    job_type: ClassVar[str] = "migration"

    migrated: int = 0
    skipped: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


JobResult = ScanJobResult | RefillJobResult | MigrationJobResult

_RESULT_TYPES: dict[str, type[ScanJobResult | RefillJobResult | MigrationJobResult]] = {
    ScanJobResult.job_type: ScanJobResult,
    RefillJobResult.job_type: RefillJobResult,
    MigrationJobResult.job_type: MigrationJobResult,
}


def serialize_job_result(result: JobResult | None) -> dict[str, Any] | None:
    """Flatten a typed result into the persisted JSON object."""
    if result is None:
        return None
    data = asdict(result)
    extra = data.pop("extra", {}) or {}
    return {**extra, **data}


def deserialize_job_result(
    job_type: str, data: dict[str, Any] | None
) -> JobResult | None:
    """Build the typed result for ``job_type`` from a persisted JSON object.

    Unknown keys go to ``extra``. Returns None for empty payloads.
    """
    if not data:
        return None
    result_cls = _RESULT_TYPES.get(job_type)
    if result_cls is None:
        raise ValueError(f"Unknown job type: {job_type}")

    known = {f.name for f in fields(result_cls) if f.name != "extra"}
    kwargs = {key: value for key, value in data.items() if key in known}
    extra = {key: value for key, value in data.items() if key not in known}
    return result_cls(**kwargs, extra=extra)
