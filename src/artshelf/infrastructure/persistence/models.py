"""SQLAlchemy ORM models for artshelf."""

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import Column, ForeignKey, Index, Integer, String, Table, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# Hey future me, utc_now() keeps ALL timestamps in UTC. Never use a naive datetime.now()!
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! UTC datetimes come back naive.
# Use this before comparing DB datetimes with datetime.now(UTC) or you get
# "can't compare offset-naive and offset-aware" TypeError.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to use the same metadata registry.
    """

    pass


# Association table between artworks and tags. Both sides cascade on delete so removing
# an artwork never leaves dangling links (unused tags are pruned by the scanner cleanup).
artwork_tags = Table(
    "artwork_tags",
    Base.metadata,
    Column(
        "artwork_id",
        String(36),
        ForeignKey("artworks.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_id",
        String(36),
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Index("ix_artwork_tags_tag_id", "tag_id"),
)


class ArtistModel(Base):
    """Artist mirrored from a "Display Name (externalUserId)" directory."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # Sidecar "User" field when present, falls back to the folder display name
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    artworks: Mapped[list["ArtworkModel"]] = relationship(
        "ArtworkModel",
        back_populates="artist",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# Listen up, image_count is DENORMALIZED on purpose and must always equal the number of
# ImageModel rows for the artwork. Every writer (scanner, ingestion) recomputes it in the
# same transaction as the image writes. Never bump it by hand somewhere else!
class ArtworkModel(Base):
    """Artwork mirrored from an "{externalArtworkId}[ - title]" directory."""

    __tablename__ = "artworks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    artist_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("artists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Catalog-relative path of the sidecar file, None when the artwork has none
    meta_source: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    directory_created_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    # Set by the "flag" removal policy when the directory vanished
    missing_since: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    artist: Mapped["ArtistModel"] = relationship("ArtistModel", back_populates="artworks")
    images: Mapped[list["ImageModel"]] = relationship(
        "ImageModel",
        back_populates="artwork",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ImageModel.sort_order",
    )
    tags: Mapped[list["TagModel"]] = relationship(
        "TagModel", secondary=artwork_tags, back_populates="artworks"
    )


class ImageModel(Base):
    """One media file of an artwork."""

    __tablename__ = "images"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    artwork_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("artworks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Relative to the scan root, forward slashes: "Mika (12345)/98765/98765_p0.png"
    path: Mapped[str] = mapped_column(String(1024), nullable=False)
    # Page index parsed from the filename, not necessarily contiguous
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    artwork: Mapped["ArtworkModel"] = relationship("ArtworkModel", back_populates="images")

    __table_args__ = (Index("ix_images_artwork_sort", "artwork_id", "sort_order"),)


class TagModel(Base):
    """Tag parsed from sidecar metadata."""

    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    artworks: Mapped[list["ArtworkModel"]] = relationship(
        "ArtworkModel", secondary=artwork_tags, back_populates="tags"
    )


# Hey future me - the partial unique index below IS the cross-process job lock! The
# ledger checks for an active job inside its transaction, but two processes could both
# pass that check at the same time. The index makes the second INSERT fail with an
# IntegrityError, which the ledger reports as a conflict. Keep the status list in sync
# with ACTIVE_JOB_STATUSES in domain/entities.
ACTIVE_STATUS_SQL = "status IN ('pending', 'running', 'cancelling', 'paused')"


class JobModel(Base):
    """Persistent job ledger row.

    Terminal jobs are never deleted, they are the job history.
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # scan, migration, refill_meta_source
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # pending, running, cancelling, paused, completed, failed, cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Result as JSON (see domain/entities/job_results.py for the typed view)
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index(
            "uq_jobs_one_active_per_type",
            "type",
            unique=True,
            sqlite_where=sa.text(ACTIVE_STATUS_SQL),
            postgresql_where=sa.text(ACTIVE_STATUS_SQL),
        ),
        Index("ix_jobs_type_created", "type", "created_at"),
    )
