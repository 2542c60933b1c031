"""Repository implementations for catalog and job rows."""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from artshelf.domain.entities import (
    ACTIVE_JOB_STATUSES,
    ArtworkSnapshot,
    Job,
    JobStatus,
    JobType,
    ProbedMedia,
    deserialize_job_result,
    serialize_job_result,
)
from artshelf.domain.exceptions import EntityNotFoundException

from .models import (
    ArtistModel,
    ArtworkModel,
    ImageModel,
    JobModel,
    TagModel,
    artwork_tags,
    ensure_utc_aware,
    utc_now,
)

_ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_JOB_STATUSES]


# Hey future me, this is the Repository pattern! Each repo gets the AsyncSession injected and
# NEVER commits - session_scope() (or the caller) owns the transaction. That's what lets the
# scanner put artist + artwork + tags + images of a whole batch into one commit.
class JobRepository:
    """Job ledger rows, mapped to the Job domain entity."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _to_entity(model: JobModel) -> Job:
        data = json.loads(model.result) if model.result else None
        return Job(
            id=model.id,
            type=JobType(model.type),
            status=JobStatus(model.status),
            progress=model.progress,
            message=model.message,
            result=deserialize_job_result(model.type, data),
            error=model.error,
            created_at=ensure_utc_aware(model.created_at),
            updated_at=ensure_utc_aware(model.updated_at),
        )

    async def add(self, job: Job) -> None:
        """Stage a new job row."""
        result = serialize_job_result(job.result)
        self.session.add(
            JobModel(
                id=job.id,
                type=job.type.value,
                status=job.status.value,
                progress=job.progress,
                message=job.message,
                result=json.dumps(result) if result is not None else None,
                error=job.error,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
        )

    async def get_model(self, job_id: str) -> JobModel | None:
        """Load the raw row, for in-place state transitions."""
        stmt = select(JobModel).where(JobModel.id == job_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, job_id: str) -> Job | None:
        """Get a job by id."""
        model = await self.get_model(job_id)
        return self._to_entity(model) if model else None

    async def get_status(self, job_id: str) -> JobStatus | None:
        """Read only the status column (cheap, used by cancellation polling)."""
        stmt = select(JobModel.status).where(JobModel.id == job_id)
        result = await self.session.execute(stmt)
        value = result.scalar_one_or_none()
        return JobStatus(value) if value else None

    async def get_active(self, job_type: JobType) -> Job | None:
        """Get the active job of a type, if any."""
        stmt = (
            select(JobModel)
            .where(JobModel.type == job_type.value)
            .where(JobModel.status.in_(_ACTIVE_STATUS_VALUES))
            .order_by(JobModel.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_latest(self, job_type: JobType) -> Job | None:
        """Get the most recently created job of a type."""
        stmt = (
            select(JobModel)
            .where(JobModel.type == job_type.value)
            .order_by(JobModel.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_jobs(
        self, job_type: JobType | None = None, limit: int = 50
    ) -> list[Job]:
        """List jobs newest first."""
        stmt = select(JobModel).order_by(JobModel.created_at.desc()).limit(limit)
        if job_type is not None:
            stmt = stmt.where(JobModel.type == job_type.value)
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def list_active_models(self) -> list[JobModel]:
        """All rows in an active status, any type."""
        stmt = select(JobModel).where(JobModel.status.in_(_ACTIVE_STATUS_VALUES))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class ArtistRepository:
    """Artist rows, keyed by external id."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get_by_external_id(self, external_id: str) -> ArtistModel | None:
        """Get an artist by its external user id."""
        stmt = select(ArtistModel).where(ArtistModel.external_id == external_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self, external_id: str, name: str, username: str | None = None
    ) -> ArtistModel:
        """Create the artist or refresh its name/username."""
        model = await self.get_by_external_id(external_id)
        if model is None:
            model = ArtistModel(external_id=external_id, name=name, username=username)
            self.session.add(model)
            await self.session.flush()
            return model

        if model.name != name:
            model.name = name
        if username and model.username != username:
            model.username = username
        return model

    async def delete_empty(self) -> int:
        """Delete artists that own no artworks. Returns the number removed."""
        stmt = (
            delete(ArtistModel)
            .where(ArtistModel.id.not_in(select(ArtworkModel.artist_id)))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)  # type: ignore[attr-defined]


class TagRepository:
    """Tag rows and the artwork_tags association."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get_or_create_many(self, names: Iterable[str]) -> dict[str, TagModel]:
        """Find-or-create every tag name, returns name -> model."""
        wanted = list(dict.fromkeys(name for name in names if name))
        if not wanted:
            return {}

        stmt = select(TagModel).where(TagModel.name.in_(wanted))
        result = await self.session.execute(stmt)
        found = {tag.name: tag for tag in result.scalars().all()}

        missing = [name for name in wanted if name not in found]
        for name in missing:
            tag = TagModel(name=name)
            self.session.add(tag)
            found[name] = tag
        if missing:
            await self.session.flush()
        return found

    async def replace_for_artwork(self, artwork_id: str, names: Sequence[str]) -> None:
        """Replace the tag set of an artwork."""
        await self.session.execute(
            delete(artwork_tags).where(artwork_tags.c.artwork_id == artwork_id)
        )
        tags = await self.get_or_create_many(names)
        if tags:
            await self.session.execute(
                insert(artwork_tags),
                [{"artwork_id": artwork_id, "tag_id": tag.id} for tag in tags.values()],
            )

    async def delete_unused(self) -> int:
        """Delete tags no artwork references. Returns the number removed."""
        stmt = (
            delete(TagModel)
            .where(TagModel.id.not_in(select(artwork_tags.c.tag_id)))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)  # type: ignore[attr-defined]


class ArtworkRepository:
    """Artwork rows plus their images."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get_by_id(self, artwork_id: str) -> ArtworkModel | None:
        """Get an artwork with its artist and images loaded."""
        stmt = (
            select(ArtworkModel)
            .where(ArtworkModel.id == artwork_id)
            .options(selectinload(ArtworkModel.artist), selectinload(ArtworkModel.images))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> ArtworkModel | None:
        """Get an artwork by its external id."""
        stmt = select(ArtworkModel).where(ArtworkModel.external_id == external_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Hey future me - three flat queries instead of selectinload on every artwork! For a
    # library with 50k images this is one pass per table and no ORM object per image.
    async def load_snapshots(
        self, external_ids: Iterable[str] | None = None
    ) -> dict[str, ArtworkSnapshot]:
        """Load diffable state of artworks, keyed by external id.

        Args:
            external_ids: Restrict to these artworks, None loads the whole catalog
        """
        artwork_stmt = select(
            ArtworkModel.id,
            ArtworkModel.external_id,
            ArtworkModel.title,
            ArtworkModel.description,
            ArtworkModel.meta_source,
            ArtworkModel.missing_since,
        )
        ids_filter = list(external_ids) if external_ids is not None else None
        if ids_filter is not None:
            if not ids_filter:
                return {}
            artwork_stmt = artwork_stmt.where(ArtworkModel.external_id.in_(ids_filter))
        artwork_rows = (await self.session.execute(artwork_stmt)).all()
        if not artwork_rows:
            return {}

        by_id = {row.id: row for row in artwork_rows}
        media: dict[str, set[tuple[str, int]]] = defaultdict(set)
        first_image: dict[str, tuple[int, str]] = {}
        image_stmt = select(
            ImageModel.artwork_id, ImageModel.path, ImageModel.size, ImageModel.sort_order
        )
        if ids_filter is not None:
            image_stmt = image_stmt.where(ImageModel.artwork_id.in_(list(by_id)))
        for row in (await self.session.execute(image_stmt)).all():
            if row.artwork_id not in by_id:
                continue
            media[row.artwork_id].add((row.path, row.size))
            key = (row.sort_order, row.path)
            if row.artwork_id not in first_image or key < first_image[row.artwork_id]:
                first_image[row.artwork_id] = key

        tags: dict[str, set[str]] = defaultdict(set)
        tag_stmt = select(artwork_tags.c.artwork_id, TagModel.name).join(
            TagModel, TagModel.id == artwork_tags.c.tag_id
        )
        if ids_filter is not None:
            tag_stmt = tag_stmt.where(artwork_tags.c.artwork_id.in_(list(by_id)))
        for row in (await self.session.execute(tag_stmt)).all():
            if row.artwork_id in by_id:
                tags[row.artwork_id].add(row.name)

        snapshots: dict[str, ArtworkSnapshot] = {}
        for row in artwork_rows:
            first = first_image.get(row.id)
            snapshots[row.external_id] = ArtworkSnapshot(
                id=row.id,
                external_id=row.external_id,
                title=row.title,
                description=row.description or "",
                tags=frozenset(tags.get(row.id, set())),
                meta_source=row.meta_source,
                media=frozenset(media.get(row.id, set())),
                first_image_path=first[1] if first else None,
                missing_since=row.missing_since,
            )
        return snapshots

    async def save_metadata(
        self,
        *,
        external_id: str,
        artist_id: str,
        title: str,
        description: str,
        meta_source: str | None,
        directory_created_at: datetime | None,
    ) -> ArtworkModel:
        """Create the artwork or overwrite its metadata. Clears missing_since."""
        model = await self.get_by_external_id(external_id)
        if model is None:
            model = ArtworkModel(
                external_id=external_id,
                artist_id=artist_id,
                title=title,
                description=description,
                meta_source=meta_source,
                directory_created_at=directory_created_at,
                image_count=0,
            )
            self.session.add(model)
            await self.session.flush()
            return model

        model.artist_id = artist_id
        model.title = title
        model.description = description
        model.meta_source = meta_source
        model.missing_since = None
        if directory_created_at is not None:
            model.directory_created_at = directory_created_at
        model.updated_at = utc_now()
        return model

    async def replace_images(self, artwork_id: str, media: Sequence[ProbedMedia]) -> int:
        """Replace every Image row of an artwork and recompute image_count.

        Runs inside the caller's transaction, so the rows and the counter always
        commit (or roll back) together.

        Returns:
            The new image_count
        """
        await self.session.execute(
            delete(ImageModel).where(ImageModel.artwork_id == artwork_id)
        )
        self.session.add_all(
            [
                ImageModel(
                    artwork_id=artwork_id,
                    path=item.path,
                    sort_order=item.sort_order,
                    width=item.width,
                    height=item.height,
                    size=item.size,
                )
                for item in media
            ]
        )
        await self.session.flush()
        return await self.recompute_image_count(artwork_id)

    async def recompute_image_count(self, artwork_id: str) -> int:
        """Set image_count from the actual number of Image rows."""
        count_stmt = (
            select(func.count())
            .select_from(ImageModel)
            .where(ImageModel.artwork_id == artwork_id)
        )
        count = int((await self.session.execute(count_stmt)).scalar_one())
        await self.session.execute(
            update(ArtworkModel)
            .where(ArtworkModel.id == artwork_id)
            .values(image_count=count, updated_at=utc_now())
        )
        return count

    async def delete_by_ids(self, artwork_ids: Sequence[str]) -> int:
        """Delete artworks. Images and tag links go with them via ON DELETE CASCADE."""
        if not artwork_ids:
            return 0
        # Explicit deletes as well, in case the backend runs without FK enforcement
        await self.session.execute(
            delete(ImageModel).where(ImageModel.artwork_id.in_(artwork_ids))
        )
        await self.session.execute(
            delete(artwork_tags).where(artwork_tags.c.artwork_id.in_(artwork_ids))
        )
        result = await self.session.execute(
            delete(ArtworkModel).where(ArtworkModel.id.in_(artwork_ids))
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    async def flag_missing(self, artwork_ids: Sequence[str], when: datetime) -> int:
        """Stamp missing_since on artworks that aren't flagged yet."""
        if not artwork_ids:
            return 0
        result = await self.session.execute(
            update(ArtworkModel)
            .where(ArtworkModel.id.in_(artwork_ids))
            .where(ArtworkModel.missing_since.is_(None))
            .values(missing_since=when)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    async def count_without_meta_source(self) -> int:
        """Number of artworks with no meta_source."""
        stmt = (
            select(func.count())
            .select_from(ArtworkModel)
            .where(ArtworkModel.meta_source.is_(None))
        )
        return int((await self.session.execute(stmt)).scalar_one())

    async def get_first_image_paths(self, artwork_ids: Sequence[str]) -> dict[str, str]:
        """artwork id -> path of its lowest sort_order image (artworks without images omitted)."""
        if not artwork_ids:
            return {}
        stmt = (
            select(ImageModel.artwork_id, ImageModel.path)
            .where(ImageModel.artwork_id.in_(artwork_ids))
            .order_by(ImageModel.artwork_id, ImageModel.sort_order, ImageModel.path)
        )
        first: dict[str, str] = {}
        for row in (await self.session.execute(stmt)).all():
            first.setdefault(row.artwork_id, row.path)
        return first

    async def list_without_meta_source(
        self, limit: int = 500, after_id: str | None = None
    ) -> list[tuple[str, str]]:
        """(artwork id, external id) pairs with no meta_source, ordered by id."""
        stmt = (
            select(ArtworkModel.id, ArtworkModel.external_id)
            .where(ArtworkModel.meta_source.is_(None))
            .order_by(ArtworkModel.id)
            .limit(limit)
        )
        if after_id is not None:
            stmt = stmt.where(ArtworkModel.id > after_id)
        return [(row.id, row.external_id) for row in (await self.session.execute(stmt)).all()]

    async def set_meta_source(self, artwork_id: str, meta_source: str) -> None:
        """Set the sidecar path of an artwork."""
        result = await self.session.execute(
            update(ArtworkModel)
            .where(ArtworkModel.id == artwork_id)
            .values(meta_source=meta_source)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("Artwork", artwork_id)
