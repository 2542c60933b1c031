"""Infrastructure persistence layer."""

from .batch_utils import chunked, commit_in_batches
from .database import Database
from .models import (
    ArtistModel,
    ArtworkModel,
    Base,
    ImageModel,
    JobModel,
    TagModel,
    artwork_tags,
)
from .repositories import (
    ArtistRepository,
    ArtworkRepository,
    JobRepository,
    TagRepository,
)

__all__ = [
    "ArtistModel",
    "ArtistRepository",
    "ArtworkModel",
    "ArtworkRepository",
    "Base",
    "Database",
    "ImageModel",
    "JobModel",
    "JobRepository",
    "TagModel",
    "TagRepository",
    "artwork_tags",
    "chunked",
    "commit_in_batches",
]
