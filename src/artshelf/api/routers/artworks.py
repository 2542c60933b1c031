"""Artwork media replacement endpoint."""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from artshelf.api.dependencies import get_ingestion
from artshelf.api.schemas import ReplaceImagesResponse
from artshelf.application.services.ingestion_transaction import IngestionTransaction
from artshelf.domain.exceptions import (
    DomainException,
    EntityNotFoundException,
    StorageIOError,
    TransactionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/artworks", tags=["Artworks"])

_ERROR_STATUS: list[tuple[type[DomainException], int, str]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed"),
    (EntityNotFoundException, status.HTTP_404_NOT_FOUND, "Artwork not found"),
    (StorageIOError, status.HTTP_500_INTERNAL_SERVER_ERROR, "Storage error"),
    (TransactionError, status.HTTP_500_INTERNAL_SERVER_ERROR, "Database update failed"),
]


def _error_response(exc: DomainException) -> JSONResponse:
    for exc_type, status_code, error in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return JSONResponse(
                status_code=status_code, content={"error": error, "details": exc.message}
            )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Replacement failed", "details": exc.message},
    )


# Hey future me - this route answers {error, details} instead of the global {detail} shape,
# the upload dialog in the web UI reads those two keys. Both "files[]" (browser forms) and
# plain "files" are accepted as the field name.
@router.post("/{artwork_id}/images", response_model=None)
async def replace_artwork_images(
    artwork_id: str,
    request: Request,
    ingestion: IngestionTransaction = Depends(get_ingestion),
) -> ReplaceImagesResponse | JSONResponse:
    """Replace every media file of an artwork with the uploaded files."""
    async with request.form() as form:
        uploads = [
            item
            for item in (form.getlist("files[]") or form.getlist("files"))
            if isinstance(item, UploadFile)
        ]
        directory = form.get("directory")
        hint = directory if isinstance(directory, str) and directory.strip() else None

        try:
            result = await ingestion.replace(artwork_id, list(uploads), hint)
        except DomainException as e:
            logger.warning("Replacing images of artwork %s failed: %s", artwork_id, e.message)
            return _error_response(e)

    return ReplaceImagesResponse(
        success=result.success, count=result.count, directory=result.directory
    )
