"""Tests for global exception handlers."""

from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError

from artshelf.api.exception_handlers import (
    DB_BUSY_RETRY_AFTER,
    _sanitize_validation_errors,
    register_exception_handlers,
)
from artshelf.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    JobConflictError,
    StorageIOError,
    TransactionError,
    ValidationError,
)


class _Body(BaseModel):
    count: int


def _app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    async def conflict() -> None:
        raise JobConflictError("scan", active_job_id="job-1")

    @app.get("/conflict-unknown")
    async def conflict_unknown() -> None:
        raise JobConflictError("scan")

    @app.get("/invalid")
    async def invalid() -> None:
        raise ValidationError("Path escapes the scan root")

    @app.get("/missing")
    async def missing() -> None:
        raise EntityNotFoundException("Job", "abc")

    @app.get("/storage")
    async def storage() -> None:
        raise StorageIOError("Cannot read directory", path="Mika (1)/100")

    @app.get("/transaction")
    async def transaction() -> None:
        raise TransactionError("Commit failed")

    @app.get("/config")
    async def config() -> None:
        raise ConfigurationError("Scan root is not a directory")

    @app.get("/locked")
    async def locked() -> None:
        raise OperationalError("UPDATE jobs", {}, Exception("database is locked"))

    @app.get("/db-broken")
    async def db_broken() -> None:
        raise OperationalError("SELECT 1", {}, Exception("no such table: jobs"))

    @app.post("/body")
    async def body(payload: _Body) -> dict[str, int]:
        return {"count": payload.count}

    return app


client = TestClient(_app())


class TestDomainExceptionHandlers:
    """Domain exceptions map onto HTTP status codes with a {detail} body."""

    def test_job_conflict_is_409_with_active_job(self) -> None:
        """The running job's id lets the client attach to it."""
        response = client.get("/conflict")

        assert response.status_code == 409
        assert response.json() == {
            "detail": "A scan job is already in progress",
            "active_job_id": "job-1",
        }

    def test_job_conflict_without_known_job(self) -> None:
        """No active_job_id key when the holder is unknown."""
        response = client.get("/conflict-unknown")

        assert response.status_code == 409
        assert "active_job_id" not in response.json()

    def test_validation_error_is_422(self) -> None:
        """Domain validation errors are client errors."""
        response = client.get("/invalid")

        assert response.status_code == 422
        assert response.json() == {"detail": "Path escapes the scan root"}

    def test_not_found_is_404(self) -> None:
        """Unknown entities answer 404 with the entity in the message."""
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json() == {"detail": "Job with id abc not found"}

    def test_storage_error_is_500(self) -> None:
        """Filesystem failures are server errors."""
        response = client.get("/storage")

        assert response.status_code == 500
        assert response.json() == {"detail": "Cannot read directory"}

    def test_transaction_error_is_500(self) -> None:
        """Failed commits are server errors."""
        response = client.get("/transaction")

        assert response.status_code == 500
        assert response.json() == {"detail": "Commit failed"}

    def test_configuration_error_is_503(self) -> None:
        """Misconfiguration makes the service unavailable."""
        response = client.get("/config")

        assert response.status_code == 503
        assert response.json() == {"detail": "Scan root is not a directory"}


class TestDatabaseErrorHandler:
    """SQLAlchemy OperationalError handling."""

    def test_locked_database_is_503_with_retry_after(self) -> None:
        """A busy SQLite writer asks the client to retry."""
        response = client.get("/locked")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == str(DB_BUSY_RETRY_AFTER)
        assert "busy" in response.json()["detail"]

    def test_other_database_errors_are_500(self) -> None:
        """Anything else is a plain server error without Retry-After."""
        response = client.get("/db-broken")

        assert response.status_code == 500
        assert "Retry-After" not in response.headers


class TestRequestValidation:
    """FastAPI request validation errors."""

    def test_bad_body_is_422_with_errors(self) -> None:
        """The pydantic error list is returned under detail."""
        response = client.post("/body", json={"count": "many"})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert isinstance(detail, list)
        assert detail[0]["loc"][-1] == "count"

    def test_unknown_route_is_404(self) -> None:
        """Starlette HTTP exceptions keep their status code."""
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"detail": "Not Found"}


class TestSanitizeValidationErrors:
    """Raw request bodies in validation errors must be JSON-serializable."""

    def test_bytes_are_decoded(self) -> None:
        """Nested bytes become strings, other values are left alone."""
        errors = [{"loc": ("body",), "input": b"raw", "ctx": {"values": [b"a", 1]}}]

        sanitized = _sanitize_validation_errors(errors)

        assert sanitized == [{"loc": ("body",), "input": "raw", "ctx": {"values": ["a", 1]}}]

    def test_undecodable_bytes_fall_back_to_latin1(self) -> None:
        """Invalid UTF-8 still produces a string."""
        sanitized = _sanitize_validation_errors([{"input": b"\xff"}])

        assert sanitized == [{"input": "\xff"}]
