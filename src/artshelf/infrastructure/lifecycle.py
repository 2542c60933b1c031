"""Application lifecycle management for startup and shutdown tasks.

Startup builds exactly one of everything (Database, JobLedger, scanner, ingestion,
workers) and hangs it on app.state. Routes reach them through api/dependencies.py.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from artshelf.application.services.directory_scanner import DirectoryScanner
from artshelf.application.services.ingestion_transaction import IngestionTransaction
from artshelf.application.services.job_ledger import JobLedger
from artshelf.application.services.media_collector import MediaCollector
from artshelf.application.workers.refill_worker import MetaSourceRefillWorker
from artshelf.application.workers.scan_worker import ScanWorker
from artshelf.config import Settings, get_settings
from artshelf.domain.exceptions import ConfigurationError
from artshelf.infrastructure.observability import configure_logging
from artshelf.infrastructure.persistence import Database
from artshelf.infrastructure.storage import MediaProber

logger = logging.getLogger(__name__)


# Hey future me, this validates SQLite paths BEFORE we try creating the DB engine! SQLite
# needs to create -journal/-wal/-shm files next to the .db file, so the directory must be
# writable, not just existing. We don't pre-create the .db file, SQLite does that on first
# connect. Only runs for file-based SQLite URLs.
def _validate_sqlite_path(settings: Settings) -> None:
    """Validate SQLite database path accessibility before engine creation."""
    db_path = settings._get_sqlite_db_path()
    if db_path is None:
        return

    try:
        if db_path.parent and str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
            logger.debug("Ensured SQLite parent directory exists: %s", db_path.parent)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc

    try:
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}. "
            "SQLite requires write permissions to create database and journal files."
        ) from exc


def build_services(app: FastAPI, settings: Settings, db: Database) -> None:
    """Create the long-lived services and workers and store them on app.state."""
    scan_root = settings.storage.scan_path
    prober = MediaProber()
    ledger = JobLedger(db)
    scanner = DirectoryScanner(db, MediaCollector(), prober, settings.scanner)

    app.state.job_ledger = ledger
    app.state.scanner = scanner
    app.state.ingestion = IngestionTransaction(db, prober, scan_root)
    app.state.scan_worker = ScanWorker(
        ledger,
        scanner,
        scan_root,
        settings.progress,
        cancel_poll_interval=settings.scanner.cancel_poll_interval,
    )
    app.state.refill_worker = MetaSourceRefillWorker(
        ledger,
        db,
        scan_root,
        settings.progress,
        batch_size=settings.scanner.batch_size,
        cancel_poll_interval=settings.scanner.cancel_poll_interval,
    )


# Listen future me, everything before `yield` runs at STARTUP, everything after at SHUTDOWN.
# The try/finally makes sure the engine is disposed even when startup blows up halfway.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Startup: logging, directories, database (+ schema), orphaned job recovery, services.
    Shutdown: stop running jobs, drain background backup removals, close the database.
    """
    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    app.state.settings = settings

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    try:
        settings.ensure_directories()
        logger.info("Scan root: %s", settings.storage.scan_path.resolve())

        _validate_sqlite_path(settings)

        db = Database(settings)
        app.state.db = db
        logger.info("Database initialized: %s", settings.database.url)

        if settings.database.create_tables:
            await db.create_tables()

        build_services(app, settings, db)

        # A crash mid-scan leaves a RUNNING row that would block every later scan.
        # Must run before the first request can start a job.
        recovered = await app.state.job_ledger.recover_orphaned_jobs()
        if recovered:
            logger.warning("Marked %d orphaned job(s) as failed", recovered)
        logger.info("Application startup complete")

        yield

    except Exception as e:
        logger.exception("Error during application startup: %s", e)
        raise
    finally:
        logger.info("Shutting down application")
        timeout = settings.observability.shutdown_timeout

        for worker_name in ("scan_worker", "refill_worker"):
            worker = getattr(app.state, worker_name, None)
            if worker is None:
                continue
            try:
                await worker.shutdown(timeout=timeout)
            except Exception as e:
                logger.exception("Error stopping %s: %s", worker_name, e)

        ingestion = getattr(app.state, "ingestion", None)
        if ingestion is not None:
            await ingestion.drain()

        try:
            if hasattr(app.state, "db"):
                await app.state.db.close()
                logger.info("Database connection closed")
        except Exception as e:
            logger.exception("Error closing database: %s", e)
