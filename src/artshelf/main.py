"""FastAPI application factory."""

from fastapi import FastAPI

from artshelf import __version__
from artshelf.api import api_router
from artshelf.api.exception_handlers import register_exception_handlers
from artshelf.config import Settings, get_settings
from artshelf.infrastructure.lifecycle import lifespan
from artshelf.infrastructure.observability import RequestLoggingMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the application.

    Args:
        settings: Settings to use instead of the cached environment settings (tests)
    """
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )
    # The lifespan reads these, so tests can inject temporary paths and databases
    app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
