"""API module for artshelf.

- routers/: scan (SSE + background), jobs, artworks
- schemas/: Pydantic request/response models
- dependencies.py: services from app.state
- exception_handlers.py: global error mapping
"""

from artshelf.api.routers import api_router

__all__ = ["api_router"]
