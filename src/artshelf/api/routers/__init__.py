"""API router initialization."""

# Hey future me, this is the MAIN API router aggregator! It gets mounted at /api in main.py,
# each sub-router brings its own prefix (/scan, /jobs, /artworks).

from fastapi import APIRouter

from artshelf.api.routers import artworks, jobs, scan

api_router = APIRouter()

api_router.include_router(scan.router)
api_router.include_router(jobs.router)
api_router.include_router(artworks.router)

__all__ = ["api_router", "artworks", "jobs", "scan"]
