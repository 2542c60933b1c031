"""Filesystem-facing helpers."""

from artshelf.infrastructure.storage.media_probe import MediaProber, ProbeResult

__all__ = ["MediaProber", "ProbeResult"]
