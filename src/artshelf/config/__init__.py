"""Configuration module for artshelf."""

from .settings import (
    DatabaseSettings,
    ObservabilitySettings,
    ProgressSettings,
    ScannerSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "ObservabilitySettings",
    "ProgressSettings",
    "ScannerSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
]
