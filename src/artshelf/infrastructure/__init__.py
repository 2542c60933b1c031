"""Infrastructure layer: persistence, storage access and observability."""
