"""Application layer - services and background job workers."""
