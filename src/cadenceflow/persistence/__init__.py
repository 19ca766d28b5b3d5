"""Persistence for compiled pipeline artifacts."""

from .artifact_store import ArtifactStore

__all__ = ["ArtifactStore"]
