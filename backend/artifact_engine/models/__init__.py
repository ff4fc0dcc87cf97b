"""Database models."""
from artifact_engine.models.artifact_version import ArtifactVersion
from artifact_engine.models.artifact_suggestion import ArtifactSuggestion

__all__ = [
    "ArtifactVersion",
    "ArtifactSuggestion",
]
