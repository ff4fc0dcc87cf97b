"""Service layer for the artifact engine."""
from artifact_engine.services.version_store import VersionStore, ArtifactVersionRecord
from artifact_engine.services.generation_controller import GenerationController

__all__ = ["VersionStore", "ArtifactVersionRecord", "GenerationController"]
