"""Service for artifact browsing: version lookups and diffs."""
import difflib
import logging
from typing import Optional

from artifact_engine.core.errors import NotFound
from artifact_engine.services.version_store import ArtifactVersionRecord, VersionStore

logger = logging.getLogger(__name__)


class ArtifactService:
    """Read-side helpers used by the artifact API."""

    @staticmethod
    def get_version(
        store: VersionStore,
        artifact_id: str,
        version_number: Optional[int] = None
    ) -> ArtifactVersionRecord:
        """
        Get a specific version, or the latest when no number is given.

        Raises:
            NotFound: If the artifact or the version does not exist
        """
        if version_number is None:
            record = store.get_latest(artifact_id)
        else:
            record = store.get_by_number(artifact_id, version_number)

        if record is None:
            version_str = f" version {version_number}" if version_number is not None else ""
            raise NotFound(f"Artifact {artifact_id}{version_str} not found", artifact_id=artifact_id)
        return record

    @staticmethod
    def generate_diff(old_content: str, new_content: str, from_label: str, to_label: str) -> str:
        """
        Generate a unified diff between two contents.

        Args:
            old_content: Original content
            new_content: Modified content
            from_label: Header label for the original
            to_label: Header label for the modified content

        Returns:
            Unified diff string (empty when identical)
        """
        diff = difflib.unified_diff(
            old_content.splitlines(),
            new_content.splitlines(),
            fromfile=from_label,
            tofile=to_label,
            lineterm=''
        )
        return '\n'.join(diff)

    @staticmethod
    def diff_versions(
        store: VersionStore,
        artifact_id: str,
        from_version: int,
        to_version: Optional[int] = None
    ) -> str:
        """
        Unified diff between two versions of one artifact.

        Args:
            store: Version store
            artifact_id: Artifact identifier
            from_version: Older version number
            to_version: Newer version number (default: latest)

        Returns:
            Unified diff string
        """
        old = ArtifactService.get_version(store, artifact_id, from_version)
        new = ArtifactService.get_version(store, artifact_id, to_version)
        return ArtifactService.generate_diff(
            old.content,
            new.content,
            from_label=f"v{old.version_number}",
            to_label=f"v{new.version_number}"
        )
