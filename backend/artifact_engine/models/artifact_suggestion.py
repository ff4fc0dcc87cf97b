"""ArtifactSuggestion model: a proposed edit to one version of a text artifact."""
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, Index, ForeignKeyConstraint
from sqlalchemy.sql import func
from artifact_engine.core.db import Base


class ArtifactSuggestion(Base):
    """Suggested replacement of a passage in a specific artifact version.

    A suggestion belongs to the pair ``(artifact_id, version_number)`` and
    disappears with that version when history is truncated.

    Example usage:
        ArtifactSuggestion(
            id="9b1d...",
            artifact_id="artifact-123",
            version_number=2,
            original_text="The results was good.",
            suggested_text="The results were good.",
            description="Fix subject-verb agreement"
        )
    """

    __tablename__ = "artifact_suggestions"

    id = Column(
        String,
        primary_key=True,
        comment="Suggestion id (UUID), also sent in the suggestion stream event"
    )
    artifact_id = Column(
        String,
        nullable=False,
        comment="Logical artifact id"
    )
    version_number = Column(
        Integer,
        nullable=False,
        comment="Version the suggestion was made against"
    )
    original_text = Column(
        Text,
        nullable=False,
        comment="Passage of the version to replace"
    )
    suggested_text = Column(
        Text,
        nullable=False,
        comment="Proposed replacement passage"
    )
    description = Column(
        Text,
        nullable=True,
        comment="Why the change is proposed"
    )
    is_resolved = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the user accepted or dismissed the suggestion"
    )
    owner_id = Column(
        String,
        nullable=True,
        index=True,
        comment="Owner attribution, opaque to the engine"
    )
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp when the suggestion was stored"
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["artifact_id", "version_number"],
            ["artifact_versions.id", "artifact_versions.version_number"],
            name="fk_artifact_suggestions_version",
            ondelete="CASCADE"
        ),
        Index("idx_artifact_suggestions_version", "artifact_id", "version_number"),
    )

    def __repr__(self):
        return (
            f"<ArtifactSuggestion(id={self.id}, artifact_id={self.artifact_id}, "
            f"version_number={self.version_number}, is_resolved={self.is_resolved})>"
        )
