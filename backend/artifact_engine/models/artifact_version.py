"""ArtifactVersion model: one immutable, numbered revision of a logical artifact."""
from sqlalchemy import Column, String, Text, DateTime, Integer, JSON, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from artifact_engine.core.db import Base


class ArtifactVersion(Base):
    """ArtifactVersion model for storing every revision of an artifact.

    All versions of one logical artifact share ``id``; ``id`` is a grouping
    key, never the row key. The pair ``(id, version_number)`` identifies a
    stored revision and is enforced unique, so two writers racing on the same
    artifact cannot both persist the same version number.

    Example usage:
        # Version 1 of a new diagram
        ArtifactVersion(
            row_id="3f0c...",
            id="artifact-123",
            version_number=1,
            title="Login flow",
            kind="diagram",
            content="flowchart TD\\n  A --> B",
            version_metadata={"agent": "MermaidAgent", "updateType": "create"}
        )
    """

    __tablename__ = "artifact_versions"

    row_id = Column(
        String,
        primary_key=True,
        comment="Surrogate row key (UUID), unique per stored revision"
    )
    id = Column(
        String,
        nullable=False,
        index=True,
        comment="Logical artifact id, shared by all versions of the artifact"
    )
    version_number = Column(
        Integer,
        nullable=False,
        comment="Position of this revision in the artifact history, from 1"
    )
    title = Column(
        String(500),
        nullable=False,
        comment="Artifact title at this revision"
    )
    kind = Column(
        String(20),
        nullable=False,
        index=True,
        comment="Artifact kind: text, sheet, code, diagram"
    )
    content = Column(
        Text,
        nullable=False,
        comment="Full materialized content at this revision"
    )
    parent_version_id = Column(
        String,
        nullable=True,
        comment="Id of the version this one was derived from (lineage display)"
    )
    owner_id = Column(
        String,
        nullable=True,
        index=True,
        comment="Owner attribution, opaque to the engine"
    )
    conversation_id = Column(
        String,
        nullable=True,
        index=True,
        comment="Conversation grouping, opaque to the engine"
    )
    # "metadata" is reserved on declarative classes
    version_metadata = Column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
        comment="Provenance: agent, updateType, modelUsed, timestamps"
    )
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
        comment="Timestamp when this revision was written"
    )

    __table_args__ = (
        UniqueConstraint("id", "version_number", name="uq_artifact_versions_id_version"),
        CheckConstraint("version_number >= 1", name="ck_artifact_versions_version_positive"),
        Index("idx_artifact_versions_conversation_created", "conversation_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<ArtifactVersion(id={self.id}, version_number={self.version_number}, "
            f"kind={self.kind}, title={self.title!r}, created_at={self.created_at})>"
        )
