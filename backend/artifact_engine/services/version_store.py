"""Version store: append-only persistence of artifact versions and their suggestions."""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import delete, func, insert, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from artifact_engine.core.artifact_types import ArtifactKind
from artifact_engine.core.config import settings
from artifact_engine.core.errors import PersistenceError
from artifact_engine.core.metrics import MetricsCollector
from artifact_engine.models.artifact_suggestion import ArtifactSuggestion
from artifact_engine.models.artifact_version import ArtifactVersion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactVersionRecord:
    """Read-only snapshot of a stored version, detached from any session."""
    id: str
    version_number: int
    title: str
    kind: ArtifactKind
    content: str
    row_id: str
    parent_version_id: Optional[str] = None
    owner_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: ArtifactVersion) -> "ArtifactVersionRecord":
        return cls(
            id=row.id,
            version_number=row.version_number,
            title=row.title,
            kind=ArtifactKind(row.kind),
            content=row.content,
            row_id=row.row_id,
            parent_version_id=row.parent_version_id,
            owner_id=row.owner_id,
            conversation_id=row.conversation_id,
            metadata=dict(row.version_metadata or {}),
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class SuggestionRecord:
    """Read-only snapshot of a stored suggestion."""
    id: str
    artifact_id: str
    version_number: int
    original_text: str
    suggested_text: str
    description: Optional[str] = None
    is_resolved: bool = False
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: ArtifactSuggestion) -> "SuggestionRecord":
        return cls(
            id=row.id,
            artifact_id=row.artifact_id,
            version_number=row.version_number,
            original_text=row.original_text,
            suggested_text=row.suggested_text,
            description=row.description,
            is_resolved=bool(row.is_resolved),
            owner_id=row.owner_id,
            created_at=row.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase form sent in suggestion events."""
        return {
            "id": self.id,
            "artifactId": self.artifact_id,
            "versionNumber": self.version_number,
            "originalText": self.original_text,
            "suggestedText": self.suggested_text,
            "description": self.description,
            "isResolved": self.is_resolved,
            "ownerId": self.owner_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class VersionStore:
    """Adapter over the ``artifact_versions`` table.

    ``create`` computes and inserts the next version number in a single
    ``INSERT ... VALUES ((SELECT COALESCE(MAX(version_number), 0) + 1 ...))``
    statement. The unique constraint on ``(id, version_number)`` rejects a
    writer that lost a race; that writer re-runs the same single statement,
    up to ``max_assign_attempts`` times. There is never a separate read of the
    current maximum followed by an insert.

    On PostgreSQL each write first takes a transaction-scoped advisory lock
    keyed on the artifact id, so writers to one artifact queue instead of
    colliding; any number of concurrent writers then succeed on their first
    attempt. SQLite serializes writes on its own.

    Args:
        db_session_factory: Factory function that returns a database session
        max_assign_attempts: Bound on conflict re-runs of the allocation
    """

    def __init__(
        self,
        db_session_factory: Callable[[], Session],
        max_assign_attempts: Optional[int] = None
    ):
        self._db_session_factory = db_session_factory
        self.max_assign_attempts = max_assign_attempts or settings.version_assign_max_attempts

    def get_latest(self, artifact_id: str) -> Optional[ArtifactVersionRecord]:
        """
        Get the current version of an artifact (greatest version number).

        Args:
            artifact_id: Logical artifact identifier

        Returns:
            The latest version, or None if the artifact has no versions
        """
        def query(db: Session):
            return (
                db.query(ArtifactVersion)
                .filter(ArtifactVersion.id == artifact_id)
                .order_by(ArtifactVersion.version_number.desc())
                .first()
            )

        row = self._read(query, f"get latest version of artifact {artifact_id}")
        return ArtifactVersionRecord.from_row(row) if row else None

    def get_by_number(self, artifact_id: str, version_number: int) -> Optional[ArtifactVersionRecord]:
        """
        Get one specific version of an artifact.

        Args:
            artifact_id: Logical artifact identifier
            version_number: Version number to fetch

        Returns:
            The version, or None if it does not exist
        """
        def query(db: Session):
            return (
                db.query(ArtifactVersion)
                .filter(
                    ArtifactVersion.id == artifact_id,
                    ArtifactVersion.version_number == version_number
                )
                .first()
            )

        row = self._read(query, f"get version {version_number} of artifact {artifact_id}")
        return ArtifactVersionRecord.from_row(row) if row else None

    def list_versions(self, artifact_id: str) -> List[ArtifactVersionRecord]:
        """
        List all versions of an artifact, newest (highest number) first.

        Args:
            artifact_id: Logical artifact identifier

        Returns:
            Versions ordered by version number (descending)
        """
        def query(db: Session):
            return (
                db.query(ArtifactVersion)
                .filter(ArtifactVersion.id == artifact_id)
                .order_by(ArtifactVersion.version_number.desc())
                .all()
            )

        rows = self._read(query, f"list versions of artifact {artifact_id}")
        return [ArtifactVersionRecord.from_row(row) for row in rows]

    def list_versions_since(self, artifact_id: str, since: datetime) -> List[ArtifactVersionRecord]:
        """
        List versions of an artifact created at or after a timestamp.

        Args:
            artifact_id: Logical artifact identifier
            since: Lower bound on created_at (inclusive)

        Returns:
            Versions ordered by version number (ascending)
        """
        def query(db: Session):
            return (
                db.query(ArtifactVersion)
                .filter(
                    ArtifactVersion.id == artifact_id,
                    ArtifactVersion.created_at >= since
                )
                .order_by(ArtifactVersion.version_number.asc())
                .all()
            )

        rows = self._read(query, f"list versions of artifact {artifact_id} since {since}")
        return [ArtifactVersionRecord.from_row(row) for row in rows]

    def list_by_conversation(self, conversation_id: str) -> List[ArtifactVersionRecord]:
        """
        Latest version of every artifact in a conversation, most recent first.

        Args:
            conversation_id: Conversation identifier

        Returns:
            One record per artifact id, ordered by created_at (descending)
        """
        def query(db: Session):
            latest = (
                db.query(
                    ArtifactVersion.id.label("artifact_id"),
                    func.max(ArtifactVersion.version_number).label("latest_version")
                )
                .filter(ArtifactVersion.conversation_id == conversation_id)
                .group_by(ArtifactVersion.id)
                .subquery()
            )
            return (
                db.query(ArtifactVersion)
                .join(
                    latest,
                    (ArtifactVersion.id == latest.c.artifact_id)
                    & (ArtifactVersion.version_number == latest.c.latest_version)
                )
                .order_by(ArtifactVersion.created_at.desc())
                .all()
            )

        rows = self._read(query, f"list artifacts of conversation {conversation_id}")
        return [ArtifactVersionRecord.from_row(row) for row in rows]

    def create(
        self,
        artifact_id: str,
        title: str,
        kind: ArtifactKind,
        content: str,
        parent_version_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactVersionRecord:
        """
        Append the next version of an artifact.

        Args:
            artifact_id: Logical artifact identifier (new or existing)
            title: Title at this revision
            kind: Artifact kind
            content: Full content at this revision
            parent_version_id: Id of the version this one derives from
            owner_id: Owner attribution
            conversation_id: Conversation grouping
            metadata: Provenance record

        Returns:
            The persisted version, with its assigned version number

        Raises:
            PersistenceError: If the write fails or keeps conflicting
        """
        last_conflict: Optional[IntegrityError] = None

        for attempt in range(1, self.max_assign_attempts + 1):
            row_id = str(uuid.uuid4())
            stmt = self._insert_next_version(
                row_id=row_id,
                artifact_id=artifact_id,
                title=title,
                kind=kind,
                content=content,
                parent_version_id=parent_version_id,
                owner_id=owner_id,
                conversation_id=conversation_id,
                metadata=metadata or {}
            )

            db = self._db_session_factory()
            try:
                self._lock_artifact(db, artifact_id)
                db.execute(stmt)
                db.commit()
                row = db.query(ArtifactVersion).filter(ArtifactVersion.row_id == row_id).one()
                record = ArtifactVersionRecord.from_row(row)
            except IntegrityError as e:
                db.rollback()
                last_conflict = e
                MetricsCollector.record_version_conflict()
                logger.warning(
                    f"Version number conflict for artifact {artifact_id} "
                    f"(attempt {attempt}/{self.max_assign_attempts}), re-allocating"
                )
                continue
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Error saving version of artifact {artifact_id}: {e}", exc_info=True)
                raise PersistenceError(
                    f"Failed to save version of artifact {artifact_id}: {e}",
                    artifact_id=artifact_id
                ) from e
            finally:
                db.close()

            MetricsCollector.record_version_created(
                kind=kind.value,
                update_type=str(record.metadata.get("updateType", "unknown"))
            )
            logger.info(
                f"Saved artifact {artifact_id} version {record.version_number} "
                f"(kind={kind.value}, row={row_id})"
            )
            return record

        raise PersistenceError(
            f"Could not assign a version number for artifact {artifact_id} "
            f"after {self.max_assign_attempts} attempts",
            artifact_id=artifact_id
        ) from last_conflict

    def delete_versions_after(self, artifact_id: str, timestamp: datetime) -> int:
        """
        Delete every version of an artifact created after a timestamp.

        Suggestions made against the deleted versions are deleted first, in
        the same transaction. Used by the surrounding chat layer to
        regenerate from an earlier point; the generation controller never
        calls it.

        Returns:
            Number of deleted versions
        """
        doomed_versions = select(ArtifactVersion.version_number).where(
            ArtifactVersion.id == artifact_id,
            ArtifactVersion.created_at > timestamp
        )
        db = self._db_session_factory()
        try:
            suggestions = db.execute(
                delete(ArtifactSuggestion)
                .where(
                    ArtifactSuggestion.artifact_id == artifact_id,
                    ArtifactSuggestion.version_number.in_(doomed_versions)
                )
                .execution_options(synchronize_session=False)
            )
            result = db.execute(
                delete(ArtifactVersion).where(
                    ArtifactVersion.id == artifact_id,
                    ArtifactVersion.created_at > timestamp
                )
            )
            db.commit()
            logger.info(
                f"Deleted {result.rowcount} version(s) and {suggestions.rowcount} suggestion(s) "
                f"of artifact {artifact_id} after {timestamp}"
            )
            return result.rowcount
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(
                f"Failed to delete versions of artifact {artifact_id}: {e}",
                artifact_id=artifact_id
            ) from e
        finally:
            db.close()

    def save_suggestions(
        self,
        artifact_id: str,
        version_number: int,
        suggestions: Sequence[Mapping[str, Any]],
        owner_id: Optional[str] = None
    ) -> List[SuggestionRecord]:
        """
        Store suggestions made against one version of an artifact.

        Args:
            artifact_id: Logical artifact identifier
            version_number: Version the suggestions apply to
            suggestions: Items with originalText, suggestedText, description
                and optionally a pre-assigned id
            owner_id: Owner attribution

        Returns:
            The stored suggestions, in input order
        """
        if not suggestions:
            return []

        created_at = datetime.now(timezone.utc)
        rows = [
            ArtifactSuggestion(
                id=suggestion.get("id") or str(uuid.uuid4()),
                artifact_id=artifact_id,
                version_number=version_number,
                original_text=suggestion["originalText"],
                suggested_text=suggestion["suggestedText"],
                description=suggestion.get("description"),
                is_resolved=False,
                owner_id=owner_id,
                created_at=created_at,
            )
            for suggestion in suggestions
        ]

        db = self._db_session_factory()
        try:
            db.add_all(rows)
            db.commit()
            records = [SuggestionRecord.from_row(row) for row in rows]
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error saving suggestions for artifact {artifact_id}: {e}", exc_info=True)
            raise PersistenceError(
                f"Failed to save suggestions for artifact {artifact_id}: {e}",
                artifact_id=artifact_id
            ) from e
        finally:
            db.close()

        logger.info(f"Saved {len(records)} suggestion(s) for artifact {artifact_id} v{version_number}")
        return records

    def list_suggestions(
        self,
        artifact_id: str,
        version_number: Optional[int] = None
    ) -> List[SuggestionRecord]:
        """
        List suggestions of an artifact, oldest first.

        Args:
            artifact_id: Logical artifact identifier
            version_number: Restrict to one version (default: all versions)
        """
        def query(db: Session):
            q = db.query(ArtifactSuggestion).filter(ArtifactSuggestion.artifact_id == artifact_id)
            if version_number is not None:
                q = q.filter(ArtifactSuggestion.version_number == version_number)
            return q.order_by(
                ArtifactSuggestion.version_number.asc(),
                ArtifactSuggestion.created_at.asc()
            ).all()

        rows = self._read(query, f"list suggestions of artifact {artifact_id}")
        return [SuggestionRecord.from_row(row) for row in rows]

    @staticmethod
    def _lock_artifact(db: Session, artifact_id: str) -> None:
        # Held until commit or rollback; serializes allocation per artifact id
        if db.get_bind().dialect.name == "postgresql":
            db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:artifact_id))"),
                {"artifact_id": artifact_id}
            )

    @staticmethod
    def _insert_next_version(
        row_id: str,
        artifact_id: str,
        title: str,
        kind: ArtifactKind,
        content: str,
        parent_version_id: Optional[str],
        owner_id: Optional[str],
        conversation_id: Optional[str],
        metadata: Dict[str, Any]
    ):
        # Aliased so the subquery is never correlated to the INSERT target
        prior = ArtifactVersion.__table__.alias("prior")
        next_version = (
            select(func.coalesce(func.max(prior.c.version_number), 0) + 1)
            .where(prior.c.id == artifact_id)
            .correlate(None)
            .scalar_subquery()
        )
        # Keyed by Column since the metadata attribute and column names differ
        columns = ArtifactVersion.__mapper__.columns
        return insert(ArtifactVersion.__table__).values({
            columns["row_id"]: row_id,
            columns["id"]: artifact_id,
            columns["version_number"]: next_version,
            columns["title"]: title,
            columns["kind"]: kind.value,
            columns["content"]: content,
            columns["parent_version_id"]: parent_version_id,
            columns["owner_id"]: owner_id,
            columns["conversation_id"]: conversation_id,
            columns["version_metadata"]: metadata,
            columns["created_at"]: datetime.now(timezone.utc),
        })

    def _read(self, query: Callable[[Session], Any], description: str):
        db = self._db_session_factory()
        try:
            return query(db)
        except SQLAlchemyError as e:
            logger.error(f"Error trying to {description}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to {description}: {e}") from e
        finally:
            db.close()
