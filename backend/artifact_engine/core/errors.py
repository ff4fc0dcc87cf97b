"""Error taxonomy for artifact lifecycle operations."""
from typing import Optional


class ArtifactEngineError(Exception):
    """Base class for errors raised by the artifact engine."""

    code = "artifact_error"

    def __init__(self, message: str, artifact_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.artifact_id = artifact_id

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "artifact_id": self.artifact_id,
        }


class NotFound(ArtifactEngineError):
    """An update targeted an artifact id with no stored versions."""

    code = "not_found"


class InvalidRange(ArtifactEngineError):
    """A line range whose clamped start is past its clamped end."""

    code = "invalid_range"

    def __init__(self, start: int, end: int, line_count: int):
        super().__init__(
            f"Invalid line range {start}-{end} for content with {line_count} line(s): "
            f"start line must be less than or equal to end line"
        )
        self.start = start
        self.end = end
        self.line_count = line_count


class ValidationFailed(ArtifactEngineError):
    """Content rejected by a kind whose validator is a hard stop."""

    code = "validation_failed"

    def __init__(self, kind: str, reason: str, artifact_id: Optional[str] = None):
        super().__init__(f"Invalid {kind} content: {reason}", artifact_id=artifact_id)
        self.kind = kind
        self.reason = reason


class UpstreamGenerationError(ArtifactEngineError):
    """The model producer failed while streaming content."""

    code = "upstream_generation_error"


class PersistenceError(ArtifactEngineError):
    """The version store could not read or write a version."""

    code = "persistence_error"


class UnsupportedKind(ArtifactEngineError):
    """The operation is not available for the artifact's kind."""

    code = "unsupported_kind"
