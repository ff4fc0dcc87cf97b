"""Data types shared by the artifact engine."""
from dataclasses import dataclass
from typing import Optional, Dict, Any
from enum import Enum


class ArtifactKind(str, Enum):
    """Artifact kind enumeration."""
    TEXT = "text"        # Markdown document
    SHEET = "sheet"      # CSV spreadsheet
    CODE = "code"        # Python source
    DIAGRAM = "diagram"  # Mermaid source


class UpdateType(str, Enum):
    """Provenance of a persisted version (metadata.updateType)."""
    CREATE = "create"
    UPDATE = "update"
    FIX = "fix"
    INJECT = "inject"


class StreamEventType(str, Enum):
    """Stream event type enumeration."""
    KIND = "kind"
    ID = "id"
    TITLE = "title"
    CONTENT_DELTA = "content-delta"
    CLEAR = "clear"
    SUGGESTION = "suggestion"
    FINISH = "finish"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """Event forwarded to the UI stream during one lifecycle operation."""
    event_type: StreamEventType
    payload: Any = None
    delta_event_name: Optional[str] = None  # e.g. "codeDelta", only for content deltas

    @property
    def wire_type(self) -> str:
        """Event name as the UI client expects it."""
        if self.event_type == StreamEventType.ERROR:
            return "error"
        if self.event_type == StreamEventType.CONTENT_DELTA and self.delta_event_name:
            return f"data-{self.delta_event_name}"
        return f"data-{self.event_type.value}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.wire_type,
            "event_type": self.event_type.value,
            "data": self.payload,
        }


@dataclass(frozen=True)
class LineRange:
    """Inclusive, 1-indexed range of lines."""
    start: int
    end: int

    def to_dict(self) -> Dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class ArtifactResult:
    """Outcome of a successful lifecycle operation."""
    id: str
    content: str
    version_number: int
    kind: ArtifactKind
    title: str
    valid: bool = True
    validation_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "content": self.content,
            "version_number": self.version_number,
            "kind": self.kind.value,
            "title": self.title,
            "valid": self.valid,
            "validation_reason": self.validation_reason,
        }
