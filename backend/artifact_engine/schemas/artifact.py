"""Pydantic schemas for Artifact API."""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime
from artifact_engine.core.artifact_types import ArtifactKind, LineRange


class ArtifactVersionInfo(BaseModel):
    """Schema for artifact version information (no content)."""
    id: str
    version_number: int
    title: str
    kind: ArtifactKind
    parent_version_id: Optional[str] = None
    conversation_id: Optional[str] = None
    update_type: Optional[str] = Field(None, description="create, update, fix or inject")
    agent: Optional[str] = Field(None, description="Agent that produced this version")
    created_at: Optional[datetime] = None
    content_length: int = Field(description="Length of content in characters")

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "version_number": 2,
                "title": "Login flow",
                "kind": "diagram",
                "parent_version_id": "550e8400-e29b-41d4-a716-446655440000",
                "conversation_id": "chat-1",
                "update_type": "update",
                "agent": "MermaidAgent",
                "created_at": "2024-01-01T10:15:00Z",
                "content_length": 342
            }
        }
    }

    @classmethod
    def from_record(cls, record) -> "ArtifactVersionInfo":
        return cls(
            id=record.id,
            version_number=record.version_number,
            title=record.title,
            kind=record.kind,
            parent_version_id=record.parent_version_id,
            conversation_id=record.conversation_id,
            update_type=record.metadata.get("updateType"),
            agent=record.metadata.get("agent"),
            created_at=record.created_at,
            content_length=len(record.content)
        )


class ArtifactVersionsResponse(BaseModel):
    """Schema for artifact versions response (newest first)."""
    id: str
    versions: List[ArtifactVersionInfo]
    total: int


class ConversationArtifactsResponse(BaseModel):
    """Schema for the latest version of every artifact in a conversation."""
    conversation_id: str
    artifacts: List[ArtifactVersionInfo]
    total: int


class ArtifactContentResponse(BaseModel):
    """Schema for artifact content response."""
    id: str
    version_number: int
    title: str
    kind: ArtifactKind
    content: str
    parent_version_id: Optional[str] = None
    owner_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "version_number": 1,
                "title": "Fibonacci",
                "kind": "code",
                "content": "def fib(n):\n    ...",
                "metadata": {"agent": "PythonAgent", "updateType": "create"},
                "created_at": "2024-01-01T10:00:00Z"
            }
        }
    }

    @classmethod
    def from_record(cls, record) -> "ArtifactContentResponse":
        return cls(
            id=record.id,
            version_number=record.version_number,
            title=record.title,
            kind=record.kind,
            content=record.content,
            parent_version_id=record.parent_version_id,
            owner_id=record.owner_id,
            conversation_id=record.conversation_id,
            metadata=record.metadata,
            created_at=record.created_at
        )


class ArtifactDiffResponse(BaseModel):
    """Schema for a unified diff between two versions."""
    id: str
    from_version: int
    to_version: int
    diff: str = Field(description="Unified diff from from_version to to_version")


class LineRangeModel(BaseModel):
    """Inclusive, 1-indexed line range."""
    start: int = Field(..., ge=1)
    end: int = Field(..., ge=1)

    def to_line_range(self) -> LineRange:
        return LineRange(start=self.start, end=self.end)


class _Attribution(BaseModel):
    owner_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateArtifactRequest(_Attribution):
    """Schema for creating an artifact from an instruction or literal content."""
    kind: ArtifactKind
    title: str = Field(..., min_length=1, max_length=500)
    instruction: Optional[str] = Field(None, description="Natural-language request for the model")
    content: Optional[str] = Field(None, description="Literal content (no model call)")

    model_config = {
        "json_schema_extra": {
            "example": {
                "kind": "code",
                "title": "Fibonacci",
                "instruction": "Write a function returning the n-th Fibonacci number",
                "conversation_id": "chat-1"
            }
        }
    }

    @model_validator(mode="after")
    def _one_source(self):
        if (self.instruction is None) == (self.content is None):
            raise ValueError("Exactly one of instruction or content must be given")
        return self


class InjectArtifactRequest(_Attribution):
    """Schema for creating an artifact from pre-authored content."""
    kind: ArtifactKind
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)


class UpdateArtifactRequest(_Attribution):
    """Schema for writing a new version of an artifact."""
    instruction: Optional[str] = None
    content: Optional[str] = None
    line_range: Optional[LineRangeModel] = None
    update_type: Literal["update", "fix"] = "update"
    title: Optional[str] = Field(None, min_length=1, max_length=500)

    model_config = {
        "json_schema_extra": {
            "example": {
                "content": "    return a + b",
                "line_range": {"start": 2, "end": 2},
                "update_type": "fix"
            }
        }
    }

    @model_validator(mode="after")
    def _one_source(self):
        if (self.instruction is None) == (self.content is None):
            raise ValueError("Exactly one of instruction or content must be given")
        return self


class ArtifactStreamRequest(BaseModel):
    """First message on the artifact WebSocket: which operation to run."""
    operation: Literal["create", "inject", "update", "fix", "suggest"]
    artifact_id: Optional[str] = Field(None, description="Required for update, fix and suggest")
    kind: Optional[ArtifactKind] = None
    title: Optional[str] = None
    instruction: Optional[str] = None
    content: Optional[str] = None
    line_range: Optional[LineRangeModel] = None
    owner_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_operation(self):
        if self.operation in ("update", "fix", "suggest"):
            if not self.artifact_id:
                raise ValueError(f"{self.operation} requires artifact_id")
        elif self.kind is None or not self.title:
            raise ValueError(f"{self.operation} requires kind and title")
        return self


class StreamEventModel(BaseModel):
    """One stream event as relayed to clients."""
    type: str = Field(description="Wire name, e.g. data-id, data-codeDelta, error")
    event_type: str
    data: Any = None


class ArtifactOperationResponse(BaseModel):
    """Schema for the result of a lifecycle operation run over HTTP."""
    id: str
    version_number: int
    title: str
    kind: ArtifactKind
    content: str
    valid: bool = True
    validation_reason: Optional[str] = None
    events: List[StreamEventModel] = Field(default_factory=list)


class SuggestArtifactRequest(BaseModel):
    """Schema for requesting suggestions on a text artifact."""
    instruction: Optional[str] = Field(None, description="Optional focus for the review")
    owner_id: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "instruction": "Tighten the introduction"
            }
        }
    }


class SuggestionInfo(BaseModel):
    """Schema for one stored suggestion."""
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
    def from_record(cls, record) -> "SuggestionInfo":
        return cls(
            id=record.id,
            artifact_id=record.artifact_id,
            version_number=record.version_number,
            original_text=record.original_text,
            suggested_text=record.suggested_text,
            description=record.description,
            is_resolved=record.is_resolved,
            owner_id=record.owner_id,
            created_at=record.created_at
        )


class SuggestionsResponse(BaseModel):
    """Schema for the suggestions of an artifact."""
    id: str
    version_number: Optional[int] = Field(None, description="Version filter, if one was given")
    suggestions: List[SuggestionInfo]
    total: int


class SuggestionOperationResponse(SuggestionsResponse):
    """Schema for the result of a suggest operation run over HTTP."""
    events: List[StreamEventModel] = Field(default_factory=list)
