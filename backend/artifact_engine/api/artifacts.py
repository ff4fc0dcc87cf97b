"""Artifact API routes: version browsing and lifecycle operations."""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from artifact_engine.core.artifact_types import ArtifactResult, UpdateType
from artifact_engine.core.db import SessionLocal
from artifact_engine.services.artifact_service import ArtifactService
from artifact_engine.services.delta_stream import CollectingStreamWriter
from artifact_engine.services.generation_controller import GenerationController
from artifact_engine.services.version_store import VersionStore
from artifact_engine.schemas.artifact import (
    ArtifactContentResponse,
    ArtifactDiffResponse,
    ArtifactOperationResponse,
    ArtifactVersionInfo,
    ArtifactVersionsResponse,
    ConversationArtifactsResponse,
    CreateArtifactRequest,
    InjectArtifactRequest,
    StreamEventModel,
    SuggestArtifactRequest,
    SuggestionInfo,
    SuggestionOperationResponse,
    SuggestionsResponse,
    UpdateArtifactRequest,
)

router = APIRouter(prefix="/api/artifacts", tags=["artifacts"])


def get_version_store() -> VersionStore:
    """Dependency for the version store."""
    return VersionStore(db_session_factory=SessionLocal)


def get_generation_controller(
    store: VersionStore = Depends(get_version_store)
) -> GenerationController:
    """Dependency for the generation controller."""
    return GenerationController(store=store)


def _operation_response(result: ArtifactResult, writer: CollectingStreamWriter) -> ArtifactOperationResponse:
    return ArtifactOperationResponse(
        id=result.id,
        version_number=result.version_number,
        title=result.title,
        kind=result.kind,
        content=result.content,
        valid=result.valid,
        validation_reason=result.validation_reason,
        events=[StreamEventModel(**event.to_dict()) for event in writer.events]
    )


@router.get("/conversations/{conversation_id}", response_model=ConversationArtifactsResponse)
async def list_conversation_artifacts(
    conversation_id: str,
    store: VersionStore = Depends(get_version_store)
):
    """
    List the latest version of every artifact in a conversation.

    Most recently written artifacts come first.
    """
    records = store.list_by_conversation(conversation_id)
    artifacts = [ArtifactVersionInfo.from_record(record) for record in records]
    return ConversationArtifactsResponse(
        conversation_id=conversation_id,
        artifacts=artifacts,
        total=len(artifacts)
    )


@router.get("/{artifact_id}/versions", response_model=ArtifactVersionsResponse)
async def get_artifact_versions(
    artifact_id: str,
    store: VersionStore = Depends(get_version_store)
):
    """
    Get all versions of an artifact, newest first.

    Example response:
    {
        "id": "550e8400-e29b-41d4-a716-446655440000",
        "versions": [
            {"version_number": 2, "update_type": "update", "content_length": 1156, ...},
            {"version_number": 1, "update_type": "create", "content_length": 1024, ...}
        ],
        "total": 2
    }
    """
    records = store.list_versions(artifact_id)
    if not records:
        raise HTTPException(
            status_code=404,
            detail=f"Artifact with id {artifact_id} not found"
        )

    return ArtifactVersionsResponse(
        id=artifact_id,
        versions=[ArtifactVersionInfo.from_record(record) for record in records],
        total=len(records)
    )


@router.get("/{artifact_id}/diff", response_model=ArtifactDiffResponse)
async def get_artifact_diff(
    artifact_id: str,
    from_version: int = Query(..., ge=1, description="Older version number"),
    to_version: Optional[int] = Query(None, ge=1, description="Newer version number (default: latest)"),
    store: VersionStore = Depends(get_version_store)
):
    """Unified diff between two versions of an artifact."""
    diff = ArtifactService.diff_versions(store, artifact_id, from_version, to_version)
    resolved_to = to_version or ArtifactService.get_version(store, artifact_id).version_number
    return ArtifactDiffResponse(
        id=artifact_id,
        from_version=from_version,
        to_version=resolved_to,
        diff=diff
    )


@router.get("/{artifact_id}/suggestions", response_model=SuggestionsResponse)
async def get_artifact_suggestions(
    artifact_id: str,
    version: Optional[int] = Query(None, ge=1, description="Version number (if not provided, all versions)"),
    store: VersionStore = Depends(get_version_store)
):
    """Suggestions stored for an artifact, oldest version first."""
    if store.get_latest(artifact_id) is None:
        raise HTTPException(
            status_code=404,
            detail=f"Artifact with id {artifact_id} not found"
        )

    records = store.list_suggestions(artifact_id, version)
    return SuggestionsResponse(
        id=artifact_id,
        version_number=version,
        suggestions=[SuggestionInfo.from_record(record) for record in records],
        total=len(records)
    )


@router.get("/{artifact_id}", response_model=ArtifactContentResponse)
async def get_artifact_content(
    artifact_id: str,
    version: Optional[int] = Query(None, ge=1, description="Version number (if not provided, returns latest)"),
    store: VersionStore = Depends(get_version_store)
):
    """
    Get artifact content for a specific version, or the latest one.
    """
    record = ArtifactService.get_version(store, artifact_id, version)
    return ArtifactContentResponse.from_record(record)


@router.post("", response_model=ArtifactOperationResponse, status_code=201)
async def create_artifact(
    request: CreateArtifactRequest,
    controller: GenerationController = Depends(get_generation_controller)
):
    """
    Create an artifact from an instruction (model generation) or literal content.

    The stream events the operation emitted are returned with the result.
    """
    writer = CollectingStreamWriter()
    try:
        result = await controller.create(
            kind=request.kind,
            title=request.title,
            writer=writer,
            instruction=request.instruction,
            content=request.content,
            owner_id=request.owner_id,
            conversation_id=request.conversation_id,
            metadata=request.metadata
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _operation_response(result, writer)


@router.post("/inject", response_model=ArtifactOperationResponse, status_code=201)
async def inject_artifact(
    request: InjectArtifactRequest,
    controller: GenerationController = Depends(get_generation_controller)
):
    """Create an artifact from pre-authored content, without a model call."""
    writer = CollectingStreamWriter()
    try:
        result = await controller.inject(
            kind=request.kind,
            title=request.title,
            content=request.content,
            writer=writer,
            owner_id=request.owner_id,
            conversation_id=request.conversation_id,
            metadata=request.metadata
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _operation_response(result, writer)


@router.post("/{artifact_id}/update", response_model=ArtifactOperationResponse)
async def update_artifact(
    artifact_id: str,
    request: UpdateArtifactRequest,
    controller: GenerationController = Depends(get_generation_controller)
):
    """
    Write a new version of an artifact.

    With ``line_range`` only those lines are replaced; otherwise the whole
    content is.
    """
    writer = CollectingStreamWriter()
    try:
        result = await controller.update(
            artifact_id,
            writer,
            instruction=request.instruction,
            content=request.content,
            line_range=request.line_range.to_line_range() if request.line_range else None,
            update_type=UpdateType(request.update_type),
            title=request.title,
            owner_id=request.owner_id,
            conversation_id=request.conversation_id,
            metadata=request.metadata
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _operation_response(result, writer)


@router.post("/{artifact_id}/suggestions", response_model=SuggestionOperationResponse, status_code=201)
async def suggest_artifact_edits(
    artifact_id: str,
    request: SuggestArtifactRequest,
    controller: GenerationController = Depends(get_generation_controller)
):
    """
    Ask the model for edit suggestions on the current version of a text artifact.

    The suggestions are stored against that version; the artifact itself is
    not changed.
    """
    writer = CollectingStreamWriter()
    batch = await controller.suggest(
        artifact_id,
        writer,
        instruction=request.instruction,
        owner_id=request.owner_id
    )
    return SuggestionOperationResponse(
        id=batch.id,
        version_number=batch.version_number,
        suggestions=[SuggestionInfo.from_record(record) for record in batch.suggestions],
        total=len(batch.suggestions),
        events=[StreamEventModel(**event.to_dict()) for event in writer.events]
    )
