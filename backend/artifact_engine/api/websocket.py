"""WebSocket routes for real-time artifact streaming."""
import asyncio
import logging
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from artifact_engine.api.artifacts import get_generation_controller
from artifact_engine.core.artifact_types import ArtifactResult, StreamEventType, UpdateType
from artifact_engine.core.errors import ArtifactEngineError
from artifact_engine.schemas.artifact import ArtifactStreamRequest
from artifact_engine.services.delta_stream import QueueStreamWriter
from artifact_engine.services.generation_controller import GenerationController

logger = logging.getLogger(__name__)

router = APIRouter()

# Seconds between checks of the operation task while the queue is idle
POLL_INTERVAL = 0.5


def create_websocket_message(message_type: str, data: dict) -> dict:
    """
    Create a standardized WebSocket message.

    Args:
        message_type: Type of message ("connected", "event", "result", "error")
        data: Message data

    Returns:
        Formatted message dictionary
    """
    return {
        "type": message_type,
        "data": data
    }


def start_operation(
    controller: GenerationController,
    request: ArtifactStreamRequest,
    writer: QueueStreamWriter
) -> "asyncio.Task[ArtifactResult]":
    """Schedule the requested lifecycle operation, streaming into ``writer``."""
    attribution = dict(
        owner_id=request.owner_id,
        conversation_id=request.conversation_id,
        metadata=request.metadata
    )
    if request.operation == "create":
        coro = controller.create(
            kind=request.kind,
            title=request.title,
            writer=writer,
            instruction=request.instruction,
            content=request.content,
            **attribution
        )
    elif request.operation == "inject":
        coro = controller.inject(
            kind=request.kind,
            title=request.title,
            content=request.content,
            writer=writer,
            **attribution
        )
    elif request.operation == "suggest":
        coro = controller.suggest(
            request.artifact_id,
            writer,
            instruction=request.instruction,
            owner_id=request.owner_id
        )
    else:
        coro = controller.update(
            request.artifact_id,
            writer,
            instruction=request.instruction,
            content=request.content,
            line_range=request.line_range.to_line_range() if request.line_range else None,
            update_type=UpdateType(request.operation),
            title=request.title,
            **attribution
        )
    return asyncio.create_task(coro)


def _log_detached_result(task: "asyncio.Task[ArtifactResult]") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Artifact operation failed after client disconnect: {error}")
    else:
        result = task.result()
        logger.info(f"Artifact {result.id} v{result.version_number} persisted after client disconnect")


def detach_operation(operation: "asyncio.Task[ArtifactResult]") -> None:
    """Let an operation outlive its client, logging the outcome even if it already finished."""
    operation.add_done_callback(_log_detached_result)


@router.websocket("/ws/artifacts")
async def websocket_artifact_stream(
    websocket: WebSocket,
    controller: GenerationController = Depends(get_generation_controller)
):
    """
    WebSocket endpoint that runs one artifact operation and streams its events.

    After connecting, the client sends one request:
    {"operation": "create" | "inject" | "update" | "fix" | "suggest", ...fields}

    Message format:
    - {"type": "connected", "data": {"message": "..."}}
    - {"type": "event", "data": {...StreamEvent fields...}}
    - {"type": "result", "data": {...ArtifactResult or SuggestionBatch fields...}}
    - {"type": "error", "data": {"message": "...", "code": "..."}}

    A client that disconnects mid-stream does not cancel the operation: the
    version (or the suggestions) is still persisted, only the remaining
    events are dropped.
    """
    await websocket.accept()
    await websocket.send_json(create_websocket_message(
        "connected",
        {"message": "Send an artifact operation request"}
    ))

    writer = QueueStreamWriter()
    operation = None
    try:
        raw = await websocket.receive_json()
        try:
            request = ArtifactStreamRequest.model_validate(raw)
        except ValidationError as e:
            await websocket.send_json(create_websocket_message(
                "error",
                {"message": f"Invalid request: {e.errors()[0]['msg']}", "code": "invalid_request"}
            ))
            await websocket.close(code=1008, reason="Invalid request")
            return

        logger.info(f"WebSocket artifact operation {request.operation} requested")
        operation = start_operation(controller, request, writer)

        # Relay events until the operation is done and the queue is drained
        while True:
            try:
                event = await writer.next_event(timeout=POLL_INTERVAL)
            except asyncio.TimeoutError:
                if operation.done() and writer.queue.empty():
                    break
                continue
            await websocket.send_json(create_websocket_message("event", event.to_dict()))
            if event.event_type in (StreamEventType.FINISH, StreamEventType.ERROR):
                await operation
                break

        result = await operation
        await websocket.send_json(create_websocket_message("result", result.to_dict()))
        await websocket.close(code=1000, reason="Operation completed")

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected from artifact stream")
        writer.close()
        if operation is not None:
            detach_operation(operation)
    except (ArtifactEngineError, ValueError) as e:
        if isinstance(e, ArtifactEngineError):
            data = e.to_dict()
        else:
            data = {"message": str(e), "code": "invalid_request"}
        logger.warning(f"Artifact operation failed: {data['message']}")
        try:
            await websocket.send_json(create_websocket_message("error", data))
            await websocket.close(code=1011, reason="Operation failed")
        except (WebSocketDisconnect, RuntimeError) as send_error:
            logger.debug(f"WebSocket already closed: {send_error}")
    except Exception as e:
        logger.error(f"Error in artifact WebSocket handler: {e}", exc_info=True)
        try:
            await websocket.send_json(create_websocket_message(
                "error",
                {"message": f"Internal error: {str(e)}", "code": "internal_error"}
            ))
            await websocket.close(code=1011, reason="Internal error")
        except (WebSocketDisconnect, RuntimeError) as send_error:
            logger.debug(f"WebSocket already closed: {send_error}")
