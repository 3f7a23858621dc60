"""HTTP API routes for the Storyboard canvas backend.

This module defines the HTTP endpoints for canvas editing, agent generation,
chat and health checks. Real-time events are handled via WebSocket in
websocket.py.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, status

from canvas.connections import Rejected
from canvas.errors import CanvasValidationError, PersistenceError
from canvas.persistence_sync import serialize_node
from canvas.types import Position, Viewport
from models.schemas import (
    AddAgentRequest,
    AddMoodBoardRequest,
    AddMoodItemRequest,
    AddVideoRequest,
    CanvasResponse,
    ChatRequest,
    ChatResponse,
    ConnectRequest,
    ConnectResponse,
    DeleteRequest,
    DeletionResponse,
    GenerateAllResponse,
    GenerationResponse,
    HealthResponse,
    NodeResponse,
    ThumbnailUploadRequest,
    TranscriptionUploadRequest,
    UpdateContentRequest,
)

if TYPE_CHECKING:
    from canvas.deletion import DeletionResult
    from canvas.session import CanvasSession
    from canvas.types import AgentStatus
    from project_manager import ProjectManager

logger = structlog.get_logger(__name__)

router = APIRouter()

ProjectId = Annotated[str, Path(description="The project ID", min_length=1, max_length=128)]
NodeId = Annotated[str, Path(description="The canvas node ID")]

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


@contextmanager
def _canvas_errors(operation: str, project_id: str) -> Iterator[None]:
    """Translate canvas exceptions into HTTP errors."""
    try:
        yield
    except HTTPException:
        raise
    except KeyError as e:
        logger.warning(f"{operation}_not_found", project_id=project_id, key=str(e))
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Node {e.args[0] if e.args else ''} not found",
        ) from None
    except CanvasValidationError as e:
        logger.warning(f"{operation}_rejected", project_id=project_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e
    except PersistenceError as e:
        logger.error(f"{operation}_storage_failed", project_id=project_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Storage unavailable: {e}",
        ) from e
    except Exception as e:
        logger.error(f"{operation}_failed", project_id=project_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {operation.replace('_', ' ')}: {e}",
        ) from e


def _deletion_response(result: DeletionResult) -> DeletionResponse:
    return DeletionResponse(pending=result.pending, deleted=result.deleted, failed=result.failed)


def _generation_response(node_id: str, result: AgentStatus | None) -> GenerationResponse:
    return GenerationResponse(node_id=node_id, status=result, awaiting_upload=result is None)


# Project manager dependency (set during application startup)
_project_manager: ProjectManager | None = None


def set_project_manager(manager: ProjectManager) -> None:
    """Set the project manager instance for the routes.

    This should be called during application startup to inject the project
    manager dependency.

    Args:
        manager: The ProjectManager instance to use for all routes.
    """
    global _project_manager
    _project_manager = manager
    logger.info("project_manager_configured")


def get_project_manager() -> ProjectManager:
    """Get the project manager instance.

    Returns:
        The configured ProjectManager instance.

    Raises:
        RuntimeError: If the project manager has not been configured.
    """
    if _project_manager is None:
        logger.error("project_manager_not_configured")
        raise RuntimeError(
            "ProjectManager not configured. Call set_project_manager() during startup."
        )
    return _project_manager


async def _session(project_id: str) -> CanvasSession:
    """Open (or reuse) the canvas session for a project."""
    with _canvas_errors("open_project", project_id):
        return await get_project_manager().get_session(project_id)


# -----------------------------------------------------------------------------
# Canvas
# -----------------------------------------------------------------------------


@router.get(
    "/api/projects/{project_id}/canvas",
    response_model=CanvasResponse,
    summary="Get the canvas",
    description="Load the project's canvas (once per process) and return its current state.",
)
async def get_canvas(project_id: ProjectId) -> CanvasResponse:
    session = await _session(project_id)
    return CanvasResponse.model_validate(session.to_dict())


@router.delete(
    "/api/projects/{project_id}",
    status_code=status.HTTP_200_OK,
    summary="Close a project",
    description="Flush pending autosaves and close the project's canvas session.",
)
async def close_project(project_id: ProjectId) -> dict[str, object]:
    closed = await get_project_manager().close_project(project_id)
    if not closed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Project {project_id} is not open",
        )
    return {"project_id": project_id, "closed": True}


@router.post(
    "/api/projects/{project_id}/videos",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a video",
)
async def add_video(project_id: ProjectId, request: AddVideoRequest) -> NodeResponse:
    session = await _session(project_id)
    with _canvas_errors("add_video", project_id):
        node = await session.add_video(
            request.title,
            request.position,
            media_url=request.media_url,
            duration=request.duration,
            format=request.format,
        )
    return NodeResponse(node=serialize_node(node))


@router.post(
    "/api/projects/{project_id}/agents",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an agent",
    description="Drop an agent near the requested position and connect the video into it.",
)
async def add_agent(project_id: ProjectId, request: AddAgentRequest) -> NodeResponse:
    session = await _session(project_id)
    with _canvas_errors("add_agent", project_id):
        node = await session.add_agent(request.agent_type, request.position)
    return NodeResponse(node=serialize_node(node))


@router.post(
    "/api/projects/{project_id}/moodboards",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a mood board",
)
async def add_moodboard(project_id: ProjectId, request: AddMoodBoardRequest) -> NodeResponse:
    session = await _session(project_id)
    with _canvas_errors("add_moodboard", project_id):
        node = session.add_moodboard(request.position)
    return NodeResponse(node=serialize_node(node))


@router.post(
    "/api/projects/{project_id}/moodboards/{node_id}/items",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a mood board item",
)
async def add_moodboard_item(
    project_id: ProjectId,
    node_id: NodeId,
    request: AddMoodItemRequest,
) -> NodeResponse:
    session = await _session(project_id)
    with _canvas_errors("add_moodboard_item", project_id):
        session.add_moodboard_item(node_id, request.url, request.type, request.title)
        node = session.store.find_node(node_id)
    return NodeResponse(node=serialize_node(node))


@router.delete(
    "/api/projects/{project_id}/moodboards/{node_id}/items/{item_id}",
    response_model=NodeResponse,
    summary="Remove a mood board item",
)
async def remove_moodboard_item(
    project_id: ProjectId,
    node_id: NodeId,
    item_id: Annotated[str, Path(description="The mood item ID")],
) -> NodeResponse:
    session = await _session(project_id)
    with _canvas_errors("remove_moodboard_item", project_id):
        session.remove_moodboard_item(node_id, item_id)
        node = session.store.find_node(node_id)
    return NodeResponse(node=serialize_node(node))


@router.post(
    "/api/projects/{project_id}/transcriptions",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a transcription",
    description="Parse an SRT, VTT, TXT or JSON transcript and attach it to a video.",
)
async def upload_transcription(
    project_id: ProjectId,
    request: TranscriptionUploadRequest,
) -> NodeResponse:
    session = await _session(project_id)
    with _canvas_errors("upload_transcription", project_id):
        node = await session.upload_transcription(
            request.video_node_id, request.file_name, request.content
        )
    return NodeResponse(node=serialize_node(node))


@router.post(
    "/api/projects/{project_id}/nodes/{node_id}/position",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Move a node",
)
async def move_node(project_id: ProjectId, node_id: NodeId, position: Position) -> None:
    session = await _session(project_id)
    with _canvas_errors("move_node", project_id):
        await session.move_node(node_id, position)


@router.post(
    "/api/projects/{project_id}/viewport",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Update the viewport",
    description="Record pan/zoom; written to storage after a quiet period.",
)
async def set_viewport(project_id: ProjectId, viewport: Viewport) -> None:
    session = await _session(project_id)
    session.set_viewport(viewport)


@router.post(
    "/api/projects/{project_id}/connections",
    response_model=ConnectResponse,
    summary="Connect two nodes",
)
async def connect_nodes(project_id: ProjectId, request: ConnectRequest) -> ConnectResponse:
    session = await _session(project_id)
    with _canvas_errors("connect_nodes", project_id):
        result = await session.connect(
            request.source_node_id,
            request.target_node_id,
            request.source_handle,
            request.target_handle,
        )
    if isinstance(result, Rejected):
        return ConnectResponse(accepted=False, reason=result.reason)
    return ConnectResponse(accepted=True, edge=result)


# -----------------------------------------------------------------------------
# Deletion
# -----------------------------------------------------------------------------


@router.post(
    "/api/projects/{project_id}/deletions",
    response_model=DeletionResponse,
    summary="Delete nodes",
    description=(
        "Delete nodes, or hold them for confirmation when the set contains a "
        "video, a transcription or an agent with a draft."
    ),
)
async def request_delete(project_id: ProjectId, request: DeleteRequest) -> DeletionResponse:
    session = await _session(project_id)
    with _canvas_errors("request_delete", project_id):
        result = await session.request_delete(request.node_ids)
    return _deletion_response(result)


@router.post(
    "/api/projects/{project_id}/deletions/confirm",
    response_model=DeletionResponse,
    summary="Confirm a pending delete",
)
async def confirm_delete(project_id: ProjectId) -> DeletionResponse:
    session = await _session(project_id)
    with _canvas_errors("confirm_delete", project_id):
        result = await session.confirm_delete()
    return _deletion_response(result)


@router.post(
    "/api/projects/{project_id}/deletions/cancel",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel a pending delete",
)
async def cancel_delete(project_id: ProjectId) -> None:
    session = await _session(project_id)
    session.cancel_delete()


# -----------------------------------------------------------------------------
# Generation
# -----------------------------------------------------------------------------


@router.post(
    "/api/projects/{project_id}/nodes/{node_id}/generate",
    response_model=GenerationResponse,
    summary="Generate an agent's content",
    description=(
        "Run generation for one agent. Thumbnail agents without images "
        "answer with awaiting_upload=true instead."
    ),
)
async def generate(project_id: ProjectId, node_id: NodeId) -> GenerationResponse:
    session = await _session(project_id)
    with _canvas_errors("generate", project_id):
        result = await session.generate(node_id)
    return _generation_response(node_id, result)


@router.post(
    "/api/projects/{project_id}/nodes/{node_id}/regenerate",
    response_model=GenerationResponse,
    summary="Regenerate an agent's content",
)
async def regenerate(project_id: ProjectId, node_id: NodeId) -> GenerationResponse:
    session = await _session(project_id)
    with _canvas_errors("regenerate", project_id):
        result = await session.regenerate(node_id)
    return _generation_response(node_id, result)


@router.post(
    "/api/projects/{project_id}/nodes/{node_id}/content",
    response_model=NodeResponse,
    summary="Edit an agent's draft",
)
async def update_content(
    project_id: ProjectId,
    node_id: NodeId,
    request: UpdateContentRequest,
) -> NodeResponse:
    session = await _session(project_id)
    with _canvas_errors("update_content", project_id):
        await session.update_content(node_id, request.text)
        node = session.store.find_node(node_id)
    return NodeResponse(node=serialize_node(node))


@router.post(
    "/api/projects/{project_id}/generate-all",
    response_model=GenerateAllResponse,
    summary="Generate every agent",
    description="Generate all non-thumbnail agents one after another.",
)
async def generate_all(project_id: ProjectId) -> GenerateAllResponse:
    session = await _session(project_id)
    with _canvas_errors("generate_all", project_id):
        counts = await session.generate_all()
    return GenerateAllResponse(**counts)


@router.post(
    "/api/projects/{project_id}/chat",
    response_model=ChatResponse,
    summary="Send a chat message",
    description="Route an @mention message to the matching agent.",
)
async def chat(project_id: ProjectId, request: ChatRequest) -> ChatResponse:
    session = await _session(project_id)
    before = len(session.chat_log.messages)
    with _canvas_errors("chat", project_id):
        await session.handle_chat_message(request.message)
    return ChatResponse(messages=session.chat_log.messages[before:])


@router.post(
    "/api/projects/{project_id}/thumbnail-upload",
    response_model=GenerationResponse,
    summary="Upload thumbnail frames",
    description="Provide images for the thumbnail agent that is waiting for them.",
)
async def thumbnail_upload(
    project_id: ProjectId,
    request: ThumbnailUploadRequest,
) -> GenerationResponse:
    session = await _session(project_id)
    pending = session.generation.pending_upload
    with _canvas_errors("thumbnail_upload", project_id):
        result = await session.handle_thumbnail_upload(request.images)
    node_id = pending.node_id if pending else ""
    return GenerationResponse(node_id=node_id, status=result)


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with database and open project status.",
)
async def health_check() -> HealthResponse:
    """Health check endpoint with infrastructure status.

    Returns:
        HealthResponse with status, database availability, and open project count.
    """
    database_available = False
    open_projects = 0

    try:
        project_manager = get_project_manager()
        open_projects = len(project_manager.get_open_projects())
        database_available = await project_manager.repository.ping()
    except RuntimeError:
        # ProjectManager not configured yet (e.g., during startup)
        pass
    except Exception as e:
        logger.warning("health_check_partial_failure", error=str(e))

    overall_status = "healthy" if database_available else "unhealthy"

    return HealthResponse(
        status=overall_status,
        timestamp=time.time(),
        database_available=database_available,
        open_projects=open_projects,
    )
