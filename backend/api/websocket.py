"""WebSocket handler for real-time canvas event streaming.

This module handles WebSocket connections that stream canvas events to the
frontend and receive lightweight commands (viewport updates, cancelling a
pending delete) from clients.
"""

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from canvas.types import Viewport
from events import CanvasEvent, EventType, get_event_bus

if TYPE_CHECKING:
    from project_manager import ProjectManager

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

_project_manager: "ProjectManager | None" = None


def set_project_manager(manager: "ProjectManager") -> None:
    """Set the project manager used by WebSocket command handlers."""
    global _project_manager
    _project_manager = manager
    logger.info("websocket_project_manager_configured")


def get_project_manager() -> "ProjectManager":
    """Return configured project manager for WebSocket command handlers."""
    if _project_manager is None:
        raise RuntimeError(
            "ProjectManager not configured for WebSocket handlers. "
            "Call set_project_manager() during startup."
        )
    return _project_manager


@websocket_router.websocket("/ws/{project_id}")
async def websocket_endpoint(websocket: WebSocket, project_id: str) -> None:
    """WebSocket endpoint for real-time canvas events.

    This endpoint handles bidirectional communication:
    - Server -> Client: Canvas events (node changes, generation progress, notices)
    - Client -> Server: Commands (ping, viewport, cancel_delete)

    Args:
        websocket: The WebSocket connection.
        project_id: The project to stream events for.
    """
    await websocket.accept()

    logger.info("websocket_connected", project_id=project_id)

    event_bus = get_event_bus()

    # Subscribe before reading history so nothing published in between is lost.
    queue = event_bus.subscribe(project_id)

    try:
        last_replay_timestamp: float = 0.0
        history = event_bus.get_event_history(project_id)
        if history:
            logger.info(
                "replaying_event_history",
                project_id=project_id,
                event_count=len(history),
            )
            for event in history:
                try:
                    await websocket.send_json(event.model_dump(mode="json"))
                    last_replay_timestamp = event.timestamp
                except WebSocketDisconnect:
                    logger.info("websocket_disconnect_during_replay", project_id=project_id)
                    return
                except Exception as e:
                    logger.error("websocket_replay_error", project_id=project_id, error=str(e))
                    return

        async def send_events() -> None:
            """Forward events from the event bus to the WebSocket client.

            Events at or before the last replayed timestamp were already sent
            from history and are skipped.
            """
            try:
                while True:
                    event = await queue.get()
                    if event.type == EventType.PROJECT_CLOSED:
                        logger.info("project_closed_sentinel", project_id=project_id)
                        await websocket.send_json(event.model_dump(mode="json"))
                        break

                    if event.timestamp <= last_replay_timestamp:
                        logger.debug(
                            "event_skipped_duplicate",
                            project_id=project_id,
                            event_type=event.type.value,
                        )
                        continue

                    await websocket.send_json(event.model_dump(mode="json"))
                    logger.debug(
                        "event_sent",
                        project_id=project_id,
                        event_type=event.type.value,
                    )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send", project_id=project_id)
            except Exception as e:
                logger.error("websocket_send_error", project_id=project_id, error=str(e))

        async def receive_commands() -> None:
            """Receive and process commands from the WebSocket client."""
            try:
                while True:
                    data = await websocket.receive_json()
                    if not isinstance(data, dict):
                        logger.warning("invalid_ws_message", project_id=project_id)
                        continue
                    command_type = data.get("type")

                    logger.debug(
                        "command_received",
                        project_id=project_id,
                        command_type=command_type,
                    )

                    if command_type == "ping":
                        await websocket.send_json(
                            {"type": "pong", "timestamp": data.get("timestamp")}
                        )
                    elif command_type == "viewport":
                        await handle_viewport_command(project_id, data)
                    elif command_type == "cancel_delete":
                        await handle_cancel_delete_command(project_id)
                    else:
                        logger.warning(
                            "unknown_command",
                            project_id=project_id,
                            command_type=command_type,
                        )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive", project_id=project_id)
            except Exception as e:
                logger.error("websocket_receive_error", project_id=project_id, error=str(e))

        send_task = asyncio.create_task(send_events())
        receive_task = asyncio.create_task(receive_commands())

        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", project_id=project_id)
    except Exception as e:
        logger.error("websocket_error", project_id=project_id, error=str(e))
    finally:
        event_bus.unsubscribe(project_id, queue)
        logger.info("websocket_cleanup_complete", project_id=project_id)


async def _publish_error(project_id: str, message: str) -> None:
    await get_event_bus().publish(
        CanvasEvent(
            type=EventType.NOTICE,
            project_id=project_id,
            data={"level": "error", "message": message},
        )
    )


async def handle_viewport_command(project_id: str, data: dict[str, Any]) -> None:
    """Record a pan/zoom change sent over the socket.

    Args:
        project_id: The project whose viewport changed.
        data: Command payload with a ``viewport`` object.
    """
    session = get_project_manager().get_open_session(project_id)
    if session is None:
        logger.warning("viewport_command_project_not_open", project_id=project_id)
        return
    try:
        viewport = Viewport.model_validate(data.get("viewport") or {})
    except ValidationError as e:
        logger.warning("viewport_command_invalid", project_id=project_id, error=str(e))
        return
    session.set_viewport(viewport)


async def handle_cancel_delete_command(project_id: str) -> None:
    """Dismiss a pending delete confirmation.

    Args:
        project_id: The project with the pending delete.
    """
    session = get_project_manager().get_open_session(project_id)
    if session is None:
        logger.warning("cancel_delete_project_not_open", project_id=project_id)
        await _publish_error(project_id, f"Project {project_id} is not open")
        return
    session.cancel_delete()
