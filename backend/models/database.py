"""SQLite-based project persistence using aiosqlite.

This module provides the CanvasStore class, which keeps the records behind a
canvas (videos, agents, transcriptions) and one canvas snapshot per project.

Every write raises ``PersistenceError`` on failure. The canvas decides what a
failed write means (log and drop for autosave, per-node rollback for
deletes), so the store never swallows errors.

Tables:
    videos: Source videos with their transcription status.
    agents: Agent records, their draft, connections and chat history.
    transcriptions: Manually uploaded transcriptions.
    canvas_snapshots: Serialized nodes, edges and viewport per project.

Usage:
    >>> from models.database import CanvasStore
    >>> store = CanvasStore("./data/canvas.db")
    >>> await store.init()
    >>> video = await store.create_video("proj_1", title="Launch vlog")
    >>> agent = await store.create_agent("proj_1", AgentType.TITLE, video_id=video.id)
"""

import json
import math
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from canvas.errors import PersistenceError
from canvas.types import AgentStatus, AgentType, NodeKind, Position, TranscriptSegment, Viewport
from models.records import (
    AgentRecord,
    CanvasSnapshot,
    ChatEntry,
    StoredTranscriptionStatus,
    TranscriptionRecord,
    VideoRecord,
)

logger = structlog.get_logger(__name__)

_POSITION_TABLES = {
    NodeKind.VIDEO: "videos",
    NodeKind.AGENT: "agents",
    NodeKind.TRANSCRIPTION: "transcriptions",
}


def sanitize_viewport(viewport: Viewport) -> Viewport:
    """Replace non-finite coordinates with 0 and a non-positive zoom with 1."""
    x = viewport.x if math.isfinite(viewport.x) else 0.0
    y = viewport.y if math.isfinite(viewport.y) else 0.0
    zoom = viewport.zoom if math.isfinite(viewport.zoom) and viewport.zoom > 0 else 1.0
    return Viewport(x=x, y=y, zoom=zoom)


def _new_id() -> str:
    return uuid.uuid4().hex


def _position_json(position: Position) -> str:
    return json.dumps({"x": position.x, "y": position.y})


def _video_from_row(row: aiosqlite.Row) -> VideoRecord:
    data = dict(row)
    data["canvas_position"] = json.loads(data["canvas_position"])
    return VideoRecord.model_validate(data)


def _agent_from_row(row: aiosqlite.Row) -> AgentRecord:
    data = dict(row)
    data["canvas_position"] = json.loads(data["canvas_position"])
    data["connections"] = json.loads(data["connections"])
    data["chat_history"] = json.loads(data["chat_history"])
    return AgentRecord.model_validate(data)


def _transcription_from_row(row: aiosqlite.Row) -> TranscriptionRecord:
    data = dict(row)
    data["canvas_position"] = json.loads(data["canvas_position"])
    data["segments"] = json.loads(data["segments"])
    return TranscriptionRecord.model_validate(data)


class CanvasStore:
    """Async SQLite store for canvas records and snapshots.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys = ON")
                yield db
        except PersistenceError:
            raise
        except Exception as e:
            logger.error("canvas_store_operation_failed", operation=operation, error=str(e))
            raise PersistenceError(operation, str(e)) from e

    async def init(self) -> None:
        """Create database tables if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        async with self._connect("init") as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS videos (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    media_url TEXT,
                    duration REAL,
                    format TEXT,
                    canvas_position TEXT NOT NULL,
                    transcription_status TEXT NOT NULL DEFAULT 'idle',
                    transcription TEXT,
                    transcription_error TEXT,
                    created_at REAL NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS agents (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    video_id TEXT,
                    type TEXT NOT NULL,
                    draft TEXT NOT NULL DEFAULT '',
                    thumbnail_url TEXT,
                    thumbnail_storage_id TEXT,
                    status TEXT NOT NULL DEFAULT 'idle',
                    connections TEXT NOT NULL DEFAULT '[]',
                    chat_history TEXT NOT NULL DEFAULT '[]',
                    canvas_position TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS transcriptions (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    video_id TEXT,
                    file_name TEXT NOT NULL,
                    format TEXT NOT NULL,
                    full_text TEXT NOT NULL,
                    segments TEXT NOT NULL DEFAULT '[]',
                    word_count INTEGER NOT NULL DEFAULT 0,
                    duration REAL NOT NULL DEFAULT 0,
                    canvas_position TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS canvas_snapshots (
                    project_id TEXT PRIMARY KEY,
                    nodes TEXT NOT NULL DEFAULT '[]',
                    edges TEXT NOT NULL DEFAULT '[]',
                    viewport TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            for table in ("videos", "agents", "transcriptions"):
                await db.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_project ON {table}(project_id)"
                )
            await db.commit()
        logger.info("canvas_store_initialized", db_path=self.db_path)

    async def ping(self) -> bool:
        """Return True if the database file can be opened and queried."""
        try:
            async with self._connect("ping") as db:
                await db.execute("SELECT 1")
        except PersistenceError:
            return False
        return True

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    async def list_videos(self, project_id: str) -> list[VideoRecord]:
        async with self._connect("list_videos") as db:
            cursor = await db.execute(
                "SELECT * FROM videos WHERE project_id = ? ORDER BY created_at",
                (project_id,),
            )
            return [_video_from_row(row) for row in await cursor.fetchall()]

    async def list_agents(self, project_id: str) -> list[AgentRecord]:
        async with self._connect("list_agents") as db:
            cursor = await db.execute(
                "SELECT * FROM agents WHERE project_id = ? ORDER BY created_at",
                (project_id,),
            )
            return [_agent_from_row(row) for row in await cursor.fetchall()]

    async def list_transcriptions(self, project_id: str) -> list[TranscriptionRecord]:
        async with self._connect("list_transcriptions") as db:
            cursor = await db.execute(
                "SELECT * FROM transcriptions WHERE project_id = ? ORDER BY created_at",
                (project_id,),
            )
            return [_transcription_from_row(row) for row in await cursor.fetchall()]

    async def get_video(self, video_id: str) -> VideoRecord | None:
        async with self._connect("get_video") as db:
            cursor = await db.execute("SELECT * FROM videos WHERE id = ?", (video_id,))
            row = await cursor.fetchone()
            return _video_from_row(row) if row else None

    async def get_agent(self, agent_id: str) -> AgentRecord | None:
        async with self._connect("get_agent") as db:
            cursor = await db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
            row = await cursor.fetchone()
            return _agent_from_row(row) if row else None

    # -----------------------------------------------------------------
    # Creates
    # -----------------------------------------------------------------

    async def create_video(
        self,
        project_id: str,
        title: str = "Untitled Video",
        media_url: str | None = None,
        duration: float | None = None,
        format: str | None = None,
        canvas_position: Position | None = None,
    ) -> VideoRecord:
        record = VideoRecord(
            id=_new_id(),
            project_id=project_id,
            title=title,
            media_url=media_url,
            duration=duration,
            format=format,
            canvas_position=canvas_position or Position(x=0, y=0),
        )
        async with self._connect("create_video") as db:
            await db.execute(
                """
                INSERT INTO videos
                    (id, project_id, title, media_url, duration, format,
                     canvas_position, transcription_status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id, project_id, title, media_url, duration, format,
                    _position_json(record.canvas_position),
                    record.transcription_status, record.created_at,
                ),
            )
            await db.commit()
        logger.debug("video_created", project_id=project_id, video_id=record.id)
        return record

    async def create_agent(
        self,
        project_id: str,
        agent_type: AgentType,
        video_id: str | None = None,
        canvas_position: Position | None = None,
    ) -> AgentRecord:
        record = AgentRecord(
            id=_new_id(),
            project_id=project_id,
            video_id=video_id,
            type=agent_type,
            canvas_position=canvas_position or Position(x=0, y=0),
        )
        async with self._connect("create_agent") as db:
            await db.execute(
                """
                INSERT INTO agents
                    (id, project_id, video_id, type, status, canvas_position,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id, project_id, video_id, agent_type.value,
                    record.status.value, _position_json(record.canvas_position),
                    record.created_at, record.updated_at,
                ),
            )
            await db.commit()
        logger.debug(
            "agent_created",
            project_id=project_id,
            agent_id=record.id,
            agent_type=agent_type.value,
        )
        return record

    async def create_transcription(
        self,
        project_id: str,
        file_name: str,
        full_text: str,
        format: str = "txt",
        segments: list[TranscriptSegment] | None = None,
        word_count: int = 0,
        duration: float = 0.0,
        video_id: str | None = None,
        canvas_position: Position | None = None,
    ) -> TranscriptionRecord:
        record = TranscriptionRecord(
            id=_new_id(),
            project_id=project_id,
            video_id=video_id,
            file_name=file_name,
            format=format,
            full_text=full_text,
            segments=segments or [],
            word_count=word_count,
            duration=duration,
            canvas_position=canvas_position or Position(x=0, y=0),
        )
        segments_json = json.dumps([s.model_dump() for s in record.segments])
        async with self._connect("create_transcription") as db:
            await db.execute(
                """
                INSERT INTO transcriptions
                    (id, project_id, video_id, file_name, format, full_text,
                     segments, word_count, duration, canvas_position, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id, project_id, video_id, file_name, format, full_text,
                    segments_json, word_count, duration,
                    _position_json(record.canvas_position), record.created_at,
                ),
            )
            await db.commit()
        logger.debug("transcription_created", project_id=project_id, transcription_id=record.id)
        return record

    # -----------------------------------------------------------------
    # Updates
    # -----------------------------------------------------------------

    async def update_agent_draft(
        self,
        agent_id: str,
        draft: str,
        status: AgentStatus = AgentStatus.READY,
        thumbnail_url: str | None = None,
        thumbnail_storage_id: str | None = None,
    ) -> None:
        """Write an agent's draft and status.

        Thumbnail columns are only touched when a value is given.
        """
        assignments = ["draft = ?", "status = ?", "updated_at = ?"]
        params: list[Any] = [draft, AgentStatus(status).value, time.time()]
        if thumbnail_url is not None:
            assignments.append("thumbnail_url = ?")
            params.append(thumbnail_url)
        if thumbnail_storage_id is not None:
            assignments.append("thumbnail_storage_id = ?")
            params.append(thumbnail_storage_id)
        params.append(agent_id)

        async with self._connect("update_agent_draft") as db:
            await db.execute(
                f"UPDATE agents SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            await db.commit()
        logger.debug("agent_draft_updated", agent_id=agent_id, status=str(status))

    async def update_agent_status(self, agent_id: str, status: AgentStatus) -> None:
        async with self._connect("update_agent_status") as db:
            await db.execute(
                "UPDATE agents SET status = ?, updated_at = ? WHERE id = ?",
                (AgentStatus(status).value, time.time(), agent_id),
            )
            await db.commit()

    async def update_connections(self, agent_id: str, connections: list[str]) -> None:
        async with self._connect("update_connections") as db:
            await db.execute(
                "UPDATE agents SET connections = ?, updated_at = ? WHERE id = ?",
                (json.dumps(list(connections)), time.time(), agent_id),
            )
            await db.commit()
        logger.debug("agent_connections_updated", agent_id=agent_id, count=len(connections))

    async def add_chat_message(self, agent_id: str, role: str, message: str) -> ChatEntry:
        """Append a chat entry to an agent's stored history."""
        entry = ChatEntry(role=role, message=message)
        async with self._connect("add_chat_message") as db:
            cursor = await db.execute(
                "SELECT chat_history FROM agents WHERE id = ?", (agent_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise PersistenceError("add_chat_message", f"agent {agent_id} not found")
            history = json.loads(row["chat_history"])
            history.append(entry.model_dump())
            await db.execute(
                "UPDATE agents SET chat_history = ? WHERE id = ?",
                (json.dumps(history), agent_id),
            )
            await db.commit()
        return entry

    async def update_position(self, kind: NodeKind, record_id: str, position: Position) -> None:
        table = _POSITION_TABLES.get(kind)
        if table is None:
            raise PersistenceError("update_position", f"{kind} has no stored record")
        async with self._connect("update_position") as db:
            await db.execute(
                f"UPDATE {table} SET canvas_position = ? WHERE id = ?",
                (_position_json(position), record_id),
            )
            await db.commit()

    async def update_transcription_status(
        self,
        video_id: str,
        status: StoredTranscriptionStatus,
        transcription: str | None = None,
        error: str | None = None,
    ) -> None:
        async with self._connect("update_transcription_status") as db:
            await db.execute(
                """
                UPDATE videos
                SET transcription_status = ?,
                    transcription = COALESCE(?, transcription),
                    transcription_error = ?
                WHERE id = ?
                """,
                (status, transcription, error, video_id),
            )
            await db.commit()
        logger.debug("video_transcription_status_updated", video_id=video_id, status=status)

    # -----------------------------------------------------------------
    # Removes
    # -----------------------------------------------------------------

    async def remove_video(self, video_id: str) -> None:
        """Delete a video and every agent that belongs to it."""
        async with self._connect("remove_video") as db:
            cursor = await db.execute("DELETE FROM videos WHERE id = ?", (video_id,))
            if cursor.rowcount == 0:
                raise PersistenceError("remove_video", f"video {video_id} not found")
            await db.execute("DELETE FROM agents WHERE video_id = ?", (video_id,))
            await db.commit()
        logger.info("video_removed", video_id=video_id)

    async def remove_agent(self, agent_id: str) -> None:
        async with self._connect("remove_agent") as db:
            cursor = await db.execute("DELETE FROM agents WHERE id = ?", (agent_id,))
            if cursor.rowcount == 0:
                raise PersistenceError("remove_agent", f"agent {agent_id} not found")
            await db.commit()
        logger.info("agent_removed", agent_id=agent_id)

    async def remove_transcription(self, transcription_id: str) -> None:
        async with self._connect("remove_transcription") as db:
            cursor = await db.execute(
                "DELETE FROM transcriptions WHERE id = ?", (transcription_id,)
            )
            if cursor.rowcount == 0:
                raise PersistenceError(
                    "remove_transcription", f"transcription {transcription_id} not found"
                )
            await db.commit()
        logger.info("transcription_removed", transcription_id=transcription_id)

    # -----------------------------------------------------------------
    # Snapshots
    # -----------------------------------------------------------------

    async def save_snapshot(
        self,
        project_id: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        viewport: Viewport,
    ) -> None:
        """Insert or replace the project's snapshot."""
        viewport = sanitize_viewport(viewport)
        async with self._connect("save_snapshot") as db:
            await db.execute(
                """
                INSERT INTO canvas_snapshots (project_id, nodes, edges, viewport, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(project_id) DO UPDATE SET
                    nodes = excluded.nodes,
                    edges = excluded.edges,
                    viewport = excluded.viewport,
                    updated_at = excluded.updated_at
                """,
                (
                    project_id,
                    json.dumps(nodes),
                    json.dumps(edges),
                    viewport.model_dump_json(),
                    time.time(),
                ),
            )
            await db.commit()
        logger.debug(
            "canvas_snapshot_saved",
            project_id=project_id,
            nodes=len(nodes),
            edges=len(edges),
        )

    async def save_viewport(self, project_id: str, viewport: Viewport) -> None:
        """Write only the viewport, creating an empty snapshot if needed."""
        viewport = sanitize_viewport(viewport)
        async with self._connect("save_viewport") as db:
            await db.execute(
                """
                INSERT INTO canvas_snapshots (project_id, viewport, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(project_id) DO UPDATE SET
                    viewport = excluded.viewport,
                    updated_at = excluded.updated_at
                """,
                (project_id, viewport.model_dump_json(), time.time()),
            )
            await db.commit()

    async def get_snapshot(self, project_id: str) -> CanvasSnapshot | None:
        async with self._connect("get_snapshot") as db:
            cursor = await db.execute(
                "SELECT * FROM canvas_snapshots WHERE project_id = ?", (project_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return CanvasSnapshot(
                project_id=row["project_id"],
                nodes=json.loads(row["nodes"]),
                edges=json.loads(row["edges"]),
                viewport=Viewport.model_validate_json(row["viewport"]),
                updated_at=row["updated_at"],
            )
