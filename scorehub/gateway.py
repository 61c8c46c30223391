"""Real-time sync gateway.

One WebSocket channel carries JSON envelopes:

    request   {"event": "create:scoreboard", "data": {...}, "requestId": "r1"}
    reply     {"event": "scoreboards:response", "requestId": "r1", "success": true,
               "data": {...}, "timestamp": "..."}
    broadcast {"event": "scoreboard:created", "data": {...}, "timestamp": "..."}

The gateway is the only component that broadcasts. It subscribes to the
change notifications of both stores, so a mutation made over HTTP reaches
WebSocket subscribers exactly like one made over the socket itself. For
socket requests the broadcasts are held back until the requester has its
reply, and are dropped if the request fails.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from scorehub import events
from scorehub.auth import check_token
from scorehub.errors import NotFoundError, ProtocolError
from scorehub.events import ChangeEvent
from scorehub.log import get_logger
from scorehub.match_store import MatchStore
from scorehub.models import (
    DeleteScoreboardRequest,
    MatchData,
    ScoreboardCreate,
    ScoreboardRef,
    UpdateTennisMatchRequest,
    to_wire,
)
from scorehub.scoreboard_store import ScoreboardStore

log = get_logger("scorehub.gateway")

# Requests
GET_SCOREBOARDS = "get:scoreboards"
CREATE_SCOREBOARD = "create:scoreboard"
DELETE_SCOREBOARD = "delete:scoreboard"
GET_TENNIS_MATCH = "get:tennis:match"
UPDATE_TENNIS_MATCH = "update:tennis:match"

# Replies
SCOREBOARDS_RESPONSE = "scoreboards:response"
TENNIS_MATCH_RESPONSE = "tennis:match:response"
ERROR_RESPONSE = "error:response"

# Broadcasts
SCOREBOARD_CREATED = "scoreboard:created"
SCOREBOARD_UPDATED = "scoreboard:updated"
SCOREBOARD_DELETED = "scoreboard:deleted"
TENNIS_MATCH_CREATED = "tennis:match:created"
TENNIS_MATCH_UPDATED = "tennis:match:updated"
TENNIS_MATCH_DELETED = "tennis:match:deleted"

OUTBOX_SIZE = 256

_deferred: ContextVar[Optional[List[Dict[str, Any]]]] = ContextVar("scorehub_deferred_broadcasts", default=None)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def envelope(event: str, data: Any = None, **extra: Any) -> Dict[str, Any]:
    message = {"event": event, "data": data}
    message.update(extra)
    message["timestamp"] = _timestamp()
    return message


class ConnectionManager:
    """Registry of live sockets keyed by a short connection id.

    Each socket gets its own bounded outbox drained by a writer task, so
    `send` and `broadcast` only enqueue and never wait on client I/O. A
    connection whose outbox is full, or whose send fails, is dropped.
    """

    def __init__(self, outbox_size: int = OUTBOX_SIZE) -> None:
        self.active_connections: Dict[str, WebSocket] = {}
        self.outbox_size = outbox_size
        self._outboxes: Dict[str, asyncio.Queue] = {}
        self._writers: Dict[str, asyncio.Task] = {}

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = uuid.uuid4().hex[:12]
        outbox: asyncio.Queue = asyncio.Queue(maxsize=self.outbox_size)
        self.active_connections[connection_id] = websocket
        self._outboxes[connection_id] = outbox
        self._writers[connection_id] = asyncio.create_task(self._write_loop(connection_id, websocket, outbox))
        return connection_id

    def _forget(self, connection_id: str) -> Optional[asyncio.Task]:
        self.active_connections.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)
        return self._writers.pop(connection_id, None)

    def disconnect(self, connection_id: str) -> None:
        writer = self._forget(connection_id)
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()

    async def _write_loop(self, connection_id: str, websocket: WebSocket, outbox: asyncio.Queue) -> None:
        while True:
            message = await outbox.get()
            try:
                await websocket.send_json(message)
            except Exception as e:
                log.warning(f"Dropping connection {connection_id}: {e}")
                self._forget(connection_id)
                return
            finally:
                outbox.task_done()

    async def send(self, connection_id: str, message: Dict[str, Any]) -> None:
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        try:
            outbox.put_nowait(message)
        except asyncio.QueueFull:
            log.warning(f"Dropping connection {connection_id}: outbox full")
            self.disconnect(connection_id)

    async def broadcast(self, message: Dict[str, Any]) -> None:
        for connection_id in list(self.active_connections):
            await self.send(connection_id, message)

    async def drain(self) -> None:
        """Wait until every live outbox has been written out."""
        for outbox in list(self._outboxes.values()):
            await outbox.join()


Handler = Callable[[str, Dict[str, Any]], Awaitable[Tuple[str, Any]]]


class SyncGateway:
    def __init__(
        self,
        scoreboards: ScoreboardStore,
        matches: MatchStore,
        connections: Optional[ConnectionManager] = None,
    ) -> None:
        self.scoreboards = scoreboards
        self.matches = matches
        self.connections = connections or ConnectionManager()
        self._handlers: Dict[str, Tuple[str, str, Handler]] = {
            GET_SCOREBOARDS: ("GET_SCOREBOARDS_FAILED", "Failed to fetch scoreboards", self._get_scoreboards),
            CREATE_SCOREBOARD: ("CREATE_SCOREBOARD_FAILED", "Failed to create scoreboard", self._create_scoreboard),
            DELETE_SCOREBOARD: ("DELETE_SCOREBOARD_FAILED", "Failed to delete scoreboard", self._delete_scoreboard),
            GET_TENNIS_MATCH: ("GET_TENNIS_MATCH_FAILED", "Failed to fetch tennis match", self._get_tennis_match),
            UPDATE_TENNIS_MATCH: ("UPDATE_TENNIS_MATCH_FAILED", "Failed to update tennis match", self._update_tennis_match),
        }
        scoreboards.subscribe(self._on_scoreboard_change)
        matches.subscribe(self._on_match_change)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def serve(self, websocket: WebSocket, token: Optional[str]) -> None:
        """Run one connection until the client goes away."""
        connection_id = await self.connections.connect(websocket)
        log.info(f"Client connected: {connection_id}")
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                raw = frame.get("text")
                if raw is None:
                    await self._reply_error(connection_id, None, "INVALID_MESSAGE", "Only text frames are supported")
                    continue
                await self.handle_message(connection_id, raw, token)
        except WebSocketDisconnect:
            pass
        finally:
            self.connections.disconnect(connection_id)
            log.info(f"Client disconnected: {connection_id}")

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def _reply_error(
        self, connection_id: str, request_id: Optional[str], code: str, message: str, details: Any = None
    ) -> None:
        error = {"code": code, "message": message, "details": details}
        await self.connections.send(
            connection_id,
            envelope(ERROR_RESPONSE, None, requestId=request_id, success=False, error=error),
        )

    async def handle_message(self, connection_id: str, raw: str, token: Optional[str]) -> None:
        try:
            message = json.loads(raw)
        except ValueError as e:
            await self._reply_error(connection_id, None, "INVALID_MESSAGE", "Message is not valid JSON", str(e))
            return
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await self._reply_error(connection_id, None, "INVALID_MESSAGE", "Message must be an object with an event")
            return

        event = message["event"]
        request_id = message.get("requestId")
        data = message.get("data") or {}

        try:
            check_token(token)
        except ProtocolError as e:
            log.warning(f"Rejected {event} from {connection_id}: {e.message}")
            await self._reply_error(connection_id, request_id, e.code, e.message)
            return

        entry = self._handlers.get(event)
        if entry is None:
            await self._reply_error(connection_id, request_id, "UNKNOWN_EVENT", f"Unsupported event: {event}")
            return
        code, failure, handler = entry

        pending: List[Dict[str, Any]] = []
        marker = _deferred.set(pending)
        try:
            reply_event, result = await handler(connection_id, data)
        except Exception as e:
            log.warning(f"{event} failed for {connection_id}: {e}")
            await self._reply_error(connection_id, request_id, code, failure, str(e))
            return
        finally:
            _deferred.reset(marker)

        await self.connections.send(
            connection_id,
            envelope(reply_event, result, requestId=request_id, success=True),
        )
        for broadcast in pending:
            await self.connections.broadcast(broadcast)

    async def _get_scoreboards(self, connection_id: str, data: Dict[str, Any]) -> Tuple[str, Any]:
        return SCOREBOARDS_RESPONSE, [to_wire(s) for s in self.scoreboards.find_all()]

    async def _create_scoreboard(self, connection_id: str, data: Dict[str, Any]) -> Tuple[str, Any]:
        request = ScoreboardCreate.model_validate(data)
        scoreboard = await self.scoreboards.create(request.name)
        return SCOREBOARDS_RESPONSE, to_wire(scoreboard)

    async def _delete_scoreboard(self, connection_id: str, data: Dict[str, Any]) -> Tuple[str, Any]:
        request = DeleteScoreboardRequest.model_validate(data)
        success = await self.scoreboards.delete(request.id)
        if not success:
            # the store only notifies on a real delete; subscribers still hear about the id
            await self.emit_scoreboard_deleted(request.id)
        message = "Scoreboard deleted successfully" if success else "Scoreboard not found"
        return SCOREBOARDS_RESPONSE, {"success": success, "message": message}

    async def _get_tennis_match(self, connection_id: str, data: Dict[str, Any]) -> Tuple[str, Any]:
        request = ScoreboardRef.model_validate(data)
        return TENNIS_MATCH_RESPONSE, to_wire(self.matches.find_by_scoreboard(request.scoreboard_id))

    async def _update_tennis_match(self, connection_id: str, data: Dict[str, Any]) -> Tuple[str, Any]:
        """Update the scoreboard's existing match; never creates one."""
        request = UpdateTennisMatchRequest.model_validate(data)
        existing = self.matches.find_by_scoreboard(request.scoreboard_id)
        if existing is None:
            raise NotFoundError("No tennis match found for this scoreboard")

        fields = existing.model_dump(exclude={"id", "created_at", "updated_at"})
        fields.update(request.match_data.model_dump(exclude_none=True))
        fields["scoreboard_id"] = request.scoreboard_id
        match = await self.matches.update(existing.id, MatchData.model_validate(fields))
        return TENNIS_MATCH_RESPONSE, to_wire(match)

    # ------------------------------------------------------------------
    # Broadcasts
    # ------------------------------------------------------------------

    async def _emit_to_all(self, event: str, data: Any) -> None:
        message = envelope(event, data)
        pending = _deferred.get()
        if pending is not None:
            pending.append(message)
            return
        await self.connections.broadcast(message)

    async def emit_scoreboard_created(self, scoreboard: BaseModel) -> None:
        await self._emit_to_all(SCOREBOARD_CREATED, to_wire(scoreboard))

    async def emit_scoreboards_replaced(self, scoreboards: List[BaseModel]) -> None:
        await self._emit_to_all(SCOREBOARD_UPDATED, [to_wire(s) for s in scoreboards])

    async def emit_scoreboard_deleted(self, scoreboard_id: str) -> None:
        await self._emit_to_all(SCOREBOARD_DELETED, {"id": scoreboard_id})

    async def emit_match_created(self, match: BaseModel) -> None:
        await self._emit_to_all(TENNIS_MATCH_CREATED, to_wire(match))

    async def emit_match_updated(self, match: BaseModel) -> None:
        await self._emit_to_all(TENNIS_MATCH_UPDATED, to_wire(match))

    async def emit_match_deleted(self, match_id: str) -> None:
        await self._emit_to_all(TENNIS_MATCH_DELETED, {"id": match_id})

    async def _on_scoreboard_change(self, change: ChangeEvent) -> None:
        if change.kind == events.CREATED:
            await self.emit_scoreboard_created(change.record)
        elif change.kind == events.DELETED:
            await self.emit_scoreboard_deleted(change.record.id)
        elif change.kind == events.REPLACED:
            await self.emit_scoreboards_replaced(change.record)

    async def _on_match_change(self, change: ChangeEvent) -> None:
        if change.kind == events.CREATED:
            await self.emit_match_created(change.record)
        elif change.kind == events.UPDATED:
            await self.emit_match_updated(change.record)
        elif change.kind == events.DELETED:
            await self.emit_match_deleted(change.record.id)
