"""
Real-time chat over WebSocket.

Every frame is a JSON envelope {"event": name, "data": payload}.

Client events:
    join-session   data: "<sessionId>" (or {"sessionId": ...})
    send-message   data: {"message": ..., "sessionId": ...}

Server events:
    joined             data: sessionId
    typing             data: true/false, to the other members of the channel
    message-response   data: {user, bot, timestamp}, to every member
    error              data: message string, to the sender only

A channel is the set of sockets that joined the same session id.
"""

import json
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from logger import get_logger, log_context
from models import MessageResponse
from rag_service import RAGService

logger = get_logger(__name__)

MESSAGE_FAILED = "Failed to process message"
INVALID_FRAME = "Invalid message format"


class ChannelManager:
    """Tracks which sockets belong to which session channel."""

    def __init__(self):
        self._channels: Dict[str, Set[WebSocket]] = {}
        self._memberships: Dict[WebSocket, Set[str]] = {}

    def join(self, channel: str, websocket: WebSocket) -> None:
        self._channels.setdefault(channel, set()).add(websocket)
        self._memberships.setdefault(websocket, set()).add(channel)

    def leave(self, channel: str, websocket: WebSocket) -> None:
        members = self._channels.get(channel)
        if members is not None:
            members.discard(websocket)
            if not members:
                del self._channels[channel]
        channels = self._memberships.get(websocket)
        if channels is not None:
            channels.discard(channel)
            if not channels:
                del self._memberships[websocket]

    def leave_all(self, websocket: WebSocket) -> None:
        for channel in list(self._memberships.get(websocket, ())):
            self.leave(channel, websocket)

    def members(self, channel: str) -> Set[WebSocket]:
        return set(self._channels.get(channel, ()))

    def channels_of(self, websocket: WebSocket) -> Set[str]:
        return set(self._memberships.get(websocket, ()))

    async def emit(self, websocket: WebSocket, event: str, data: Any) -> bool:
        """Send one envelope to one socket. Returns False if the socket is gone."""
        try:
            await websocket.send_json({"event": event, "data": data})
            return True
        except (WebSocketDisconnect, RuntimeError) as e:
            # Starlette raises RuntimeError when sending on a closed socket
            logger.debug(f"Dropping '{event}' for closed socket: {type(e).__name__}")
            self.leave_all(websocket)
            return False

    async def broadcast(
        self,
        channel: str,
        event: str,
        data: Any,
        exclude: Optional[WebSocket] = None
    ) -> int:
        """
        Send an envelope to every member of a channel.

        Returns:
            Number of sockets the event was delivered to
        """
        delivered = 0
        for websocket in self.members(channel):
            if websocket is exclude:
                continue
            if await self.emit(websocket, event, data):
                delivered += 1
        return delivered


class RealtimeGateway:
    """Runs the per-connection event loop for the /ws endpoint."""

    def __init__(self, rag_service: RAGService, channels: ChannelManager):
        self.rag_service = rag_service
        self.channels = channels

    async def handle(self, websocket: WebSocket) -> None:
        await websocket.accept()
        with log_context(client=_client_label(websocket)):
            logger.info("Client connected")
            try:
                while True:
                    raw = await websocket.receive_text()
                    await self.dispatch(websocket, raw)
            except WebSocketDisconnect:
                logger.info("Client disconnected")
            finally:
                self.channels.leave_all(websocket)

    async def dispatch(self, websocket: WebSocket, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            await self.channels.emit(websocket, "error", INVALID_FRAME)
            return
        if not isinstance(frame, dict):
            await self.channels.emit(websocket, "error", INVALID_FRAME)
            return

        event = frame.get("event")
        data = frame.get("data")
        if event == "join-session":
            await self.on_join_session(websocket, data)
        elif event == "send-message":
            await self.on_send_message(websocket, data)
        else:
            logger.warning("Unknown event", event=str(event)[:40])
            await self.channels.emit(websocket, "error", f"Unknown event: {event}")

    async def on_join_session(self, websocket: WebSocket, data: Any) -> None:
        session_id = data.get("sessionId") if isinstance(data, dict) else data
        if not isinstance(session_id, str) or not session_id.strip():
            await self.channels.emit(websocket, "error", "sessionId is required")
            return

        self.channels.join(session_id, websocket)
        logger.info("Client joined session", session_id=session_id)
        await self.channels.emit(websocket, "joined", session_id)

    async def on_send_message(self, websocket: WebSocket, data: Any) -> None:
        message = data.get("message") if isinstance(data, dict) else None
        session_id = data.get("sessionId") if isinstance(data, dict) else None
        if not _present(message) or not _present(session_id):
            await self.channels.emit(websocket, "error", "Message and sessionId are required")
            return

        await self.channels.broadcast(session_id, "typing", True, exclude=websocket)
        try:
            entry = await self.rag_service.chat(message, session_id)
        except Exception as e:
            logger.error(
                f"Socket error: {type(e).__name__}: {e}",
                exc_info=True,
                session_id=session_id
            )
            entry = None
        finally:
            await self.channels.broadcast(session_id, "typing", False, exclude=websocket)

        if entry is None:
            await self.channels.emit(websocket, "error", MESSAGE_FAILED)
            return

        payload = MessageResponse.from_entry(entry).model_dump(mode="json")
        await self.channels.broadcast(session_id, "message-response", payload)


def _present(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _client_label(websocket: WebSocket) -> str:
    client = websocket.client
    return f"{client.host}:{client.port}" if client else "unknown"
