"""
WebSocket push channel for the notes webapp.

Pushes per-session change notifications to the browser: query cache
updates and invalidations (so an open page knows to re-read), autosave
results, and session lifecycle events.

Each signed-in session broadcasts on its own channel, ``session:{id}``.
Clients may also subscribe to extra channels by sending
``{"type": "subscribe", "data": {"channel": ...}}``.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from fastapi import WebSocket

from api.shared.logger import get_logger

logger = get_logger(__name__)

SYSTEM_CHANNEL = "system"


class MessageType(str, Enum):
    """Kinds of pushed and received frames."""

    # Query cache
    QUERY_UPDATED = "query_updated"
    QUERY_INVALIDATED = "query_invalidated"
    QUERY_ERROR = "query_error"
    QUERY_REMOVED = "query_removed"

    # Editor
    NOTE_SAVED = "note_saved"
    AUTOSAVE_FAILED = "autosave_failed"

    # Session
    SESSION_ENDED = "session_ended"

    # Protocol
    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    CONNECTED = "connected"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"


def session_channel(session_id: str) -> str:
    return f"session:{session_id}"


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class WebSocketMessage:
    """One frame on the wire: ``{type, channel, data, timestamp}``."""

    type: MessageType
    channel: str = SYSTEM_CHANNEL
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None

    def __post_init__(self):
        self.timestamp = self.timestamp or _now()

    def to_json(self) -> str:
        payload = {
            "type": self.type.value,
            "channel": self.channel,
            "data": self.data,
            "timestamp": self.timestamp,
        }
        return json.dumps(payload)

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        """Parse a client frame; raises ValueError on anything malformed."""
        raw = json.loads(json_str)
        if not isinstance(raw, dict):
            raise ValueError("message must be a JSON object")
        return cls(
            type=MessageType(raw.get("type", MessageType.ERROR.value)),
            channel=raw.get("channel") or SYSTEM_CHANNEL,
            data=raw.get("data") or {},
            timestamp=raw.get("timestamp"),
        )


@dataclass(eq=False)
class Connection:
    """Bookkeeping for one accepted socket."""

    websocket: WebSocket
    client_id: Optional[str] = None
    connected_at: str = field(default_factory=_now)
    channels: Set[str] = field(default_factory=set)


class WebSocketManager:
    """
    Tracks open sockets and the channels each one listens on.

    Sends that fail drop the socket; callers never see the exception.
    """

    def __init__(self):
        self._by_socket: Dict[WebSocket, Connection] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------ membership

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        """Accept ``websocket`` and greet it with a ``connected`` frame."""
        await websocket.accept()
        async with self._lock:
            self._by_socket[websocket] = Connection(websocket, client_id)
        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.CONNECTED, data={"client_id": client_id}),
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._by_socket.pop(websocket, None)

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            connection = self._by_socket.get(websocket)
            if connection is not None:
                connection.channels.add(channel)
        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.SUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            connection = self._by_socket.get(websocket)
            if connection is not None:
                connection.channels.discard(channel)
        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.UNSUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    def _listeners(self, channel: Optional[str]) -> List[WebSocket]:
        return [
            c.websocket
            for c in self._by_socket.values()
            if channel is None or channel in c.channels
        ]

    # ---------------------------------------------------------------- sending

    async def send_to_connection(self, websocket: WebSocket, message: WebSocketMessage) -> bool:
        """Send to one socket; False (and the socket dropped) when it is gone."""
        try:
            await websocket.send_text(message.to_json())
        except Exception as e:
            logger.warning("Dropping WebSocket after failed send: %s", e)
            await self.disconnect(websocket)
            return False
        return True

    async def _fan_out(self, targets: Iterable[WebSocket], message: WebSocketMessage) -> int:
        payload = message.to_json()
        delivered = 0
        dead = []
        for websocket in targets:
            try:
                await websocket.send_text(payload)
            except Exception:
                dead.append(websocket)
            else:
                delivered += 1
        for websocket in dead:
            await self.disconnect(websocket)
        return delivered

    async def broadcast_to_channel(self, channel: str, message: WebSocketMessage) -> int:
        """Send to every socket listening on ``channel``; returns how many got it."""
        async with self._lock:
            targets = self._listeners(channel)
        return await self._fan_out(targets, message)

    async def broadcast_to_all(self, message: WebSocketMessage) -> int:
        async with self._lock:
            targets = self._listeners(None)
        return await self._fan_out(targets, message)

    # ------------------------------------------------------------------ stats

    def get_channel_subscribers(self, channel: str) -> int:
        return len(self._listeners(channel))

    def get_connection_count(self) -> int:
        return len(self._by_socket)

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {
                "client_id": c.client_id,
                "connected_at": c.connected_at,
                "channels": sorted(c.channels),
            }
            for c in self._by_socket.values()
        ]

    # --------------------------------------------------------------- incoming

    async def handle_message(self, websocket: WebSocket, message_text: str) -> Optional[WebSocketMessage]:
        """
        React to a client frame.

        Returns the reply to send back, or None when the frame needs no
        direct answer (subscription changes acknowledge themselves).
        """
        try:
            message = WebSocketMessage.from_json(message_text)
        except ValueError as e:
            return WebSocketMessage(type=MessageType.ERROR, data={"error": f"Invalid message format: {e}"})

        if message.type == MessageType.PING:
            return WebSocketMessage(type=MessageType.PONG, data={"timestamp": _now()})

        channel = message.data.get("channel")
        if channel and message.type == MessageType.SUBSCRIBE:
            await self.subscribe(websocket, channel)
        elif channel and message.type == MessageType.UNSUBSCRIBE:
            await self.unsubscribe(websocket, channel)
        return None


# Shared by the HTTP routers and the session contexts
ws_manager = WebSocketManager()


# ============= Session notifications =============


async def _publish(session_id: str, message_type: MessageType, data: Dict[str, Any]) -> int:
    channel = session_channel(session_id)
    return await ws_manager.broadcast_to_channel(
        channel, WebSocketMessage(type=message_type, channel=channel, data=data)
    )


async def notify_query_event(session_id: str, event: str, key: Sequence[Any]) -> None:
    """
    Tell a session's pages that one of its cached queries changed.

    Args:
        session_id: Session identifier
        event: Cache event name ("updated", "invalidated", "error", "removed")
        key: The query key, sent as a JSON list
    """
    await _publish(session_id, MessageType(f"query_{event}"), {"key": list(key)})


async def notify_note_saved(session_id: str, note_id: str, field_name: str) -> None:
    await _publish(session_id, MessageType.NOTE_SAVED, {"note_id": note_id, "field": field_name})


async def notify_autosave_failed(session_id: str, note_id: str, field_name: str, error: str) -> None:
    """Report a failed autosave write. The edit stays local until the next change."""
    await _publish(
        session_id,
        MessageType.AUTOSAVE_FAILED,
        {"note_id": note_id, "field": field_name, "error": error},
    )


async def notify_session_ended(session_id: str) -> None:
    await _publish(session_id, MessageType.SESSION_ENDED, {"session_id": session_id})
