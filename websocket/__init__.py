"""
WebSocket module for the notes webapp.

Pushes per-session query cache and autosave notifications to open pages.
"""

from .manager import (
    WebSocketManager,
    WebSocketMessage,
    MessageType,
    ws_manager,
    session_channel,
    notify_query_event,
    notify_note_saved,
    notify_autosave_failed,
    notify_session_ended,
)

__all__ = [
    "WebSocketManager",
    "WebSocketMessage",
    "MessageType",
    "ws_manager",
    "session_channel",
    "notify_query_event",
    "notify_note_saved",
    "notify_autosave_failed",
    "notify_session_ended",
]
