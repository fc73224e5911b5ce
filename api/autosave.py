"""
Autosave scheduler for the note editor.

Each editable field of the bound note has its own debounce timer. An edit
cancels the field's pending timer and, when the value differs from the
last value sent to the backend (saved, or still in flight), starts a new
timer. Comparing against in-flight values keeps a revert typed while a
write is on the wire from being dropped. When a timer fires, the latest
value is written as-is (no equality re-check at fire time).

Switching to another note (``bind``) or closing the scheduler cancels the
pending timers. A write that is already on the wire is never cancelled; it
runs to completion in its own task.

Failed writes are logged and reported through ``on_error``; they are not
retried. The field simply gets rescheduled on the next edit.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .shared.logger import get_logger

logger = get_logger(__name__)


class NoteField(str, Enum):
    TITLE = "title"
    BODY = "body"


# Shorter delay for the title since it's smaller
DEFAULT_DELAYS: Dict[NoteField, float] = {
    NoteField.TITLE: 0.5,
    NoteField.BODY: 1.0,
}

Writer = Callable[[str, NoteField, str], Awaitable[Any]]
ErrorHandler = Callable[[str, NoteField, BaseException], None]


class AutosaveScheduler:
    """Debounced writes for the fields of one note at a time.

    Args:
        writer: ``await writer(note_id, field, value)`` performs the save.
        delays: Quiescence delay per field in seconds.
        on_error: Called with ``(note_id, field, exc)`` when a write fails.
    """

    def __init__(
        self,
        writer: Writer,
        delays: Optional[Dict[NoteField, float]] = None,
        on_error: Optional[ErrorHandler] = None,
    ):
        self._writer = writer
        self._delays = {**DEFAULT_DELAYS, **(delays or {})}
        self._on_error = on_error
        self.note_id: Optional[str] = None
        self._saved: Dict[NoteField, str] = {}
        # last value handed to the writer per field, until that write returns
        self._sent: Dict[NoteField, str] = {}
        self._values: Dict[NoteField, str] = {}
        self._timers: Dict[NoteField, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        self.writes_issued = 0

    # ------------------------------------------------------------------ state

    def bind(self, note_id: Optional[str], saved: Optional[Dict[NoteField, Optional[str]]] = None) -> None:
        """Point the editor at ``note_id`` with its last-saved field values."""
        if note_id != self.note_id:
            self.cancel_pending()
            self._values = {}
            self._sent = {}
        self.note_id = note_id
        self._saved = {field: value or "" for field, value in (saved or {}).items()}
        for field, value in self._saved.items():
            # rebinding the same note keeps edits that are still waiting to be written
            if not self.has_pending(field):
                self._values[field] = value

    def value(self, field: NoteField) -> str:
        return self._values.get(field, "")

    def saved_value(self, field: NoteField) -> str:
        return self._saved.get(field, "")

    def has_pending(self, field: Optional[NoteField] = None) -> bool:
        if field is None:
            return any(not t.done() for t in self._timers.values())
        timer = self._timers.get(field)
        return timer is not None and not timer.done()

    # ------------------------------------------------------------------ edits

    def edit(self, field: NoteField, value: str) -> bool:
        """Record a local edit; returns True when a write was scheduled."""
        if self.note_id is None:
            raise RuntimeError("No note bound to the editor")

        self._values[field] = value
        self._cancel_timer(field)
        if value == self._sent.get(field, self._saved.get(field, "")):
            return False

        note_id = self.note_id
        self._timers[field] = asyncio.create_task(self._wait_and_fire(note_id, field, self._delays[field]))
        return True

    async def _wait_and_fire(self, note_id: str, field: NoteField, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(field, None)
        # the write gets its own task so later cancellations cannot reach it
        value = self._values.get(field, "")
        self._sent[field] = value
        task = asyncio.create_task(self._write(note_id, field, value))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _write(self, note_id: str, field: NoteField, value: str) -> None:
        self.writes_issued += 1
        try:
            await self._writer(note_id, field, value)
        except Exception as e:
            logger.error("Autosave of %s for note %s failed: %s", field.value, note_id, e)
            if self._on_error is not None:
                self._on_error(note_id, field, e)
            self._settle(note_id, field, value)
            return
        if note_id == self.note_id:
            self._saved[field] = value
        self._settle(note_id, field, value)

    def _settle(self, note_id: str, field: NoteField, value: str) -> None:
        # a later write of the same field may already be on the wire
        if note_id == self.note_id and self._sent.get(field) == value:
            del self._sent[field]

    # ------------------------------------------------------------ cancellation

    def _cancel_timer(self, field: NoteField) -> None:
        timer = self._timers.pop(field, None)
        if timer is not None and not timer.done():
            timer.cancel()

    def cancel_pending(self) -> None:
        """Cancel every timer that has not fired yet."""
        for field in list(self._timers):
            self._cancel_timer(field)

    async def drain(self) -> None:
        """Wait for writes already on the wire."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def close(self) -> None:
        self.cancel_pending()
        await self.drain()
