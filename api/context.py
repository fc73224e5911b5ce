"""
Session contexts.

A ``SessionContext`` bundles everything one signed-in browser session owns:
its backend client (carrying the session's tokens), the data gateway, the
query cache, the UI state, the data sync layer and the autosave scheduler.
Contexts are created explicitly on sign-in and torn down on sign-out or at
shutdown by the ``SessionRegistry``; nothing here is a module-level
singleton.

Cache events and autosave results are forwarded to the session's WebSocket
channel so open pages can re-read.
"""

from __future__ import annotations

import asyncio
import secrets
from typing import Any, Coroutine, Dict, Optional, Set

import httpx
from fastapi import Depends, HTTPException, Request

from websocket import notify_autosave_failed, notify_note_saved, notify_query_event, notify_session_ended

from .app_config import BackendSettings
from .autosave import AutosaveScheduler, NoteField
from .backend import BackendClient
from .data_sync import DataSync
from .gateway import DataGateway
from .query_cache import QueryCache, QueryEvent
from .query_keys import QueryKey
from .schemas import AuthSession, Note, User
from .session_state import SessionState
from .shared.errors import NotAuthenticatedError
from .shared.logger import get_logger

logger = get_logger(__name__)

SESSION_COOKIE = "exp02_session"
SESSION_HEADER = "X-Session-Id"


class SessionContext:
    """All per-session objects, wired together."""

    def __init__(
        self,
        session_id: str,
        settings: BackendSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        autosave_delays: Optional[Dict[NoteField, float]] = None,
    ):
        self.session_id = session_id
        self.backend = BackendClient(settings, transport=transport)
        self.gateway = DataGateway(self.backend)
        self.cache = QueryCache(stale_time=settings.stale_time, gc_time=settings.gc_time)
        self.state = SessionState(self.cache)
        self.sync = DataSync(self.gateway, self.cache, self.state)
        self.autosave = AutosaveScheduler(
            self._save_field,
            delays=autosave_delays,
            on_error=self._on_autosave_error,
        )
        self.user: Optional[User] = None
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = self.cache.subscribe(self._on_query_event)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.backend.session is not None

    def require_user(self) -> User:
        if not self.is_authenticated:
            raise NotAuthenticatedError()
        return self.user

    # ------------------------------------------------------------------- auth

    async def sign_in_with_password(self, email: str, password: str) -> User:
        session = await self.backend.sign_in_with_password(email, password)
        self.user = session.user or await self.backend.get_user()
        logger.info("Session %s signed in as %s", self.session_id, self.user.id)
        return self.user

    async def adopt_session(self, session: AuthSession) -> User:
        """Take over tokens obtained elsewhere (third-party sign-in callback)."""
        self.backend.set_session(session)
        try:
            self.user = await self.backend.get_user()
        except Exception:
            self.backend.set_session(None)
            raise
        logger.info("Session %s adopted tokens for %s", self.session_id, self.user.id)
        return self.user

    async def refresh(self) -> AuthSession:
        session = await self.backend.refresh_session()
        if session.user is not None:
            self.user = session.user
        return session

    # ----------------------------------------------------------------- editor

    def bind_current_note(self) -> Optional[Note]:
        """Point the autosave scheduler at the currently selected note."""
        note = self.state.current_note()
        if note is None:
            self.autosave.bind(None)
            return None
        self.autosave.bind(note.id, {NoteField.TITLE: note.title, NoteField.BODY: note.body})
        return note

    async def _save_field(self, note_id: str, field: NoteField, value: str) -> Any:
        note = await self.sync.save_note_field(note_id, field, value)
        self._spawn(notify_note_saved(self.session_id, note_id, field.value))
        return note

    def _on_autosave_error(self, note_id: str, field: NoteField, exc: BaseException) -> None:
        self._spawn(notify_autosave_failed(self.session_id, note_id, field.value, str(exc)))

    # ----------------------------------------------------------------- events

    def _on_query_event(self, event: QueryEvent, key: QueryKey) -> None:
        self._spawn(notify_query_event(self.session_id, event.value, key))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            # no loop: nobody can be listening either
            coro.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -------------------------------------------------------------- lifecycle

    async def aclose(self, sign_out: bool = False) -> None:
        """Tear the context down.

        Pending autosave timers are cancelled; writes already on the wire are
        allowed to finish before the backend client is closed.
        """
        await self.autosave.close()
        self._unsubscribe()
        await self.cache.aclose()
        try:
            if sign_out:
                await self.backend.sign_out()
        finally:
            self.user = None
            await self.backend.aclose()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await notify_session_ended(self.session_id)

    def describe(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "authenticated": self.is_authenticated,
            "user": self.user.to_profile() if self.user else None,
            "state": self.state.snapshot(),
            "cache": self.cache.stats(),
        }


class SessionRegistry:
    """Creates, looks up and tears down session contexts.

    Args:
        settings: Backend settings shared by every context.
        transport: Optional httpx transport handed to every backend client.
        autosave_delays: Per-field debounce override (tests use short delays).
    """

    def __init__(
        self,
        settings: Optional[BackendSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        autosave_delays: Optional[Dict[NoteField, float]] = None,
    ):
        self.settings = settings or BackendSettings.from_env()
        self.transport = transport
        self.autosave_delays = autosave_delays
        self._contexts: Dict[str, SessionContext] = {}

    def __len__(self) -> int:
        return len(self._contexts)

    def create(self) -> SessionContext:
        session_id = secrets.token_urlsafe(24)
        context = SessionContext(
            session_id,
            self.settings,
            transport=self.transport,
            autosave_delays=self.autosave_delays,
        )
        self._contexts[session_id] = context
        logger.debug("Created session context %s", session_id)
        return context

    def get(self, session_id: Optional[str]) -> Optional[SessionContext]:
        if not session_id:
            return None
        return self._contexts.get(session_id)

    async def close(self, session_id: str, sign_out: bool = False) -> bool:
        context = self._contexts.pop(session_id, None)
        if context is None:
            return False
        await context.aclose(sign_out=sign_out)
        logger.debug("Closed session context %s", session_id)
        return True

    async def aclose(self) -> None:
        for session_id in list(self._contexts):
            try:
                await self.close(session_id)
            except Exception as e:
                logger.error("Error closing session %s: %s", session_id, e)


# ============= FastAPI dependencies =============


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def session_id_from_request(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE) or request.headers.get(SESSION_HEADER)


def get_session_context(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionContext:
    """Context of the calling browser session; 401 when there is none."""
    context = registry.get(session_id_from_request(request))
    if context is None:
        raise NotAuthenticatedError("No active session")
    return context


def get_user_context(context: SessionContext = Depends(get_session_context)) -> SessionContext:
    """Like ``get_session_context`` but also requires a signed-in user."""
    context.require_user()
    return context


def require_confirmation(confirm: bool, prompt: str) -> None:
    """Destructive routes run only with ``?confirm=true``; 409 otherwise."""
    if not confirm:
        raise HTTPException(status_code=409, detail=prompt)
