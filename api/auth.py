"""Authentication API endpoints.

Signing in creates a session context and hands the browser a session cookie;
signing out tears the context down again.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from .context import (
    SESSION_COOKIE,
    SessionContext,
    SessionRegistry,
    get_registry,
    get_session_context,
    get_user_context,
    session_id_from_request,
)
from .schemas import AuthSession
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class SignInRequest(BaseModel):
    email: str
    password: str


class TokenCallback(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None


def _set_session_cookie(response: Response, context: SessionContext) -> None:
    response.set_cookie(SESSION_COOKIE, context.session_id, httponly=True, samesite="lax")


def _context_for(request: Request, registry: SessionRegistry) -> SessionContext:
    return registry.get(session_id_from_request(request)) or registry.create()


@router.post("/sign-in")
async def sign_in(
    body: SignInRequest,
    response: Response,
    registry: SessionRegistry = Depends(get_registry),
):
    """Sign in with email and password."""
    context = registry.create()
    try:
        user = await context.sign_in_with_password(body.email, body.password)
    except Exception:
        await registry.close(context.session_id)
        raise
    _set_session_cookie(response, context)
    return {"session_id": context.session_id, "user": user.to_profile()}


@router.get("/oauth/{provider}")
async def oauth_url(
    provider: str,
    request: Request,
    response: Response,
    redirect_to: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    """URL to send the browser to for third-party sign-in.

    The session cookie is issued now so the callback lands in the same context.
    """
    context = _context_for(request, registry)
    _set_session_cookie(response, context)
    return {
        "provider": provider,
        "url": context.backend.oauth_authorize_url(provider, redirect_to=redirect_to),
        "session_id": context.session_id,
    }


@router.post("/callback")
async def oauth_callback(
    body: TokenCallback,
    request: Request,
    response: Response,
    registry: SessionRegistry = Depends(get_registry),
):
    """Adopt the tokens returned by the third-party sign-in redirect."""
    context = _context_for(request, registry)
    user = await context.adopt_session(AuthSession(**body.model_dump()))
    _set_session_cookie(response, context)
    return {"session_id": context.session_id, "user": user.to_profile()}


@router.post("/refresh")
async def refresh(context: SessionContext = Depends(get_user_context)):
    session = await context.refresh()
    return {"expires_in": session.expires_in, "expires_at": session.expires_at}


@router.post("/sign-out")
async def sign_out(
    response: Response,
    context: SessionContext = Depends(get_session_context),
    registry: SessionRegistry = Depends(get_registry),
):
    """Sign out and drop the session context (pending autosaves are cancelled)."""
    await registry.close(context.session_id, sign_out=True)
    response.delete_cookie(SESSION_COOKIE)
    logger.info("Session %s signed out", context.session_id)
    return {"success": True}


@router.get("/me")
async def current_user(context: SessionContext = Depends(get_user_context)):
    return context.user.to_profile()


@router.get("/session")
async def session_info(context: SessionContext = Depends(get_session_context)):
    return context.describe()
