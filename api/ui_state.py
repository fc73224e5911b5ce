"""UI state API endpoints: pane layout, dashboard search and theme."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel

from .app_config import app_config
from .context import SessionContext, get_session_context
from .panes import Viewport

router = APIRouter(prefix="/ui", tags=["ui"])


class ViewportInfo(BaseModel):
    viewport_width: Optional[int] = None
    is_desktop: Optional[bool] = None


class PaneTogglesBody(BaseModel):
    left: bool
    right: bool


class SearchBody(BaseModel):
    query: str = ""


class ThemeBody(BaseModel):
    dark_mode: bool


def _viewport(viewport_width: Optional[int], is_desktop: Optional[bool]) -> Viewport:
    if is_desktop is not None:
        return Viewport.DESKTOP if is_desktop else Viewport.MOBILE
    if viewport_width is not None:
        return Viewport.from_width(viewport_width)
    return Viewport.DESKTOP


def _panes(context: SessionContext, viewport: Viewport) -> dict:
    toggles = context.state.pane_toggles
    return {
        "viewport": viewport.value,
        "is_desktop": viewport.is_desktop,
        "toggles": {"left": toggles.left, "right": toggles.right},
        **context.state.pane_visibility(viewport.is_desktop).to_dict(),
    }


@router.get("/state")
async def get_ui_state(context: SessionContext = Depends(get_session_context)):
    return context.state.snapshot()


@router.get("/panes")
async def get_panes(
    viewport_width: Optional[int] = Query(None, ge=0),
    is_desktop: Optional[bool] = None,
    context: SessionContext = Depends(get_session_context),
):
    """Which panes the project page shows at this viewport."""
    return _panes(context, _viewport(viewport_width, is_desktop))


@router.put("/panes")
async def set_panes(body: PaneTogglesBody, context: SessionContext = Depends(get_session_context)):
    context.state.set_pane_toggles(body.left, body.right)
    return {"left": body.left, "right": body.right}


@router.post("/panes/notes")
async def activate_notes(body: ViewportInfo, context: SessionContext = Depends(get_session_context)):
    """Notes button: toggles the notes pane on desktop, shows it alone elsewhere."""
    viewport = _viewport(body.viewport_width, body.is_desktop)
    context.state.activate_notes(viewport.is_desktop)
    return _panes(context, viewport)


@router.post("/panes/links")
async def activate_links(body: ViewportInfo, context: SessionContext = Depends(get_session_context)):
    """Links button: toggles the links pane on desktop, shows it alone elsewhere."""
    viewport = _viewport(body.viewport_width, body.is_desktop)
    context.state.activate_links(viewport.is_desktop)
    return _panes(context, viewport)


@router.put("/search")
async def set_search(body: SearchBody, context: SessionContext = Depends(get_session_context)):
    context.state.set_search_query(body.query)
    return {"search": context.state.search_query}


@router.get("/theme")
async def get_theme(
    prefers_color_scheme: Optional[str] = Header(None, alias="Sec-CH-Prefers-Color-Scheme"),
):
    """Stored dark-mode flag, defaulting to the browser's colour-scheme hint."""
    system_dark = (prefers_color_scheme or "").strip('"').lower() == "dark"
    return {"dark_mode": app_config.get_dark_mode(system_prefers_dark=system_dark)}


@router.put("/theme")
async def set_theme(body: ThemeBody):
    saved = app_config.set_dark_mode(body.dark_mode)
    return {"dark_mode": body.dark_mode, "saved": saved}
