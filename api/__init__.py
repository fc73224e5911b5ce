"""
API package for the notes webapp FastAPI backend.

This package provides:
- REST endpoints for auth, projects, notes, links, tags, UI state and
  system information (auth.py, projects.py, notes.py, links.py, tags.py,
  ui_state.py, system.py)
- The hosted backend client and data gateway (backend.py, gateway.py)
- The per-session query cache, UI state and autosave scheduler
  (query_cache.py, session_state.py, autosave.py), wired together by
  the session context (context.py)
"""

from .context import SessionContext, SessionRegistry
from .gateway import DataGateway
from .query_cache import QueryCache

__all__ = [
    "SessionContext",
    "SessionRegistry",
    "DataGateway",
    "QueryCache",
]
