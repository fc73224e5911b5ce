"""
Centralized logging for the EX_P02 webapp backend.

Every module logs through the standard library ``logging`` package with a
single format configured once at startup.

Usage:
    from api.shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Session %s signed in", session_id)
    logger.warning("Reorder left %d rows unchanged", len(failed))
    logger.error("Autosave failed for note %s: %s", note_id, err)
"""

import logging
import os
import sys

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for the webapp backend.

    The level defaults to ``EXP02_LOG_LEVEL`` (or INFO). Call once at startup
    (main.py). Subsequent calls are no-ops.
    """
    global _configured
    if _configured:
        return

    level = level or os.environ.get("EXP02_LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    # httpx logs every request at INFO; keep backend chatter at WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger scoped to the webapp namespace.

    Args:
        name: Module name (typically ``__name__``).
    """
    return logging.getLogger(name)
