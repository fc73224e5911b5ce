"""
System API routes for the notes webapp.

Health, runtime information, backend configuration status and the recent
error log.
"""

import platform
import sys
from collections import deque
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Deque, Dict, Optional

from fastapi import APIRouter, Depends

from .context import SessionRegistry, get_registry
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

MAX_ERROR_LOG = 200

_error_log: Deque[Dict[str, Any]] = deque(maxlen=MAX_ERROR_LOG)


def log_error(
    endpoint: str,
    message: str,
    level: str = "error",
    details: Optional[str] = None,
    exc: Optional[BaseException] = None,
) -> Dict[str, Any]:
    """Record an error in the in-memory log and the process log.

    Args:
        endpoint: Request path (or component) that failed.
        message: Short description.
        level: "error", "warning" or "critical".
        details: Extra text, e.g. the backend's error code.
        exc: Exception, logged with its traceback at error level and above.
    """
    entry = {
        "timestamp": datetime.now().isoformat(),
        "level": level,
        "endpoint": endpoint,
        "message": message,
        "details": details,
        "exception": type(exc).__name__ if exc is not None else None,
    }
    _error_log.append(entry)

    if level == "warning":
        logger.warning("%s: %s", endpoint, message)
    else:
        logger.error("%s: %s", endpoint, message, exc_info=exc if level == "critical" else None)
    return entry


def clear_error_log() -> None:
    _error_log.clear()


def _get_package_versions() -> Dict[str, str]:
    """Get versions of the web stack packages."""
    packages = {}
    for name in ("fastapi", "pydantic", "uvicorn", "httpx", "orjson", "platformdirs"):
        try:
            packages[name] = version(name)
        except PackageNotFoundError:
            pass
    return packages


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "message": "notes webapp is running",
    }


@router.get("/system/info")
async def system_info():
    """Get system and environment information."""
    return {
        "python": {
            "version": sys.version,
            "platform": sys.platform,
        },
        "system": {
            "os": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
        "packages": _get_package_versions(),
    }


@router.get("/system/status")
async def system_status(registry: SessionRegistry = Depends(get_registry)):
    """Backend configuration and live session count."""
    return {
        "status": {
            "backend": registry.settings.to_dict(),
            "backend_configured": registry.settings.is_configured,
            "sessions": len(registry),
            "recent_errors": len(_error_log),
        }
    }


@router.get("/system/errors")
async def recent_errors(limit: int = 50):
    """Most recent errors first."""
    entries = list(_error_log)[-limit:] if limit > 0 else []
    return {"errors": list(reversed(entries)), "total": len(_error_log)}


@router.delete("/system/errors")
async def clear_errors():
    clear_error_log()
    return {"success": True}
