"""
Shared utilities for the notes webapp API: logging setup and the error
taxonomy used across the gateway, the sync layer and the routers.
"""
from .errors import GatewayError, NotAuthenticatedError, ReorderError
from .logger import get_logger, setup_logging

__all__ = [
    "GatewayError",
    "NotAuthenticatedError",
    "ReorderError",
    "get_logger",
    "setup_logging",
]
