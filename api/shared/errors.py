"""
Error taxonomy shared by the gateway, the sync layer and the routers.

- ``GatewayError``: the hosted backend (or the network) rejected a call.
- ``NotAuthenticatedError``: no valid session / user for the request.
- ``ReorderError``: a batch order-index rewrite partially failed.

Validation errors never reach this module: request bodies are validated by
pydantic before anything is dispatched to the backend.
"""

from __future__ import annotations


class GatewayError(Exception):
    """A backend round trip failed."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def http_status(self) -> int:
        """Status to report to our own clients.

        Backend 4xx responses are passed through (they describe the request),
        everything else is a bad gateway.
        """
        if self.status_code is not None and 400 <= self.status_code < 500:
            return self.status_code
        return 502

    def to_dict(self) -> dict:
        return {"message": self.message, "status_code": self.status_code, "code": self.code}


class NotAuthenticatedError(GatewayError):
    """Raised when an operation needs a signed-in user and there is none."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message, status_code=401, code="not_authenticated")


class ReorderError(GatewayError):
    """Raised when some rows of a reorder batch could not be written."""

    def __init__(self, table: str, failed_ids: list[str], total: int):
        self.table = table
        self.failed_ids = list(failed_ids)
        self.total = total
        super().__init__(
            f"Failed to reorder {len(self.failed_ids)} of {total} {table}",
            status_code=None,
            code="reorder_partial_failure",
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["failed_ids"] = self.failed_ids
        return data
