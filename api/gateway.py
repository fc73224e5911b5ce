"""
Remote Data Gateway.

Typed CRUD + list operations for the four backend collections (projects,
notes, links, tags). The gateway owns no state: every call is a round trip
through ``BackendClient`` and returns parsed pydantic models. Missing rows are
reported as ``None``; backend failures propagate as ``GatewayError``.
"""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import urlparse

from .backend import BackendClient
from .schemas import (
    Link,
    LinkCreate,
    LinkUpdate,
    Note,
    NoteCreate,
    NoteUpdate,
    OrderUpdate,
    Project,
    ProjectCreate,
    ProjectUpdate,
    ProjectWithCounts,
    Tag,
    TagCreate,
    TagUpdate,
)
from .shared.errors import ReorderError
from .shared.logger import get_logger

logger = get_logger(__name__)

FAVICON_SERVICE = "https://www.google.com/s2/favicons?domain={domain}&sz=32"


class _TableApi:
    """Shared plumbing for one backend table."""

    table = ""

    def __init__(self, client: BackendClient):
        self._client = client

    async def _owner_id(self) -> str:
        user = await self._client.get_user()
        return user.id

    async def _next_order_index(self, project_id: str) -> int:
        rows = await self._client.select(
            self.table,
            columns="order_index",
            filters={"project_id": project_id},
            order=[("order_index", False)],
            limit=1,
        )
        max_order = rows[0].get("order_index") if rows else None
        return (max_order or 0) + 1

    async def _delete(self, row_id: str) -> None:
        await self._client.delete(self.table, {"id": row_id})

    async def reorder(self, updates: list[OrderUpdate]) -> None:
        """Rewrite ``order_index`` for a batch of rows.

        The writes are issued concurrently and independently. Rows that fail
        (error or no longer present) are collected and reported together in a
        ``ReorderError``; rows that succeeded stay written.
        """
        if not updates:
            return

        results = await asyncio.gather(
            *(
                self._client.update(self.table, {"order_index": item.order_index}, {"id": item.id}, columns="id")
                for item in updates
            ),
            return_exceptions=True,
        )
        failed = [
            item.id
            for item, result in zip(updates, results)
            if isinstance(result, BaseException) or not result
        ]
        if failed:
            logger.warning("Reorder of %s: %d of %d rows failed", self.table, len(failed), len(updates))
            raise ReorderError(self.table, failed, len(updates))


class ProjectsApi(_TableApi):
    table = "projects"

    async def get_all(self) -> list[ProjectWithCounts]:
        rows = await self._client.select(
            self.table,
            columns="*,notes(count),links(count)",
            order=[("is_starred", False), ("last_modified", False)],
        )
        return [ProjectWithCounts.model_validate(row) for row in rows]

    async def get_by_id(self, project_id: str) -> Project | None:
        row = await self._client.select_one(self.table, filters={"id": project_id})
        return Project.model_validate(row) if row else None

    async def create(self, data: ProjectCreate) -> Project:
        row = {**data.to_row(), "user_id": await self._owner_id()}
        return Project.model_validate(await self._client.insert(self.table, row))

    async def update(self, project_id: str, updates: ProjectUpdate) -> Project | None:
        rows = await self._client.update(self.table, updates.to_row(), {"id": project_id})
        return Project.model_validate(rows[0]) if rows else None

    async def delete(self, project_id: str) -> None:
        # notes and links go with it (ON DELETE CASCADE on the backend)
        await self._delete(project_id)


class NotesApi(_TableApi):
    table = "notes"

    async def get_by_project(self, project_id: str) -> list[Note]:
        rows = await self._client.select(
            self.table,
            filters={"project_id": project_id},
            order=[("order_index", True), ("created_at", True)],
        )
        return [Note.model_validate(row) for row in rows]

    async def get_by_id(self, note_id: str) -> Note | None:
        row = await self._client.select_one(self.table, filters={"id": note_id})
        return Note.model_validate(row) if row else None

    async def create(self, data: NoteCreate) -> Note:
        owner_id = await self._owner_id()
        row = data.to_row()
        if data.order_index is None:
            row["order_index"] = await self._next_order_index(data.project_id)
        row.setdefault("encrypted_content", "")
        row["user_id"] = owner_id
        return Note.model_validate(await self._client.insert(self.table, row))

    async def update(self, note_id: str, updates: NoteUpdate) -> Note | None:
        rows = await self._client.update(self.table, updates.to_row(), {"id": note_id})
        return Note.model_validate(rows[0]) if rows else None

    async def delete(self, note_id: str) -> None:
        await self._delete(note_id)


class LinksApi(_TableApi):
    table = "links"
    columns = "*,tag:tags(*)"

    async def get_by_project(self, project_id: str) -> list[Link]:
        rows = await self._client.select(
            self.table,
            columns=self.columns,
            filters={"project_id": project_id},
            order=[("order_index", True), ("created_at", True)],
        )
        return [Link.model_validate(row) for row in rows]

    async def get_by_id(self, link_id: str) -> Link | None:
        row = await self._client.select_one(self.table, columns=self.columns, filters={"id": link_id})
        return Link.model_validate(row) if row else None

    async def create(self, data: LinkCreate) -> Link:
        owner_id = await self._owner_id()
        row = data.to_row()
        if data.order_index is None:
            row["order_index"] = await self._next_order_index(data.project_id)
        row["user_id"] = owner_id
        return Link.model_validate(await self._client.insert(self.table, row, columns=self.columns))

    async def update(self, link_id: str, updates: LinkUpdate) -> Link | None:
        rows = await self._client.update(self.table, updates.to_row(), {"id": link_id}, columns=self.columns)
        return Link.model_validate(rows[0]) if rows else None

    async def delete(self, link_id: str) -> None:
        await self._delete(link_id)

    @staticmethod
    def extract_metadata(url: str) -> dict[str, Any]:
        """Best-effort title/favicon for a bare URL (no network access)."""
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.hostname:
            return {"title": url}
        domain = parsed.hostname
        if domain.startswith("www."):
            domain = domain[len("www."):]
        return {
            "title": domain,
            "favicon_url": FAVICON_SERVICE.format(domain=domain),
        }


class TagsApi(_TableApi):
    table = "tags"

    async def get_all(self) -> list[Tag]:
        rows = await self._client.select(self.table, order=[("name", True)])
        return [Tag.model_validate(row) for row in rows]

    async def get_by_id(self, tag_id: str) -> Tag | None:
        row = await self._client.select_one(self.table, filters={"id": tag_id})
        return Tag.model_validate(row) if row else None

    async def create(self, data: TagCreate) -> Tag:
        row = {**data.to_row(), "user_id": await self._owner_id()}
        return Tag.model_validate(await self._client.insert(self.table, row))

    async def update(self, tag_id: str, updates: TagUpdate) -> Tag | None:
        rows = await self._client.update(self.table, updates.to_row(), {"id": tag_id})
        return Tag.model_validate(rows[0]) if rows else None

    async def delete(self, tag_id: str) -> None:
        # Clear the reference on every link first so none dangles
        await self._client.update("links", {"tag_id": None}, {"tag_id": tag_id}, columns="id")
        await self._delete(tag_id)

    async def get_usage_count(self, tag_id: str) -> int:
        return await self._client.count("links", {"tag_id": tag_id})


class DataGateway:
    """Entry point bundling the per-table APIs over one backend client."""

    def __init__(self, client: BackendClient):
        self.client = client
        self.projects = ProjectsApi(client)
        self.notes = NotesApi(client)
        self.links = LinksApi(client)
        self.tags = TagsApi(client)
