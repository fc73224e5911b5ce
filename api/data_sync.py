"""
Read and mutation orchestration for one session.

Reads go through the session's ``QueryCache`` with the gateway call as the
fetcher. Mutations go straight to the gateway; only after the backend
accepted them are the affected query keys invalidated and the cached lists
patched through ``SessionState``. A failed mutation raises to the caller and
leaves both untouched (reorders are the exception: after a partial failure
the lists are invalidated so the next read shows what actually landed).
"""

from __future__ import annotations

from typing import List, Optional

from .autosave import NoteField
from .gateway import DataGateway
from .query_cache import QueryCache, QueryResult
from .query_keys import link_keys, note_keys, project_keys, tag_keys
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
from .session_state import SessionState
from .shared.logger import get_logger

logger = get_logger(__name__)


class DataSync:
    def __init__(self, gateway: DataGateway, cache: QueryCache, state: SessionState):
        self.gateway = gateway
        self.cache = cache
        self.state = state

    # ============================================================== projects

    async def projects(self) -> QueryResult:
        return await self.cache.fetch(project_keys.lists(), self.gateway.projects.get_all)

    async def project(self, project_id: str) -> QueryResult:
        return await self.cache.fetch(
            project_keys.detail(project_id),
            lambda: self.gateway.projects.get_by_id(project_id),
        )

    async def create_project(self, data: ProjectCreate) -> Project:
        project = await self.gateway.projects.create(data)
        self.cache.invalidate(project_keys.lists())
        self.state.add_project(ProjectWithCounts.model_validate(project.model_dump()))
        logger.info("Created project %s", project.id)
        return project

    async def update_project(self, project_id: str, updates: ProjectUpdate) -> Optional[Project]:
        project = await self.gateway.projects.update(project_id, updates)
        if project is None:
            return None
        self.cache.invalidate(project_keys.lists())
        self.cache.invalidate(project_keys.detail(project.id))
        self.state.update_project(project.id, project)
        return project

    async def toggle_star(self, project_id: str) -> Optional[Project]:
        current = (await self.project(project_id)).unwrap()
        if current is None:
            return None
        return await self.update_project(project_id, ProjectUpdate(is_starred=not current.is_starred))

    async def delete_project(self, project_id: str) -> None:
        await self.gateway.projects.delete(project_id)
        self.cache.invalidate(project_keys.lists())
        self.state.remove_project(project_id)
        logger.info("Deleted project %s", project_id)

    # ================================================================= notes

    async def notes(self, project_id: str) -> QueryResult:
        return await self.cache.fetch(
            note_keys.by_project(project_id),
            lambda: self.gateway.notes.get_by_project(project_id),
        )

    async def note(self, note_id: str) -> QueryResult:
        return await self.cache.fetch(note_keys.detail(note_id), lambda: self.gateway.notes.get_by_id(note_id))

    async def create_note(self, project_id: str, title: Optional[str] = None, body: str = "") -> Note:
        if title is None:
            existing = (await self.notes(project_id)).data or []
            title = f"Note {len(existing) + 1}"
        note = await self.gateway.notes.create(NoteCreate(project_id=project_id, title=title, body=body))
        self.cache.invalidate(note_keys.by_project(project_id))
        # counts and last_modified on the project list move with it
        self.cache.invalidate(project_keys.lists())
        self.state.add_note(note)
        return note

    async def update_note(self, note_id: str, updates: NoteUpdate) -> Optional[Note]:
        note = await self.gateway.notes.update(note_id, updates)
        if note is None:
            return None
        self.cache.invalidate(note_keys.by_project(note.project_id))
        self.cache.invalidate(note_keys.detail(note.id))
        self.state.update_note(note.id, note)
        return note

    async def save_note_field(self, note_id: str, field: NoteField, value: str) -> Optional[Note]:
        """Writer used by the autosave scheduler."""
        if field is NoteField.TITLE:
            updates = NoteUpdate(title=value)
        else:
            updates = NoteUpdate(body=value)
        return await self.update_note(note_id, updates)

    async def delete_note(self, note_id: str) -> None:
        await self.gateway.notes.delete(note_id)
        # the owning project is not known from the id alone
        self.cache.invalidate(note_keys.lists())
        self.cache.invalidate(project_keys.lists())
        self.state.remove_note(note_id)

    async def reorder_notes(self, updates: List[OrderUpdate]) -> None:
        try:
            await self.gateway.notes.reorder(updates)
        finally:
            self.cache.invalidate(note_keys.lists())

    # ================================================================= links

    async def links(self, project_id: str) -> QueryResult:
        return await self.cache.fetch(
            link_keys.by_project(project_id),
            lambda: self.gateway.links.get_by_project(project_id),
        )

    async def link(self, link_id: str) -> QueryResult:
        return await self.cache.fetch(link_keys.detail(link_id), lambda: self.gateway.links.get_by_id(link_id))

    async def create_link(self, data: LinkCreate) -> Link:
        if not data.title or not data.favicon_url:
            metadata = self.gateway.links.extract_metadata(data.url)
            data = data.model_copy(update={
                "title": data.title or metadata.get("title"),
                "description": data.description or metadata.get("description"),
                "favicon_url": data.favicon_url or metadata.get("favicon_url"),
            })
        link = await self.gateway.links.create(data)
        self.cache.invalidate(link_keys.by_project(link.project_id))
        self.cache.invalidate(project_keys.lists())
        self.state.add_link(link)
        # tag usage counts follow the links
        self.cache.invalidate(tag_keys.details())
        return link

    def _cached_link_project(self, link_id: str) -> Optional[str]:
        for _, links in self.cache.entries(link_keys.lists()):
            for link in links:
                if link.id == link_id:
                    return link.project_id
        return None

    async def update_link(self, link_id: str, updates: LinkUpdate, old_project_id: Optional[str] = None) -> Optional[Link]:
        old_project_id = old_project_id or self._cached_link_project(link_id)
        link = await self.gateway.links.update(link_id, updates)
        if link is None:
            return None
        self.cache.invalidate(link_keys.by_project(link.project_id))
        self.cache.invalidate(link_keys.detail(link.id))
        if old_project_id and old_project_id != link.project_id:
            # moved: both project lists and both counts changed
            self.cache.invalidate(link_keys.by_project(old_project_id))
            self.cache.invalidate(project_keys.lists())
        self.state.update_link(link.id, link)
        self.cache.invalidate(tag_keys.details())
        return link

    async def delete_link(self, link_id: str) -> None:
        await self.gateway.links.delete(link_id)
        self.cache.invalidate(link_keys.lists())
        self.cache.invalidate(project_keys.lists())
        self.state.remove_link(link_id)
        self.cache.invalidate(tag_keys.details())

    async def reorder_links(self, updates: List[OrderUpdate]) -> None:
        try:
            await self.gateway.links.reorder(updates)
        finally:
            self.cache.invalidate(link_keys.lists())

    # ================================================================== tags

    async def tags(self) -> QueryResult:
        return await self.cache.fetch(tag_keys.lists(), self.gateway.tags.get_all)

    async def tag(self, tag_id: str) -> QueryResult:
        return await self.cache.fetch(tag_keys.detail(tag_id), lambda: self.gateway.tags.get_by_id(tag_id))

    async def tag_usage(self, tag_id: str) -> QueryResult:
        return await self.cache.fetch(tag_keys.usage(tag_id), lambda: self.gateway.tags.get_usage_count(tag_id))

    async def create_tag(self, data: TagCreate) -> Tag:
        tag = await self.gateway.tags.create(data)
        self.cache.invalidate(tag_keys.lists())
        return tag

    async def update_tag(self, tag_id: str, updates: TagUpdate) -> Optional[Tag]:
        tag = await self.gateway.tags.update(tag_id, updates)
        if tag is None:
            return None
        self.cache.invalidate(tag_keys.lists())
        self.cache.invalidate(tag_keys.detail(tag.id))
        # links embed their tag
        self.cache.invalidate(link_keys.all)
        return tag

    async def delete_tag(self, tag_id: str) -> None:
        await self.gateway.tags.delete(tag_id)
        self.cache.invalidate(tag_keys.lists())
        self.cache.invalidate(link_keys.all)
        self.state.remove_tag(tag_id)
