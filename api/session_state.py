"""
Per-session UI state and synchronous selectors.

``SessionState`` keeps only what never needs a round trip: the open project,
the selected note index, the pane toggles and the dashboard search text.
Server entities are not copied here. The structural actions (add / update by
id / remove by id) patch the entries of the session's ``QueryCache``
directly, so the cache stays the one writable copy of every server row; the
selectors read back out of the same entries.

Conventions carried over from the page code: new projects are prepended,
new notes and links are appended; updates are shallow merges.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

from pydantic import BaseModel

from .panes import PaneToggles, PaneVisibility, resolve_panes, toggle_links, toggle_notes
from .query_cache import QueryCache
from .query_keys import link_keys, note_keys, project_keys, tag_keys
from .schemas import Link, Note, Project, Tag


def _merge(item: BaseModel, updates: Any) -> BaseModel:
    """Shallow merge ``updates`` (model or mapping) into ``item``."""
    if isinstance(updates, BaseModel):
        # only fields that were actually given
        values = {name: getattr(updates, name) for name in updates.model_fields_set}
    else:
        values = dict(updates)
    known = type(item).model_fields
    return item.model_copy(update={k: v for k, v in values.items() if k in known})


def _replace(items: Iterable[BaseModel], item_id: str, updates: Any) -> list:
    return [_merge(i, updates) if i.id == item_id else i for i in items]


def _without(items: Iterable[BaseModel], item_id: str) -> list:
    return [i for i in items if i.id != item_id]


def _by_recent(projects: Iterable[Project]) -> List[Project]:
    return sorted(projects, key=lambda p: p.last_modified, reverse=True)


class SessionState:
    """UI state for one signed-in session, layered over its query cache."""

    def __init__(self, cache: QueryCache):
        self._cache = cache
        self.current_project_id: Optional[str] = None
        self.current_note_index = 0
        self.pane_toggles = PaneToggles()
        self.search_query = ""

    # ================================================================ projects

    def projects(self) -> List[Project]:
        return list(self._cache.get_query_data(project_keys.lists()) or [])

    def set_current_project(self, project_id: Optional[str]) -> None:
        """Open a project. Pane toggles are deliberately left as they are."""
        if project_id != self.current_project_id:
            self.current_project_id = project_id
            self.current_note_index = 0

    def add_project(self, project: Project) -> None:
        self._cache.update_query_data(project_keys.lists(), lambda ps: [project, *ps])
        self._cache.set_query_data(project_keys.detail(project.id), project)

    def update_project(self, project_id: str, updates: Any) -> None:
        self._cache.update_query_data(project_keys.lists(), lambda ps: _replace(ps, project_id, updates))
        self._cache.update_query_data(project_keys.detail(project_id), lambda p: _merge(p, updates))

    def remove_project(self, project_id: str) -> None:
        self._cache.update_query_data(project_keys.lists(), lambda ps: _without(ps, project_id))
        self._cache.remove(project_keys.detail(project_id))
        self._cache.remove(note_keys.by_project(project_id))
        self._cache.remove(link_keys.by_project(project_id))
        if self.current_project_id == project_id:
            self.current_project_id = None
            self.current_note_index = 0

    def starred_projects(self) -> List[Project]:
        return _by_recent(p for p in self.projects() if p.is_starred)

    def unstarred_projects(self) -> List[Project]:
        return _by_recent(p for p in self.projects() if not p.is_starred)

    def filter_projects(self, projects: Iterable[Project]) -> List[Project]:
        """Apply the search text (name or description, case-insensitive)."""
        query = self.search_query.strip().lower()
        if not query:
            return list(projects)
        return [
            p for p in projects
            if query in p.name.lower() or (p.description and query in p.description.lower())
        ]

    def set_search_query(self, query: str) -> None:
        self.search_query = query

    # =================================================================== notes

    def project_notes(self, project_id: Optional[str] = None) -> List[Note]:
        project_id = project_id or self.current_project_id
        if not project_id:
            return []
        notes = self._cache.get_query_data(note_keys.by_project(project_id)) or []
        return sorted(notes, key=lambda n: n.order_index)

    def current_note(self) -> Optional[Note]:
        notes = self.project_notes()
        if 0 <= self.current_note_index < len(notes):
            return notes[self.current_note_index]
        return None

    def set_current_note_index(self, index: int) -> None:
        self.current_note_index = index
        self._clamp_note_index()

    def add_note(self, note: Note) -> None:
        self._cache.update_query_data(note_keys.by_project(note.project_id), lambda ns: [*ns, note])
        self._cache.set_query_data(note_keys.detail(note.id), note)

    def update_note(self, note_id: str, updates: Any) -> None:
        self._cache.update_matching(note_keys.lists(), lambda ns: _replace(ns, note_id, updates))
        self._cache.update_query_data(note_keys.detail(note_id), lambda n: _merge(n, updates))

    def remove_note(self, note_id: str) -> None:
        self._cache.update_matching(note_keys.lists(), lambda ns: _without(ns, note_id))
        self._cache.remove(note_keys.detail(note_id))
        self._clamp_note_index()

    def _clamp_note_index(self) -> None:
        last = max(0, len(self.project_notes()) - 1)
        self.current_note_index = min(max(self.current_note_index, 0), last)

    # =================================================================== links

    def project_links(self, project_id: Optional[str] = None, tag_id: Optional[str] = None) -> List[Link]:
        project_id = project_id or self.current_project_id
        if not project_id:
            return []
        links = self._cache.get_query_data(link_keys.by_project(project_id)) or []
        if tag_id:
            links = [link for link in links if link.tag_id == tag_id]
        return sorted(links, key=lambda link: link.order_index)

    def add_link(self, link: Link) -> None:
        self._cache.update_query_data(link_keys.by_project(link.project_id), lambda ls: [*ls, link])

    def update_link(self, link_id: str, updates: Any) -> None:
        moved: List[Link] = []

        def patch(links: list) -> list:
            result = []
            for link in links:
                if link.id != link_id:
                    result.append(link)
                    continue
                merged = _merge(link, updates)
                if merged.project_id != link.project_id:
                    moved.append(merged)
                else:
                    result.append(merged)
            return result

        self._cache.update_matching(link_keys.lists(), patch)
        for link in moved:
            self.add_link(link)

    def remove_link(self, link_id: str) -> None:
        self._cache.update_matching(link_keys.lists(), lambda ls: _without(ls, link_id))

    # ==================================================================== tags

    def tags(self) -> List[Tag]:
        return list(self._cache.get_query_data(tag_keys.lists()) or [])

    def remove_tag(self, tag_id: str) -> None:
        """Drop a tag and clear it from every cached link that carried it."""
        self._cache.update_query_data(tag_keys.lists(), lambda ts: _without(ts, tag_id))
        self._cache.remove(tag_keys.detail(tag_id))
        self._cache.update_matching(
            link_keys.lists(),
            lambda ls: [
                link.model_copy(update={"tag_id": None, "tag": None}) if link.tag_id == tag_id else link
                for link in ls
            ],
        )

    # =================================================================== panes

    def pane_visibility(self, is_desktop: bool) -> PaneVisibility:
        return resolve_panes(is_desktop, self.pane_toggles.left, self.pane_toggles.right)

    def activate_notes(self, is_desktop: bool) -> PaneVisibility:
        self.pane_toggles = toggle_notes(is_desktop, self.pane_toggles)
        return self.pane_visibility(is_desktop)

    def activate_links(self, is_desktop: bool) -> PaneVisibility:
        self.pane_toggles = toggle_links(is_desktop, self.pane_toggles)
        return self.pane_visibility(is_desktop)

    def set_pane_toggles(self, left: bool, right: bool) -> None:
        self.pane_toggles = PaneToggles(left=left, right=right)

    def snapshot(self) -> dict:
        return {
            "current_project_id": self.current_project_id,
            "current_note_index": self.current_note_index,
            "left_pane_expanded": self.pane_toggles.left,
            "right_pane_expanded": self.pane_toggles.right,
            "search_query": self.search_query,
        }
