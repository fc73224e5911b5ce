"""
Stable query keys for the Query Cache Layer.

Keys are tuples that grow from general to specific, so invalidating a prefix
reaches every narrower key below it::

    ("links",)                                  every link query
    ("links", "list")                           every link list
    ("links", "list", "project", "<id>")        links of one project
    ("links", "detail", "<id>")                 one link
"""

from __future__ import annotations

QueryKey = tuple


class QueryKeys:
    """Key factory for one entity kind."""

    def __init__(self, entity: str):
        self.all: QueryKey = (entity,)

    def lists(self) -> QueryKey:
        return (*self.all, "list")

    def by_project(self, project_id: str) -> QueryKey:
        return (*self.lists(), "project", project_id)

    def details(self) -> QueryKey:
        return (*self.all, "detail")

    def detail(self, entity_id: str) -> QueryKey:
        return (*self.details(), entity_id)

    def usage(self, entity_id: str) -> QueryKey:
        return (*self.detail(entity_id), "usage")


project_keys = QueryKeys("projects")
note_keys = QueryKeys("notes")
link_keys = QueryKeys("links")
tag_keys = QueryKeys("tags")


def key_matches(key: QueryKey, prefix: QueryKey) -> bool:
    """True when ``prefix`` is a leading part of ``key``."""
    return key[: len(prefix)] == prefix
