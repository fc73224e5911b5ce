"""
Entity and payload models for the EX_P02 webapp.

Rows come back from the hosted backend as JSON objects and are parsed into
these pydantic models. ``*Create`` / ``*Update`` models validate request bodies
before anything is sent to the backend; ``to_row()`` produces the column
mapping the REST endpoint expects.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Predefined tag colors in brutalist style
TAG_COLORS = [
    "#FF6B35",  # Orange (primary)
    "#1E3A8A",  # Blue (primary)
    "#FF0040",  # Error red
    "#00FF41",  # Success green
    "#FFFF00",  # Warning yellow
    "#00FFFF",  # Info cyan
    "#FF8A5C",  # Orange muted
    "#60A5FA",  # Blue muted
    "#E5E5E5",  # Medium grey
    "#1A1A1A",  # Dark grey
]


def _required_text(value: str, field_name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    return value


def _partial_row(model: BaseModel, nullable: tuple[str, ...] = (), **dump_kwargs: Any) -> dict[str, Any]:
    """Columns explicitly set on an update payload.

    Only the ``nullable`` columns may be cleared with an explicit null.
    """
    row = model.model_dump(exclude_unset=True, **dump_kwargs)
    return {key: value for key, value in row.items() if value is not None or key in nullable}


def _validate_color(value: str) -> str:
    color = value.upper()
    if color not in TAG_COLORS:
        raise ValueError(f"color must be one of {', '.join(TAG_COLORS)}")
    return color


class _Row(BaseModel):
    """Base for rows read from the backend; unknown columns are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============= Entities =============


class Project(_Row):
    id: str
    user_id: str
    name: str
    description: str | None = None
    is_starred: bool = False
    created_at: datetime
    updated_at: datetime
    last_modified: datetime


class ProjectWithCounts(Project):
    """Project as returned by the list endpoint, with related row counts."""

    note_count: int = 0
    link_count: int = 0

    @model_validator(mode="before")
    @classmethod
    def _flatten_counts(cls, data: Any) -> Any:
        # PostgREST embeds counts as ``notes: [{"count": n}]``
        if isinstance(data, dict):
            data = dict(data)
            for embedded, target in (("notes", "note_count"), ("links", "link_count")):
                value = data.pop(embedded, None)
                if target not in data and isinstance(value, list) and value:
                    data[target] = value[0].get("count", 0) or 0
        return data


class Note(_Row):
    id: str
    project_id: str
    user_id: str
    title: str | None = None
    body: str = Field("", alias="encrypted_content")
    order_index: int = 0
    created_at: datetime
    updated_at: datetime


class Tag(_Row):
    id: str
    user_id: str
    name: str
    color: str
    created_at: datetime
    updated_at: datetime


class Link(_Row):
    id: str
    project_id: str
    user_id: str
    url: str
    title: str | None = None
    description: str | None = None
    favicon_url: str | None = None
    preview_image_url: str | None = None
    tag_id: str | None = None
    tag: Tag | None = None
    order_index: int = 0
    created_at: datetime
    updated_at: datetime


# ============= Payloads =============


class ProjectCreate(BaseModel):
    name: str
    description: str | None = None
    is_starred: bool = False

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        return _required_text(value, "name")

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ProjectUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    is_starred: bool | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, "name")

    def to_row(self) -> dict[str, Any]:
        return _partial_row(self, nullable=("description",))


class NoteCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str
    title: str | None = None
    body: str = Field("", alias="encrypted_content")
    order_index: int | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NoteUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    body: str | None = Field(None, alias="encrypted_content")
    order_index: int | None = None

    def to_row(self) -> dict[str, Any]:
        return _partial_row(self, nullable=("title",), by_alias=True)


class LinkCreate(BaseModel):
    project_id: str
    url: str
    title: str | None = None
    description: str | None = None
    favicon_url: str | None = None
    preview_image_url: str | None = None
    tag_id: str | None = None
    order_index: int | None = None

    @field_validator("url")
    @classmethod
    def _url(cls, value: str) -> str:
        return _required_text(value, "url")

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class LinkUpdate(BaseModel):
    """Partial link update.

    ``project_id`` moves the link to another project; an explicit
    ``tag_id: null`` clears the tag.
    """

    url: str | None = None
    title: str | None = None
    description: str | None = None
    favicon_url: str | None = None
    preview_image_url: str | None = None
    tag_id: str | None = None
    project_id: str | None = None
    order_index: int | None = None

    @field_validator("url")
    @classmethod
    def _url(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, "url")

    def to_row(self) -> dict[str, Any]:
        return _partial_row(self, nullable=("title", "description", "favicon_url", "preview_image_url", "tag_id"))


class TagCreate(BaseModel):
    name: str
    color: str = TAG_COLORS[0]

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        return _required_text(value, "name")

    @field_validator("color")
    @classmethod
    def _color(cls, value: str) -> str:
        return _validate_color(value)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump()


class TagUpdate(BaseModel):
    name: str | None = None
    color: str | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, "name")

    @field_validator("color")
    @classmethod
    def _color(cls, value: str | None) -> str | None:
        return None if value is None else _validate_color(value)

    def to_row(self) -> dict[str, Any]:
        return _partial_row(self)


class OrderUpdate(BaseModel):
    id: str
    order_index: int


# ============= Session / user =============


class User(BaseModel):
    """The signed-in user as reported by the auth endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def full_name(self) -> str | None:
        return self.user_metadata.get("full_name") or self.user_metadata.get("name")

    @property
    def avatar_url(self) -> str | None:
        return self.user_metadata.get("avatar_url") or self.user_metadata.get("picture")

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "User"

    def to_profile(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
        }


class AuthSession(BaseModel):
    """Tokens returned by a successful sign-in."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = None
    user: User | None = None


def dump(value: Any) -> Any:
    """JSON-ready form of a model, a list of models, or ``None``.

    Field names are used rather than wire aliases, so a note's content is
    reported as ``body``.
    """
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return [item.model_dump(mode="json") for item in value]
