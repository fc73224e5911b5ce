"""Link API endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .context import SessionContext, get_user_context, require_confirmation
from .gateway import LinksApi
from .schemas import LinkCreate, LinkUpdate, OrderUpdate, dump

router = APIRouter(tags=["links"])


class LinkDraft(BaseModel):
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    favicon_url: Optional[str] = None
    preview_image_url: Optional[str] = None
    tag_id: Optional[str] = None


class MetadataRequest(BaseModel):
    url: str


@router.get("/projects/{project_id}/links")
async def list_links(
    project_id: str,
    tag_id: Optional[str] = None,
    context: SessionContext = Depends(get_user_context),
):
    """Links of a project in display order, optionally only those with ``tag_id``."""
    result = await context.sync.links(project_id)
    result.unwrap()
    links = context.state.project_links(project_id, tag_id=tag_id)
    return {"links": dump(links), "total": len(links), "tag_id": tag_id, "query": result.to_dict()}


@router.post("/projects/{project_id}/links", status_code=201)
async def create_link(project_id: str, body: LinkDraft, context: SessionContext = Depends(get_user_context)):
    """Add a link; title and favicon are derived from the URL when missing."""
    link = await context.sync.create_link(LinkCreate(project_id=project_id, **body.model_dump()))
    return dump(link)


@router.put("/projects/{project_id}/links/order")
async def reorder_links(
    project_id: str,
    items: List[OrderUpdate],
    context: SessionContext = Depends(get_user_context),
):
    """Rewrite the order of a project's links; every id must belong to ``project_id``."""
    links = (await context.sync.links(project_id)).unwrap() or []
    foreign = sorted({item.id for item in items} - {link.id for link in links})
    if foreign:
        raise HTTPException(status_code=422, detail={"message": "Links not in project", "ids": foreign})
    await context.sync.reorder_links(items)
    return {"success": True, "project_id": project_id, "updated": len(items)}


@router.post("/links/metadata")
async def preview_metadata(body: MetadataRequest):
    """Title and favicon that would be filled in for ``url``."""
    return LinksApi.extract_metadata(body.url)


@router.get("/links/{link_id}")
async def get_link(link_id: str, context: SessionContext = Depends(get_user_context)):
    link = (await context.sync.link(link_id)).unwrap()
    if link is None:
        raise HTTPException(status_code=404, detail="Link not found")
    return dump(link)


@router.patch("/links/{link_id}")
async def update_link(link_id: str, body: LinkUpdate, context: SessionContext = Depends(get_user_context)):
    """Edit a link. Setting ``project_id`` moves it; ``tag_id: null`` clears its tag."""
    link = await context.sync.update_link(link_id, body)
    if link is None:
        raise HTTPException(status_code=404, detail="Link not found")
    return dump(link)


@router.delete("/links/{link_id}")
async def delete_link(
    link_id: str,
    confirm: bool = False,
    context: SessionContext = Depends(get_user_context),
):
    require_confirmation(confirm, "Delete this link? Retry with confirm=true.")
    await context.sync.delete_link(link_id)
    return {"success": True, "link_id": link_id}
