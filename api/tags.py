"""Tag API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from .context import SessionContext, get_user_context, require_confirmation
from .schemas import TAG_COLORS, TagCreate, TagUpdate, dump

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("")
async def list_tags(context: SessionContext = Depends(get_user_context)):
    result = await context.sync.tags()
    result.unwrap()
    tags = context.state.tags()
    return {"tags": dump(tags), "total": len(tags), "query": result.to_dict()}


@router.get("/colors")
async def tag_colors():
    """The palette tags may use."""
    return {"colors": TAG_COLORS}


@router.post("", status_code=201)
async def create_tag(body: TagCreate, context: SessionContext = Depends(get_user_context)):
    return dump(await context.sync.create_tag(body))


@router.get("/{tag_id}")
async def get_tag(tag_id: str, context: SessionContext = Depends(get_user_context)):
    tag = (await context.sync.tag(tag_id)).unwrap()
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return dump(tag)


@router.get("/{tag_id}/usage")
async def tag_usage(tag_id: str, context: SessionContext = Depends(get_user_context)):
    """Number of links carrying the tag."""
    count = (await context.sync.tag_usage(tag_id)).unwrap()
    return {"tag_id": tag_id, "count": count or 0}


@router.patch("/{tag_id}")
async def update_tag(tag_id: str, body: TagUpdate, context: SessionContext = Depends(get_user_context)):
    tag = await context.sync.update_tag(tag_id, body)
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return dump(tag)


@router.delete("/{tag_id}")
async def delete_tag(
    tag_id: str,
    confirm: bool = False,
    context: SessionContext = Depends(get_user_context),
):
    """Delete a tag; links that carried it keep existing without a tag."""
    require_confirmation(confirm, "Delete this tag? It will be removed from every link. Retry with confirm=true.")
    await context.sync.delete_tag(tag_id)
    return {"success": True, "tag_id": tag_id}
