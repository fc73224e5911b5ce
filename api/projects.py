"""Project management API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from .context import SessionContext, get_user_context, require_confirmation
from .schemas import ProjectCreate, ProjectUpdate, dump

router = APIRouter(prefix="/projects", tags=["projects"])


async def _load_project(context: SessionContext, project_id: str):
    project = (await context.sync.project(project_id)).unwrap()
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.get("")
async def list_projects(
    search: Optional[str] = None,
    context: SessionContext = Depends(get_user_context),
):
    """List the user's projects, split into starred and the rest.

    ``search`` replaces the session's dashboard search text; both groups are
    filtered by it (name or description, case-insensitive).
    """
    result = await context.sync.projects()
    result.unwrap()
    state = context.state
    if search is not None:
        state.set_search_query(search)

    starred = state.filter_projects(state.starred_projects())
    unstarred = state.filter_projects(state.unstarred_projects())
    return {
        "projects": dump(state.filter_projects(state.projects())),
        "starred": dump(starred),
        "unstarred": dump(unstarred),
        "search": state.search_query,
        "total": len(state.projects()),
        "query": result.to_dict(),
    }


@router.post("", status_code=201)
async def create_project(body: ProjectCreate, context: SessionContext = Depends(get_user_context)):
    """Create a new project."""
    project = await context.sync.create_project(body)
    return dump(project)


@router.get("/{project_id}")
async def get_project(project_id: str, context: SessionContext = Depends(get_user_context)):
    return dump(await _load_project(context, project_id))


@router.post("/{project_id}/open")
async def open_project(project_id: str, context: SessionContext = Depends(get_user_context)):
    """Make ``project_id`` the session's current project and load its notes and links.

    Switching project resets the selected note to the first one; the pane
    toggles carry over.
    """
    project = await _load_project(context, project_id)
    context.state.set_current_project(project.id)
    (await context.sync.notes(project.id)).unwrap()
    (await context.sync.links(project.id)).unwrap()
    note = context.bind_current_note()
    return {
        "project": dump(project),
        "notes": dump(context.state.project_notes()),
        "links": dump(context.state.project_links()),
        "current_note_index": context.state.current_note_index,
        "current_note": dump(note),
    }


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    context: SessionContext = Depends(get_user_context),
):
    """Update an existing project."""
    project = await context.sync.update_project(project_id, body)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return dump(project)


@router.post("/{project_id}/star")
async def toggle_star(project_id: str, context: SessionContext = Depends(get_user_context)):
    project = await context.sync.toggle_star(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return dump(project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    confirm: bool = False,
    context: SessionContext = Depends(get_user_context),
):
    """Delete a project together with its notes and links."""
    require_confirmation(confirm, "Deleting a project also deletes all of its notes and links. Retry with confirm=true.")
    await context.sync.delete_project(project_id)
    return {"success": True, "project_id": project_id}
