"""Note API endpoints.

Besides plain CRUD this router drives the note editor of the open project:
selecting a note binds the autosave scheduler to it, and editor keystrokes
posted to ``/notes/current/edit`` are debounced into backend writes.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .autosave import NoteField
from .context import SessionContext, get_user_context, require_confirmation
from .schemas import NoteUpdate, OrderUpdate, dump

router = APIRouter(tags=["notes"])


class NoteDraft(BaseModel):
    title: Optional[str] = None
    body: str = ""


class NoteSelection(BaseModel):
    index: int


class NoteEdit(BaseModel):
    field: NoteField
    value: str


def _follow_selection(context: SessionContext):
    """Bind the editor to the note now shown; a no-op when that note is already bound."""
    return context.bind_current_note()


def _editor_state(context: SessionContext) -> dict:
    autosave = context.autosave
    return {
        "note_id": autosave.note_id,
        "title": autosave.value(NoteField.TITLE),
        "body": autosave.value(NoteField.BODY),
        "pending": {field.value: autosave.has_pending(field) for field in NoteField},
    }


@router.get("/projects/{project_id}/notes")
async def list_notes(project_id: str, context: SessionContext = Depends(get_user_context)):
    """Notes of a project in display order."""
    result = await context.sync.notes(project_id)
    result.unwrap()
    notes = context.state.project_notes(project_id)
    return {"notes": dump(notes), "total": len(notes), "query": result.to_dict()}


@router.post("/projects/{project_id}/notes", status_code=201)
async def create_note(
    project_id: str,
    body: Optional[NoteDraft] = None,
    context: SessionContext = Depends(get_user_context),
):
    """Create a note at the end of the project.

    Without a title the note is named ``Note {n+1}``. When the project is the
    open one, the new note becomes the selected note.
    """
    draft = body or NoteDraft()
    note = await context.sync.create_note(project_id, title=draft.title, body=draft.body)

    state = context.state
    if state.current_project_id == project_id:
        ids = [n.id for n in state.project_notes()]
        if note.id in ids:
            state.set_current_note_index(ids.index(note.id))
            context.bind_current_note()
    return dump(note)


@router.put("/projects/{project_id}/notes/order")
async def reorder_notes(
    project_id: str,
    items: List[OrderUpdate],
    context: SessionContext = Depends(get_user_context),
):
    """Rewrite the order of a project's notes.

    Every id must belong to ``project_id`` (422 otherwise). When the project is
    the open one, the editor follows whichever note now sits at the selected
    position.
    """
    notes = (await context.sync.notes(project_id)).unwrap() or []
    foreign = sorted({item.id for item in items} - {n.id for n in notes})
    if foreign:
        raise HTTPException(status_code=422, detail={"message": "Notes not in project", "ids": foreign})
    try:
        await context.sync.reorder_notes(items)
    finally:
        if context.state.current_project_id == project_id:
            await context.sync.notes(project_id)
            _follow_selection(context)
    return {"success": True, "project_id": project_id, "updated": len(items)}


@router.get("/notes/current")
async def current_note(context: SessionContext = Depends(get_user_context)):
    """The selected note of the open project, with the editor's local values."""
    state = context.state
    _follow_selection(context)
    return {
        "project_id": state.current_project_id,
        "index": state.current_note_index,
        "note": dump(state.current_note()),
        "editor": _editor_state(context),
    }


@router.put("/notes/current")
async def select_note(body: NoteSelection, context: SessionContext = Depends(get_user_context)):
    """Select a note by position; pending autosaves of the previous note are dropped."""
    state = context.state
    if state.current_project_id is None:
        raise HTTPException(status_code=409, detail="No project is open")
    state.set_current_note_index(body.index)
    note = context.bind_current_note()
    return {"index": state.current_note_index, "note": dump(note), "editor": _editor_state(context)}


@router.post("/notes/current/edit")
async def edit_current_note(body: NoteEdit, context: SessionContext = Depends(get_user_context)):
    """Record an editor change; the write happens once typing pauses."""
    _follow_selection(context)
    if context.autosave.note_id is None:
        raise HTTPException(status_code=409, detail="No note is selected")
    scheduled = context.autosave.edit(body.field, body.value)
    return {"scheduled": scheduled, "editor": _editor_state(context)}


@router.get("/notes/{note_id}")
async def get_note(note_id: str, context: SessionContext = Depends(get_user_context)):
    note = (await context.sync.note(note_id)).unwrap()
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return dump(note)


@router.patch("/notes/{note_id}")
async def update_note(note_id: str, body: NoteUpdate, context: SessionContext = Depends(get_user_context)):
    """Save note fields immediately (no debounce)."""
    note = await context.sync.update_note(note_id, body)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return dump(note)


@router.delete("/notes/{note_id}")
async def delete_note(
    note_id: str,
    confirm: bool = False,
    context: SessionContext = Depends(get_user_context),
):
    require_confirmation(confirm, "Delete this note? Retry with confirm=true.")
    await context.sync.delete_note(note_id)
    # removing an earlier note shifts another one under the selected index
    _follow_selection(context)
    return {"success": True, "note_id": note_id, "current_note_index": context.state.current_note_index}
