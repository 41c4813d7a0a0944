"""Shared notes routes: create, list per track, toggle reactions."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from vinyl.auth import get_listener_id
from vinyl.db import get_db
from vinyl.errors import InvalidRequest
from vinyl.notes import NoteStore

router = APIRouter(prefix="/notes", tags=["notes"])


def get_note_store(request: Request) -> NoteStore:
    """The app-wide store, so every request shares its reaction lock."""
    store = getattr(request.app.state, "note_store", None)
    if store is None or store.db is not get_db():
        store = request.app.state.note_store = NoteStore(get_db())
    return store


class NoteContent(BaseModel):
    content: str


class CreateNoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    track_id: str = Field(alias="trackId")
    note: NoteContent


class ReactRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    note_id: str = Field(alias="noteId")
    emoji: str
    user_id: Optional[str] = Field(default=None, alias="userId")


@router.post("")
async def create_note(body: CreateNoteRequest, store: NoteStore = Depends(get_note_store)):
    note = await store.create(body.track_id, body.note.content)
    return {"success": True, "noteId": note.id}


@router.get("")
async def list_notes(
    track_id: Optional[str] = Query(default=None, alias="trackId"),
    store: NoteStore = Depends(get_note_store),
):
    """Shared notes for a track, newest first."""
    if not track_id:
        raise InvalidRequest("Track ID is required")
    notes = await store.list_for_track(track_id)
    return {"notes": [n.model_dump(mode="json", by_alias=True) for n in notes]}


@router.post("/react")
async def react(
    request: Request,
    body: ReactRequest,
    store: NoteStore = Depends(get_note_store),
):
    """Toggle one emoji reaction; without ``userId`` the browser's listener id is used."""
    user_id = body.user_id or get_listener_id(request)
    reactions = await store.toggle_reaction(body.note_id, body.emoji, user_id)
    return {"reactions": {emoji: r.model_dump() for emoji, r in reactions.items()}}
