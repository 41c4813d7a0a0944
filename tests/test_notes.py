"""Tests for the notes store (vinyl/notes.py) and the /notes routes."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from groove.models import Reaction
from vinyl.db import close_db, init_db
from vinyl.errors import InvalidRequest, NotFound
from vinyl.main import app
from vinyl.notes import NoteStore


@pytest.fixture(autouse=True)
def _env_setup(monkeypatch, tmp_path):
    """Use temp DB and clear settings cache for every test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("SECRET_KEY", "test_secret")
    from vinyl.config import get_settings
    get_settings.cache_clear()


@pytest.fixture
async def store():
    db = await init_db()
    yield NoteStore(db)
    await close_db()


# ---------------------------------------------------------------------------
# NoteStore
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_note_defaults(store):
    note = await store.create("track1", "  lovely bassline  ")
    assert note.content == "lovely bassline"
    assert note.is_shared is True
    assert note.reactions == {}
    assert len(note.id) == 32

    fetched = await store.get(note.id)
    assert fetched.track_id == "track1"
    assert fetched.timestamp == note.timestamp


@pytest.mark.asyncio
@pytest.mark.parametrize("track_id,content", [("track1", ""), ("track1", "   "), ("", "hi")])
async def test_create_rejects_missing_fields(store, track_id, content):
    with pytest.raises(InvalidRequest):
        await store.create(track_id, content)


@pytest.mark.asyncio
async def test_list_is_newest_first_and_per_track(store):
    first = await store.create("track1", "first")
    await asyncio.sleep(0.01)
    second = await store.create("track1", "second")
    await store.create("track2", "elsewhere")

    notes = await store.list_for_track("track1")
    assert [n.id for n in notes] == [second.id, first.id]


@pytest.mark.asyncio
async def test_private_notes_not_listed(store):
    await store.create("track1", "just for me", is_shared=False)
    assert await store.list_for_track("track1") == []


@pytest.mark.asyncio
async def test_toggle_reaction_persists(store):
    note = await store.create("track1", "nice")
    reactions = await store.toggle_reaction(note.id, "🔥", "u1")
    assert reactions == {"🔥": Reaction(count=1, users=["u1"])}

    reloaded = await store.get(note.id)
    assert reloaded.reactions == reactions


@pytest.mark.asyncio
async def test_toggle_reaction_twice_restores_map(store):
    note = await store.create("track1", "nice")
    await store.toggle_reaction(note.id, "🔥", "u1")
    await store.toggle_reaction(note.id, "🔥", "u1")
    assert (await store.get(note.id)).reactions == {}


@pytest.mark.asyncio
async def test_toggle_reaction_unknown_note(store):
    with pytest.raises(NotFound):
        await store.toggle_reaction("missing", "🔥", "u1")


@pytest.mark.asyncio
async def test_concurrent_reactions_from_two_users_both_land(store):
    note = await store.create("track1", "nice")
    await asyncio.gather(
        store.toggle_reaction(note.id, "👍", "alice"),
        store.toggle_reaction(note.id, "👍", "bob"),
    )
    reaction = (await store.get(note.id)).reactions["👍"]
    assert reaction.count == 2
    assert sorted(reaction.users) == ["alice", "bob"]


def test_react_routes_share_one_store():
    with TestClient(app) as c:
        note_id = c.post("/notes", json={"trackId": "t", "note": {"content": "x"}}).json()["noteId"]
        c.post("/notes/react", json={"noteId": note_id, "emoji": "👍", "userId": "alice"})
        first = app.state.note_store
        resp = c.post("/notes/react", json={"noteId": note_id, "emoji": "👍", "userId": "bob"})
        assert app.state.note_store is first
    assert resp.json() == {"reactions": {"👍": {"count": 2, "users": ["alice", "bob"]}}}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def test_create_and_list_via_api():
    with TestClient(app) as c:
        resp = c.post("/notes", json={"trackId": "track1", "note": {"content": "great drop"}})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        note_id = body["noteId"]

        resp = c.get("/notes", params={"trackId": "track1"})
        assert resp.status_code == 200
        notes = resp.json()["notes"]
        assert len(notes) == 1
        assert notes[0]["id"] == note_id
        assert notes[0]["trackId"] == "track1"
        assert notes[0]["content"] == "great drop"
        assert notes[0]["isShared"] is True
        assert notes[0]["reactions"] == {}


def test_list_requires_track_id():
    with TestClient(app) as c:
        resp = c.get("/notes")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Track ID is required", "code": 400}


def test_create_with_missing_body_fields_is_400():
    with TestClient(app) as c:
        resp = c.post("/notes", json={"trackId": "track1"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid request"
    assert "note" in body["details"]


def test_create_with_empty_content_is_400():
    with TestClient(app) as c:
        resp = c.post("/notes", json={"trackId": "track1", "note": {"content": ""}})
    assert resp.status_code == 400


def test_react_toggles_for_explicit_user():
    with TestClient(app) as c:
        note_id = c.post("/notes", json={"trackId": "t", "note": {"content": "x"}}).json()["noteId"]
        resp = c.post("/notes/react", json={"noteId": note_id, "emoji": "👍", "userId": "u1"})
        assert resp.status_code == 200
        assert resp.json() == {"reactions": {"👍": {"count": 1, "users": ["u1"]}}}

        resp = c.post("/notes/react", json={"noteId": note_id, "emoji": "👍", "userId": "u1"})
        assert resp.json() == {"reactions": {}}


def test_react_defaults_to_listener_id():
    with TestClient(app) as c:
        note_id = c.post("/notes", json={"trackId": "t", "note": {"content": "x"}}).json()["noteId"]
        first = c.post("/notes/react", json={"noteId": note_id, "emoji": "🎷"}).json()
        users = first["reactions"]["🎷"]["users"]
        assert len(users) == 1

        # Same browser session, same listener id: the second toggle removes it.
        second = c.post("/notes/react", json={"noteId": note_id, "emoji": "🎷"}).json()
        assert second == {"reactions": {}}


def test_react_unknown_note_is_404():
    with TestClient(app) as c:
        resp = c.post("/notes/react", json={"noteId": "nope", "emoji": "👍", "userId": "u1"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "Note not found"
