"""Shared track notes and their emoji reactions, stored in SQLite.

Each note is a small document: the reaction map lives in a JSON column and is
rewritten whole on every toggle.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone

import aiosqlite

from groove.models import Note, Reaction
from groove.reactions import toggle_reaction
from vinyl.errors import InvalidRequest, NotFound, StoreError

logger = logging.getLogger(__name__)


def _row_to_note(row: aiosqlite.Row) -> Note:
    reactions = {
        emoji: Reaction(**value) for emoji, value in json.loads(row["reactions"] or "{}").items()
    }
    return Note(
        id=row["id"],
        track_id=row["track_id"],
        content=row["content"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        is_shared=bool(row["is_shared"]),
        reactions=reactions,
    )


def _dump_reactions(reactions: dict[str, Reaction]) -> str:
    return json.dumps(
        {emoji: r.model_dump() for emoji, r in reactions.items()},
        ensure_ascii=False,
    )


class NoteStore:
    """CRUD over the ``notes`` table."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        # Serialises reaction read-modify-write on this connection.
        self._reaction_lock = asyncio.Lock()

    async def create(self, track_id: str, content: str, *, is_shared: bool = True) -> Note:
        content = (content or "").strip()
        if not track_id:
            raise InvalidRequest("Track ID is required")
        if not content:
            raise InvalidRequest("Note content is required")

        note = Note(
            id=uuid.uuid4().hex,
            track_id=track_id,
            content=content,
            timestamp=datetime.now(timezone.utc),
            is_shared=is_shared,
        )
        try:
            await self.db.execute(
                """INSERT INTO notes (id, track_id, content, timestamp, is_shared, reactions)
                   VALUES (?, ?, ?, ?, ?, '{}')""",
                (note.id, note.track_id, note.content, note.timestamp.isoformat(), int(is_shared)),
            )
            await self.db.commit()
        except aiosqlite.Error as exc:
            raise StoreError("Failed to save note", details=str(exc)) from exc

        logger.info("Saved note %s for track %s", note.id, track_id)
        return note

    async def list_for_track(self, track_id: str) -> list[Note]:
        """Shared notes for *track_id*, newest first."""
        if not track_id:
            raise InvalidRequest("Track ID is required")
        try:
            cursor = await self.db.execute(
                """SELECT id, track_id, content, timestamp, is_shared, reactions
                   FROM notes
                   WHERE track_id = ? AND is_shared = 1
                   ORDER BY timestamp DESC""",
                (track_id,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StoreError("Failed to fetch notes", details=str(exc)) from exc
        return [_row_to_note(row) for row in rows]

    async def get(self, note_id: str) -> Note:
        try:
            cursor = await self.db.execute(
                "SELECT id, track_id, content, timestamp, is_shared, reactions FROM notes WHERE id = ?",
                (note_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreError("Failed to fetch note", details=str(exc)) from exc
        if row is None:
            raise NotFound("Note not found")
        return _row_to_note(row)

    async def toggle_reaction(self, note_id: str, emoji: str, user_id: str) -> dict[str, Reaction]:
        """Flip *user_id*'s *emoji* reaction on a note and return the new map."""
        if not note_id or not emoji or not user_id:
            raise InvalidRequest("noteId, emoji and userId are required")

        async with self._reaction_lock:
            note = await self.get(note_id)
            reactions = toggle_reaction(note.reactions, emoji, user_id)
            try:
                await self.db.execute(
                    "UPDATE notes SET reactions = ? WHERE id = ?",
                    (_dump_reactions(reactions), note_id),
                )
                await self.db.commit()
            except aiosqlite.Error as exc:
                raise StoreError("Failed to toggle reaction", details=str(exc)) from exc
        return reactions
