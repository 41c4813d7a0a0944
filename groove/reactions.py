"""Emoji reaction toggling — pure logic, no I/O."""

from __future__ import annotations

from typing import Dict, Mapping

from groove.models import Reaction


def has_reacted(reactions: Mapping[str, Reaction], emoji: str, user_id: str) -> bool:
    reaction = reactions.get(emoji)
    return reaction is not None and user_id in reaction.users


def toggle_reaction(
    reactions: Mapping[str, Reaction],
    emoji: str,
    user_id: str,
) -> Dict[str, Reaction]:
    """Flip *user_id*'s membership in *emoji*'s user set.

    Returns a **new** mapping (the input is not mutated).  The count always
    equals the number of users, and an emoji with no users left is removed
    entirely, so toggling the same pair twice restores the original map.
    """
    if not emoji:
        raise ValueError("emoji is required")
    if not user_id:
        raise ValueError("user_id is required")

    result = {key: value.model_copy(deep=True) for key, value in reactions.items()}
    current = result.get(emoji) or Reaction()

    if has_reacted(result, emoji, user_id):
        current.users = [u for u in current.users if u != user_id]
    else:
        current.users = [*current.users, user_id]
    # The user list is authoritative; a stored count that drifted is rewritten.
    current.count = len(current.users)

    if not current.users:
        result.pop(emoji, None)
    else:
        result[emoji] = current
    return result
