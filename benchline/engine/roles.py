"""
benchline.engine.roles — Registration Role Resolution
======================================================

Maps a player's profile positions plus an optional requested role to the
role they register with.  Players with a single position never need to
choose; players with several must say which one they're bringing.
"""

from __future__ import annotations

from collections.abc import Iterable

from benchline.database.models import Role
from benchline.errors import InvalidInputError, RoleAmbiguousError

_ROLE_BY_KEY: dict[str, Role] = {role.value.lower(): role for role in Role}


def normalize_role(name: str) -> Role:
    """Case-insensitive lookup of a role name."""
    role = _ROLE_BY_KEY.get(name.strip().lower())
    if role is None:
        raise InvalidInputError("Invalid position. Must be 'Goalie' or 'Skater'")
    return role


def resolve_role(positions: Iterable[str] | None, requested: str | None) -> Role:
    """Pick the role for a new registration.

    Parameters
    ----------
    positions : the player's profile positions (e.g. ``["goalie"]``).
    requested : the role asked for at registration time, if any.

    Raises
    ------
    InvalidInputError
        No positions on the profile, an unknown role name, or a role the
        player doesn't have.
    RoleAmbiguousError
        Several positions and nothing requested.
    """
    profile = {normalize_role(p) for p in (positions or [])}
    if not profile:
        raise InvalidInputError(
            "Please set up your positions in your profile before registering"
        )

    if len(profile) == 1:
        return next(iter(profile))

    if not requested:
        raise RoleAmbiguousError(
            "You have multiple positions. "
            "Please select which position you want to register as"
        )

    role = normalize_role(requested)
    if role not in profile:
        raise InvalidInputError(f"You don't have {requested} in your profile positions")
    return role
