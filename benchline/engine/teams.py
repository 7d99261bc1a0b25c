"""
benchline.engine.teams — Team Balance Assigner
===============================================

Assigns a newly confirmed player to Black or White.

Two-level rule:
  * constrained roles (goalies — every side needs exactly one) are
    balanced against holders of that same role only;
  * everyone else goes to the side with fewer players overall.

A side with many skaters and no goalie still gets the next goalie even
though it is "bigger".  Ties go to :data:`DEFAULT_TEAM`.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from benchline.database.models import Role, Team

DEFAULT_TEAM = Team.BLACK

CONSTRAINED_ROLES: frozenset[str] = frozenset({Role.GOALIE})


def team_counts(roster: Iterable, role: str | None = None) -> Counter:
    """Count confirmed players per side, optionally only those with *role*."""
    counts: Counter = Counter({Team.BLACK: 0, Team.WHITE: 0})
    for member in roster:
        team = member.team_assignment
        if team not in (Team.BLACK, Team.WHITE):
            continue
        if role is not None and member.role != role:
            continue
        counts[Team(team)] += 1
    return counts


def assign_team(roster: Iterable, role: str | None) -> Team:
    """Return the side a new *role* player should join.

    *roster* is the activity's currently confirmed registrations (objects
    with ``team_assignment`` and ``role``).
    """
    if role in CONSTRAINED_ROLES:
        counts = team_counts(roster, role=role)
    else:
        counts = team_counts(roster)

    if counts[Team.WHITE] < counts[Team.BLACK]:
        return Team.WHITE
    if counts[Team.BLACK] < counts[Team.WHITE]:
        return Team.BLACK
    return DEFAULT_TEAM
