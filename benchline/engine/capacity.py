"""
benchline.engine.capacity — Capacity Calculator
================================================

Capacity is a *derived* value: the number of ``Registered`` rows,
compared against the activity's configured limit.  Nothing here caches
a counter.  Pure functions — no DB I/O.
"""

from __future__ import annotations

from collections.abc import Iterable

from benchline.database.models import RegistrationStatus


def count_confirmed(registrations: Iterable) -> int:
    """Number of rows currently holding a confirmed slot."""
    return sum(1 for r in registrations if r.status == RegistrationStatus.REGISTERED)


def open_slots(capacity: int, confirmed: int) -> int:
    """Slots free right now (never negative)."""
    return max(0, capacity - confirmed)


def has_room(capacity: int, confirmed: int) -> bool:
    """True when one more participant can be confirmed."""
    return open_slots(capacity, confirmed) > 0
