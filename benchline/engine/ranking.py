"""
benchline.engine.ranking — Waitlist Ranker
===========================================

Two-tier priority queue expressed as a single sort key:

  1. ``Verified`` entries first, oldest queue entry first
     (``queue_seq``), ties broken by row id;
  2. everyone else (pending, marked-paid, or free-activity ``None``) in
     their existing queue order: current waitlist position, then
     ``queue_seq``, then id.

A verified player always outranks an unverified one, even one who
joined earlier.  Pure functions — no DB I/O.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from benchline.database.models import PaymentStatus

__all__ = ["is_verified", "partition_waitlist", "rank_key", "rank_waitlist"]


def is_verified(entry) -> bool:
    return entry.payment_status == PaymentStatus.VERIFIED


def rank_key(entry) -> tuple:
    """Sort key implementing the two-tier order."""
    if is_verified(entry):
        return (0, entry.queue_seq, 0, entry.id)
    position = entry.waitlist_position
    return (
        1,
        position if position is not None else math.inf,
        entry.queue_seq,
        entry.id,
    )


def rank_waitlist(entries: Iterable) -> list:
    """Return *entries* in promotion order."""
    return sorted(entries, key=rank_key)


def partition_waitlist(entries: Iterable) -> tuple[list, list]:
    """Split a ranked waitlist into ``(verified, not_verified)``."""
    ranked = rank_waitlist(entries)
    verified = [e for e in ranked if is_verified(e)]
    others = [e for e in ranked if not is_verified(e)]
    return verified, others
