"""
benchline.services.promotion_service — Promotion Engine & Renumbering
======================================================================

Moves waitlisted participants onto the roster when slots free up.

Pipeline for one call of :func:`promote`:
  1. Rank the waitlist (verified tier first, then FIFO)
  2. Promote eligible entries while slots remain
  3. Send "Spot Available!" to the earliest unverified entries for any
     slots left over
  4. Renumber the remaining waitlist to ``1..N``
  5. Return the deferred notification batch

The caller decides who commits.  With ``caller_owns_transaction=True``
the engine only flushes and hands the batch back; the caller commits and
then dispatches.  With ``False`` the engine commits its session and
dispatches itself.  Callers must hold the activity lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from benchline.constants import PAYMENT_DEADLINE, utcnow
from benchline.database.engine import get_session, lock_activity, with_retry
from benchline.database.models import (
    Activity,
    AdminActionType,
    PaymentStatus,
    Registration,
    RegistrationStatus,
)
from benchline.engine.capacity import open_slots
from benchline.engine.notifications import (
    PendingNotification,
    build_owner_auto_promotion,
    build_promoted,
    build_spot_available,
)
from benchline.engine.ranking import is_verified, rank_waitlist
from benchline.engine.teams import assign_team
from benchline.errors import NotFoundError
from benchline.services.audit import log_admin_action
from benchline.services.authorization import require_manager
from benchline.services.notification_service import (
    NotificationDispatcher,
    dispatch_pending,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PromotionResult:
    """Rows moved onto the roster plus notifications still to be sent."""

    promoted: list[Registration] = field(default_factory=list)
    pending_notifications: list[PendingNotification] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Counting helpers (capacity is always derived, never cached)
# ---------------------------------------------------------------------------
def count_registered(session: Session, activity_id: int) -> int:
    return session.scalar(
        select(func.count(Registration.id)).where(
            Registration.activity_id == activity_id,
            Registration.status == RegistrationStatus.REGISTERED,
        )
    ) or 0


def free_slots(session: Session, activity: Activity) -> int:
    return open_slots(activity.capacity, count_registered(session, activity.id))


def load_waitlist(session: Session, activity_id: int) -> list[Registration]:
    return list(session.scalars(
        select(Registration).where(
            Registration.activity_id == activity_id,
            Registration.status == RegistrationStatus.WAITLISTED,
        )
    ))


def load_roster(session: Session, activity_id: int) -> list[Registration]:
    return list(session.scalars(
        select(Registration).where(
            Registration.activity_id == activity_id,
            Registration.status == RegistrationStatus.REGISTERED,
        )
    ))


def next_waitlist_position(session: Session, activity_id: int) -> int:
    """Position a newly waitlisted row should take (``max + 1``)."""
    current = session.scalar(
        select(func.max(Registration.waitlist_position)).where(
            Registration.activity_id == activity_id,
            Registration.status == RegistrationStatus.WAITLISTED,
        )
    )
    return (current or 0) + 1


def take_queue_seq(activity: Activity) -> int:
    """Hand out the activity's next FIFO sequence number."""
    activity.next_queue_seq = (activity.next_queue_seq or 0) + 1
    return activity.next_queue_seq


# ---------------------------------------------------------------------------
# Renumbering
# ---------------------------------------------------------------------------
def _queue_order(reg: Registration) -> tuple:
    position = reg.waitlist_position
    return (position is None, position or 0, reg.queue_seq, reg.id)


def renumber_waitlist(session: Session, activity_id: int) -> int:
    """Close gaps in the waitlist, preserving relative order.

    Returns the waitlist length.  Running it twice changes nothing.
    """
    session.flush()
    waiting = sorted(load_waitlist(session, activity_id), key=_queue_order)
    for position, reg in enumerate(waiting, start=1):
        if reg.waitlist_position != position:
            reg.waitlist_position = position
    session.flush()
    return len(waiting)


# ---------------------------------------------------------------------------
# Promotion
# ---------------------------------------------------------------------------
def _is_eligible(activity: Activity, reg: Registration) -> bool:
    # Free activities have nothing to verify.
    return not activity.is_paid or is_verified(reg)


def promote(
    session: Session,
    activity: Activity,
    freed_slots: int,
    *,
    caller_owns_transaction: bool,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
    notify_unverified: bool = True,
) -> PromotionResult:
    """Fill up to *freed_slots* from the waitlist of *activity*.

    Parameters
    ----------
    session : open session holding the activity lock.
    freed_slots : how many slots just opened; ``<= 0`` is a no-op.
    caller_owns_transaction : flush only and return the batch (True), or
        commit and dispatch here (False).
    dispatcher : used only when the engine owns the transaction.
    payment_deadline : window granted to promoted rows that still owe.
    notify_unverified : send "Spot Available!" for slots left over after
        the eligible entries run out.  Off when no slot was actually
        freed (e.g. a payment verification).
    """
    result = PromotionResult()
    if freed_slots <= 0:
        return result

    now = now or utcnow()
    ranked = rank_waitlist(load_waitlist(session, activity.id))
    if not ranked:
        return result

    roster = load_roster(session, activity.id)
    owner = activity.creator
    eligible = [r for r in ranked if _is_eligible(activity, r)]

    for reg in eligible[:freed_slots]:
        reg.status = RegistrationStatus.REGISTERED
        reg.waitlist_position = None
        reg.promoted_at = now
        reg.team_assignment = (
            assign_team(roster, reg.role) if activity.tracks_teams else None
        )
        owes = activity.is_paid and reg.payment_status != PaymentStatus.VERIFIED
        reg.payment_deadline_at = now + payment_deadline if owes else None
        roster.append(reg)

        result.promoted.append(reg)
        result.pending_notifications.append(build_promoted(
            activity, reg.user,
            deadline=payment_deadline if owes else None,
        ))
        result.pending_notifications.append(
            build_owner_auto_promotion(activity, owner, reg.user)
        )

    remaining = freed_slots - len(result.promoted)
    if remaining > 0 and notify_unverified:
        unverified = [r for r in ranked if not _is_eligible(activity, r)]
        for reg in unverified[:remaining]:
            result.pending_notifications.append(build_spot_available(activity, reg.user))

    renumber_waitlist(session, activity.id)

    logger.info(
        "Promoted %d and queued %d notification(s) for activity %d",
        len(result.promoted), len(result.pending_notifications), activity.id,
    )

    if not caller_owns_transaction:
        session.commit()
        dispatch_pending(dispatcher, result.pending_notifications)

    return result


# ---------------------------------------------------------------------------
# Admin-triggered promotion
# ---------------------------------------------------------------------------
def _trigger_promotion_once(
    engine: Engine,
    activity_id: int,
    acting_admin_id: int,
    payment_deadline: timedelta,
) -> PromotionResult:
    with get_session(engine) as session:
        activity = lock_activity(session, activity_id)
        if activity is None:
            raise NotFoundError("Activity not found")
        require_manager(session, activity, acting_admin_id)

        slots = free_slots(session, activity)
        result = promote(
            session, activity, slots,
            caller_owns_transaction=True,
            payment_deadline=payment_deadline,
        )
        if result.promoted:
            log_admin_action(
                session,
                actor_id=acting_admin_id,
                action_type=AdminActionType.MANUAL_PROMOTION,
                target_table="activities",
                target_id=str(activity.id),
                before={"free_slots": slots},
                after={"promoted": [r.id for r in result.promoted]},
            )
    return result


def trigger_promotion(
    engine: Engine,
    activity_id: int,
    acting_admin_id: int,
    *,
    dispatcher: NotificationDispatcher | None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
) -> PromotionResult:
    """Fill every open slot of *activity_id* from its waitlist (admin only)."""
    result = with_retry(
        _trigger_promotion_once, engine, activity_id, acting_admin_id, payment_deadline
    )
    dispatch_pending(dispatcher, result.pending_notifications)
    return result
