"""
benchline.services.registration_service — Admission Controller
===============================================================

Sign-up, self-cancellation and organizer removal.

Every call is one transaction that starts by locking the activity row,
so capacity checks, waitlist positions and promotions for one activity
never interleave.  Notifications are collected while the transaction is
open and dispatched only after it commits.

Admission rules:
- Paid activities always waitlist with payment ``Pending``; the
  organizer confirms the slot once payment is verified.
- Free activities confirm immediately while capacity remains, otherwise
  waitlist with no payment tracking.
- A previously cancelled row is reactivated in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from benchline.constants import PAYMENT_DEADLINE, as_utc, utcnow
from benchline.database.engine import get_session, lock_activity, with_retry
from benchline.database.models import (
    Activity,
    ActivityStatus,
    AdminActionType,
    PaymentStatus,
    Registration,
    RegistrationStatus,
    User,
)
from benchline.engine.capacity import has_room
from benchline.engine.notifications import (
    PendingNotification,
    build_owner_waitlist_signup,
    build_removed,
)
from benchline.engine.roles import resolve_role
from benchline.engine.teams import assign_team
from benchline.errors import (
    AlreadyRegisteredError,
    DeadlinePassedError,
    NotFoundError,
    RegistrationClosedError,
)
from benchline.services.audit import log_admin_action, row_to_dict
from benchline.services.authorization import require_manager
from benchline.services.notification_service import (
    NotificationDispatcher,
    dispatch_pending,
)
from benchline.services.promotion_service import (
    count_registered,
    load_roster,
    next_waitlist_position,
    promote,
    renumber_waitlist,
    take_queue_seq,
)

logger = logging.getLogger(__name__)

MSG_REGISTERED = "Successfully registered!"
MSG_PAID_WAITLIST = (
    "You've been added to the waitlist. Please mark your payment so the "
    "organizer can verify and add you to the roster."
)


@dataclass(frozen=True, slots=True)
class RegistrationResult:
    status: RegistrationStatus
    waitlist_position: int | None
    message: str


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _check_open(activity: Activity | None, now: datetime) -> Activity:
    if activity is None:
        raise NotFoundError("Activity not found")
    if activity.status == ActivityStatus.CANCELLED:
        raise RegistrationClosedError("Activity has been cancelled")
    if activity.status != ActivityStatus.OPEN:
        raise RegistrationClosedError("Registration is not open for this activity")
    deadline = as_utc(activity.registration_deadline)
    if deadline is not None and now > deadline:
        raise DeadlinePassedError("Registration deadline has passed")
    return activity


def find_registration(
    session: Session, activity_id: int, user_id: int
) -> Registration | None:
    """The participant's row for *activity_id*, in any status."""
    return session.scalar(
        select(Registration).where(
            Registration.activity_id == activity_id,
            Registration.user_id == user_id,
        )
    )


def reset_row(reg: Registration, now: datetime) -> None:
    """Clear every per-registration field, as on a fresh insert."""
    reg.team_assignment = None
    reg.waitlist_position = None
    reg.payment_status = None
    reg.promoted_at = None
    reg.payment_marked_at = None
    reg.payment_verified_at = None
    reg.payment_deadline_at = None
    reg.cancelled_at = None
    reg.registered_at = now


def attach_registration(
    session: Session,
    activity: Activity,
    user: User,
    existing: Registration | None,
    now: datetime,
) -> Registration:
    """Reactivate *existing* or add a fresh row, with a new queue number.

    Call only after the admission decision is made: once the row is in
    the session, autoflush would count it in capacity queries.
    """
    if existing is None:
        reg = Registration(activity_id=activity.id, user_id=user.id)
        session.add(reg)
    else:
        logger.info(
            "Reactivating registration %d (user %d, activity %d)",
            existing.id, user.id, activity.id,
        )
        reg = existing
    reset_row(reg, now)
    reg.queue_seq = take_queue_seq(activity)
    return reg


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------
def _register_once(
    engine: Engine,
    activity_id: int,
    participant_id: int,
    role: str | None,
    now: datetime,
) -> tuple[RegistrationResult, list[PendingNotification]]:
    pending: list[PendingNotification] = []

    with get_session(engine) as session:
        activity = _check_open(lock_activity(session, activity_id), now)

        user = session.get(User, participant_id)
        if user is None:
            raise NotFoundError("User not found")

        resolved_role = resolve_role(user.positions, role)

        existing = find_registration(session, activity.id, user.id)
        if existing is not None and existing.is_active:
            raise AlreadyRegisteredError("Already registered for this activity")

        team = None
        position = None
        if not activity.is_paid and has_room(
            activity.capacity, count_registered(session, activity.id)
        ):
            status = RegistrationStatus.REGISTERED
            if activity.tracks_teams:
                team = assign_team(load_roster(session, activity.id), resolved_role)
        else:
            status = RegistrationStatus.WAITLISTED
            position = next_waitlist_position(session, activity.id)

        reg = attach_registration(session, activity, user, existing, now)
        reg.role = resolved_role
        reg.status = status
        reg.team_assignment = team
        reg.waitlist_position = position
        if activity.is_paid:
            reg.payment_status = PaymentStatus.PENDING
        session.flush()

        if activity.is_paid:
            message = MSG_PAID_WAITLIST
        elif reg.is_waitlisted:
            message = f"Activity is full. You're #{position} on the waitlist."
        else:
            message = MSG_REGISTERED

        # Owners only hear about signups that wait on a payment check.
        if activity.is_paid and activity.organization_id is not None:
            pending.append(build_owner_waitlist_signup(
                activity, activity.creator, user, reg.waitlist_position
            ))

        result = RegistrationResult(
            status=RegistrationStatus(reg.status),
            waitlist_position=reg.waitlist_position,
            message=message,
        )

    logger.info(
        "User %d → %s for activity %d (position %s)",
        participant_id, result.status, activity_id, result.waitlist_position,
    )
    return result, pending


def register(
    engine: Engine,
    activity_id: int,
    participant_id: int,
    role: str | None = None,
    *,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None = None,
) -> RegistrationResult:
    """Sign *participant_id* up for *activity_id*.

    Raises
    ------
    NotFoundError
        Unknown activity or user.
    RegistrationClosedError
        Activity cancelled or not open.
    DeadlinePassedError
        Registration deadline is behind us.
    InvalidInputError
        Role problems (see :func:`benchline.engine.roles.resolve_role`).
    AlreadyRegisteredError
        An active row already exists.
    """
    result, pending = with_retry(
        _register_once, engine, activity_id, participant_id, role, now or utcnow()
    )
    dispatch_pending(dispatcher, pending)
    return result


# ---------------------------------------------------------------------------
# Cancel / remove
# ---------------------------------------------------------------------------
def _release(
    session: Session,
    activity: Activity,
    reg: Registration,
    now: datetime,
    payment_deadline: timedelta,
) -> list[PendingNotification]:
    """Cancel *reg* and backfill or close the gap it leaves."""
    was_registered = reg.status == RegistrationStatus.REGISTERED
    reg.status = RegistrationStatus.CANCELLED
    reg.cancelled_at = now
    reg.waitlist_position = None
    reg.payment_deadline_at = None
    reg.team_assignment = None
    session.flush()

    if was_registered:
        result = promote(
            session, activity, 1,
            caller_owns_transaction=True,
            now=now,
            payment_deadline=payment_deadline,
        )
        return result.pending_notifications

    renumber_waitlist(session, activity.id)
    return []


def _cancel_once(
    engine: Engine,
    activity_id: int,
    participant_id: int,
    now: datetime,
    payment_deadline: timedelta,
) -> tuple[bool, list[PendingNotification]]:
    with get_session(engine) as session:
        activity = lock_activity(session, activity_id)
        if activity is None:
            return False, []
        reg = find_registration(session, activity.id, participant_id)
        if reg is None or not reg.is_active:
            return False, []
        pending = _release(session, activity, reg, now, payment_deadline)

    logger.info("User %d cancelled registration for activity %d", participant_id, activity_id)
    return True, pending


def cancel_registration(
    engine: Engine,
    activity_id: int,
    participant_id: int,
    *,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None = None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
) -> bool:
    """Self-cancel.  Returns False when there is no active registration."""
    cancelled, pending = with_retry(
        _cancel_once, engine, activity_id, participant_id, now or utcnow(), payment_deadline
    )
    dispatch_pending(dispatcher, pending)
    return cancelled


def _remove_once(
    engine: Engine,
    activity_id: int,
    registration_id: int,
    acting_admin_id: int,
    now: datetime,
    payment_deadline: timedelta,
) -> tuple[bool, list[PendingNotification]]:
    with get_session(engine) as session:
        activity = lock_activity(session, activity_id)
        if activity is None:
            raise NotFoundError("Activity not found")
        require_manager(session, activity, acting_admin_id)

        reg = session.get(Registration, registration_id)
        if reg is None or reg.activity_id != activity.id or not reg.is_active:
            return False, []

        before = row_to_dict(reg)
        pending = [build_removed(activity, reg.user)]
        pending.extend(_release(session, activity, reg, now, payment_deadline))
        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.REMOVE_REGISTRATION,
            target_table="registrations",
            target_id=str(reg.id),
            before=before,
            after=row_to_dict(reg),
        )

    logger.info(
        "Admin %d removed registration %d from activity %d",
        acting_admin_id, registration_id, activity_id,
    )
    return True, pending


def remove_registration(
    engine: Engine,
    activity_id: int,
    registration_id: int,
    acting_admin_id: int,
    *,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None = None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
) -> bool:
    """Organizer removal of a participant, with the same backfill as cancel.

    Raises
    ------
    NotFoundError
        Unknown activity.
    AuthorizationError
        *acting_admin_id* cannot manage the activity.
    """
    removed, pending = with_retry(
        _remove_once, engine, activity_id, registration_id, acting_admin_id,
        now or utcnow(), payment_deadline,
    )
    dispatch_pending(dispatcher, pending)
    return removed
