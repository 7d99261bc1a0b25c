"""
benchline.services.roster_service — Roster & Waitlist Administration
=====================================================================

Read views of an activity's roster and waitlist, plus the organizer
overrides that sit outside self-service admission and payment:

- manual waitlist reorder
- moving a rostered player between Black and White
- moving players between roster and waitlist by hand
- adding a participant on their behalf
- soft-cancelling the whole activity

Every mutation writes an ``admin_log`` row in the same transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Engine, select
from sqlalchemy.orm import selectinload

from benchline.constants import PAYMENT_DEADLINE, utcnow
from benchline.database.engine import get_session, lock_activity, with_retry
from benchline.database.models import (
    ActivityStatus,
    AdminActionType,
    PaymentStatus,
    Registration,
    RegistrationStatus,
    Role,
    Team,
    User,
)
from benchline.engine.capacity import has_room
from benchline.engine.notifications import (
    PendingNotification,
    build_added_to_roster,
    build_added_to_waitlist,
)
from benchline.engine.roles import normalize_role
from benchline.engine.teams import assign_team
from benchline.errors import (
    AlreadyRegisteredError,
    BusinessRuleError,
    InvalidInputError,
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
    renumber_waitlist,
    take_queue_seq,
)
from benchline.services.registration_service import (
    RegistrationResult,
    attach_registration,
    find_registration,
)

logger = logging.getLogger(__name__)

_TEAM_ORDER = {Team.BLACK: 0, Team.WHITE: 1}


@dataclass(frozen=True, slots=True)
class WaitlistReorderItem:
    registration_id: int
    position: int


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------
def _require_activity(session, activity_id: int):
    activity = lock_activity(session, activity_id)
    if activity is None:
        raise NotFoundError("Activity not found")
    return activity


def get_waitlist(engine: Engine, activity_id: int) -> list[Registration]:
    """Waitlisted rows in position order, users eagerly loaded."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(Registration)
            .options(selectinload(Registration.user))
            .where(
                Registration.activity_id == activity_id,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
            .order_by(Registration.waitlist_position, Registration.id)
        ).all()
        return list(rows)


def get_roster(engine: Engine, activity_id: int) -> list[Registration]:
    """Registered rows grouped by team, then in join order."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(Registration)
            .options(selectinload(Registration.user))
            .where(
                Registration.activity_id == activity_id,
                Registration.status == RegistrationStatus.REGISTERED,
            )
        ).all()
    return sorted(
        rows,
        key=lambda r: (_TEAM_ORDER.get(r.team_assignment, 2), r.queue_seq, r.id),
    )


# ---------------------------------------------------------------------------
# Manual reorder
# ---------------------------------------------------------------------------
def _reorder_once(
    engine: Engine,
    activity_id: int,
    items: list[WaitlistReorderItem],
    acting_admin_id: int,
) -> bool:
    with get_session(engine) as session:
        activity = _require_activity(session, activity_id)
        require_manager(session, activity, acting_admin_id)

        ids = [item.registration_id for item in items]
        if len(ids) != len(set(ids)):
            raise BusinessRuleError("Duplicate registration ids in reorder list")

        waitlist = {
            reg.id: reg
            for reg in session.scalars(
                select(Registration).where(
                    Registration.activity_id == activity.id,
                    Registration.status == RegistrationStatus.WAITLISTED,
                )
            )
        }
        if set(ids) != set(waitlist):
            raise BusinessRuleError("All waitlisted users must be included")

        if sorted(item.position for item in items) != list(range(1, len(items) + 1)):
            raise BusinessRuleError("Positions must be sequential starting from 1")

        before = {str(rid): reg.waitlist_position for rid, reg in waitlist.items()}
        for item in items:
            waitlist[item.registration_id].waitlist_position = item.position

        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.WAITLIST_REORDER,
            target_table="activities",
            target_id=str(activity.id),
            before=before,
            after={str(item.registration_id): item.position for item in items},
        )

    logger.info(
        "Reordered waitlist for activity %d: %d positions updated",
        activity_id, len(items),
    )
    return True


def reorder_waitlist(
    engine: Engine,
    activity_id: int,
    items: Iterable[WaitlistReorderItem],
    acting_admin_id: int,
) -> bool:
    """Replace every waitlist position with the organizer's order.

    *items* must name each waitlisted registration exactly once with
    positions ``1..N``.
    """
    return with_retry(_reorder_once, engine, activity_id, list(items), acting_admin_id)


# ---------------------------------------------------------------------------
# Team moves
# ---------------------------------------------------------------------------
def _parse_team(team: str) -> Team:
    for candidate in Team:
        if candidate.value.lower() == (team or "").strip().lower():
            return candidate
    raise InvalidInputError("Invalid team. Must be 'Black' or 'White'")


def update_team_assignment(
    engine: Engine,
    activity_id: int,
    registration_id: int,
    team: str,
    acting_admin_id: int,
) -> bool:
    """Move a rostered player to *team*.  False if the row isn't Registered."""
    new_team = _parse_team(team)

    with get_session(engine) as session:
        activity = _require_activity(session, activity_id)
        require_manager(session, activity, acting_admin_id)

        reg = session.get(Registration, registration_id)
        if (
            reg is None
            or reg.activity_id != activity.id
            or reg.status != RegistrationStatus.REGISTERED
        ):
            return False

        before = row_to_dict(reg)
        reg.team_assignment = new_team
        session.flush()
        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.TEAM_UPDATE,
            target_table="registrations",
            target_id=str(reg.id),
            before=before,
            after=row_to_dict(reg),
        )
    return True


# ---------------------------------------------------------------------------
# Activity cancellation
# ---------------------------------------------------------------------------
def cancel_activity(engine: Engine, activity_id: int, acting_admin_id: int) -> bool:
    """Soft-cancel the activity.  False if it was already cancelled."""
    with get_session(engine) as session:
        activity = _require_activity(session, activity_id)
        require_manager(session, activity, acting_admin_id)

        if activity.status == ActivityStatus.CANCELLED:
            return False

        before = row_to_dict(activity)
        activity.status = ActivityStatus.CANCELLED
        activity.cancelled_at = utcnow()
        session.flush()
        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.CANCEL_ACTIVITY,
            target_table="activities",
            target_id=str(activity.id),
            before=before,
            after=row_to_dict(activity),
        )

    logger.info("Admin %d cancelled activity %d", acting_admin_id, activity_id)
    return True


# ---------------------------------------------------------------------------
# Organizer overrides: roster <-> waitlist, direct adds
# ---------------------------------------------------------------------------
def _registration_of(session, activity, registration_id: int) -> Registration:
    reg = session.get(Registration, registration_id)
    if reg is None or reg.activity_id != activity.id:
        raise NotFoundError("Registration not found")
    return reg


def _move_to_roster_once(
    engine: Engine,
    activity_id: int,
    registration_id: int,
    acting_admin_id: int,
    now: datetime,
    payment_deadline: timedelta,
) -> Registration:
    with get_session(engine) as session:
        activity = _require_activity(session, activity_id)
        require_manager(session, activity, acting_admin_id)

        reg = _registration_of(session, activity, registration_id)
        if reg.status != RegistrationStatus.WAITLISTED:
            raise BusinessRuleError("Player is not on the waitlist")
        if not has_room(activity.capacity, count_registered(session, activity.id)):
            raise BusinessRuleError("Roster is full")

        before = row_to_dict(reg)
        roster = load_roster(session, activity.id)
        reg.status = RegistrationStatus.REGISTERED
        reg.waitlist_position = None
        reg.promoted_at = now
        reg.team_assignment = (
            assign_team(roster, reg.role) if activity.tracks_teams else None
        )
        owes = activity.is_paid and reg.payment_status != PaymentStatus.VERIFIED
        reg.payment_deadline_at = now + payment_deadline if owes else None
        renumber_waitlist(session, activity.id)

        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.MOVE_TO_ROSTER,
            target_table="registrations",
            target_id=str(reg.id),
            before=before,
            after=row_to_dict(reg),
        )

    logger.info(
        "Admin %d moved registration %d to the roster of activity %d",
        acting_admin_id, registration_id, activity_id,
    )
    return reg


def move_to_roster(
    engine: Engine,
    activity_id: int,
    registration_id: int,
    acting_admin_id: int,
    *,
    now: datetime | None = None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
) -> Registration:
    """Put a waitlisted participant on the roster, skipping the queue.

    Payment is not required; a paid activity starts the payment window
    for anyone not yet verified.  The participant is not notified.

    Raises
    ------
    NotFoundError
        Unknown activity or registration.
    AuthorizationError
        *acting_admin_id* cannot manage the activity.
    BusinessRuleError
        The row isn't Waitlisted, or the roster is full.
    """
    return with_retry(
        _move_to_roster_once, engine, activity_id, registration_id,
        acting_admin_id, now or utcnow(), payment_deadline,
    )


def _move_to_waitlist_once(
    engine: Engine, activity_id: int, registration_id: int, acting_admin_id: int
) -> Registration:
    with get_session(engine) as session:
        activity = _require_activity(session, activity_id)
        require_manager(session, activity, acting_admin_id)

        reg = _registration_of(session, activity, registration_id)
        if reg.status != RegistrationStatus.REGISTERED:
            raise BusinessRuleError("Player is not on the roster")

        before = row_to_dict(reg)
        reg.waitlist_position = next_waitlist_position(session, activity.id)
        reg.status = RegistrationStatus.WAITLISTED
        reg.queue_seq = take_queue_seq(activity)
        reg.team_assignment = None
        reg.promoted_at = None
        reg.payment_deadline_at = None
        session.flush()

        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.MOVE_TO_WAITLIST,
            target_table="registrations",
            target_id=str(reg.id),
            before=before,
            after=row_to_dict(reg),
        )

    logger.info(
        "Admin %d moved registration %d to the waitlist of activity %d (#%d)",
        acting_admin_id, registration_id, activity_id, reg.waitlist_position,
    )
    return reg


def move_to_waitlist(
    engine: Engine, activity_id: int, registration_id: int, acting_admin_id: int
) -> Registration:
    """Send a rostered participant to the back of the waitlist.

    The freed slot is left open; nobody is promoted into it and the
    participant is not notified.

    Raises
    ------
    NotFoundError
        Unknown activity or registration.
    AuthorizationError
        *acting_admin_id* cannot manage the activity.
    BusinessRuleError
        The row isn't Registered.
    """
    return with_retry(
        _move_to_waitlist_once, engine, activity_id, registration_id, acting_admin_id
    )


def _add_once(
    engine: Engine,
    activity_id: int,
    participant_id: int,
    role: str | None,
    acting_admin_id: int,
    now: datetime,
    payment_deadline: timedelta,
) -> tuple[RegistrationResult, list[PendingNotification]]:
    with get_session(engine) as session:
        activity = _require_activity(session, activity_id)
        require_manager(session, activity, acting_admin_id)
        if activity.status == ActivityStatus.CANCELLED:
            raise RegistrationClosedError("Activity has been cancelled")

        user = session.get(User, participant_id)
        if user is None:
            raise NotFoundError("User not found")

        existing = find_registration(session, activity.id, user.id)
        if existing is not None and existing.is_active:
            raise AlreadyRegisteredError("User is already registered for this activity")

        resolved_role = normalize_role(role) if role else Role.SKATER

        team = None
        position = None
        if has_room(activity.capacity, count_registered(session, activity.id)):
            status = RegistrationStatus.REGISTERED
            if activity.tracks_teams:
                team = assign_team(load_roster(session, activity.id), resolved_role)
        else:
            status = RegistrationStatus.WAITLISTED
            position = next_waitlist_position(session, activity.id)

        before = row_to_dict(existing)
        reg = attach_registration(session, activity, user, existing, now)
        reg.role = resolved_role
        reg.status = status
        reg.team_assignment = team
        reg.waitlist_position = position
        if activity.is_paid:
            reg.payment_status = PaymentStatus.PENDING
            if status == RegistrationStatus.REGISTERED:
                reg.payment_deadline_at = now + payment_deadline
        session.flush()

        if reg.is_waitlisted:
            note = build_added_to_waitlist(activity, user, position)
            message = f"Added to the waitlist (#{position})"
        else:
            note = build_added_to_roster(activity, user, team)
            message = "Added to the roster"

        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.ADD_PARTICIPANT,
            target_table="registrations",
            target_id=str(reg.id),
            before=before,
            after=row_to_dict(reg),
        )
        result = RegistrationResult(
            status=RegistrationStatus(reg.status),
            waitlist_position=reg.waitlist_position,
            message=message,
        )

    logger.info(
        "Admin %d added user %d to activity %d → %s",
        acting_admin_id, participant_id, activity_id, result.status,
    )
    return result, [note]


def add_participant(
    engine: Engine,
    activity_id: int,
    participant_id: int,
    acting_admin_id: int,
    role: str | None = None,
    *,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None = None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
) -> RegistrationResult:
    """Sign a participant up on the organizer's behalf.

    Goes straight onto the roster while a slot is free (paid activities
    start the payment window), otherwise to the back of the waitlist.
    Registration deadlines and profile positions are not checked;
    *role* defaults to Skater.

    Raises
    ------
    NotFoundError
        Unknown activity or user.
    AuthorizationError
        *acting_admin_id* cannot manage the activity.
    RegistrationClosedError
        The activity is cancelled.
    InvalidInputError
        Unknown role name.
    AlreadyRegisteredError
        The participant already has an active row.
    """
    result, pending = with_retry(
        _add_once, engine, activity_id, participant_id, role, acting_admin_id,
        now or utcnow(), payment_deadline,
    )
    dispatch_pending(dispatcher, pending)
    return result
