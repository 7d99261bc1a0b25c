"""
benchline.services.payment_service — Payment Status Workflow
=============================================================

Benchline never moves money; it only tracks what participants and
organizers report:

    Pending ──mark_payment──▶ MarkedPaid ──verify_payment(True)──▶ Verified
       ▲                                                              │
       └─────────────────── verify_payment(False) ◀───────────────────┘

Verifying a waitlisted participant can open their path onto the roster:
verified rows outrank everyone else, so if the activity has free slots
the Promotion Engine runs in the same transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import Engine, select

from benchline.constants import PAYMENT_DEADLINE, utcnow
from benchline.database.engine import get_session, lock_activity, with_retry
from benchline.database.models import (
    AdminActionType,
    PaymentStatus,
    Registration,
    RegistrationStatus,
)
from benchline.engine.notifications import (
    PendingNotification,
    build_owner_payment_marked,
    build_payment_verified_waitlist,
)
from benchline.errors import BusinessRuleError, NotFoundError
from benchline.services.audit import log_admin_action, row_to_dict
from benchline.services.authorization import require_manager
from benchline.services.notification_service import (
    NotificationDispatcher,
    dispatch_pending,
)
from benchline.services.promotion_service import free_slots, promote

logger = logging.getLogger(__name__)

FREE_ACTIVITY = "Payment tracking is not enabled for free activities"


# ---------------------------------------------------------------------------
# Participant: "I paid"
# ---------------------------------------------------------------------------
def _mark_once(
    engine: Engine, activity_id: int, participant_id: int, now: datetime
) -> tuple[bool, list[PendingNotification]]:
    with get_session(engine) as session:
        activity = lock_activity(session, activity_id)
        if activity is None or not activity.is_paid:
            return False, []

        reg = session.scalar(
            select(Registration).where(
                Registration.activity_id == activity.id,
                Registration.user_id == participant_id,
                Registration.status != RegistrationStatus.CANCELLED,
            )
        )
        if reg is None or reg.payment_status != PaymentStatus.PENDING:
            return False, []

        reg.payment_status = PaymentStatus.MARKED_PAID
        reg.payment_marked_at = now
        pending = [build_owner_payment_marked(activity, activity.creator, reg.user)]

    logger.info("User %d marked payment for activity %d", participant_id, activity_id)
    return True, pending


def mark_payment(
    engine: Engine,
    activity_id: int,
    participant_id: int,
    *,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None = None,
) -> bool:
    """Move the participant's payment from Pending to MarkedPaid.

    Returns False for free activities, missing registrations and rows
    not currently Pending.
    """
    marked, pending = with_retry(
        _mark_once, engine, activity_id, participant_id, now or utcnow()
    )
    dispatch_pending(dispatcher, pending)
    return marked


# ---------------------------------------------------------------------------
# Organizer: verify / un-verify
# ---------------------------------------------------------------------------
def _verify_once(
    engine: Engine,
    activity_id: int,
    registration_id: int,
    verified: bool,
    acting_admin_id: int,
    now: datetime,
    payment_deadline: timedelta,
) -> tuple[Registration | None, list[PendingNotification]]:
    pending: list[PendingNotification] = []

    with get_session(engine) as session:
        activity = lock_activity(session, activity_id)
        if activity is None:
            raise NotFoundError("Activity not found")
        require_manager(session, activity, acting_admin_id)

        if not activity.is_paid:
            raise BusinessRuleError(FREE_ACTIVITY)

        reg = session.get(Registration, registration_id)
        if reg is None or reg.activity_id != activity.id or not reg.is_active:
            return None, []

        before = row_to_dict(reg)

        if verified:
            reg.payment_status = PaymentStatus.VERIFIED
            reg.payment_verified_at = now
            reg.payment_deadline_at = None
            session.flush()

            if reg.is_waitlisted:
                slots = free_slots(session, activity)
                if slots > 0:
                    result = promote(
                        session, activity, slots,
                        caller_owns_transaction=True,
                        now=now,
                        payment_deadline=payment_deadline,
                        notify_unverified=False,
                    )
                    pending.extend(result.pending_notifications)
                if reg.is_waitlisted:
                    pending.append(build_payment_verified_waitlist(activity, reg.user))
        else:
            reg.payment_status = PaymentStatus.PENDING
            reg.payment_verified_at = None
            if reg.status == RegistrationStatus.REGISTERED:
                reg.payment_deadline_at = now + payment_deadline

        session.flush()
        log_admin_action(
            session,
            actor_id=acting_admin_id,
            action_type=AdminActionType.PAYMENT_UPDATE,
            target_table="registrations",
            target_id=str(reg.id),
            before=before,
            after=row_to_dict(reg),
        )

    logger.info(
        "Admin %d set payment of registration %d to %s",
        acting_admin_id, registration_id, reg.payment_status,
    )
    return reg, pending


def verify_payment(
    engine: Engine,
    activity_id: int,
    registration_id: int,
    verified: bool,
    acting_admin_id: int,
    *,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None = None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
) -> Registration | None:
    """Confirm (``verified=True``) or reject a reported payment.

    Returns the updated registration, or ``None`` when it isn't an
    active registration of this activity.

    Raises
    ------
    NotFoundError
        Unknown activity.
    AuthorizationError
        *acting_admin_id* cannot manage the activity.
    BusinessRuleError
        The activity is free.
    """
    reg, pending = with_retry(
        _verify_once, engine, activity_id, registration_id, verified,
        acting_admin_id, now or utcnow(), payment_deadline,
    )
    dispatch_pending(dispatcher, pending)
    return reg
