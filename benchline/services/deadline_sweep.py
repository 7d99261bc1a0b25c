"""
benchline.services.deadline_sweep — Payment-Deadline Sweep
===========================================================

Promoted players in fee activities who still owe money get a payment
window.  When it lapses the slot goes back to the waitlist:

  1. Find Registered rows with payment Pending (or untracked) whose
     ``payment_deadline_at`` is in the past, grouped by activity
  2. Per activity, one transaction: lock, cancel every expired row,
     backfill through the Promotion Engine, commit
  3. Dispatch the batch (expiry notices + promotion notices)

One failing activity is logged and rolled back; the others still run.
:class:`PaymentDeadlineSweeper` repeats the pass on an asyncio task.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta

from sqlalchemy import Engine, or_, select

from benchline.constants import PAYMENT_DEADLINE, as_utc, utcnow
from benchline.database.engine import get_session, lock_activity, run_db
from benchline.database.models import PaymentStatus, Registration, RegistrationStatus
from benchline.engine.notifications import PendingNotification, build_registration_expired
from benchline.services.notification_service import (
    NotificationDispatcher,
    dispatch_pending,
)
from benchline.services.promotion_service import promote

logger = logging.getLogger(__name__)


def _expired_clause(now: datetime):
    return (
        (Registration.status == RegistrationStatus.REGISTERED)
        & or_(
            Registration.payment_status == PaymentStatus.PENDING,
            Registration.payment_status.is_(None),
        )
        & Registration.payment_deadline_at.is_not(None)
        & (Registration.payment_deadline_at < now)
    )


def find_expired(engine: Engine, now: datetime) -> dict[int, list[int]]:
    """Map activity id → ids of its expired registrations."""
    grouped: dict[int, list[int]] = defaultdict(list)
    with get_session(engine) as session:
        rows = session.execute(
            select(Registration.activity_id, Registration.id)
            .where(_expired_clause(now))
            .order_by(Registration.activity_id, Registration.id)
        ).all()
    for activity_id, reg_id in rows:
        grouped[activity_id].append(reg_id)
    return dict(grouped)


def _sweep_activity(
    engine: Engine,
    activity_id: int,
    now: datetime,
    payment_deadline: timedelta,
) -> tuple[int, int, list[PendingNotification]]:
    pending: list[PendingNotification] = []
    with get_session(engine) as session:
        activity = lock_activity(session, activity_id)
        if activity is None:
            return 0, 0, []

        # Re-check under the lock; the participant may have paid meanwhile.
        expired = list(session.scalars(
            select(Registration).where(
                Registration.activity_id == activity.id,
                _expired_clause(now),
            ).order_by(Registration.id)
        ))
        for reg in expired:
            reg.status = RegistrationStatus.CANCELLED
            reg.cancelled_at = now
            reg.payment_deadline_at = None
            reg.team_assignment = None
            pending.append(build_registration_expired(activity, reg.user))
        session.flush()

        result = promote(
            session, activity, len(expired),
            caller_owns_transaction=True,
            now=now,
            payment_deadline=payment_deadline,
        )
        pending.extend(result.pending_notifications)

    return len(expired), len(result.promoted), pending


def process_expired_payment_deadlines(
    engine: Engine,
    *,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None = None,
    payment_deadline: timedelta = PAYMENT_DEADLINE,
) -> dict[str, int]:
    """Cancel lapsed unpaid registrations and backfill their slots.

    Returns ``{"expired": n, "promoted": m, "activities": k}``.
    """
    now = as_utc(now) or utcnow()
    summary = {"expired": 0, "promoted": 0, "activities": 0}

    for activity_id in find_expired(engine, now):
        try:
            expired, promoted, pending = _sweep_activity(
                engine, activity_id, now, payment_deadline
            )
        except Exception:
            logger.exception("Payment-deadline sweep failed for activity %d", activity_id)
            continue

        dispatch_pending(dispatcher, pending)
        if expired:
            summary["activities"] += 1
            summary["expired"] += expired
            summary["promoted"] += promoted
            logger.info(
                "Expired %d registration(s) and promoted %d for activity %d",
                expired, promoted, activity_id,
            )

    return summary


# ---------------------------------------------------------------------------
# Periodic runner
# ---------------------------------------------------------------------------
class PaymentDeadlineSweeper:
    """Background task that runs the sweep every ``interval_minutes``."""

    def __init__(
        self,
        engine: Engine,
        dispatcher: NotificationDispatcher | None,
        *,
        interval_minutes: int = 15,
        payment_deadline: timedelta = PAYMENT_DEADLINE,
    ) -> None:
        self.engine = engine
        self.dispatcher = dispatcher
        self.interval = interval_minutes * 60
        self.payment_deadline = payment_deadline
        self._task: asyncio.Task | None = None

    async def run_once(self) -> dict[str, int]:
        return await run_db(
            process_expired_payment_deadlines,
            self.engine,
            dispatcher=self.dispatcher,
            payment_deadline=self.payment_deadline,
        )

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background sweep task."""
        if self._task is not None:
            return

        async def _sweep_loop() -> None:
            while True:
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("Payment-deadline sweep error")
                await asyncio.sleep(self.interval)

        self._task = loop.create_task(_sweep_loop(), name="payment-deadline-sweep")
        logger.info("Payment-deadline sweep started (every %ds)", self.interval)

    def stop(self) -> None:
        """Cancel the sweep task."""
        if self._task:
            self._task.cancel()
            self._task = None
