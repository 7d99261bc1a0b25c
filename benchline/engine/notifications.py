"""
benchline.engine.notifications — Deferred Notification Builders
================================================================

Mutations never talk to the push transport directly.  While a
transaction is open they *build* :class:`PendingNotification` values
from the rows they touched; the caller hands the batch to a dispatcher
only after the commit succeeds.

All wording lives here so services only supply rows — no copy concerns.
Builders read plain attributes while the session is still open, so the
resulting values are safe to use after it closes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from benchline.database.models import Activity, NotificationType, User


@dataclass(frozen=True, slots=True)
class PendingNotification:
    """One notification waiting for its transaction to commit."""

    recipient_id: int
    recipient_token: str | None
    title: str
    body: str
    notification_type: NotificationType
    activity_id: int | None = None
    organization_id: int | None = None
    participant_id: int | None = None
    owner_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)


def _activity_label(activity: Activity) -> str:
    if activity.name:
        return activity.name
    if activity.starts_at is not None:
        return f"Event on {activity.starts_at:%b} {activity.starts_at.day}"
    return f"Activity #{activity.id}"


def _build(
    recipient: User,
    activity: Activity,
    notification_type: NotificationType,
    title: str,
    body: str,
    *,
    participant: User | None = None,
) -> PendingNotification:
    return PendingNotification(
        recipient_id=recipient.id,
        recipient_token=recipient.push_token,
        title=title,
        body=body,
        notification_type=notification_type,
        activity_id=activity.id,
        organization_id=activity.organization_id,
        participant_id=participant.id if participant is not None else recipient.id,
        owner_id=activity.creator_id,
        payload={"activityId": str(activity.id), "type": str(notification_type)},
    )


# ---------------------------------------------------------------------------
# To the participant
# ---------------------------------------------------------------------------
def format_window(window: timedelta) -> str:
    """Human wording for a payment window: "2 hours", "90 minutes", "1 hour"."""
    minutes = int(window.total_seconds() // 60)
    hours, rest = divmod(minutes, 60)
    if hours and not rest:
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def build_promoted(
    activity: Activity, participant: User, *, deadline: timedelta | None = None
) -> PendingNotification:
    """"You're In!" for a participant promoted off the waitlist.

    *deadline* is the payment window still owed, if any.
    """
    deadline_text = (
        f" Pay within {format_window(deadline)} to secure your spot!"
        if deadline is not None else ""
    )
    return _build(
        participant, activity, NotificationType.AUTO_PROMOTED,
        "You're In!",
        f"A spot opened up for {_activity_label(activity)}.{deadline_text}",
    )


def build_spot_available(activity: Activity, participant: User) -> PendingNotification:
    """A slot is free but this participant's payment isn't verified yet."""
    return _build(
        participant, activity, NotificationType.SPOT_AVAILABLE,
        "Spot Available!",
        f"A spot opened up for {_activity_label(activity)}. "
        "Complete payment to secure your spot!",
    )


def build_registration_expired(activity: Activity, participant: User) -> PendingNotification:
    return _build(
        participant, activity, NotificationType.REGISTRATION_EXPIRED,
        "Registration Expired",
        f"Your registration for {_activity_label(activity)} was cancelled "
        "due to missed payment deadline.",
    )


def build_payment_verified_waitlist(
    activity: Activity, participant: User
) -> PendingNotification:
    return _build(
        participant, activity, NotificationType.PAYMENT_VERIFIED_WAITLIST,
        "Payment Verified - On Waitlist",
        f"Your payment for {_activity_label(activity)} was verified. "
        "You're on the priority waitlist and will be added when a spot opens.",
    )


def build_removed(activity: Activity, participant: User) -> PendingNotification:
    return _build(
        participant, activity, NotificationType.REMOVED_FROM_ACTIVITY,
        "Removed from Activity",
        f"You have been removed from {_activity_label(activity)} by the organizer.",
    )


def build_added_to_roster(
    activity: Activity, participant: User, team: str | None
) -> PendingNotification:
    on_team = f" on Team {team}" if team else ""
    return _build(
        participant, activity, NotificationType.ADDED_TO_ROSTER,
        "Added to Roster",
        f"You've been added to the roster{on_team} for {_activity_label(activity)}.",
    )


def build_added_to_waitlist(
    activity: Activity, participant: User, position: int
) -> PendingNotification:
    return _build(
        participant, activity, NotificationType.ADDED_TO_WAITLIST,
        "Added to Waitlist",
        f"You've been added to the waitlist for {_activity_label(activity)} (#{position}).",
    )


# ---------------------------------------------------------------------------
# To the owner
# ---------------------------------------------------------------------------
def build_owner_auto_promotion(
    activity: Activity, owner: User, participant: User
) -> PendingNotification:
    return _build(
        owner, activity, NotificationType.AUTO_PROMOTION,
        "Auto-Promotion",
        f"{participant.display_name} was auto-promoted from the waitlist "
        f"for {_activity_label(activity)}",
        participant=participant,
    )


def build_owner_waitlist_signup(
    activity: Activity, owner: User, participant: User, position: int
) -> PendingNotification:
    return _build(
        owner, activity, NotificationType.WAITLIST_SIGNUP,
        "New Waitlist Signup",
        f"{participant.display_name} joined the waitlist (#{position}) "
        f"for {_activity_label(activity)}",
        participant=participant,
    )


def build_owner_payment_marked(
    activity: Activity, owner: User, participant: User
) -> PendingNotification:
    return _build(
        owner, activity, NotificationType.PAYMENT_MARKED,
        "Payment Marked",
        f"{participant.display_name} marked payment for {_activity_label(activity)}",
        participant=participant,
    )
