"""
benchline.services.authorization — Who May Manage an Activity
==============================================================

An activity can be managed by its creator or by any admin of the
organization it belongs to.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from benchline.database.models import Activity, OrganizationAdmin
from benchline.errors import AuthorizationError

NOT_AUTHORIZED = "You are not authorized to manage this activity"


def can_manage(session: Session, activity: Activity, user_id: int) -> bool:
    if activity.creator_id == user_id:
        return True
    if activity.organization_id is None:
        return False
    membership = session.scalar(
        select(OrganizationAdmin).where(
            OrganizationAdmin.organization_id == activity.organization_id,
            OrganizationAdmin.user_id == user_id,
        )
    )
    return membership is not None


def require_manager(session: Session, activity: Activity, user_id: int) -> None:
    """Raise :class:`AuthorizationError` unless *user_id* may manage *activity*."""
    if not can_manage(session, activity, user_id):
        raise AuthorizationError(NOT_AUTHORIZED)
