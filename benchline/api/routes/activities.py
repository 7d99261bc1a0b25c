"""
benchline.api.routes.activities — Registration & waitlist endpoints (JWT‑protected)
====================================================================================
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from benchline.api.deps import (
    get_current_user_id,
    get_dispatcher,
    get_engine,
    get_payment_deadline,
)
from benchline.database.models import Registration
from benchline.services import (
    payment_service,
    promotion_service,
    registration_service,
    roster_service,
)
from benchline.services.roster_service import WaitlistReorderItem

router = APIRouter(prefix="/activities", tags=["activities"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RegisterRequest(BaseModel):
    role: str | None = None


class PaymentUpdate(BaseModel):
    verified: bool


class TeamUpdate(BaseModel):
    team: str


class ReorderItem(BaseModel):
    registration_id: int
    position: int


class WaitlistReorder(BaseModel):
    items: list[ReorderItem] = Field(default_factory=list)


class AddParticipant(BaseModel):
    user_id: int
    role: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _registration_dict(reg: Registration) -> dict:
    """Serialize a registration for the roster/waitlist views."""
    user = reg.user
    return {
        "id": reg.id,
        "user_id": reg.user_id,
        "name": user.display_name if user else None,
        "status": reg.status,
        "role": reg.role,
        "team": reg.team_assignment,
        "waitlist_position": reg.waitlist_position,
        "payment_status": reg.payment_status,
        "registered_at": reg.registered_at.isoformat() if reg.registered_at else None,
        "promoted_at": reg.promoted_at.isoformat() if reg.promoted_at else None,
        "payment_deadline_at": (
            reg.payment_deadline_at.isoformat() if reg.payment_deadline_at else None
        ),
    }


# ---------------------------------------------------------------------------
# Participant endpoints
# ---------------------------------------------------------------------------
@router.post("/{activity_id}/register")
def register(
    activity_id: int,
    body: RegisterRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
):
    result = registration_service.register(
        engine, activity_id, user_id,
        body.role if body else None,
        dispatcher=dispatcher,
    )
    return {
        "status": result.status,
        "waitlist_position": result.waitlist_position,
        "message": result.message,
    }


@router.post("/{activity_id}/cancel")
def cancel(
    activity_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
    payment_deadline: timedelta = Depends(get_payment_deadline),
):
    cancelled = registration_service.cancel_registration(
        engine, activity_id, user_id,
        dispatcher=dispatcher,
        payment_deadline=payment_deadline,
    )
    return {"cancelled": cancelled}


@router.post("/{activity_id}/payment/mark")
def mark_payment(
    activity_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
):
    marked = payment_service.mark_payment(
        engine, activity_id, user_id, dispatcher=dispatcher
    )
    return {"marked": marked}


@router.get("/{activity_id}/waitlist")
def waitlist(
    activity_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
):
    rows = roster_service.get_waitlist(engine, activity_id)
    return {"waitlist": [_registration_dict(r) for r in rows]}


@router.get("/{activity_id}/roster")
def roster(
    activity_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
):
    rows = roster_service.get_roster(engine, activity_id)
    return {"roster": [_registration_dict(r) for r in rows]}


# ---------------------------------------------------------------------------
# Organizer endpoints
# ---------------------------------------------------------------------------
@router.put("/{activity_id}/registrations/{registration_id}/payment")
def update_payment(
    activity_id: int,
    registration_id: int,
    body: PaymentUpdate,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
    payment_deadline: timedelta = Depends(get_payment_deadline),
):
    reg = payment_service.verify_payment(
        engine, activity_id, registration_id, body.verified, user_id,
        dispatcher=dispatcher,
        payment_deadline=payment_deadline,
    )
    if reg is None:
        raise HTTPException(404, "Registration not found")
    return {
        "id": reg.id,
        "status": reg.status,
        "payment_status": reg.payment_status,
        "waitlist_position": reg.waitlist_position,
    }


@router.delete("/{activity_id}/registrations/{registration_id}")
def remove_registration(
    activity_id: int,
    registration_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
    payment_deadline: timedelta = Depends(get_payment_deadline),
):
    removed = registration_service.remove_registration(
        engine, activity_id, registration_id, user_id,
        dispatcher=dispatcher,
        payment_deadline=payment_deadline,
    )
    if not removed:
        raise HTTPException(404, "Registration not found")
    return {"removed": True}


@router.put("/{activity_id}/registrations/{registration_id}/team")
def update_team(
    activity_id: int,
    registration_id: int,
    body: TeamUpdate,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
):
    updated = roster_service.update_team_assignment(
        engine, activity_id, registration_id, body.team, user_id
    )
    if not updated:
        raise HTTPException(404, "Registration not found")
    return {"id": registration_id, "team": body.team}


@router.post("/{activity_id}/registrations/{registration_id}/roster")
def move_to_roster(
    activity_id: int,
    registration_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    payment_deadline: timedelta = Depends(get_payment_deadline),
):
    reg = roster_service.move_to_roster(
        engine, activity_id, registration_id, user_id,
        payment_deadline=payment_deadline,
    )
    return {"id": reg.id, "status": reg.status, "team": reg.team_assignment}


@router.post("/{activity_id}/registrations/{registration_id}/waitlist")
def move_to_waitlist(
    activity_id: int,
    registration_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
):
    reg = roster_service.move_to_waitlist(engine, activity_id, registration_id, user_id)
    return {
        "id": reg.id,
        "status": reg.status,
        "waitlist_position": reg.waitlist_position,
    }


@router.post("/{activity_id}/participants")
def add_participant(
    activity_id: int,
    body: AddParticipant,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
    payment_deadline: timedelta = Depends(get_payment_deadline),
):
    result = roster_service.add_participant(
        engine, activity_id, body.user_id, user_id, body.role,
        dispatcher=dispatcher,
        payment_deadline=payment_deadline,
    )
    return {
        "status": result.status,
        "waitlist_position": result.waitlist_position,
        "message": result.message,
    }


@router.put("/{activity_id}/waitlist/order")
def reorder_waitlist(
    activity_id: int,
    body: WaitlistReorder,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
):
    roster_service.reorder_waitlist(
        engine,
        activity_id,
        [WaitlistReorderItem(i.registration_id, i.position) for i in body.items],
        user_id,
    )
    return {"reordered": len(body.items)}


@router.post("/{activity_id}/promote")
def promote(
    activity_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
    payment_deadline: timedelta = Depends(get_payment_deadline),
):
    result = promotion_service.trigger_promotion(
        engine, activity_id, user_id,
        dispatcher=dispatcher,
        payment_deadline=payment_deadline,
    )
    return {
        "promoted": [r.id for r in result.promoted],
        "notified": len(result.pending_notifications),
    }


@router.post("/{activity_id}/cancel-activity")
def cancel_activity(
    activity_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
):
    cancelled = roster_service.cancel_activity(engine, activity_id, user_id)
    return {"cancelled": cancelled}
