"""
benchline.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- users                — Players and organizers (profile positions, push token)
- organizations        — Leagues / clubs that own activities
- organization_admins  — Who may manage an organization's activities
- activities           — Capacity-limited events and tournaments
- registrations        — One row per (activity, user); status + waitlist state
- notifications        — Persisted in-app inbox, written after commit
- admin_log            — Append-only audit trail of organizer mutations
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Benchline ORM models."""


# ---------------------------------------------------------------------------
# Enums (stored as plain strings)
# ---------------------------------------------------------------------------
class ActivityKind(enum.StrEnum):
    EVENT = "Event"
    TOURNAMENT = "Tournament"


class ActivityStatus(enum.StrEnum):
    """Registration gate.  Only OPEN activities accept sign-ups."""
    DRAFT = "Draft"
    OPEN = "Open"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"


class RegistrationStatus(enum.StrEnum):
    REGISTERED = "Registered"
    WAITLISTED = "Waitlisted"
    CANCELLED = "Cancelled"


class PaymentStatus(enum.StrEnum):
    """``None`` on the row means the activity is free (no tracking)."""
    PENDING = "Pending"
    MARKED_PAID = "MarkedPaid"
    VERIFIED = "Verified"


class Team(enum.StrEnum):
    BLACK = "Black"
    WHITE = "White"


class Role(enum.StrEnum):
    GOALIE = "Goalie"
    SKATER = "Skater"


class NotificationType(enum.StrEnum):
    """Type tags carried by every dispatched notification."""
    AUTO_PROMOTED = "auto_promoted"
    AUTO_PROMOTION = "auto_promotion"
    SPOT_AVAILABLE = "spot_available"
    WAITLIST_SIGNUP = "waitlist_signup"
    REGISTRATION_EXPIRED = "registration_expired"
    PAYMENT_MARKED = "payment_marked"
    PAYMENT_VERIFIED_WAITLIST = "payment_verified_waitlist"
    REMOVED_FROM_ACTIVITY = "removed_from_activity"
    ADDED_TO_ROSTER = "added_to_roster"
    ADDED_TO_WAITLIST = "added_to_waitlist"


class AdminActionType(enum.StrEnum):
    """Categories of organizer mutations recorded in admin_log."""
    REMOVE_REGISTRATION = "REMOVE_REGISTRATION"
    PAYMENT_UPDATE = "PAYMENT_UPDATE"
    WAITLIST_REORDER = "WAITLIST_REORDER"
    TEAM_UPDATE = "TEAM_UPDATE"
    MANUAL_PROMOTION = "MANUAL_PROMOTION"
    CANCEL_ACTIVITY = "CANCEL_ACTIVITY"
    MOVE_TO_ROSTER = "MOVE_TO_ROSTER"
    MOVE_TO_WAITLIST = "MOVE_TO_WAITLIST"
    ADD_PARTICIPANT = "ADD_PARTICIPANT"


# ---------------------------------------------------------------------------
# Users — players and organizers
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str | None] = mapped_column(String(100), default=None)
    last_name: Mapped[str | None] = mapped_column(String(100), default=None)
    push_token: Mapped[str | None] = mapped_column(String(255), default=None)
    # Profile positions, e.g. ["goalie", "skater"]
    positions: Mapped[list | None] = mapped_column(JSONB, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    registrations: Mapped[list[Registration]] = relationship(back_populates="user")

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"


# ---------------------------------------------------------------------------
# Organizations & their admins
# ---------------------------------------------------------------------------
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"


class OrganizationAdmin(Base):
    __tablename__ = "organization_admins"

    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Activities — events and tournaments with a slot limit
# ---------------------------------------------------------------------------
class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(20), default=ActivityKind.EVENT)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    organization_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("organizations.id"), default=None
    )
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    registration_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    starts_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    status: Mapped[str] = mapped_column(String(20), default=ActivityStatus.OPEN)
    tracks_teams: Mapped[bool] = mapped_column(Boolean, default=True)
    # Monotonic insertion counter; the FIFO key handed to each registration
    next_queue_seq: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    creator: Mapped[User] = relationship(foreign_keys=[creator_id])
    registrations: Mapped[list[Registration]] = relationship(
        back_populates="activity"
    )

    @property
    def is_paid(self) -> bool:
        return (self.cost or 0) > 0

    def __repr__(self) -> str:
        return (
            f"<Activity id={self.id} kind={self.kind} name={self.name!r} "
            f"capacity={self.capacity}>"
        )


# ---------------------------------------------------------------------------
# Registrations — one row per (activity, user), reactivated in place
# ---------------------------------------------------------------------------
class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=RegistrationStatus.REGISTERED
    )
    role: Mapped[str | None] = mapped_column(String(20), default=None)
    team_assignment: Mapped[str | None] = mapped_column(String(10), default=None)
    waitlist_position: Mapped[int | None] = mapped_column(Integer, default=None)
    payment_status: Mapped[str | None] = mapped_column(String(20), default=None)
    queue_seq: Mapped[int] = mapped_column(Integer, default=0)
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    promoted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    payment_marked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    payment_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    payment_deadline_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    activity: Mapped[Activity] = relationship(back_populates="registrations")
    user: Mapped[User] = relationship(back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("activity_id", "user_id", name="uq_registrations_activity_user"),
        Index("ix_registrations_activity_status", "activity_id", "status"),
        Index("ix_registrations_payment_deadline", "status", "payment_deadline_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status != RegistrationStatus.CANCELLED

    @property
    def is_waitlisted(self) -> bool:
        return self.status == RegistrationStatus.WAITLISTED

    def __repr__(self) -> str:
        return (
            f"<Registration id={self.id} activity={self.activity_id} "
            f"user={self.user_id} status={self.status} pos={self.waitlist_position}>"
        )


# ---------------------------------------------------------------------------
# Notifications — in-app inbox rows written by the dispatcher
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONB, default=None)
    activity_id: Mapped[int | None] = mapped_column(Integer, default=None)
    organization_id: Mapped[int | None] = mapped_column(Integer, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
