"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from decimal import Decimal

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of benchline.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, select  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from benchline.database.models import (  # noqa: E402
    Activity,
    ActivityStatus,
    Base,
    OrganizationAdmin,
    Organization,
    Registration,
    RegistrationStatus,
    User,
)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

NOW = datetime(2026, 3, 10, 18, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Benchline tables.

    Uses StaticPool so every session (and ``asyncio.to_thread`` worker)
    shares the same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine, expire_on_commit=False) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Recording dispatcher
# ---------------------------------------------------------------------------
class RecordingDispatcher:
    """Collects every ``send`` call; optionally fails on chosen titles."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.sent: list[dict] = []
        self.fail_on = fail_on or set()

    def send(self, recipient_token, title, body, payload, **kwargs) -> None:
        if title in self.fail_on:
            raise RuntimeError(f"push transport down ({title})")
        self.sent.append({
            "token": recipient_token,
            "title": title,
            "body": body,
            "payload": payload,
            **kwargs,
        })

    def titles(self) -> list[str]:
        return [s["title"] for s in self.sent]

    def to(self, user_id: int) -> list[str]:
        return [s["title"] for s in self.sent if s["recipient_id"] == user_id]


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# ---------------------------------------------------------------------------
# Data factory
# ---------------------------------------------------------------------------
class Seed:
    """Small helpers that insert rows and return their ids."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._n = 0

    def user(
        self,
        positions: list[str] | None = None,
        push_token: str | None = None,
        first_name: str | None = None,
    ) -> int:
        self._n += 1
        with Session(self.engine) as session:
            user = User(
                email=f"player{self._n}@example.com",
                first_name=first_name or f"Player{self._n}",
                last_name="Test",
                positions=["skater"] if positions is None else positions,
                push_token=push_token if push_token is not None else f"ExponentPushToken[{self._n}]",
            )
            session.add(user)
            session.commit()
            return user.id

    def organization(self, creator_id: int, admins: tuple[int, ...] = ()) -> int:
        with Session(self.engine) as session:
            org = Organization(name="Ice Wolves", creator_id=creator_id)
            session.add(org)
            session.flush()
            for admin_id in admins:
                session.add(OrganizationAdmin(organization_id=org.id, user_id=admin_id))
            session.commit()
            return org.id

    def activity(
        self,
        creator_id: int,
        capacity: int = 2,
        cost: str | int = 0,
        *,
        organization_id: int | None = None,
        status: str = ActivityStatus.OPEN,
        registration_deadline: datetime | None = None,
        tracks_teams: bool = True,
        name: str = "Tuesday Skate",
    ) -> int:
        with Session(self.engine) as session:
            activity = Activity(
                name=name,
                creator_id=creator_id,
                organization_id=organization_id,
                capacity=capacity,
                cost=Decimal(str(cost)),
                status=status,
                registration_deadline=registration_deadline,
                tracks_teams=tracks_teams,
            )
            session.add(activity)
            session.commit()
            return activity.id

    def registration(
        self,
        activity_id: int,
        user_id: int,
        *,
        status: str = RegistrationStatus.REGISTERED,
        waitlist_position: int | None = None,
        payment_status: str | None = None,
        role: str = "Skater",
        team: str | None = None,
        payment_deadline_at: datetime | None = None,
        registered_at: datetime = NOW,
    ) -> int:
        """Insert a row directly, taking the next queue sequence number."""
        with Session(self.engine) as session:
            activity = session.get(Activity, activity_id)
            activity.next_queue_seq = (activity.next_queue_seq or 0) + 1
            reg = Registration(
                activity_id=activity_id,
                user_id=user_id,
                status=status,
                waitlist_position=waitlist_position,
                payment_status=payment_status,
                role=role,
                team_assignment=team,
                queue_seq=activity.next_queue_seq,
                payment_deadline_at=payment_deadline_at,
                registered_at=registered_at,
            )
            session.add(reg)
            session.commit()
            return reg.id

    def get(self, reg_id: int) -> Registration:
        with Session(self.engine) as session:
            return session.get(Registration, reg_id)

    def rows(self, activity_id: int, status: str | None = None) -> list[Registration]:
        with Session(self.engine) as session:
            query = select(Registration).where(Registration.activity_id == activity_id)
            if status is not None:
                query = query.where(Registration.status == status)
            return list(session.scalars(query.order_by(Registration.id)))

    def positions(self, activity_id: int) -> dict[int, int]:
        """Map registration id → waitlist position for Waitlisted rows."""
        return {
            r.id: r.waitlist_position
            for r in self.rows(activity_id, RegistrationStatus.WAITLISTED)
        }


@pytest.fixture
def seed(db_engine: Engine) -> Seed:
    return Seed(db_engine)


def make_token(sub: int | str) -> str:
    """Create a user JWT.  Usable as a factory from any test module."""
    import jwt

    from benchline.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": str(sub)}, JWT_SECRET, algorithm=JWT_ALGORITHM)
