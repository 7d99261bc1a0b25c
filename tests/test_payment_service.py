"""
tests/test_payment_service.py — Payment Workflow Tests
=======================================================
mark_payment() and verify_payment(): status transitions, promotion of a
newly verified waitlister, fresh deadlines on un-verify, and organizer
notifications.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import NOW, RecordingDispatcher
from benchline.constants import as_utc
from benchline.database.models import AdminLog, PaymentStatus, RegistrationStatus
from benchline.errors import AuthorizationError, BusinessRuleError, NotFoundError
from benchline.services.payment_service import mark_payment, verify_payment
from benchline.services.registration_service import register

W = RegistrationStatus.WAITLISTED


@pytest.fixture
def owner(seed):
    return seed.user()


# ===========================================================================
# mark_payment
# ===========================================================================
class TestMarkPayment:
    def test_pending_to_marked_paid(self, db_engine, seed, owner):
        act = seed.activity(owner, cost=10)
        user = seed.user()
        register(db_engine, act, user, dispatcher=None, now=NOW)
        dispatcher = RecordingDispatcher()

        assert mark_payment(db_engine, act, user, dispatcher=dispatcher, now=NOW)

        row = seed.rows(act)[0]
        assert row.payment_status == PaymentStatus.MARKED_PAID
        assert as_utc(row.payment_marked_at) == NOW
        assert dispatcher.to(owner) == ["Payment Marked"]

    def test_free_activity_returns_false(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner)
        user = seed.user()
        register(db_engine, act, user, dispatcher=None, now=NOW)
        assert mark_payment(db_engine, act, user, dispatcher=dispatcher) is False
        assert dispatcher.sent == []

    def test_missing_registration(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, cost=10)
        assert mark_payment(db_engine, act, seed.user(), dispatcher=dispatcher) is False

    @pytest.mark.parametrize("status", [PaymentStatus.MARKED_PAID, PaymentStatus.VERIFIED])
    def test_only_from_pending(self, db_engine, seed, owner, dispatcher, status):
        act = seed.activity(owner, cost=10)
        user = seed.user()
        seed.registration(act, user, status=W, waitlist_position=1, payment_status=status)
        assert mark_payment(db_engine, act, user, dispatcher=dispatcher) is False
        assert seed.rows(act)[0].payment_status == status

    def test_cancelled_row_cannot_mark(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, cost=10)
        user = seed.user()
        seed.registration(
            act, user, status=RegistrationStatus.CANCELLED, payment_status=PaymentStatus.PENDING
        )
        assert mark_payment(db_engine, act, user, dispatcher=dispatcher) is False


# ===========================================================================
# verify_payment
# ===========================================================================
class TestVerifyPayment:
    def test_verify_promotes_when_room(self, db_engine, seed, owner):
        act = seed.activity(owner, capacity=2, cost=10)
        player = seed.user()
        reg = seed.registration(
            act, player, status=W, waitlist_position=1, payment_status=PaymentStatus.MARKED_PAID
        )
        dispatcher = RecordingDispatcher()

        updated = verify_payment(db_engine, act, reg, True, owner, dispatcher=dispatcher, now=NOW)

        assert updated.status == RegistrationStatus.REGISTERED
        assert updated.payment_status == PaymentStatus.VERIFIED
        assert updated.waitlist_position is None
        row = seed.get(reg)
        assert as_utc(row.promoted_at) == NOW
        assert as_utc(row.payment_verified_at) == NOW
        assert row.payment_deadline_at is None
        assert dispatcher.to(player) == ["You're In!"]

    def test_verify_when_full_stays_on_priority_waitlist(self, db_engine, seed, owner):
        act = seed.activity(owner, capacity=1, cost=10)
        seed.registration(act, seed.user(), payment_status=PaymentStatus.VERIFIED)
        ahead = seed.registration(
            act, seed.user(), status=W, waitlist_position=1, payment_status=PaymentStatus.PENDING
        )
        player = seed.user()
        reg = seed.registration(
            act, player, status=W, waitlist_position=2, payment_status=PaymentStatus.MARKED_PAID
        )
        dispatcher = RecordingDispatcher()

        updated = verify_payment(db_engine, act, reg, True, owner, dispatcher=dispatcher, now=NOW)

        assert updated.status == W
        assert updated.payment_status == PaymentStatus.VERIFIED
        assert dispatcher.to(player) == ["Payment Verified - On Waitlist"]
        # Position is untouched; priority comes from the ranker.
        assert seed.positions(act) == {ahead: 1, reg: 2}

    def test_verify_leaves_other_waitlisters_alone(self, db_engine, seed, owner):
        act = seed.activity(owner, capacity=5, cost=10)
        first, second, third = seed.user(), seed.user(), seed.user()
        for user in (first, second, third):
            register(db_engine, act, user, dispatcher=None, now=NOW)
        reg = seed.rows(act, W)[0].id
        dispatcher = RecordingDispatcher()

        verify_payment(db_engine, act, reg, True, owner, dispatcher=dispatcher, now=NOW)

        assert dispatcher.to(first) == ["You're In!"]
        assert dispatcher.to(second) == []
        assert dispatcher.to(third) == []
        assert "Spot Available!" not in dispatcher.titles()
        remaining = [r.id for r in seed.rows(act, W)]
        assert seed.positions(act) == {remaining[0]: 1, remaining[1]: 2}

    def test_verify_registered_clears_deadline(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, capacity=2, cost=10)
        reg = seed.registration(
            act, seed.user(),
            payment_status=PaymentStatus.PENDING,
            payment_deadline_at=NOW + timedelta(hours=1),
        )

        verify_payment(db_engine, act, reg, True, owner, dispatcher=dispatcher, now=NOW)

        row = seed.get(reg)
        assert row.payment_status == PaymentStatus.VERIFIED
        assert row.payment_deadline_at is None
        assert dispatcher.sent == []

    def test_unverify_registered_starts_deadline(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, capacity=2, cost=10)
        reg = seed.registration(act, seed.user(), payment_status=PaymentStatus.VERIFIED)

        updated = verify_payment(
            db_engine, act, reg, False, owner,
            dispatcher=dispatcher, now=NOW, payment_deadline=timedelta(hours=3),
        )

        assert updated.payment_status == PaymentStatus.PENDING
        row = seed.get(reg)
        assert row.payment_verified_at is None
        assert as_utc(row.payment_deadline_at) == NOW + timedelta(hours=3)

    def test_unverify_waitlisted_has_no_deadline(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, capacity=1, cost=10)
        seed.registration(act, seed.user(), payment_status=PaymentStatus.VERIFIED)
        reg = seed.registration(
            act, seed.user(), status=W, waitlist_position=1, payment_status=PaymentStatus.MARKED_PAID
        )

        verify_payment(db_engine, act, reg, False, owner, dispatcher=dispatcher, now=NOW)

        row = seed.get(reg)
        assert row.payment_status == PaymentStatus.PENDING
        assert row.payment_deadline_at is None

    def test_free_activity_rejected(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner)
        reg = seed.registration(act, seed.user())
        with pytest.raises(BusinessRuleError, match="not enabled for free activities"):
            verify_payment(db_engine, act, reg, True, owner, dispatcher=dispatcher)

    def test_requires_manager(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, cost=10)
        reg = seed.registration(act, seed.user(), status=W, waitlist_position=1,
                                payment_status=PaymentStatus.PENDING)
        with pytest.raises(AuthorizationError):
            verify_payment(db_engine, act, reg, True, seed.user(), dispatcher=dispatcher)
        assert seed.get(reg).payment_status == PaymentStatus.PENDING

    def test_unknown_activity(self, db_engine, seed, owner, dispatcher):
        with pytest.raises(NotFoundError):
            verify_payment(db_engine, 404, 1, True, owner, dispatcher=dispatcher)

    def test_inactive_registration_returns_none(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, cost=10)
        reg = seed.registration(act, seed.user(), status=RegistrationStatus.CANCELLED)
        assert verify_payment(db_engine, act, reg, True, owner, dispatcher=dispatcher) is None
        assert verify_payment(db_engine, act, 999, True, owner, dispatcher=dispatcher) is None

    def test_writes_audit_row(self, db_engine, seed, owner, dispatcher):
        act = seed.activity(owner, capacity=1, cost=10)
        seed.registration(act, seed.user(), payment_status=PaymentStatus.VERIFIED)
        reg = seed.registration(act, seed.user(), status=W, waitlist_position=1,
                                payment_status=PaymentStatus.PENDING)

        verify_payment(db_engine, act, reg, True, owner, dispatcher=dispatcher, now=NOW)

        with Session(db_engine) as session:
            log = session.scalars(select(AdminLog)).one()
        assert log.action_type == "PAYMENT_UPDATE"
        assert log.target_id == str(reg)
        assert log.before_snapshot["payment_status"] == "Pending"
        assert log.after_snapshot["payment_status"] == "Verified"
