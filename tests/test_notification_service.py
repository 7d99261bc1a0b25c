"""
tests/test_notification_service.py — Dispatcher Tests
======================================================
ExpoPushDispatcher (httpx client mocked) and best-effort batch delivery.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import RecordingDispatcher
from benchline.database.models import Notification, NotificationType
from benchline.engine.notifications import PendingNotification
from benchline.services.notification_service import (
    ExpoPushDispatcher,
    NullDispatcher,
    dispatch_pending,
)


def _note(recipient_id: int, title: str = "You're In!", token: str | None = "ExponentPushToken[a]"):
    return PendingNotification(
        recipient_id=recipient_id,
        recipient_token=token,
        title=title,
        body="A spot opened up for Tuesday Skate.",
        notification_type=NotificationType.AUTO_PROMOTED,
        activity_id=7,
        organization_id=3,
        participant_id=recipient_id,
        owner_id=1,
        payload={"activityId": "7", "type": "auto_promoted"},
    )


@pytest.fixture
def http_client():
    client = MagicMock(spec=httpx.Client)
    client.post.return_value = httpx.Response(200, json={"data": {"status": "ok"}})
    return client


def _inbox(engine) -> list[Notification]:
    with Session(engine) as session:
        return list(session.scalars(select(Notification).order_by(Notification.id)))


class TestExpoPushDispatcher:
    def test_pushes_and_persists(self, db_engine, seed, http_client):
        user = seed.user()
        dispatcher = ExpoPushDispatcher(db_engine, client=http_client, push_url="https://push.test")

        assert dispatch_pending(dispatcher, [_note(user)]) == 1

        url = http_client.post.call_args.args[0]
        message = http_client.post.call_args.kwargs["json"]
        assert url == "https://push.test"
        assert message["to"] == "ExponentPushToken[a]"
        assert message["title"] == "You're In!"
        assert message["data"]["activityId"] == "7"

        rows = _inbox(db_engine)
        assert len(rows) == 1
        assert rows[0].user_id == user
        assert rows[0].type == "auto_promoted"
        assert rows[0].activity_id == 7
        assert rows[0].organization_id == 3
        assert rows[0].data == {"activityId": "7", "type": "auto_promoted"}

    def test_push_disabled_only_persists(self, db_engine, seed, http_client):
        user = seed.user()
        dispatcher = ExpoPushDispatcher(db_engine, push_enabled=False, client=http_client)

        dispatch_pending(dispatcher, [_note(user)])

        http_client.post.assert_not_called()
        assert len(_inbox(db_engine)) == 1

    def test_no_token_skips_push(self, db_engine, seed, http_client):
        user = seed.user()
        dispatcher = ExpoPushDispatcher(db_engine, client=http_client)

        dispatch_pending(dispatcher, [_note(user, token=None)])

        http_client.post.assert_not_called()
        assert len(_inbox(db_engine)) == 1

    def test_transport_error_still_persists(self, db_engine, seed, http_client, caplog):
        user = seed.user()
        http_client.post.side_effect = httpx.ConnectError("no route")
        dispatcher = ExpoPushDispatcher(db_engine, client=http_client)

        with caplog.at_level(logging.ERROR):
            assert dispatch_pending(dispatcher, [_note(user)]) == 1

        assert "Expo push request failed" in caplog.text
        assert len(_inbox(db_engine)) == 1

    def test_rejected_push_logged(self, db_engine, seed, http_client, caplog):
        user = seed.user()
        http_client.post.return_value = httpx.Response(400, text="bad token")
        dispatcher = ExpoPushDispatcher(db_engine, client=http_client)

        with caplog.at_level(logging.WARNING):
            dispatch_pending(dispatcher, [_note(user)])

        assert "Expo push rejected (400)" in caplog.text

    def test_close_releases_client(self, db_engine, http_client):
        dispatcher = ExpoPushDispatcher(db_engine, client=http_client)
        dispatcher.close()
        http_client.close.assert_called_once()


class TestDispatchPending:
    def test_failure_does_not_stop_batch(self, caplog):
        dispatcher = RecordingDispatcher(fail_on={"Auto-Promotion"})
        batch = [_note(1), _note(2, title="Auto-Promotion"), _note(3, title="Spot Available!")]

        with caplog.at_level(logging.ERROR):
            delivered = dispatch_pending(dispatcher, batch)

        assert delivered == 2
        assert dispatcher.titles() == ["You're In!", "Spot Available!"]
        assert "Failed to dispatch" in caplog.text

    def test_forwards_envelope_fields(self):
        dispatcher = RecordingDispatcher()
        dispatch_pending(dispatcher, [_note(5)])
        sent = dispatcher.sent[0]
        assert sent["recipient_id"] == 5
        assert sent["notification_type"] == NotificationType.AUTO_PROMOTED
        assert sent["owner_id"] == 1
        assert sent["activity_id"] == 7

    def test_no_dispatcher(self):
        assert dispatch_pending(None, [_note(1)]) == 0

    def test_null_dispatcher(self):
        assert dispatch_pending(NullDispatcher(), [_note(1), _note(2)]) == 2
