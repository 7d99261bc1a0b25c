"""
benchline.services.notification_service — Notification Dispatch
=================================================================

Delivers :class:`~benchline.engine.notifications.PendingNotification`
batches **after** the owning transaction has committed.

Two implementations of the dispatcher protocol:

- :class:`ExpoPushDispatcher` — production.  Posts to the Expo push
  endpoint with ``httpx`` and writes an in-app ``notifications`` row.
  With ``push_enabled: false`` in config only the inbox row is written.
- :class:`NullDispatcher` — discards everything (scripts, migrations).

Delivery is best-effort.  :func:`dispatch_pending` logs each failure and
keeps going; a failed push never rolls back a committed registration.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from typing import Any, Protocol

import httpx
from sqlalchemy import Engine

from benchline.config import DEFAULT_EXPO_PUSH_URL
from benchline.database.engine import get_session
from benchline.database.models import Notification
from benchline.engine.notifications import PendingNotification

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Anything that can deliver one notification."""

    def send(
        self,
        recipient_token: str | None,
        title: str,
        body: str,
        payload: dict[str, Any],
        *,
        recipient_id: int,
        notification_type: str,
        participant_id: int | None = None,
        owner_id: int | None = None,
        activity_id: int | None = None,
        organization_id: int | None = None,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Production dispatcher
# ---------------------------------------------------------------------------
class ExpoPushDispatcher:
    """Push through Expo, then persist the in-app inbox row.

    Parameters
    ----------
    engine : used to write ``notifications`` rows in their own session.
    push_enabled : when False, skip the HTTP call and only persist.
    push_url : Expo push endpoint.
    client : optional pre-built ``httpx.Client`` (tests inject a mock).
    """

    def __init__(
        self,
        engine: Engine,
        *,
        push_enabled: bool = True,
        push_url: str = DEFAULT_EXPO_PUSH_URL,
        client: httpx.Client | None = None,
    ) -> None:
        self.engine = engine
        self.push_enabled = push_enabled
        self.push_url = push_url
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            headers = {"Accept": "application/json"}
            access_token = os.getenv("EXPO_ACCESS_TOKEN")
            if access_token:
                headers["Authorization"] = f"Bearer {access_token}"
            transport = httpx.HTTPTransport(retries=1)
            self._client = httpx.Client(timeout=10, transport=transport, headers=headers)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def send(
        self,
        recipient_token: str | None,
        title: str,
        body: str,
        payload: dict[str, Any],
        *,
        recipient_id: int,
        notification_type: str,
        participant_id: int | None = None,
        owner_id: int | None = None,
        activity_id: int | None = None,
        organization_id: int | None = None,
    ) -> None:
        if self.push_enabled and recipient_token:
            self._push(recipient_token, title, body, payload)

        # The inbox row is written even when the push failed or was skipped.
        try:
            with get_session(self.engine) as session:
                session.add(Notification(
                    user_id=recipient_id,
                    type=str(notification_type),
                    title=title,
                    body=body,
                    data=payload,
                    activity_id=activity_id,
                    organization_id=organization_id,
                ))
        except Exception:
            logger.exception(
                "Failed to persist %s notification for user %s",
                notification_type, recipient_id,
            )

    def _push(self, token: str, title: str, body: str, payload: dict[str, Any]) -> None:
        message = {
            "to": token,
            "title": title,
            "body": body,
            "data": payload,
            "sound": "default",
        }
        try:
            resp = self._get_client().post(self.push_url, json=message)
        except httpx.HTTPError:
            logger.exception("Expo push request failed")
            return
        if resp.status_code != 200:
            logger.warning(
                "Expo push rejected (%d): %s", resp.status_code, resp.text[:200]
            )


class NullDispatcher:
    """Dispatcher that drops every notification."""

    def send(self, recipient_token, title, body, payload, **kwargs) -> None:
        logger.debug("Dropping notification %r for user %s", title, kwargs.get("recipient_id"))


# ---------------------------------------------------------------------------
# Batch delivery
# ---------------------------------------------------------------------------
def dispatch_pending(
    dispatcher: NotificationDispatcher | None,
    batch: Iterable[PendingNotification],
) -> int:
    """Hand each pending notification to *dispatcher*.

    Call only after the transaction that produced *batch* committed.
    Returns the number delivered without raising.
    """
    if dispatcher is None:
        return 0

    delivered = 0
    for note in batch:
        try:
            dispatcher.send(
                note.recipient_token,
                note.title,
                note.body,
                note.payload,
                recipient_id=note.recipient_id,
                notification_type=note.notification_type,
                participant_id=note.participant_id,
                owner_id=note.owner_id,
                activity_id=note.activity_id,
                organization_id=note.organization_id,
            )
            delivered += 1
        except Exception:
            logger.exception(
                "Failed to dispatch %s notification to user %s (activity %s)",
                note.notification_type, note.recipient_id, note.activity_id,
            )
    return delivered
