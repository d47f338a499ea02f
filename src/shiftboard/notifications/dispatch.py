from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models import (
    COLLECTION_NOTIFICATIONS,
    COLLECTION_USERS,
    NOTIFICATION_TYPES,
    NotificationRecord,
    NotificationType,
    UserRecord,
)
from ..persistence import DocumentStore
from ..utils import isoformat_utc, utc_now
from .push import PushTransport
from .types import DispatchResult, PushMessage

LOGGER = logging.getLogger(__name__)


class NotificationDispatcher:
    """Persists one notification for one user and attempts a single push.

    The stored record is the source of truth; push delivery is best effort.
    Only a failed record write makes a dispatch unsuccessful.
    """

    def __init__(
        self,
        store: DocumentStore,
        transport: PushTransport,
        *,
        default_action_link: str = "/",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._transport = transport
        self._default_action_link = default_action_link
        self._clock = clock

    def dispatch(
        self,
        user_id: str,
        title: str,
        body: str,
        type: NotificationType,
        *,
        action_link: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> DispatchResult:
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type '{type}'")

        record = NotificationRecord(
            id=self._store.new_id(),
            user_id=user_id,
            title=title,
            body=body,
            type=type,
            created_at=isoformat_utc(self._clock()),
            action_link=action_link,
            store_id=store_id,
        )
        try:
            self._store.set(COLLECTION_NOTIFICATIONS, record.id, record.to_document())
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Failed to store notification for user %s: %s", user_id, exc)
            return DispatchResult(success=False, error="Failed to store notification")
        LOGGER.debug("Stored notification %s for user %s", record.id, user_id)

        self._push(record)
        return DispatchResult(success=True, notification_id=record.id)

    def _push(self, record: NotificationRecord) -> None:
        try:
            data = self._store.get(COLLECTION_USERS, record.user_id)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not look up push token for user %s: %s", record.user_id, exc)
            return
        if data is None:
            return

        user = UserRecord.from_document(record.user_id, data)
        if not user.fcm_token:
            LOGGER.debug("User %s has no push token saved", record.user_id)
            return

        message = PushMessage(
            token=user.fcm_token,
            title=record.title,
            body=record.body,
            action_link=record.action_link or self._default_action_link,
        )
        try:
            delivered = self._transport.send_one(message)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Push to user %s raised: %s", record.user_id, exc)
            return
        if not delivered:
            LOGGER.info("Push to user %s was not delivered", record.user_id)

    def mark_read(self, notification_id: str, user_id: str) -> None:
        data = self._store.get(COLLECTION_NOTIFICATIONS, notification_id)
        if data is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if data.get("userId") != user_id:
            raise ForbiddenError("Notifications can only be marked read by their recipient")
        if data.get("isRead"):
            return
        self._store.update(COLLECTION_NOTIFICATIONS, notification_id, {"isRead": True})
