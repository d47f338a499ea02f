from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

from ..config import PushSettings
from .types import BatchSendResult, PushMessage

LOGGER = logging.getLogger(__name__)

FCM_ENDPOINT = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
MAX_MULTICAST = 500


class PushTransport:
    """Delivers push messages to device tokens; delivery is best effort."""

    name: str = "push"
    max_batch_size: int = MAX_MULTICAST

    def enabled(self) -> bool:
        return True

    def send_one(self, message: PushMessage) -> bool:
        raise NotImplementedError

    def send_many(self, messages: Sequence[PushMessage]) -> BatchSendResult:
        if len(messages) > self.max_batch_size:
            raise ValueError(f"Push batch holds {len(messages)} messages; the ceiling is {self.max_batch_size}")
        result = BatchSendResult()
        for message in messages:
            delivered = self.send_one(message)
            result.results.append(delivered)
            if delivered:
                result.success_count += 1
            else:
                result.failure_count += 1
        return result


class DisabledPushTransport(PushTransport):
    """Transport used when push delivery is switched off; every send reports failure."""

    name = "disabled"

    def enabled(self) -> bool:
        return False

    def send_one(self, message: PushMessage) -> bool:
        LOGGER.debug("Push disabled; not sending '%s' to %s...", message.title, message.token[:12])
        return False


class FcmPushTransport(PushTransport):
    """Firebase Cloud Messaging HTTP v1 transport."""

    name = "fcm"

    def __init__(
        self,
        project_id: str | None,
        *,
        access_token: str | None = None,
        access_token_env: str | None = None,
        icon: str | None = None,
        timeout: float = 10.0,
        max_batch_size: int = MAX_MULTICAST,
    ) -> None:
        self.project_id = project_id.strip() if isinstance(project_id, str) else None
        self._access_token = access_token
        self._access_token_env = access_token_env
        self.icon = icon
        self.timeout = timeout
        self.max_batch_size = max_batch_size

    def enabled(self) -> bool:
        return bool(self.project_id) and bool(self._resolve_token())

    def _resolve_token(self) -> Optional[str]:
        if self._access_token:
            return self._access_token
        if self._access_token_env:
            return os.getenv(self._access_token_env) or None
        return None

    def build_payload(self, message: PushMessage) -> Dict[str, Any]:
        data = {str(key): str(value) for key, value in message.data.items()}
        data["actionLink"] = message.action_link or "/"
        payload: Dict[str, Any] = {
            "token": message.token,
            "notification": {"title": message.title, "body": message.body},
            "data": data,
        }
        if self.icon:
            payload["webpush"] = {"notification": {"icon": self.icon, "badge": self.icon}}
        return {"message": payload}

    def send_one(self, message: PushMessage) -> bool:
        token = self._resolve_token()
        if not self.project_id or not token:
            LOGGER.debug("FCM transport not configured (project/token); skipping push")
            return False

        url = FCM_ENDPOINT.format(project_id=self.project_id)
        try:
            response = requests.post(
                url,
                json=self.build_payload(message),
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except RequestException as exc:
            LOGGER.warning("Failed to send FCM push to %s...: %s", message.token[:12], exc)
            return False

        if response.status_code >= 400:
            LOGGER.warning(
                "FCM responded with %s for token %s...: %s",
                response.status_code,
                message.token[:12],
                response.text,
            )
            return False
        return True


def build_push_transport(settings: PushSettings) -> PushTransport:
    if not settings.enabled:
        return DisabledPushTransport()
    transport = FcmPushTransport(
        settings.project_id,
        access_token=settings.access_token,
        access_token_env=settings.access_token_env,
        icon=settings.icon,
        timeout=settings.timeout,
        max_batch_size=settings.batch_ceiling,
    )
    if not transport.enabled():
        LOGGER.warning("Push is enabled but FCM project or access token is missing; pushes will be skipped")
    return transport
