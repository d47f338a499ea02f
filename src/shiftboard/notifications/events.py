from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from ..config import FallbackMessage
from ..models import (
    COLLECTION_NOTIFICATION_TEMPLATES,
    COLLECTION_SETTINGS,
    GLOBAL_SETTINGS_ID,
    NotificationTemplate,
    SettingsSnapshot,
)
from ..persistence import DocumentStore
from ..templating import render_template
from .dispatch import NotificationDispatcher
from .types import TriggerResult

LOGGER = logging.getLogger(__name__)


class EventResolver:
    """Turns a named domain event into a personalized notification.

    The global settings document maps event names to template ids. Callers
    pass a settings snapshot when they fan out one event to many users so the
    mapping is read once per invocation.
    """

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        *,
        fallbacks: Mapping[str, FallbackMessage] | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._fallbacks = dict(fallbacks or {})

    def load_settings(self) -> SettingsSnapshot:
        data = self._store.get(COLLECTION_SETTINGS, GLOBAL_SETTINGS_ID)
        return SettingsSnapshot.from_document(GLOBAL_SETTINGS_ID, data)

    def trigger(
        self,
        event_name: str,
        user_id: str,
        context: Mapping[str, Any],
        *,
        action_link: Optional[str] = None,
        store_id: Optional[str] = None,
        settings: SettingsSnapshot | None = None,
    ) -> TriggerResult:
        try:
            snapshot = settings if settings is not None else self.load_settings()
            if not snapshot.exists:
                LOGGER.info("Settings document not found; skipping event %s", event_name)
                return TriggerResult("unmapped")

            template_id = snapshot.event_mappings.get(event_name)
            if not template_id:
                LOGGER.info("Event %s is not mapped to any template; skipping", event_name)
                return TriggerResult("unmapped")

            template_data = self._store.get(COLLECTION_NOTIFICATION_TEMPLATES, template_id)
            if template_data is None:
                LOGGER.error("Template %s mapped for event %s was not found", template_id, event_name)
                return TriggerResult("template_missing")

            template = NotificationTemplate.from_document(template_id, template_data)
            result = self._dispatcher.dispatch(
                user_id,
                render_template(template.title_template, context),
                render_template(template.body_template, context),
                "SYSTEM",
                action_link=action_link,
                store_id=store_id,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Failed to trigger event %s for user %s: %s", event_name, user_id, exc)
            return TriggerResult("delivery_error")

        if not result.success:
            return TriggerResult("delivery_error")
        LOGGER.debug("Triggered event %s for user %s", event_name, user_id)
        return TriggerResult("success", notification_id=result.notification_id)

    def notify_with_fallback(
        self,
        event_name: str,
        user_id: str,
        context: Mapping[str, Any],
        *,
        action_link: Optional[str] = None,
        store_id: Optional[str] = None,
        settings: SettingsSnapshot | None = None,
    ) -> TriggerResult:
        """Trigger ``event_name``; when it is unmapped send the configured fallback message."""
        result = self.trigger(
            event_name,
            user_id,
            context,
            action_link=action_link,
            store_id=store_id,
            settings=settings,
        )
        if result.outcome != "unmapped":
            return result

        fallback = self._fallbacks.get(event_name)
        if fallback is None:
            return result

        dispatched = self._dispatcher.dispatch(
            user_id,
            render_template(fallback.title, context),
            render_template(fallback.body, context),
            "SYSTEM",
            action_link=action_link or fallback.action_link,
            store_id=store_id,
        )
        if not dispatched.success:
            return TriggerResult("delivery_error")
        return TriggerResult("success", notification_id=dispatched.notification_id, used_fallback=True)
