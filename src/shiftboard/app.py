from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from .background import BackgroundTasks
from .broadcast import BroadcastDelivery, BroadcastRunner, BroadcastService
from .config import AppConfig
from .notifications import EventResolver, NotificationDispatcher, PushTransport, build_push_transport
from .persistence import DocumentStore, SQLiteDocumentStore
from .registration import RegistrationService
from .schedule import ScheduleService
from .settings_service import SettingsService
from .utils import utc_now

LOGGER = logging.getLogger(__name__)


class Shiftboard:
    """Wires the scheduling and notification services from one configuration.

    ``store`` and ``transport`` default to the SQLite store at
    ``settings.database_path`` and the transport described by ``settings.push``.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        store: DocumentStore | None = None,
        transport: PushTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        settings = config.settings
        self.store = store or SQLiteDocumentStore(settings.database_path)
        self.store.max_batch_size = settings.storage.batch_ceiling
        self.transport = transport or build_push_transport(settings.push)
        self.background = BackgroundTasks(max_workers=settings.background.max_workers)

        recipient_name = settings.notifications.default_recipient_name
        self.dispatcher = NotificationDispatcher(
            self.store,
            self.transport,
            default_action_link=settings.push.default_action_link,
            clock=clock,
        )
        self.resolver = EventResolver(self.store, self.dispatcher, fallbacks=settings.notifications.fallbacks)
        self.settings = SettingsService(self.store, self.background, clock=clock)
        self.schedules = ScheduleService(
            self.store,
            self.resolver,
            self.background,
            batch_ceiling=settings.storage.batch_ceiling,
            default_recipient_name=recipient_name,
            clock=clock,
        )
        self.registrations = RegistrationService(
            self.store,
            self.resolver,
            self.settings,
            default_quota=settings.registration.default_quota,
            default_recipient_name=recipient_name,
            clock=clock,
        )
        delivery = BroadcastDelivery(
            self.store,
            self.transport,
            storage_ceiling=settings.storage.batch_ceiling,
            default_action_link=settings.push.default_action_link,
        )
        self.broadcasts = BroadcastService(self.store, delivery, clock=clock)
        self.scheduled_broadcasts = BroadcastRunner(
            self.store,
            delivery,
            default_recipient_name=recipient_name,
            clock=clock,
        )
        LOGGER.debug("Shiftboard ready (push transport: %s)", self.transport.name)

    def close(self) -> None:
        """Wait for background notification work, then release resources."""
        self.background.drain()
        self.background.shutdown()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            close_store()
