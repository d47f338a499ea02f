"""Settings reads with lazy registration-window reconciliation.

Both the global settings document and each store's embedded ``settings``
field may carry a ``registrationSchedule``. Whenever settings are read and the
schedule is enabled, the persisted ``registrationOpen`` flag is compared with
the window evaluator's answer; a stale flag is corrected in the background
while the read returns the fresh value immediately.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .background import BackgroundTasks
from .errors import NotFoundError
from .models import COLLECTION_SETTINGS, COLLECTION_STORES, GLOBAL_SETTINGS_ID, SettingsSnapshot
from .persistence import DocumentStore
from .utils import utc_now
from .window import is_open

LOGGER = logging.getLogger(__name__)


@dataclass
class ToggleResult:
    changed: bool
    registration_open: Optional[bool]
    message: str


class SettingsService:
    def __init__(
        self,
        store: DocumentStore,
        background: BackgroundTasks,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._background = background
        self._clock = clock

    def get_global_settings(self, now: datetime | None = None) -> SettingsSnapshot:
        data = self._store.get(COLLECTION_SETTINGS, GLOBAL_SETTINGS_ID)
        snapshot = SettingsSnapshot.from_document(GLOBAL_SETTINGS_ID, data)
        expected = self._expected_open(snapshot, now)
        if expected is not None and expected != snapshot.registration_open:
            LOGGER.info("Global registration window is stale; correcting registrationOpen to %s", expected)
            self._background.submit(
                "reconcile-global-registration",
                self._store.update,
                COLLECTION_SETTINGS,
                GLOBAL_SETTINGS_ID,
                {"registrationOpen": expected},
            )
            snapshot.registration_open = expected
        return snapshot

    def get_store_settings(self, store_id: str, now: datetime | None = None) -> SettingsSnapshot:
        """Read a store's settings, defaulting them when the store has none yet."""
        store_data = self._store.get(COLLECTION_STORES, store_id)
        if store_data is None:
            raise NotFoundError(f"Store {store_id} not found")

        raw_settings = store_data.get("settings")
        raw_settings = raw_settings if isinstance(raw_settings, dict) else None
        snapshot = SettingsSnapshot.from_document(store_id, raw_settings)
        expected = self._expected_open(snapshot, now)
        if expected is not None and expected != snapshot.registration_open:
            LOGGER.info("Store %s registration window is stale; correcting registrationOpen to %s", store_id, expected)
            corrected: Dict[str, Any] = {**(raw_settings or {}), "registrationOpen": expected}
            self._background.submit(
                f"reconcile-store-registration:{store_id}",
                self._store.update,
                COLLECTION_STORES,
                store_id,
                {"settings": corrected},
            )
            snapshot.registration_open = expected
        return snapshot

    def toggle_registration(self, store_id: str | None = None, now: datetime | None = None) -> ToggleResult:
        """Synchronously reconcile ``registrationOpen`` for the global scope or one store."""
        if store_id is None:
            data = self._store.get(COLLECTION_SETTINGS, GLOBAL_SETTINGS_ID)
            if data is None:
                return ToggleResult(False, None, "No settings found")
            raw_settings: Dict[str, Any] | None = data
        else:
            store_data = self._store.get(COLLECTION_STORES, store_id)
            if store_data is None:
                raise NotFoundError(f"Store {store_id} not found")
            settings_field = store_data.get("settings")
            raw_settings = settings_field if isinstance(settings_field, dict) else None
            if raw_settings is None:
                return ToggleResult(False, None, "No settings found")

        snapshot = SettingsSnapshot.from_document(store_id or GLOBAL_SETTINGS_ID, raw_settings)
        expected = self._expected_open(snapshot, now)
        if expected is None:
            return ToggleResult(False, snapshot.registration_open, "Auto-schedule disabled")
        if expected == snapshot.registration_open:
            return ToggleResult(False, expected, f"No change needed (registrationOpen={expected})")

        if store_id is None:
            self._store.update(COLLECTION_SETTINGS, GLOBAL_SETTINGS_ID, {"registrationOpen": expected})
        else:
            self._store.update(COLLECTION_STORES, store_id, {"settings": {**raw_settings, "registrationOpen": expected}})
        LOGGER.info("registrationOpen for %s updated to %s", store_id or GLOBAL_SETTINGS_ID, expected)
        return ToggleResult(True, expected, f"registrationOpen updated to {expected}")

    def _expected_open(self, snapshot: SettingsSnapshot, now: datetime | None) -> Optional[bool]:
        schedule = snapshot.registration_schedule
        if schedule is None or not schedule.enabled:
            return None
        return is_open(schedule, now or self._clock())
