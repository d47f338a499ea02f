from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

from .access import MANAGER_ROLES, Caller, require_identity, require_scheduler
from .config import EVENT_SHIFT_FORCE_ASSIGNED, EVENT_SHIFT_FORCE_UNASSIGNED
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .models import (
    COLLECTION_USERS,
    COLLECTION_WEEKLY_REGISTRATIONS,
    ShiftEntry,
    ShiftQuotas,
    UserRecord,
    WeeklyRegistration,
)
from .notifications.events import EventResolver
from .notifications.types import TriggerResult
from .payloads import ForceAssignPayload, RegistrationPayload, parse_payload
from .persistence import DocumentStore
from .settings_service import SettingsService
from .utils import isoformat_utc, utc_now
from .window import next_week_start

LOGGER = logging.getLogger(__name__)

REGISTRATION_ACTION_LINK = "/employee/register"


@dataclass
class ForceAssignResult:
    registration: Optional[WeeklyRegistration]
    deleted: bool = False
    notification: Optional[TriggerResult] = None


class RegistrationService:
    """Weekly availability: employee submissions and manager force-assignment."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: EventResolver,
        settings: SettingsService,
        *,
        default_quota: int = 5,
        default_recipient_name: str = "",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._settings = settings
        self._default_quota = default_quota
        self._default_recipient_name = default_recipient_name
        self._clock = clock

    def _load_registration(self, user_id: str, week_start_date: str) -> Optional[WeeklyRegistration]:
        doc_id = WeeklyRegistration.document_id_for(user_id, week_start_date)
        data = self._store.get(COLLECTION_WEEKLY_REGISTRATIONS, doc_id)
        return WeeklyRegistration.from_document(data) if data is not None else None

    def force_assign(self, payload: ForceAssignPayload | Dict[str, Any], caller: Caller) -> ForceAssignResult:
        """Add one ``(date, shiftId)`` to a user's weekly registration on a manager's behalf."""
        require_scheduler(caller)
        request = parse_payload(ForceAssignPayload, payload)
        if not request.store_id:
            raise ValidationError("storeId is required to force-assign a shift")

        user_data = self._store.get(COLLECTION_USERS, request.target_user_id)
        if user_data is None:
            raise NotFoundError(f"User {request.target_user_id} not found")
        user = UserRecord.from_document(request.target_user_id, user_data)
        if user.store_id != request.store_id:
            raise ValidationError(f"User {user.uid} does not belong to store {request.store_id}")

        entry = ShiftEntry(date=request.date, shift_id=request.shift_id)
        registration = self._load_registration(user.uid, request.week_start_date)
        if registration is None:
            registration = WeeklyRegistration(
                user_id=user.uid,
                week_start_date=request.week_start_date,
                shifts=[entry],
                store_id=request.store_id,
                submitted_at=isoformat_utc(self._clock()),
                is_assigned_by_manager=True,
            )
            self._store.set(COLLECTION_WEEKLY_REGISTRATIONS, registration.document_id, registration.to_document())
        else:
            if registration.has_shift(entry):
                raise ConflictError(f"User {user.uid} is already registered for {entry.shift_id} on {entry.date}")
            registration.shifts.append(entry)
            registration.is_assigned_by_manager = True
            self._store.update(
                COLLECTION_WEEKLY_REGISTRATIONS,
                registration.document_id,
                {"shifts": [item.to_document() for item in registration.shifts], "isAssignedByManager": True},
            )

        LOGGER.info("Force-assigned %s to %s on %s by %s", user.uid, entry.shift_id, entry.date, caller.uid)
        notification = self._notify(
            EVENT_SHIFT_FORCE_ASSIGNED, user.uid, user.name, entry, request.week_start_date, request.store_id
        )
        return ForceAssignResult(registration=registration, notification=notification)

    def force_unassign(self, payload: ForceAssignPayload | Dict[str, Any], caller: Caller) -> ForceAssignResult:
        """Remove one ``(date, shiftId)``; the registration is deleted once no shifts remain.

        Raises:
            NotFoundError: The user has no registration for the week, or it does not
                hold the shift. Removing an absent shift is reported, never a silent no-op.
        """
        require_scheduler(caller)
        request = parse_payload(ForceAssignPayload, payload)

        registration = self._load_registration(request.target_user_id, request.week_start_date)
        if registration is None:
            raise NotFoundError(f"No registration for {request.target_user_id} in week {request.week_start_date}")

        entry = ShiftEntry(date=request.date, shift_id=request.shift_id)
        if not registration.has_shift(entry):
            raise NotFoundError(f"Registration {registration.document_id} has no {entry.shift_id} on {entry.date}")

        registration.shifts = [item for item in registration.shifts if item != entry]
        deleted = not registration.shifts
        if deleted:
            self._store.delete(COLLECTION_WEEKLY_REGISTRATIONS, registration.document_id)
        else:
            self._store.update(
                COLLECTION_WEEKLY_REGISTRATIONS,
                registration.document_id,
                {"shifts": [item.to_document() for item in registration.shifts]},
            )

        LOGGER.info("Force-unassigned %s from %s on %s by %s", registration.user_id, entry.shift_id, entry.date, caller.uid)
        notification = self._notify(
            EVENT_SHIFT_FORCE_UNASSIGNED,
            registration.user_id,
            None,
            entry,
            request.week_start_date,
            registration.store_id or request.store_id,
        )
        return ForceAssignResult(registration=None if deleted else registration, deleted=deleted, notification=notification)

    def _notify(
        self,
        event_name: str,
        user_id: str,
        user_name: Optional[str],
        entry: ShiftEntry,
        week_start_date: str,
        store_id: Optional[str],
    ) -> Optional[TriggerResult]:
        try:
            if user_name is None:
                user_data = self._store.get(COLLECTION_USERS, user_id) or {}
                user_name = str(user_data.get("name") or "")
            context = {
                "name": user_name or self._default_recipient_name,
                "shiftId": entry.shift_id,
                "date": entry.date,
                "weekStartDate": week_start_date,
                "storeId": store_id,
            }
            result = self._resolver.notify_with_fallback(
                event_name,
                user_id,
                context,
                action_link=REGISTRATION_ACTION_LINK,
                store_id=store_id,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Failed to notify %s about %s: %s", user_id, event_name, exc)
            return None
        if not result.delivered:
            LOGGER.warning("Notification %s for %s ended as %s", event_name, user_id, result.outcome)
        return result

    def submit(
        self,
        payload: RegistrationPayload | Dict[str, Any],
        caller: Caller,
        now: datetime | None = None,
    ) -> Optional[WeeklyRegistration]:
        """Store an employee's availability for next week.

        The store's registration window must be open, the caller may only
        submit for themselves in their own store, and only the week starting
        next Monday is editable. An empty shift list withdraws the
        registration and returns ``None``.

        Raises:
            ForbiddenError: Window closed, another user's registration, or wrong week.
            ValidationError: Malformed payload, wrong store or duplicate shifts.
            ConflictError: A requested shift is already at its quota.
        """
        require_identity(caller)
        now = now or self._clock()
        if not caller.store_id:
            raise ValidationError("Caller is not assigned to a store")

        request = parse_payload(RegistrationPayload, payload)
        if request.user_id != caller.uid:
            raise ForbiddenError("Registrations can only be submitted for yourself")
        if request.store_id != caller.store_id:
            raise ValidationError("Store does not match the caller's store")

        settings = self._settings.get_store_settings(caller.store_id, now=now)
        if not settings.registration_open:
            raise ForbiddenError("Registration is closed")

        expected_week = next_week_start(now).isoformat()
        if request.week_start_date != expected_week:
            raise ForbiddenError(f"Only the week starting {expected_week} is open for registration")

        entries = [ShiftEntry(date=item.date, shift_id=item.shift_id) for item in request.shifts]
        duplicates = [entry for entry, count in Counter(entries).items() if count > 1]
        if duplicates:
            raise ValidationError(f"Duplicate shift {duplicates[0].shift_id} on {duplicates[0].date}")

        doc_id = WeeklyRegistration.document_id_for(caller.uid, request.week_start_date)
        if not entries:
            self._store.delete(COLLECTION_WEEKLY_REGISTRATIONS, doc_id)
            LOGGER.info("Withdrew registration %s", doc_id)
            return None

        registration = WeeklyRegistration(
            user_id=caller.uid,
            week_start_date=request.week_start_date,
            shifts=entries,
            store_id=caller.store_id,
            submitted_at=isoformat_utc(now),
        )
        # Count and write under one lock so concurrent submissions cannot both take the last slot.
        with self._store.transaction():
            self._check_quotas(entries, caller.uid, caller.store_id, request.week_start_date, settings.quotas)
            self._store.set(COLLECTION_WEEKLY_REGISTRATIONS, doc_id, registration.to_document())
        LOGGER.info("Stored registration %s with %d shift(s)", doc_id, len(entries))
        return registration

    def _check_quotas(
        self,
        entries: list[ShiftEntry],
        user_id: str,
        store_id: str,
        week_start_date: str,
        quotas: ShiftQuotas,
    ) -> None:
        employees: set[str] = set()
        for doc in self._store.query(COLLECTION_USERS, [("storeId", "==", store_id)]):
            user = UserRecord.from_document(doc.id, doc.data)
            if user.is_active and user.role not in MANAGER_ROLES:
                employees.add(user.uid)
        if user_id not in employees:
            return

        own_doc_id = WeeklyRegistration.document_id_for(user_id, week_start_date)
        counts: Counter[ShiftEntry] = Counter()
        for doc in self._store.query(
            COLLECTION_WEEKLY_REGISTRATIONS,
            [("weekStartDate", "==", week_start_date), ("storeId", "==", store_id)],
        ):
            if doc.id == own_doc_id:
                continue
            registration = WeeklyRegistration.from_document(doc.data)
            if registration.user_id in employees:
                counts.update(registration.shifts)

        for entry in entries:
            limit = self._quota_for(entry, quotas)
            current = counts[entry]
            if current >= limit:
                raise ConflictError(f"Shift {entry.shift_id} on {entry.date} is full ({current}/{limit})")
            counts[entry] = current + 1

    def _quota_for(self, entry: ShiftEntry, quotas: ShiftQuotas) -> int:
        special = quotas.special_dates.get(entry.date, {})
        if entry.shift_id in special:
            return special[entry.shift_id]
        weekend = date.fromisoformat(entry.date).weekday() >= 5
        defaults = quotas.default_weekend if weekend else quotas.default_weekday
        return defaults.get(entry.shift_id, self._default_quota)
