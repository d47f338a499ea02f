"""Schedule publishing: diff each assignment unit, commit in chunks, notify once per user."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List

from .access import Caller, require_scheduler
from .background import BackgroundTasks
from .config import EVENT_SCHEDULE_PUBLISHED
from .errors import InternalError, ValidationError
from .logging_utils import render_fields_block
from .models import (
    COLLECTION_SCHEDULES,
    COLLECTION_STORES,
    COLLECTION_USERS,
    AssignmentUnit,
    UnitAssignment,
    UnitKey,
    unique_ids,
)
from .notifications.events import EventResolver
from .notifications.fanout import DEFAULT_CHUNK_SIZE, chunk, run_chunked
from .notifications.types import FanoutResult
from .payloads import BulkSchedulePayload, parse_payload
from .persistence import BatchWrite, DocumentStore
from .utils import isoformat_utc, utc_now

LOGGER = logging.getLogger(__name__)

SCHEDULE_ACTION_LINK = "/employee/dashboard"


@dataclass
class PublishResult:
    affected_users: List[str]
    writes: FanoutResult
    notified_users: List[str] = field(default_factory=list)


@dataclass
class _PlannedWrite:
    write: BatchWrite
    key: UnitKey
    changed_users: List[str]


class ScheduleService:
    """Publishes multi-unit shift assignments.

    Every unit is fully replaced with the incoming assignment. Users added to
    or removed from any unit are collected into one set for the whole call, so
    a user touched by several units is told exactly once.
    """

    def __init__(
        self,
        store: DocumentStore,
        resolver: EventResolver,
        background: BackgroundTasks,
        *,
        batch_ceiling: int = DEFAULT_CHUNK_SIZE,
        default_recipient_name: str = "",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._background = background
        self._batch_ceiling = batch_ceiling
        self._default_recipient_name = default_recipient_name
        self._clock = clock

    def publish_payload(self, payload: BulkSchedulePayload | Dict[str, Any], caller: Caller) -> PublishResult:
        """Publish one ``{date, shiftId, storeId, assignments}`` payload covering every counter."""
        require_scheduler(caller)
        parsed = parse_payload(BulkSchedulePayload, payload)
        units = [
            UnitAssignment(
                key=UnitKey(date=parsed.date, shift_id=parsed.shift_id, counter_id=counter_id, store_id=parsed.store_id),
                employee_ids=assignment.employee_ids,
                assigned_by_manager_uids=assignment.assigned_by_manager_uids,
            )
            for counter_id, assignment in parsed.assignments.items()
        ]
        return self.publish(units, caller)

    def publish(self, units: Sequence[UnitAssignment], caller: Caller) -> PublishResult:
        require_scheduler(caller)
        self._validate(units)

        published_at = isoformat_utc(self._clock())
        affected: Dict[str, UnitKey] = {}
        planned: List[_PlannedWrite] = []
        for unit in units:
            existing_data = self._store.get(COLLECTION_SCHEDULES, unit.key.document_id)
            existing = (
                AssignmentUnit.from_document(unit.key, existing_data)
                if existing_data is not None
                else AssignmentUnit.empty(unit.key)
            )
            incoming = unique_ids(unit.employee_ids)
            existing_ids = set(existing.employee_ids)
            incoming_ids = set(incoming)
            added = [uid for uid in incoming if uid not in existing_ids]
            removed = [uid for uid in existing.employee_ids if uid not in incoming_ids]
            changed = added + removed
            for uid in changed:
                affected.setdefault(uid, unit.key)

            replacement = AssignmentUnit(
                key=unit.key,
                employee_ids=incoming,
                assigned_by_manager_uids=unique_ids(unit.assigned_by_manager_uids),
                published_at=published_at,
                published_by=caller.uid,
            )
            planned.append(
                _PlannedWrite(
                    write=BatchWrite.set(COLLECTION_SCHEDULES, unit.key.document_id, replacement.to_document()),
                    key=unit.key,
                    changed_users=changed,
                )
            )

        slices = chunk(planned, self._batch_ceiling)
        writes = run_chunked(
            slices,
            lambda items: self._store.atomic_batch([item.write for item in items]),
            label="schedule publish",
        )
        if writes.all_failed:
            raise InternalError(f"Failed to publish {len(planned)} schedule unit(s)")

        failed = set(writes.failed_chunks)
        # Each user is described by the first unit of theirs that actually committed.
        committed: Dict[str, UnitKey] = {}
        for index, items in enumerate(slices):
            if index in failed:
                continue
            for item in items:
                for uid in item.changed_users:
                    committed.setdefault(uid, item.key)
        notified = [uid for uid in affected if uid in committed]
        skipped = [uid for uid in affected if uid not in committed]
        if skipped:
            LOGGER.warning("Not notifying %d user(s) whose units failed to commit: %s", len(skipped), ", ".join(skipped))

        LOGGER.info(
            render_fields_block(
                "Schedule Published",
                {
                    "Units": len(planned),
                    "Written": writes.succeeded,
                    "Failed": writes.failed,
                    "Affected": len(affected),
                    "Published by": caller.uid,
                },
            )
        )

        if notified:
            targets = {uid: committed[uid] for uid in notified}
            self._background.submit("notify-schedule-published", self._notify_affected, targets)

        return PublishResult(affected_users=list(affected), writes=writes, notified_users=notified)

    @staticmethod
    def _validate(units: Sequence[UnitAssignment]) -> None:
        if not units:
            raise ValidationError("At least one assignment unit is required")
        seen: set[UnitKey] = set()
        for unit in units:
            key = unit.key
            if not (key.date and key.shift_id and key.counter_id and key.store_id):
                raise ValidationError("Assignment units require date, shiftId, counterId and storeId")
            try:
                date.fromisoformat(key.date)
            except ValueError:
                raise ValidationError(f"Unit {key.document_id}: {key.date} is not a calendar date") from None
            if key in seen:
                raise ValidationError(f"Duplicate assignment unit {key.document_id}")
            seen.add(key)
            outside = set(unit.assigned_by_manager_uids) - set(unit.employee_ids)
            if outside:
                raise ValidationError(
                    f"Unit {key.document_id}: assignedByManagerUids not in employeeIds: {', '.join(sorted(outside))}"
                )

    def _notify_affected(self, targets: Dict[str, UnitKey]) -> None:
        settings = self._resolver.load_settings()
        store_names: Dict[str, str] = {}
        outcomes: Dict[str, int] = {}
        for uid, key in targets.items():
            try:
                if key.store_id not in store_names:
                    store_data = self._store.get(COLLECTION_STORES, key.store_id) or {}
                    store_names[key.store_id] = str(store_data.get("name") or key.store_id)
                user_data = self._store.get(COLLECTION_USERS, uid) or {}
                context = {
                    "name": user_data.get("name") or self._default_recipient_name,
                    "storeName": store_names[key.store_id],
                    "shiftId": key.shift_id,
                    "date": key.date,
                }
                result = self._resolver.notify_with_fallback(
                    EVENT_SCHEDULE_PUBLISHED,
                    uid,
                    context,
                    action_link=SCHEDULE_ACTION_LINK,
                    store_id=key.store_id,
                    settings=settings,
                )
                outcome = result.outcome
            except Exception as exc:  # noqa: BLE001
                LOGGER.error("Failed to notify %s about published schedule: %s", uid, exc)
                outcome = "error"
            outcomes[outcome] = outcomes.get(outcome, 0) + 1

        LOGGER.info(render_fields_block("Schedule Notifications", outcomes, pad_top=False))
