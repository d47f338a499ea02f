"""Broadcast delivery: one-shot scheduled tasks and immediate admin broadcasts.

Both paths share ``BroadcastDelivery``: one stored notification per recipient,
committed in storage-sized chunks, then one push per distinct device token,
sent in transport-sized chunks. Per-chunk failures are counted, not raised.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from .access import Caller, require_admin
from .errors import InternalError, NotFoundError
from .logging_utils import render_fields_block
from .models import (
    COLLECTION_NOTIFICATION_TEMPLATES,
    COLLECTION_NOTIFICATIONS,
    COLLECTION_SCHEDULED_NOTIFICATIONS,
    COLLECTION_USERS,
    NotificationRecord,
    NotificationTemplate,
    ScheduledBroadcastTask,
    TaskStatus,
    UserRecord,
)
from .notifications.fanout import DEFAULT_CHUNK_SIZE, chunk, dedupe_by_address, run_chunked
from .notifications.push import PushTransport
from .notifications.types import FanoutResult, PushMessage
from .payloads import BroadcastPayload, parse_payload
from .persistence import BatchWrite, DocumentStore, QueryFilter
from .templating import render_template
from .utils import as_utc, isoformat_utc, utc_now

LOGGER = logging.getLogger(__name__)


@dataclass
class Recipient:
    user: UserRecord
    title: str
    body: str


@dataclass
class DeliveryStats:
    targeted: int = 0
    records: FanoutResult = field(default_factory=FanoutResult)
    pushes: FanoutResult = field(default_factory=FanoutResult)

    @property
    def push_sent(self) -> int:
        return self.pushes.succeeded

    @property
    def push_failed(self) -> int:
        return self.pushes.failed


@dataclass
class RunSummary:
    due: int = 0
    executed: int = 0
    skipped: int = 0
    failed: int = 0
    total_targeted: int = 0
    push_sent: int = 0
    push_failed: int = 0


def find_audience(store: DocumentStore, target_type: str, target_value: Optional[str]) -> List[UserRecord]:
    """Active users selected by ``ALL``, ``STORE`` (store id) or ``ROLE`` (role name)."""
    filters: List[QueryFilter] = [("isActive", "==", True)]
    if target_type == "STORE":
        filters.append(("storeId", "==", target_value))
    elif target_type == "ROLE":
        filters.append(("role", "==", target_value))
    elif target_type != "ALL":
        raise ValueError(f"Unknown target type '{target_type}'")
    return [UserRecord.from_document(doc.id, doc.data) for doc in store.query(COLLECTION_USERS, filters)]


class BroadcastDelivery:
    def __init__(
        self,
        store: DocumentStore,
        transport: PushTransport,
        *,
        storage_ceiling: int = DEFAULT_CHUNK_SIZE,
        default_action_link: str = "/",
    ) -> None:
        self._store = store
        self._transport = transport
        self._storage_ceiling = storage_ceiling
        self._default_action_link = default_action_link

    def deliver(
        self,
        recipients: Sequence[Recipient],
        *,
        created_at: str,
        store_id: Optional[str] = None,
        action_link: Optional[str] = None,
        label: str = "broadcast",
    ) -> DeliveryStats:
        records = [
            NotificationRecord(
                id=self._store.new_id(),
                user_id=recipient.user.uid,
                title=recipient.title,
                body=recipient.body,
                type="SYSTEM",
                created_at=created_at,
                action_link=action_link,
                store_id=store_id,
            )
            for recipient in recipients
        ]
        record_result = run_chunked(
            chunk(records, self._storage_ceiling),
            lambda items: self._store.atomic_batch(
                [BatchWrite.set(COLLECTION_NOTIFICATIONS, record.id, record.to_document()) for record in items]
            ),
            label=f"{label} records",
        )
        if record_result.all_failed:
            raise InternalError(f"Failed to store any of {len(records)} notification(s)")

        messages = dedupe_by_address(
            (
                PushMessage(
                    token=recipient.user.fcm_token or "",
                    title=recipient.title,
                    body=recipient.body,
                    action_link=action_link or self._default_action_link,
                )
                for recipient in recipients
            ),
            address=lambda message: message.token,
        )
        push_result = run_chunked(
            chunk(messages, self._transport.max_batch_size),
            lambda items: self._transport.send_many(items).success_count,
            label=f"{label} push",
        )
        return DeliveryStats(targeted=len(recipients), records=record_result, pushes=push_result)


class BroadcastRunner:
    """Runs one-shot scheduled broadcast tasks whose time has come.

    Each due task ends in exactly one terminal state, persisted together with
    ``isActive=false`` so it is never picked up again:

    - ``EXECUTED``: notifications written and pushes attempted
    - ``SKIPPED``: template missing or nobody to notify
    - ``FAILED``: an unexpected error while processing the task
    """

    def __init__(
        self,
        store: DocumentStore,
        delivery: BroadcastDelivery,
        *,
        default_recipient_name: str = "there",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._delivery = delivery
        self._default_recipient_name = default_recipient_name
        self._clock = clock

    def run_due(self, now: datetime | None = None) -> RunSummary:
        now = as_utc(now or self._clock())
        now_iso = isoformat_utc(now)
        summary = RunSummary()

        for doc in self._store.query(COLLECTION_SCHEDULED_NOTIFICATIONS, [("isActive", "==", True)]):
            task = ScheduledBroadcastTask.from_document(doc.id, doc.data)
            if not self._is_due(task, now):
                continue
            summary.due += 1
            status, stats = self._run_task(task, now_iso)
            if status == "EXECUTED":
                summary.executed += 1
            elif status == "SKIPPED":
                summary.skipped += 1
            else:
                summary.failed += 1
            if stats is not None:
                summary.total_targeted += stats.targeted
                summary.push_sent += stats.push_sent
                summary.push_failed += stats.push_failed

        if summary.due:
            LOGGER.info(
                render_fields_block(
                    "Scheduled Broadcasts",
                    {
                        "Due": summary.due,
                        "Executed": summary.executed,
                        "Skipped": summary.skipped,
                        "Failed": summary.failed,
                        "Targeted": summary.total_targeted,
                        "Push sent": summary.push_sent,
                        "Push failed": summary.push_failed,
                    },
                )
            )
        else:
            LOGGER.debug("No scheduled broadcasts due at %s", now_iso)
        return summary

    @staticmethod
    def _is_due(task: ScheduledBroadcastTask, now: datetime) -> bool:
        try:
            scheduled = datetime.fromisoformat(task.scheduled_at)
        except ValueError:
            LOGGER.warning("Scheduled broadcast %s has an unreadable scheduledAt '%s'", task.id, task.scheduled_at)
            return False
        return as_utc(scheduled) <= now

    def _run_task(self, task: ScheduledBroadcastTask, now_iso: str) -> Tuple[TaskStatus, Optional[DeliveryStats]]:
        try:
            template_data = (
                self._store.get(COLLECTION_NOTIFICATION_TEMPLATES, task.template_id) if task.template_id else None
            )
            if template_data is None:
                self._finish(task, "SKIPPED", reason="Template missing")
                return "SKIPPED", None

            if task.target_type not in ("STORE", "ROLE") or not task.target_value:
                self._finish(task, "SKIPPED", reason="Invalid target")
                return "SKIPPED", None

            audience = find_audience(self._store, task.target_type, task.target_value)
            if not audience:
                self._finish(task, "SKIPPED", reason="Zero targets")
                return "SKIPPED", None

            template = NotificationTemplate.from_document(task.template_id, template_data)
            recipients = []
            for user in audience:
                context = {
                    "name": user.name or self._default_recipient_name,
                    "role": user.role,
                    "targetValue": task.target_value,
                    "storeId": task.target_value if task.target_type == "STORE" else (user.store_id or ""),
                }
                recipients.append(
                    Recipient(
                        user=user,
                        title=render_template(template.title_template, context),
                        body=render_template(template.body_template, context),
                    )
                )

            stats = self._delivery.deliver(
                recipients,
                created_at=now_iso,
                store_id=task.target_value if task.target_type == "STORE" else None,
                label=f"scheduled broadcast {task.id}",
            )
            self._finish(task, "EXECUTED", executedAt=now_iso, targetsHit=stats.targeted)
            LOGGER.info(
                "Scheduled broadcast %s executed: %d targeted, %d push sent, %d push failed",
                task.id,
                stats.targeted,
                stats.push_sent,
                stats.push_failed,
            )
            return "EXECUTED", stats
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Error processing scheduled broadcast %s: %s", task.id, exc, exc_info=True)
            try:
                self._finish(task, "FAILED", error=str(exc) or type(exc).__name__)
            except Exception as update_exc:  # noqa: BLE001
                LOGGER.error("Could not mark scheduled broadcast %s as failed: %s", task.id, update_exc)
            return "FAILED", None

    def _finish(self, task: ScheduledBroadcastTask, status: TaskStatus, **fields: object) -> None:
        if status == "SKIPPED":
            LOGGER.info("Skipping scheduled broadcast %s: %s", task.id, fields.get("reason"))
        self._store.update(
            COLLECTION_SCHEDULED_NOTIFICATIONS,
            task.id,
            {"isActive": False, "status": status, **fields},
        )


class BroadcastService:
    """Immediate broadcast sent by an administrator."""

    def __init__(
        self,
        store: DocumentStore,
        delivery: BroadcastDelivery,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._delivery = delivery
        self._clock = clock

    def send(
        self,
        caller: Caller,
        title: str,
        message: str,
        target_type: str,
        target_value: str | None = None,
    ) -> DeliveryStats:
        require_admin(caller)
        request = parse_payload(
            BroadcastPayload,
            {"title": title, "message": message, "targetType": target_type, "targetValue": target_value},
        )

        audience = find_audience(self._store, request.target_type, request.target_value)
        if not audience:
            raise NotFoundError("No users match the broadcast target")

        stats = self._delivery.deliver(
            [Recipient(user=user, title=request.title, body=request.message) for user in audience],
            created_at=isoformat_utc(self._clock()),
            label="admin broadcast",
        )
        LOGGER.info(
            render_fields_block(
                "Admin Broadcast",
                {
                    "Sent by": caller.uid,
                    "Target": f"{request.target_type} {request.target_value or ''}".strip(),
                    "Targeted": stats.targeted,
                    "Push sent": stats.push_sent,
                    "Push failed": stats.push_failed,
                },
            )
        )
        return stats
