"""Domain records and their document-store representations.

Documents use the camelCase field names the stored data has always used;
records expose snake_case attributes and convert at the edges with
``from_document`` / ``to_document``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

# Collection names
COLLECTION_SETTINGS = "settings"
COLLECTION_STORES = "stores"
COLLECTION_USERS = "users"
COLLECTION_SCHEDULES = "schedules"
COLLECTION_WEEKLY_REGISTRATIONS = "weekly_registrations"
COLLECTION_NOTIFICATIONS = "notifications"
COLLECTION_NOTIFICATION_TEMPLATES = "notification_templates"
COLLECTION_SCHEDULED_NOTIFICATIONS = "scheduled_notifications"

GLOBAL_SETTINGS_ID = "global"

NotificationType = Literal["SYSTEM", "SWAP_REQUEST", "APPROVAL", "GENERAL"]
NOTIFICATION_TYPES = frozenset({"SYSTEM", "SWAP_REQUEST", "APPROVAL", "GENERAL"})

TaskStatus = Literal["PENDING", "EXECUTED", "SKIPPED", "FAILED"]


def unique_ids(values: Any) -> List[str]:
    """Order-preserving de-duplication of string ids."""
    if not values:
        return []
    return list(dict.fromkeys(str(value) for value in values))


@dataclass(frozen=True, slots=True)
class UnitKey:
    date: str
    shift_id: str
    counter_id: str
    store_id: str

    @property
    def document_id(self) -> str:
        return f"{self.store_id}_{self.date}_{self.shift_id}_{self.counter_id}"


@dataclass(slots=True)
class UnitAssignment:
    """Incoming assignment for one unit in a publish call."""

    key: UnitKey
    employee_ids: List[str]
    assigned_by_manager_uids: List[str] = field(default_factory=list)


@dataclass(slots=True)
class AssignmentUnit:
    key: UnitKey
    employee_ids: List[str] = field(default_factory=list)
    assigned_by_manager_uids: List[str] = field(default_factory=list)
    published_at: Optional[str] = None
    published_by: Optional[str] = None

    @classmethod
    def empty(cls, key: UnitKey) -> AssignmentUnit:
        return cls(key=key)

    @classmethod
    def from_document(cls, key: UnitKey, data: Dict[str, Any]) -> AssignmentUnit:
        return cls(
            key=key,
            employee_ids=unique_ids(data.get("employeeIds")),
            assigned_by_manager_uids=unique_ids(data.get("assignedByManagerUids")),
            published_at=data.get("publishedAt"),
            published_by=data.get("publishedBy"),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.key.document_id,
            "date": self.key.date,
            "shiftId": self.key.shift_id,
            "counterId": self.key.counter_id,
            "storeId": self.key.store_id,
            "employeeIds": list(self.employee_ids),
            "assignedByManagerUids": list(self.assigned_by_manager_uids),
            "publishedAt": self.published_at,
            "publishedBy": self.published_by,
        }


@dataclass(frozen=True, slots=True)
class ShiftEntry:
    date: str
    shift_id: str

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> ShiftEntry:
        return cls(date=str(data.get("date") or ""), shift_id=str(data.get("shiftId") or ""))

    def to_document(self) -> Dict[str, str]:
        return {"date": self.date, "shiftId": self.shift_id}


@dataclass(slots=True)
class WeeklyRegistration:
    user_id: str
    week_start_date: str
    shifts: List[ShiftEntry] = field(default_factory=list)
    store_id: Optional[str] = None
    submitted_at: Optional[str] = None
    is_assigned_by_manager: bool = False

    @staticmethod
    def document_id_for(user_id: str, week_start_date: str) -> str:
        return f"{user_id}_{week_start_date}"

    @property
    def document_id(self) -> str:
        return self.document_id_for(self.user_id, self.week_start_date)

    def has_shift(self, entry: ShiftEntry) -> bool:
        return entry in self.shifts

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> WeeklyRegistration:
        return cls(
            user_id=str(data.get("userId") or ""),
            week_start_date=str(data.get("weekStartDate") or ""),
            shifts=[ShiftEntry.from_document(item) for item in data.get("shifts") or [] if isinstance(item, dict)],
            store_id=data.get("storeId"),
            submitted_at=data.get("submittedAt"),
            is_assigned_by_manager=bool(data.get("isAssignedByManager", False)),
        )

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "id": self.document_id,
            "userId": self.user_id,
            "weekStartDate": self.week_start_date,
            "shifts": [entry.to_document() for entry in self.shifts],
            "submittedAt": self.submitted_at,
            "isAssignedByManager": self.is_assigned_by_manager,
        }
        if self.store_id:
            document["storeId"] = self.store_id
        return document


@dataclass(slots=True)
class NotificationRecord:
    id: str
    user_id: str
    title: str
    body: str
    type: NotificationType
    created_at: str
    is_read: bool = False
    action_link: Optional[str] = None
    store_id: Optional[str] = None

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> NotificationRecord:
        return cls(
            id=str(data.get("id") or ""),
            user_id=str(data.get("userId") or ""),
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            type=data.get("type") or "SYSTEM",
            created_at=str(data.get("createdAt") or ""),
            is_read=bool(data.get("isRead", False)),
            action_link=data.get("actionLink"),
            store_id=data.get("storeId"),
        )

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "body": self.body,
            "type": self.type,
            "isRead": self.is_read,
            "createdAt": self.created_at,
        }
        if self.action_link:
            document["actionLink"] = self.action_link
        if self.store_id:
            document["storeId"] = self.store_id
        return document


@dataclass(slots=True)
class NotificationTemplate:
    id: str
    title_template: str
    body_template: str

    @classmethod
    def from_document(cls, template_id: str, data: Dict[str, Any]) -> NotificationTemplate:
        return cls(
            id=template_id,
            title_template=str(data.get("titleTemplate") or ""),
            body_template=str(data.get("bodyTemplate") or ""),
        )


@dataclass(slots=True)
class UserRecord:
    uid: str
    name: str = ""
    role: str = ""
    store_id: Optional[str] = None
    is_active: bool = True
    fcm_token: Optional[str] = None
    can_manage_hr: bool = False

    @classmethod
    def from_document(cls, uid: str, data: Dict[str, Any]) -> UserRecord:
        token = data.get("fcmToken")
        return cls(
            uid=uid,
            name=str(data.get("name") or ""),
            role=str(data.get("role") or ""),
            store_id=data.get("storeId"),
            is_active=data.get("isActive") is not False,
            fcm_token=token if isinstance(token, str) and token else None,
            can_manage_hr=bool(data.get("canManageHR", False)),
        )


@dataclass(slots=True)
class RegistrationWindowSchedule:
    """Weekly open/close window; days are 0=Sunday..6=Saturday in UTC+7 civil time."""

    enabled: bool = False
    open_day: int = 0
    open_hour: int = 0
    open_minute: int = 0
    close_day: int = 0
    close_hour: int = 0
    close_minute: int = 0

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> RegistrationWindowSchedule:
        def _int(name: str) -> int:
            try:
                return int(data.get(name) or 0)
            except (TypeError, ValueError):
                return 0

        return cls(
            enabled=bool(data.get("enabled", False)),
            open_day=_int("openDay"),
            open_hour=_int("openHour"),
            open_minute=_int("openMinute"),
            close_day=_int("closeDay"),
            close_hour=_int("closeHour"),
            close_minute=_int("closeMinute"),
        )


@dataclass(slots=True)
class ShiftQuotas:
    default_weekday: Dict[str, int] = field(default_factory=dict)
    default_weekend: Dict[str, int] = field(default_factory=dict)
    special_dates: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @classmethod
    def from_document(cls, data: Dict[str, Any] | None) -> ShiftQuotas:
        data = data or {}

        def _counts(raw: Any) -> Dict[str, int]:
            if not isinstance(raw, dict):
                return {}
            counts: Dict[str, int] = {}
            for key, value in raw.items():
                try:
                    counts[str(key)] = int(value)
                except (TypeError, ValueError):
                    continue
            return counts

        special_raw = data.get("specialDates") or {}
        special = {str(day): _counts(raw) for day, raw in special_raw.items()} if isinstance(special_raw, dict) else {}
        return cls(
            default_weekday=_counts(data.get("defaultWeekday")),
            default_weekend=_counts(data.get("defaultWeekend")),
            special_dates=special,
        )


@dataclass
class SettingsSnapshot:
    """Settings of one scope (global or a store), read once per invocation."""

    scope: str
    exists: bool = False
    registration_open: bool = False
    registration_schedule: Optional[RegistrationWindowSchedule] = None
    quotas: ShiftQuotas = field(default_factory=ShiftQuotas)
    event_mappings: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_document(cls, scope: str, data: Dict[str, Any] | None) -> SettingsSnapshot:
        if data is None:
            return cls(scope=scope)
        schedule_raw = data.get("registrationSchedule")
        mappings_raw = data.get("eventMappings") or {}
        return cls(
            scope=scope,
            exists=True,
            registration_open=bool(data.get("registrationOpen", False)),
            registration_schedule=(
                RegistrationWindowSchedule.from_document(schedule_raw) if isinstance(schedule_raw, dict) else None
            ),
            quotas=ShiftQuotas.from_document(data.get("quotas")),
            event_mappings=(
                {str(k): str(v) for k, v in mappings_raw.items() if v} if isinstance(mappings_raw, dict) else {}
            ),
        )


@dataclass(slots=True)
class ScheduledBroadcastTask:
    id: str
    target_type: str
    target_value: str
    template_id: str
    scheduled_at: str
    is_active: bool = True
    status: TaskStatus = "PENDING"
    executed_at: Optional[str] = None
    targets_hit: Optional[int] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_document(cls, task_id: str, data: Dict[str, Any]) -> ScheduledBroadcastTask:
        targets_hit = data.get("targetsHit")
        return cls(
            id=task_id,
            target_type=str(data.get("targetType") or "").upper(),
            target_value=str(data.get("targetValue") or ""),
            template_id=str(data.get("templateId") or ""),
            scheduled_at=str(data.get("scheduledAt") or ""),
            is_active=bool(data.get("isActive", False)),
            status=data.get("status") or "PENDING",
            executed_at=data.get("executedAt"),
            targets_hit=int(targets_hit) if targets_hit is not None else None,
            error=data.get("error"),
            reason=data.get("reason"),
        )
