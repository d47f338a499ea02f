from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import load_yaml_file, parse_env_bool

MAX_BATCH_CEILING = 500

EVENT_SCHEDULE_PUBLISHED = "SCHEDULE_PUBLISHED"
EVENT_SHIFT_FORCE_ASSIGNED = "SHIFT_FORCE_ASSIGNED"
EVENT_SHIFT_FORCE_UNASSIGNED = "SHIFT_FORCE_UNASSIGNED"


@dataclass
class FallbackMessage:
    title: str
    body: str
    action_link: str | None = None


def _default_fallbacks() -> dict[str, FallbackMessage]:
    return {
        EVENT_SCHEDULE_PUBLISHED: FallbackMessage(
            title="Your work schedule has been updated",
            body="A manager just published a new schedule. Open the app to review your shifts.",
            action_link="/employee/dashboard",
        ),
        EVENT_SHIFT_FORCE_ASSIGNED: FallbackMessage(
            title="You have been assigned a shift",
            body="A manager assigned you to shift {shiftId} on {date}. Please check your schedule.",
            action_link="/employee/dashboard",
        ),
        EVENT_SHIFT_FORCE_UNASSIGNED: FallbackMessage(
            title="A shift was removed from your registration",
            body="A manager removed shift {shiftId} on {date} from your registration.",
            action_link="/employee/dashboard",
        ),
    }


@dataclass
class StorageSettings:
    batch_ceiling: int = MAX_BATCH_CEILING


@dataclass
class PushSettings:
    enabled: bool = False
    project_id: str | None = None
    access_token: str | None = None
    access_token_env: str | None = "FCM_ACCESS_TOKEN"
    timeout: float = 10.0
    batch_ceiling: int = MAX_BATCH_CEILING
    icon: str | None = "/Artboard.png"
    default_action_link: str = "/"


@dataclass
class NotificationSettings:
    fallbacks: dict[str, FallbackMessage] = field(default_factory=_default_fallbacks)
    default_recipient_name: str = "there"


@dataclass
class BackgroundSettings:
    max_workers: int = 4


@dataclass
class RegistrationSettings:
    default_quota: int = 5


@dataclass
class Settings:
    database_path: Path = field(default_factory=lambda: Path("/data/shiftboard.db"))
    storage: StorageSettings = field(default_factory=StorageSettings)
    push: PushSettings = field(default_factory=PushSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    background: BackgroundSettings = field(default_factory=BackgroundSettings)
    registration: RegistrationSettings = field(default_factory=RegistrationSettings)


@dataclass
class AppConfig:
    settings: Settings


def _ensure_mapping(value: Any, *, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{field_name}' must be provided as a mapping when specified")
    return value


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_batch_ceiling(value: Any, *, field_name: str) -> int:
    try:
        ceiling = int(value)
    except (TypeError, ValueError) as exc:  # noqa: PERF203
        raise ValueError(f"'{field_name}' must be an integer") from exc
    if not 1 <= ceiling <= MAX_BATCH_CEILING:
        raise ValueError(f"'{field_name}' must be between 1 and {MAX_BATCH_CEILING}")
    return ceiling


def _parse_positive_int(value: Any, *, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:  # noqa: PERF203
        raise ValueError(f"'{field_name}' must be an integer") from exc
    if number < 1:
        raise ValueError(f"'{field_name}' must be greater than or equal to 1")
    return number


def _build_storage_settings(data: dict[str, Any]) -> StorageSettings:
    if not data:
        return StorageSettings()
    return StorageSettings(
        batch_ceiling=_parse_batch_ceiling(
            data.get("batch_ceiling", MAX_BATCH_CEILING), field_name="storage.batch_ceiling"
        ),
    )


def _build_push_settings(data: dict[str, Any]) -> PushSettings:
    defaults = PushSettings()

    try:
        timeout = float(data.get("timeout", defaults.timeout))
    except (TypeError, ValueError) as exc:  # noqa: PERF203
        raise ValueError("'push.timeout' must be a number") from exc
    if timeout <= 0:
        raise ValueError("'push.timeout' must be greater than 0")

    enabled = bool(data.get("enabled", defaults.enabled))
    env_override = parse_env_bool(os.getenv("SHIFTBOARD_PUSH_ENABLED"))
    if env_override is not None:
        enabled = env_override

    return PushSettings(
        enabled=enabled,
        project_id=_clean_str(data.get("project_id")),
        access_token=_clean_str(data.get("access_token")),
        access_token_env=_clean_str(data.get("access_token_env", defaults.access_token_env)),
        timeout=timeout,
        batch_ceiling=_parse_batch_ceiling(
            data.get("batch_ceiling", MAX_BATCH_CEILING), field_name="push.batch_ceiling"
        ),
        icon=_clean_str(data.get("icon", defaults.icon)),
        default_action_link=_clean_str(data.get("default_action_link")) or defaults.default_action_link,
    )


def _build_notification_settings(data: dict[str, Any]) -> NotificationSettings:
    fallbacks = _default_fallbacks()
    fallbacks_raw = _ensure_mapping(data.get("fallbacks"), field_name="notifications.fallbacks")
    for event_name, entry in fallbacks_raw.items():
        key = str(event_name).strip()
        if not key:
            continue
        if entry is None:
            fallbacks.pop(key, None)
            continue
        if not isinstance(entry, dict):
            raise ValueError(f"'notifications.fallbacks.{key}' must be a mapping with 'title' and 'body'")
        title = _clean_str(entry.get("title"))
        body = _clean_str(entry.get("body"))
        if not title or not body:
            raise ValueError(f"'notifications.fallbacks.{key}' requires non-empty 'title' and 'body'")
        fallbacks[key] = FallbackMessage(title=title, body=body, action_link=_clean_str(entry.get("action_link")))

    recipient = data.get("default_recipient_name", "there")
    if not isinstance(recipient, str) or not recipient.strip():
        raise ValueError("'notifications.default_recipient_name' must be a non-empty string")

    return NotificationSettings(fallbacks=fallbacks, default_recipient_name=recipient.strip())


def _build_settings(data: dict[str, Any]) -> Settings:
    storage = _build_storage_settings(_ensure_mapping(data.get("storage"), field_name="storage"))
    push = _build_push_settings(_ensure_mapping(data.get("push"), field_name="push"))
    notifications = _build_notification_settings(
        _ensure_mapping(data.get("notifications"), field_name="notifications")
    )

    background_raw = _ensure_mapping(data.get("background"), field_name="background")
    background = BackgroundSettings(
        max_workers=_parse_positive_int(background_raw.get("max_workers", 4), field_name="background.max_workers"),
    )

    registration_raw = _ensure_mapping(data.get("registration"), field_name="registration")
    registration = RegistrationSettings(
        default_quota=_parse_positive_int(
            registration_raw.get("default_quota", 5), field_name="registration.default_quota"
        ),
    )

    database_path = Path(data.get("database_path", "/data/shiftboard.db")).expanduser()

    return Settings(
        database_path=database_path,
        storage=storage,
        push=push,
        notifications=notifications,
        background=background,
        registration=registration,
    )


def load_config(path: Path) -> AppConfig:
    data = load_yaml_file(path)
    settings_raw = _ensure_mapping(data.get("settings"), field_name="settings")
    return AppConfig(settings=_build_settings(settings_raw))
