from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List

import pytest

from shiftboard.background import BackgroundTasks
from shiftboard.config import NotificationSettings
from shiftboard.notifications import EventResolver, NotificationDispatcher, PushMessage, PushTransport
from shiftboard.persistence import SQLiteDocumentStore

FIXED_NOW = datetime(2025, 6, 4, 3, 0, tzinfo=timezone.utc)


class RecordingTransport(PushTransport):
    """Push transport that records every message instead of sending it."""

    name = "recording"

    def __init__(self, failing_tokens: Iterable[str] = ()) -> None:
        self.sent: List[PushMessage] = []
        self.failing_tokens = set(failing_tokens)

    def send_one(self, message: PushMessage) -> bool:
        self.sent.append(message)
        return message.token not in self.failing_tokens


@pytest.fixture
def store(tmp_path: Path) -> SQLiteDocumentStore:
    document_store = SQLiteDocumentStore(tmp_path / "shiftboard.db")
    yield document_store
    document_store.close()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def background() -> BackgroundTasks:
    tasks = BackgroundTasks(max_workers=2)
    yield tasks
    tasks.shutdown()


@pytest.fixture
def dispatcher(store: SQLiteDocumentStore, transport: RecordingTransport) -> NotificationDispatcher:
    return NotificationDispatcher(store, transport, clock=lambda: FIXED_NOW)


@pytest.fixture
def resolver(store: SQLiteDocumentStore, dispatcher: NotificationDispatcher) -> EventResolver:
    return EventResolver(store, dispatcher, fallbacks=NotificationSettings().fallbacks)


def add_user(store: SQLiteDocumentStore, uid: str, **fields) -> None:
    document = {"uid": uid, "name": uid.upper(), "role": "employee", "isActive": True}
    document.update(fields)
    store.set("users", uid, document)


def notifications_for(store: SQLiteDocumentStore, uid: str) -> list[dict]:
    return [doc.data for doc in store.query("notifications", [("userId", "==", uid)])]
