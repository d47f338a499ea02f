from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

import pytest

from conftest import FIXED_NOW, add_user, notifications_for
from shiftboard.access import Caller
from shiftboard.background import BackgroundTasks
from shiftboard.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from shiftboard.notifications import EventResolver
from shiftboard.persistence import SQLiteDocumentStore
from shiftboard.registration import RegistrationService
from shiftboard.settings_service import SettingsService

MANAGER = Caller(uid="mgr", role="store_manager", store_id="s1")
NEXT_WEEK = "2025-06-09"


def _force(target: str = "a", date: str = "2025-06-10", shift: str = "morning", store_id: str | None = "s1") -> dict:
    payload = {"targetUserId": target, "weekStartDate": NEXT_WEEK, "date": date, "shiftId": shift}
    if store_id is not None:
        payload["storeId"] = store_id
    return payload


def _submission(uid: str, *shifts: tuple[str, str], week: str = NEXT_WEEK, store_id: str = "s1") -> dict:
    return {
        "userId": uid,
        "storeId": store_id,
        "weekStartDate": week,
        "shifts": [{"date": day, "shiftId": shift} for day, shift in shifts],
    }


@pytest.fixture
def service(store: SQLiteDocumentStore, resolver: EventResolver, background: BackgroundTasks) -> RegistrationService:
    store.set("stores", "s1", {"name": "Central", "settings": {"registrationOpen": True}})
    store.set("stores", "s2", {"name": "Harbor"})
    add_user(store, "a", storeId="s1")
    add_user(store, "b", storeId="s1")
    add_user(store, "c", storeId="s1")
    add_user(store, "x", storeId="s2")
    add_user(store, "mgr", storeId="s1", role="store_manager")
    settings = SettingsService(store, background, clock=lambda: FIXED_NOW)
    return RegistrationService(store, resolver, settings, default_recipient_name="there", clock=lambda: FIXED_NOW)


class TestForceAssign:
    def test_creates_registration(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        result = service.force_assign(_force(), MANAGER)

        document = store.get("weekly_registrations", f"a_{NEXT_WEEK}")
        assert document["shifts"] == [{"date": "2025-06-10", "shiftId": "morning"}]
        assert document["isAssignedByManager"] is True
        assert document["storeId"] == "s1"
        assert result.notification is not None and result.notification.used_fallback

        [record] = notifications_for(store, "a")
        assert record["body"] == "A manager assigned you to shift morning on 2025-06-10. Please check your schedule."
        assert record["actionLink"] == "/employee/register"

    def test_appends_to_existing_registration(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        service.force_assign(_force(), MANAGER)
        service.force_assign(_force(shift="evening"), MANAGER)
        document = store.get("weekly_registrations", f"a_{NEXT_WEEK}")
        assert [entry["shiftId"] for entry in document["shifts"]] == ["morning", "evening"]

    def test_duplicate_shift_conflicts(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        service.force_assign(_force(), MANAGER)
        with pytest.raises(ConflictError):
            service.force_assign(_force(), MANAGER)
        assert len(store.get("weekly_registrations", f"a_{NEXT_WEEK}")["shifts"]) == 1
        assert len(notifications_for(store, "a")) == 1

    def test_requires_store(self, service: RegistrationService) -> None:
        with pytest.raises(ValidationError):
            service.force_assign(_force(store_id=None), MANAGER)

    def test_unknown_user(self, service: RegistrationService) -> None:
        with pytest.raises(NotFoundError):
            service.force_assign(_force(target="ghost"), MANAGER)

    def test_user_from_another_store(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        with pytest.raises(ValidationError):
            service.force_assign(_force(target="x"), MANAGER)
        assert store.get("weekly_registrations", f"x_{NEXT_WEEK}") is None

    def test_employee_cannot_force_assign(self, service: RegistrationService) -> None:
        with pytest.raises(ForbiddenError):
            service.force_assign(_force(), Caller(uid="b", role="employee", store_id="s1"))


class TestForceUnassign:
    def test_removes_one_shift(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        service.force_assign(_force(), MANAGER)
        service.force_assign(_force(shift="evening"), MANAGER)

        result = service.force_unassign(_force(), MANAGER)

        assert result.deleted is False
        document = store.get("weekly_registrations", f"a_{NEXT_WEEK}")
        assert document["shifts"] == [{"date": "2025-06-10", "shiftId": "evening"}]
        titles = [record["title"] for record in notifications_for(store, "a")]
        assert "A shift was removed from your registration" in titles

    def test_removing_last_shift_deletes_registration(
        self, store: SQLiteDocumentStore, service: RegistrationService
    ) -> None:
        service.force_assign(_force(), MANAGER)
        result = service.force_unassign(_force(), MANAGER)
        assert result.deleted is True
        assert result.registration is None
        assert store.get("weekly_registrations", f"a_{NEXT_WEEK}") is None

    def test_missing_registration(self, service: RegistrationService) -> None:
        with pytest.raises(NotFoundError):
            service.force_unassign(_force(), MANAGER)

    def test_missing_shift(self, service: RegistrationService) -> None:
        service.force_assign(_force(), MANAGER)
        with pytest.raises(NotFoundError):
            service.force_unassign(_force(shift="evening"), MANAGER)

    def test_notification_failure_does_not_undo_change(
        self, store: SQLiteDocumentStore, service: RegistrationService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        service.force_assign(_force(), MANAGER)

        def boom(*args, **kwargs):
            raise RuntimeError("push down")

        monkeypatch.setattr(EventResolver, "notify_with_fallback", boom)
        result = service.force_unassign(_force(), MANAGER)
        assert result.deleted is True
        assert result.notification is None


class TestSubmit:
    def test_stores_registration(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        caller = Caller(uid="a", role="employee", store_id="s1")
        registration = service.submit(_submission("a", ("2025-06-10", "morning")), caller)

        assert registration is not None
        document = store.get("weekly_registrations", f"a_{NEXT_WEEK}")
        assert document["shifts"] == [{"date": "2025-06-10", "shiftId": "morning"}]
        assert document["isAssignedByManager"] is False
        assert document["submittedAt"] == "2025-06-04T03:00:00.000Z"

    def test_empty_submission_withdraws(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        caller = Caller(uid="a", role="employee", store_id="s1")
        service.submit(_submission("a", ("2025-06-10", "morning")), caller)
        assert service.submit(_submission("a"), caller) is None
        assert store.get("weekly_registrations", f"a_{NEXT_WEEK}") is None

    def test_closed_window(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        store.update("stores", "s1", {"settings": {"registrationOpen": False}})
        with pytest.raises(ForbiddenError):
            service.submit(_submission("a", ("2025-06-10", "morning")), Caller(uid="a", store_id="s1"))

    def test_scheduled_window_overrides_stale_flag(
        self, store: SQLiteDocumentStore, service: RegistrationService, background: BackgroundTasks
    ) -> None:
        # Window Monday 00:00 to Thursday 00:00 civil; FIXED_NOW is Wednesday 10:00 civil.
        store.update(
            "stores",
            "s1",
            {
                "settings": {
                    "registrationOpen": False,
                    "registrationSchedule": {"enabled": True, "openDay": 1, "closeDay": 4},
                }
            },
        )
        registration = service.submit(_submission("a", ("2025-06-10", "morning")), Caller(uid="a", store_id="s1"))
        background.drain()
        assert registration is not None
        assert store.get("stores", "s1")["settings"]["registrationOpen"] is True

    def test_wrong_week(self, service: RegistrationService) -> None:
        with pytest.raises(ForbiddenError):
            service.submit(
                _submission("a", ("2025-06-03", "morning"), week="2025-06-02"), Caller(uid="a", store_id="s1")
            )

    def test_next_week_follows_the_civil_clock(self, service: RegistrationService) -> None:
        # Sunday 20:00 UTC is already Monday 03:00 civil, so "next week" moves on.
        late_sunday = datetime(2025, 6, 8, 20, 0, tzinfo=timezone.utc)
        caller = Caller(uid="a", store_id="s1")
        with pytest.raises(ForbiddenError):
            service.submit(_submission("a", ("2025-06-10", "morning")), caller, now=late_sunday)
        registration = service.submit(
            _submission("a", ("2025-06-17", "morning"), week="2025-06-16"), caller, now=late_sunday
        )
        assert registration is not None

    def test_cannot_submit_for_someone_else(self, service: RegistrationService) -> None:
        with pytest.raises(ForbiddenError):
            service.submit(_submission("b", ("2025-06-10", "morning")), Caller(uid="a", store_id="s1"))

    def test_store_mismatch(self, service: RegistrationService) -> None:
        with pytest.raises(ValidationError):
            service.submit(
                _submission("a", ("2025-06-10", "morning"), store_id="s2"), Caller(uid="a", store_id="s1")
            )

    def test_duplicate_shifts(self, service: RegistrationService) -> None:
        with pytest.raises(ValidationError):
            service.submit(
                _submission("a", ("2025-06-10", "morning"), ("2025-06-10", "morning")),
                Caller(uid="a", store_id="s1"),
            )

    def test_quota_full(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        store.update(
            "stores",
            "s1",
            {"settings": {"registrationOpen": True, "quotas": {"defaultWeekday": {"morning": 1}}}},
        )
        service.submit(_submission("a", ("2025-06-10", "morning")), Caller(uid="a", store_id="s1"))
        with pytest.raises(ConflictError):
            service.submit(_submission("b", ("2025-06-10", "morning")), Caller(uid="b", store_id="s1"))

    def test_resubmitting_does_not_count_own_registration(
        self, store: SQLiteDocumentStore, service: RegistrationService
    ) -> None:
        store.update(
            "stores",
            "s1",
            {"settings": {"registrationOpen": True, "quotas": {"defaultWeekday": {"morning": 1}}}},
        )
        caller = Caller(uid="a", store_id="s1")
        service.submit(_submission("a", ("2025-06-10", "morning")), caller)
        registration = service.submit(_submission("a", ("2025-06-10", "morning"), ("2025-06-11", "evening")), caller)
        assert registration is not None and len(registration.shifts) == 2

    def test_concurrent_submissions_cannot_overfill_a_shift(
        self, store: SQLiteDocumentStore, service: RegistrationService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        store.update(
            "stores",
            "s1",
            {"settings": {"registrationOpen": True, "quotas": {"defaultWeekday": {"morning": 1}}}},
        )
        count_then_write = RegistrationService._check_quotas

        def slow_check(self: RegistrationService, *args: object) -> None:
            count_then_write(self, *args)
            time.sleep(0.2)

        monkeypatch.setattr(RegistrationService, "_check_quotas", slow_check)
        barrier = threading.Barrier(2)
        conflicts: list[ConflictError] = []

        def register(uid: str) -> None:
            barrier.wait()
            try:
                service.submit(_submission(uid, ("2025-06-10", "morning")), Caller(uid=uid, store_id="s1"))
            except ConflictError as exc:
                conflicts.append(exc)

        workers = [threading.Thread(target=register, args=(uid,)) for uid in ("a", "b")]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)

        holders = store.query("weekly_registrations", [("weekStartDate", "==", NEXT_WEEK)])
        assert len(holders) == 1
        assert len(conflicts) == 1

    def test_special_date_quota(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        store.update(
            "stores",
            "s1",
            {
                "settings": {
                    "registrationOpen": True,
                    "quotas": {"defaultWeekday": {"morning": 1}, "specialDates": {"2025-06-10": {"morning": 2}}},
                }
            },
        )
        service.submit(_submission("a", ("2025-06-10", "morning")), Caller(uid="a", store_id="s1"))
        service.submit(_submission("b", ("2025-06-10", "morning")), Caller(uid="b", store_id="s1"))
        with pytest.raises(ConflictError):
            service.submit(_submission("c", ("2025-06-10", "morning")), Caller(uid="c", store_id="s1"))

    def test_caller_without_store(self, service: RegistrationService) -> None:
        with pytest.raises(ValidationError):
            service.submit(_submission("a", ("2025-06-10", "morning")), Caller(uid="a"))

    def test_impossible_date_rejected(self, store: SQLiteDocumentStore, service: RegistrationService) -> None:
        with pytest.raises(ValidationError):
            service.submit(_submission("a", ("2025-06-31", "morning")), Caller(uid="a", store_id="s1"))
        assert store.query("weekly_registrations") == []
