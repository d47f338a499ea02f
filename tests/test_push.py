from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest
import requests

from shiftboard.config import PushSettings
from shiftboard.notifications import DisabledPushTransport, FcmPushTransport, PushMessage, build_push_transport


class FakeResponse:
    def __init__(self, status_code: int, payload: Dict[str, Any] | None = None):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self) -> Dict[str, Any]:
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload


def _message(token: str = "device-token-1234567890") -> PushMessage:
    return PushMessage(token=token, title="Schedule", body="Check your shifts", action_link="/employee/dashboard")


def test_fcm_transport_posts_v1_message(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: List[Dict[str, Any]] = []

    def fake_post(url: str, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> FakeResponse:
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return FakeResponse(200, {"name": "projects/demo/messages/1"})

    monkeypatch.setattr("shiftboard.notifications.push.requests.post", fake_post)
    transport = FcmPushTransport("demo", access_token="secret", icon="/Artboard.png", timeout=3)

    assert transport.send_one(_message()) is True

    assert len(calls) == 1
    call = calls[0]
    assert call["url"] == "https://fcm.googleapis.com/v1/projects/demo/messages:send"
    assert call["headers"] == {"Authorization": "Bearer secret"}
    assert call["timeout"] == 3
    message = call["json"]["message"]
    assert message["token"] == "device-token-1234567890"
    assert message["notification"] == {"title": "Schedule", "body": "Check your shifts"}
    assert message["data"] == {"actionLink": "/employee/dashboard"}
    assert message["webpush"]["notification"]["icon"] == "/Artboard.png"


def test_fcm_transport_reads_token_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: List[str] = []

    def fake_post(url: str, **kwargs: Any) -> FakeResponse:
        seen.append(kwargs["headers"]["Authorization"])
        return FakeResponse(200, {})

    monkeypatch.setenv("DEMO_FCM_TOKEN", "from-env")
    monkeypatch.setattr("shiftboard.notifications.push.requests.post", fake_post)
    transport = FcmPushTransport("demo", access_token_env="DEMO_FCM_TOKEN")

    assert transport.enabled() is True
    assert transport.send_one(_message()) is True
    assert seen == ["Bearer from-env"]


def test_fcm_transport_error_status_is_a_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "shiftboard.notifications.push.requests.post",
        lambda url, **kwargs: FakeResponse(404, {"error": {"status": "NOT_FOUND"}}),
    )
    transport = FcmPushTransport("demo", access_token="secret")
    assert transport.send_one(_message()) is False


def test_fcm_transport_network_error_is_a_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, **kwargs: Any) -> FakeResponse:
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr("shiftboard.notifications.push.requests.post", fake_post)
    transport = FcmPushTransport("demo", access_token="secret")
    assert transport.send_one(_message()) is False


def test_fcm_transport_without_credentials_skips(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, **kwargs: Any) -> FakeResponse:
        raise AssertionError("no request expected")

    monkeypatch.delenv("FCM_ACCESS_TOKEN", raising=False)
    monkeypatch.setattr("shiftboard.notifications.push.requests.post", fake_post)
    transport = FcmPushTransport("demo", access_token_env="FCM_ACCESS_TOKEN")

    assert transport.enabled() is False
    assert transport.send_one(_message()) is False


def test_send_many_counts_results(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, json: Dict[str, Any], **kwargs: Any) -> FakeResponse:
        return FakeResponse(500 if json["message"]["token"] == "bad" else 200, {})

    monkeypatch.setattr("shiftboard.notifications.push.requests.post", fake_post)
    transport = FcmPushTransport("demo", access_token="secret")

    result = transport.send_many([_message("good"), _message("bad"), _message("fine")])

    assert (result.success_count, result.failure_count) == (2, 1)
    assert result.results == [True, False, True]


def test_send_many_rejects_oversized_batch() -> None:
    transport = FcmPushTransport("demo", access_token="secret", max_batch_size=2)
    with pytest.raises(ValueError):
        transport.send_many([_message(), _message(), _message()])


def test_disabled_transport_reports_failures() -> None:
    result = DisabledPushTransport().send_many([_message(), _message("other-token")])
    assert (result.success_count, result.failure_count) == (0, 2)


def test_build_push_transport() -> None:
    assert isinstance(build_push_transport(PushSettings(enabled=False)), DisabledPushTransport)

    transport = build_push_transport(PushSettings(enabled=True, project_id="demo", access_token="t", batch_ceiling=50))
    assert isinstance(transport, FcmPushTransport)
    assert transport.max_batch_size == 50
