from __future__ import annotations

from typing import Any

import pytest
import requests

from aegisx.auth.models import PasswordResetIssued
from aegisx.auth.reset_delivery import LoggingResetSender, WebhookResetSender, sender_from_config
from tests.memory_store import auth_config

ISSUED = PasswordResetIssued(
    user_id="u1", email="jane@test.local", token="reset-secret", expires_at=1_700_003_600
)


class _Response:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")


class _Session:
    def __init__(self, status_code: int = 202) -> None:
        self.calls: list[dict[str, Any]] = []
        self.status_code = status_code

    def post(self, url: str, *, json: dict[str, Any], timeout: float) -> _Response:
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        return _Response(self.status_code)


def test_webhook_sender_posts_reset_grant() -> None:
    session = _Session()
    sender = WebhookResetSender(
        "https://notify.test/reset", timeout_seconds=3.0, session=session  # type: ignore[arg-type]
    )

    sender.send(ISSUED)

    assert session.calls == [
        {"url": "https://notify.test/reset", "json": ISSUED.model_dump(), "timeout": 3.0}
    ]


def test_webhook_sender_raises_on_error_status() -> None:
    sender = WebhookResetSender("https://notify.test/reset", session=_Session(503))  # type: ignore[arg-type]

    with pytest.raises(requests.HTTPError):
        sender.send(ISSUED)


def test_webhook_sender_requires_url() -> None:
    with pytest.raises(ValueError):
        WebhookResetSender("")


def test_logging_sender_never_logs_the_token(caplog: pytest.LogCaptureFixture) -> None:
    LoggingResetSender().send(ISSUED)

    assert "password_reset_not_delivered" in caplog.text
    assert all("reset-secret" not in str(vars(record)) for record in caplog.records)


def test_sender_from_config() -> None:
    webhook = sender_from_config(auth_config(password_reset_webhook_url="https://notify.test/reset"))
    plain = sender_from_config(auth_config())

    assert isinstance(webhook, WebhookResetSender)
    assert isinstance(plain, LoggingResetSender)
