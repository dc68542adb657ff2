"""Delivery of password reset tokens to their owner."""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from aegisx.auth.models import PasswordResetIssued
from aegisx.core.config import AuthConfig

LOGGER = logging.getLogger(__name__)


class ResetTokenSender(Protocol):
    """Out-of-band channel (mail relay, notifier) for reset tokens."""

    def send(self, issued: PasswordResetIssued) -> None: ...


class LoggingResetSender:
    """Fallback when no channel is configured: the token is not delivered."""

    def send(self, issued: PasswordResetIssued) -> None:
        LOGGER.warning("password_reset_not_delivered", extra={"user_id": issued.user_id})


class WebhookResetSender:
    """Posts the reset grant as JSON to a notification service."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url:
            raise ValueError("webhook url is required")
        self._url = url
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    def send(self, issued: PasswordResetIssued) -> None:
        response = self._session.post(
            self._url, json=issued.model_dump(), timeout=self._timeout
        )
        response.raise_for_status()


def sender_from_config(config: AuthConfig) -> ResetTokenSender:
    if config.password_reset_webhook_url:
        return WebhookResetSender(config.password_reset_webhook_url)
    return LoggingResetSender()
