"""Audit events and their fire-and-forget delivery."""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Protocol

import requests
from pydantic import BaseModel, Field

from aegisx.auth.models import RequestContext
from aegisx.core.config import AuditConfig
from aegisx.core.logging import CORRELATION_ID_CTX

LOGGER = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditEvent(BaseModel):
    """Immutable record of a security-relevant action."""

    model_config = {"frozen": True}

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    actor: str = SYSTEM_ACTOR
    action: str
    target: str | None = None
    ip: str = ""
    user_agent: str = ""
    reason: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_utc_now_iso)
    correlation_id: str = Field(default_factory=CORRELATION_ID_CTX.get)


def make_event(
    action: str,
    *,
    actor: str | None,
    context: RequestContext | None = None,
    target: str | None = None,
    reason: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    """Build an audit event stamped with request origin details."""
    ctx = context or RequestContext()
    return AuditEvent(
        actor=actor or SYSTEM_ACTOR,
        action=action,
        target=target,
        ip=ctx.ip,
        user_agent=ctx.user_agent,
        reason=reason,
        details=details or {},
    )


class AuditSink(Protocol):
    """External destination for audit events."""

    def deliver(self, event: AuditEvent, *, timeout: float) -> None: ...


class LoggingAuditSink:
    """Writes audit events to the structured application log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("aegisx.audit")

    def deliver(self, event: AuditEvent, *, timeout: float) -> None:
        self._logger.info(
            "audit_event",
            extra={
                "action": event.action,
                "user_id": event.actor,
                "reason": event.reason,
            },
        )


class WebhookAuditSink:
    """Posts audit events as JSON to an HTTP collector."""

    def __init__(self, url: str, *, session: requests.Session | None = None) -> None:
        if not url:
            raise ValueError("webhook url is required")
        self._url = url
        self._session = session or requests.Session()

    def deliver(self, event: AuditEvent, *, timeout: float) -> None:
        response = self._session.post(self._url, json=event.model_dump(), timeout=timeout)
        response.raise_for_status()


class AuditPublisher:
    """Hands events to a sink on a worker pool and never raises to the caller.

    A slow or failing sink costs a log line, not the security action that
    emitted the event. At most ``max_pending`` events wait for delivery;
    beyond that new events are dropped with a warning.
    """

    def __init__(
        self,
        sink: AuditSink,
        *,
        timeout_seconds: float = 2.0,
        max_workers: int = 2,
        max_pending: int = 1000,
    ) -> None:
        self._sink = sink
        self._timeout = timeout_seconds
        self._max_pending = max(1, max_pending)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="audit-delivery"
        )
        self._pending: set[Future[None]] = set()
        self._lock = Lock()

    @classmethod
    def from_config(cls, config: AuditConfig) -> "AuditPublisher":
        sink: AuditSink
        if config.webhook_url:
            sink = WebhookAuditSink(config.webhook_url)
        else:
            sink = LoggingAuditSink()
        return cls(
            sink,
            timeout_seconds=config.timeout_seconds,
            max_workers=config.max_workers,
            max_pending=config.max_pending,
        )

    def publish(self, event: AuditEvent) -> None:
        """Schedule delivery and return immediately."""
        with self._lock:
            if len(self._pending) >= self._max_pending:
                LOGGER.warning("audit_queue_full", extra={"action": event.action})
                return
            try:
                future = self._executor.submit(self._deliver, event)
            except RuntimeError:
                LOGGER.warning("audit_publisher_closed", extra={"action": event.action})
                return
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, event: AuditEvent) -> None:
        try:
            self._sink.deliver(event, timeout=self._timeout)
        except Exception:
            LOGGER.warning(
                "audit_delivery_failed",
                extra={"action": event.action, "user_id": event.actor},
                exc_info=True,
            )

    def flush(self, timeout: float | None = None) -> None:
        """Wait for deliveries scheduled so far."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Drain pending deliveries and stop the worker pool."""
        self._executor.shutdown(wait=True)
