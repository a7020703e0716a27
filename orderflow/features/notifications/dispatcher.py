"""
Best-effort notification dispatch.

Lifecycle code hands a small fixed set of notifications to `Dispatcher`,
which sends them concurrently, waits for all of them, and records every
outcome in `notification_logs`. Failures end up in that side log and in the
returned report; they are never raised to the caller.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from sqlalchemy import insert

from orderflow.core.config import Settings
from orderflow.core.database import Database, notification_logs, utc_now

logger = logging.getLogger("orderflow.notifications")


@dataclass(frozen=True)
class Notification:
    channel: str  # push | email
    title: str
    body: str
    token: Optional[str] = None
    topic: Optional[str] = None
    email: Optional[str] = None
    html: Optional[str] = None
    order_id: Optional[str] = None
    data: Dict[str, str] = field(default_factory=dict)

    @property
    def recipient(self) -> Optional[str]:
        if self.channel == "email":
            return self.email
        if self.topic:
            return f"/topics/{self.topic}"
        return self.token


@dataclass(frozen=True)
class DeliveryOutcome:
    notification: Notification
    status: str  # sent | failed | skipped
    error: Optional[str] = None


@dataclass
class DispatchReport:
    outcomes: List[DeliveryOutcome] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "sent")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "skipped")


class NotificationChannel(Protocol):
    def send(self, notification: Notification) -> None:
        """Deliver one notification or raise."""
        ...


class HttpPushChannel:
    """Push gateway client (FCM-style JSON body)."""

    def __init__(self, url: str, token: Optional[str] = None, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    def send(self, notification: Notification) -> None:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload: Dict[str, Any] = {
            "to": notification.recipient,
            "notification": {"title": notification.title, "body": notification.body},
            "data": notification.data,
        }
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()
        finally:
            if self._client is None:
                client.close()


class HttpEmailChannel:
    """Transactional email API client."""

    def __init__(self, url: str, sender: str, token: Optional[str] = None, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.sender = sender
        self.token = token
        self.timeout = timeout
        self._client = client

    def send(self, notification: Notification) -> None:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = {
            "from": self.sender,
            "to": notification.email,
            "subject": notification.title,
            "text": notification.body,
            "html": notification.html or f"<p>{notification.body}</p>",
        }
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()
        finally:
            if self._client is None:
                client.close()


class Dispatcher:
    def __init__(
        self,
        db: Optional[Database] = None,
        channels: Optional[Dict[str, NotificationChannel]] = None,
        max_workers: int = 4,
    ):
        self.db = db
        self.channels: Dict[str, NotificationChannel] = dict(channels or {})
        self.max_workers = max(1, max_workers)

    @classmethod
    def from_settings(cls, cfg: Settings, db: Optional[Database] = None) -> "Dispatcher":
        channels: Dict[str, NotificationChannel] = {}
        if cfg.PUSH_GATEWAY_URL:
            channels["push"] = HttpPushChannel(
                cfg.PUSH_GATEWAY_URL, cfg.PUSH_GATEWAY_TOKEN, cfg.NOTIFICATION_TIMEOUT_SECONDS
            )
        if cfg.EMAIL_API_URL:
            channels["email"] = HttpEmailChannel(
                cfg.EMAIL_API_URL, cfg.EMAIL_FROM, cfg.EMAIL_API_TOKEN, cfg.NOTIFICATION_TIMEOUT_SECONDS
            )
        return cls(db=db, channels=channels, max_workers=cfg.NOTIFICATION_MAX_WORKERS)

    def _send_one(self, notification: Notification) -> DeliveryOutcome:
        channel = self.channels.get(notification.channel)
        if channel is None:
            return DeliveryOutcome(notification, "skipped", f"{notification.channel} channel not configured")
        if not notification.recipient:
            return DeliveryOutcome(notification, "skipped", "no recipient")
        try:
            channel.send(notification)
        except Exception as e:
            logger.warning(
                "notification.failed",
                extra={"channel": notification.channel, "order_id": notification.order_id, "error": str(e)},
            )
            return DeliveryOutcome(notification, "failed", str(e) or e.__class__.__name__)
        return DeliveryOutcome(notification, "sent")

    def _record(self, outcomes: Sequence[DeliveryOutcome]) -> None:
        if self.db is None or not outcomes:
            return
        now = utc_now()
        try:
            with self.db.session() as session:
                session.execute(
                    insert(notification_logs),
                    [
                        {
                            "channel": o.notification.channel,
                            "recipient": o.notification.recipient,
                            "title": o.notification.title,
                            "status": o.status,
                            "error": o.error,
                            "order_id": o.notification.order_id,
                            "timestamp": now,
                        }
                        for o in outcomes
                    ],
                )
        except Exception:
            logger.exception("notification.log_write_failed")

    def dispatch(self, notifications: Sequence[Notification]) -> DispatchReport:
        """Send all notifications concurrently; never raises."""
        if not notifications:
            return DispatchReport()
        try:
            workers = min(self.max_workers, len(notifications))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(self._send_one, notifications))
        except Exception as e:
            logger.exception("notification.dispatch_failed")
            outcomes = [DeliveryOutcome(n, "failed", str(e)) for n in notifications]

        self._record(outcomes)
        report = DispatchReport(outcomes=outcomes)
        logger.info(
            "notification.dispatched",
            extra={"sent": report.sent, "failed": report.failed, "skipped": report.skipped},
        )
        return report
