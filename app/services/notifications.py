"""
Notification Dispatch - Out-of-band delivery of OTP codes and user notices.

Delivery is fire-and-forget: failures are logged and never reach the auth flow.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any, Literal

import httpx
from pydantic import BaseModel
from structlog import get_logger

from app.config import Settings
from app.models.api import OtpChannel, OtpPurpose

logger = get_logger(__name__)

# Strong references to in-flight deliveries so they are not garbage collected
_pending: set[asyncio.Task[None]] = set()


class OtpNotification(BaseModel):
    """Webhook payload for an OTP delivery."""

    type: Literal["otp"] = "otp"
    identifier: str
    code: str
    purpose: OtpPurpose
    channel: OtpChannel


class UserNotification(BaseModel):
    """Webhook payload for a user-facing notice."""

    type: Literal["notify"] = "notify"
    user_id: int
    title: str
    body: str


class Notifier:
    """Log-only notifier. Used when no delivery webhook is configured."""

    async def send_otp(
        self, identifier: str, code: str, purpose: OtpPurpose, channel: OtpChannel
    ) -> None:
        logger.info(
            "otp_delivery_skipped",
            identifier=identifier,
            purpose=purpose.value,
            channel=channel.value,
        )

    async def notify(self, user_id: int, title: str, body: str) -> None:
        logger.info("notification_delivery_skipped", user_id=user_id, title=title)

    async def aclose(self) -> None:
        return None


class WebhookNotifier(Notifier):
    """Posts notifications to a delivery service (SMS/email/push gateway)."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def _post(self, payload: BaseModel) -> None:
        response = await self.http_client.post(self.url, json=payload.model_dump(mode="json"))
        response.raise_for_status()

    async def send_otp(
        self, identifier: str, code: str, purpose: OtpPurpose, channel: OtpChannel
    ) -> None:
        await self._post(
            OtpNotification(identifier=identifier, code=code, purpose=purpose, channel=channel)
        )
        logger.info(
            "otp_delivered", identifier=identifier, purpose=purpose.value, channel=channel.value
        )

    async def notify(self, user_id: int, title: str, body: str) -> None:
        await self._post(UserNotification(user_id=user_id, title=title, body=body))
        logger.info("notification_delivered", user_id=user_id, title=title)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def build_notifier(settings: Settings) -> Notifier:
    """Webhook delivery when a URL is configured, otherwise log-only."""
    if settings.notification_webhook_url:
        return WebhookNotifier(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    return Notifier()


def _log_outcome(task: asyncio.Task[None], event: str) -> None:
    _pending.discard(task)
    if task.cancelled():
        logger.warning(event, error="cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.warning(event, error_type=type(error).__name__, error=str(error))


def dispatch(delivery: Coroutine[Any, Any, None], failure_event: str) -> asyncio.Task[None]:
    """Schedule a delivery without awaiting it; failures are logged as failure_event."""
    task = asyncio.ensure_future(delivery)
    _pending.add(task)
    task.add_done_callback(lambda t: _log_outcome(t, failure_event))
    return task
