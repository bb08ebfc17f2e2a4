"""
Slack adapter — deployment outcome notifications via an incoming webhook.

Implements the Notifier port. Success and failure are colour coded
("good" / "danger") so channel members and alert rules can tell them apart
at a glance; every message pings @channel.
"""

from __future__ import annotations

import httpx
import structlog
from railway.result import Result

from cert_deployer.domain.errors import NotificationDeliveryError, capture
from cert_deployer.domain.models import Notification, NotificationLevel

log = structlog.get_logger()

_COLORS = {
    NotificationLevel.SUCCESS: "good",
    NotificationLevel.FAILURE: "danger",
}


class SlackWebhookNotifier:
    """Post notifications to one Slack channel through an incoming webhook."""

    def __init__(self, webhook_url: str, channel: str, timeout: float = 30) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout = timeout

    async def notify(self, notification: Notification) -> Result[Notification]:
        """
        Deliver a notification.

        Returns the notification on HTTP 200, or
        Result.failure(NotificationDeliveryError) otherwise.
        """
        return await capture(self._do_post(notification))

    async def _do_post(self, notification: Notification) -> Notification:
        text = f"@channel {notification.text}"
        message = {
            "channel": self._channel,
            "text": text,
            "attachments": [
                {
                    "color": _COLORS[notification.level],
                    "text": text,
                    "fallback": text,
                }
            ],
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._webhook_url, json=message)
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(
                f"Error occurred when sending Slack message: {type(e).__name__}."
            ) from e

        if response.status_code != 200:
            raise NotificationDeliveryError(
                f"Error occurred when sending Slack message: status code {response.status_code}.",
                status=response.status_code,
            )
        log.info("notification.delivered", channel=self._channel, level=notification.level.value)
        return notification
