"""ntfy.sh notification integration."""

import logging

import httpx

from ordstack import __version__
from ordstack.config import OrdstackConfig

logger = logging.getLogger(__name__)


class NtfyNotifier:
    """Sends notifications via ntfy.sh service."""

    def __init__(self, config: OrdstackConfig, transport: httpx.BaseTransport | None = None):
        self.config = config
        self.topic_url = config.ntfy_topic
        self.client = httpx.Client(
            timeout=config.ntfy_request_timeout,
            headers={"User-Agent": f"ordstack/{__version__}"},
            transport=transport,
        )

    def send_notification(
        self,
        message: str,
        title: str | None = None,
        priority: str = "default",
        tags: str | None = None,
    ) -> bool:
        """Send a notification via ntfy."""
        if not self.topic_url:
            logger.debug("No ntfy topic configured, skipping notification")
            return False

        try:
            headers = {}

            if title:
                # HTTP headers must be latin-1
                headers["Title"] = title.encode("latin1", errors="ignore").decode("latin1")

            if priority != "default":
                headers["Priority"] = priority

            if tags:
                headers["Tags"] = tags

            response = self.client.post(
                self.topic_url,
                content=message.encode("utf-8"),
                headers=headers,
            )

            response.raise_for_status()
            logger.debug(f"Sent notification: {title or message[:50]}")
            return True

        except httpx.RequestError as e:
            logger.warning(f"Failed to send notification: {e}")
            return False
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Notification service error {e.response.status_code}: {e.response.text}",
            )
            return False

    def notify_services_started(self, network: str) -> bool:
        return self.send_notification(
            f"bitcoind and ord are running on {network}",
            title="Services Started",
            tags="ordstack,services,started",
        )

    def notify_database_rebuild(self) -> bool:
        return self.send_notification(
            "ord database was outdated and has been cleared; the index is rebuilding",
            title="Index Rebuilding",
            tags="ordstack,ord,recovery",
        )

    def notify_inscription_published(self, inscription_id: str, file_name: str) -> bool:
        """Send notification when an inscription is created."""
        return self.send_notification(
            f"Inscribed {file_name}\n{inscription_id}",
            title="Inscription Created",
            tags="ordstack,inscription,created",
        )

    def notify_error(self, error_message: str, context: str | None = None) -> bool:
        """Send error notification."""
        message = f"Error: {error_message}"
        if context:
            message += f"\nContext: {context}"

        return self.send_notification(
            message,
            title="ordstack Error",
            priority="high",
            tags="ordstack,error,alert",
        )

    def test_notification(self) -> bool:
        """Send a test notification."""
        return self.send_notification(
            "ordstack notification system is working correctly!",
            title="Test Notification",
            tags="ordstack,test",
        )

    def close(self) -> None:
        self.client.close()
