"""User-facing notices: console messages plus optional ntfy pushes."""

import logging

from rich.console import Console

from ordstack.config import OrdstackConfig
from ordstack.notify.ntfy import NtfyNotifier

logger = logging.getLogger(__name__)


class NoticeService:
    """Tells the user what the stack is doing.

    Push delivery is best-effort; a failed push never interrupts a
    workflow.
    """

    def __init__(
        self,
        config: OrdstackConfig,
        console: Console | None = None,
        notifier: NtfyNotifier | None = None,
    ):
        self.config = config
        self.console = console or Console(stderr=True)
        self.notifier = notifier if notifier is not None else NtfyNotifier(config)

    def info(self, message: str) -> None:
        logger.info(message)
        self.console.print(f"[cyan]{message}[/cyan]")

    def warning(self, message: str) -> None:
        logger.warning(message)
        self.console.print(f"[yellow]⚠ {message}[/yellow]")

    def database_rebuilding(self) -> None:
        self.warning("ord database is outdated. Clearing and rebuilding the index...")
        try:
            self.notifier.notify_database_rebuild()
        except Exception as e:
            logger.warning(f"Failed to send rebuild notification: {e}")

    def services_started(self) -> None:
        self.info(f"Services running on {self.config.network.value}")
        try:
            self.notifier.notify_services_started(self.config.network.value)
        except Exception as e:
            logger.warning(f"Failed to send services notification: {e}")

    def inscription_published(self, inscription_id: str, file_name: str) -> None:
        try:
            self.notifier.notify_inscription_published(inscription_id, file_name)
        except Exception as e:
            logger.warning(f"Failed to send inscription notification: {e}")

    def error(self, error_message: str, context: str | None = None) -> None:
        try:
            self.notifier.notify_error(error_message, context)
        except Exception as e:
            logger.warning(f"Failed to send error notification: {e}")

    def close(self) -> None:
        self.notifier.close()
