"""Foreground supervisor behind ``ordstack start``."""

import asyncio
import contextlib
import logging
import signal

from ..config import OrdstackConfig
from ..error_handling import ErrorCategory, OrdstackError
from ..process_lock import ProcessLock
from .orchestrator import OrdstackOrchestrator

logger = logging.getLogger(__name__)

# Seconds between checks that the owned processes are still alive
WATCH_INTERVAL = 5.0


class OrdstackDaemon:
    """Keeps bitcoind and ord running until signalled, then stops them in order."""

    def __init__(self, config: OrdstackConfig, orchestrator: OrdstackOrchestrator | None = None):
        self.config = config
        self.orchestrator = orchestrator
        self.lock = ProcessLock(config)
        self._stop_requested: asyncio.Event | None = None

    def run(self) -> None:
        """Acquire the lock and supervise until stopped."""
        if not self.lock.acquire():
            raise OrdstackError(
                "ordstack is already running",
                ErrorCategory.PRECONDITION,
                solution="Run 'ordstack stop' to stop the running instance",
                recoverable=False,
            )
        try:
            asyncio.run(self.supervise())
        finally:
            self.lock.release()

    def request_stop(self) -> None:
        if self._stop_requested is not None:
            self._stop_requested.set()

    async def supervise(self) -> None:
        self._stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._on_signal, signum)

        if self.orchestrator is None:
            self.orchestrator = OrdstackOrchestrator(self.config)

        try:
            await self.orchestrator.start_services()
            logger.info("ordstack running, press Ctrl+C to stop")
            await self._watch()
        finally:
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(signum)
            await self.orchestrator.stop_services()
            self.orchestrator.notices.close()

    def _on_signal(self, signum: int) -> None:
        logger.info("Received signal %s, stopping services", signum)
        self.request_stop()

    async def _watch(self) -> None:
        while not self._stop_requested.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_requested.wait(), WATCH_INTERVAL)
            for name, service in (("bitcoind", self.orchestrator.bitcoind), ("ord", self.orchestrator.ord)):
                if service.process is not None and not service.process.is_running:
                    logger.error("%s exited unexpectedly (code %s)", name, service.process.exit_code)
                    self.orchestrator.notices.error(f"{name} exited unexpectedly", context="supervisor")
                    return
