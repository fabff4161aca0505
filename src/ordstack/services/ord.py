"""Lifecycle of the ord server process, with one-shot database recovery."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..config import OrdstackConfig, ord_network_flag
from ..error_handling import CredentialsNotFoundError, ServiceStartError, ServiceTimeoutError
from ..polling import RetryPolicy, WaitOutcome, wait_until
from ..storage.ord_data import OrdDataLayout
from .notices import NoticeService
from .ord_http import OrdHealth, OrdHttpClient
from .ord_output import Attempt, is_version_mismatch
from .process import PortReclaimer, ServiceProcess, default_port_reclaimer

logger = logging.getLogger(__name__)

SERVICE_NAME = "ord"


def ord_base_args(config: OrdstackConfig) -> list[str]:
    """Arguments shared by every ord invocation: network, cookie, data dir."""
    args = [config.ord_binary]
    flag = ord_network_flag(config.network)
    if flag:
        args.append(flag)
    args.extend(
        [
            f"--cookie-file={config.cookie_file}",
            f"--data-dir={config.ord_data_dir}",
        ],
    )
    return args


class OrdService:
    """Starts, probes and stops ``ord server``.

    ord refuses to open an index written by a different release. When
    that happens during startup the index and wallet databases are wiped
    and the server is started once more; a second failure is reported.
    """

    def __init__(
        self,
        config: OrdstackConfig,
        http: OrdHttpClient,
        layout: OrdDataLayout,
        notices: NoticeService,
        *,
        reclaimer: PortReclaimer | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.http = http
        self.layout = layout
        self.notices = notices
        self.reclaimer = reclaimer or default_port_reclaimer()
        self.sleep = sleep
        self.process: ServiceProcess | None = None
        self.adopted = False
        self._lock = asyncio.Lock()

    @property
    def ready_policy(self) -> RetryPolicy:
        return RetryPolicy(self.config.ord_ready_interval, self.config.ord_ready_attempts)

    @property
    def owns_process(self) -> bool:
        return self.process is not None and self.process.is_running

    @property
    def is_running(self) -> bool:
        return self.owns_process or self.adopted

    def build_args(self) -> list[str]:
        return [*ord_base_args(self.config), "server", f"--http-port={self.config.ord_server_port}"]

    async def check_health(self) -> OrdHealth:
        return await self.http.check_health()

    async def start(self, allow_recovery: bool = True) -> None:
        async with self._lock:
            if self.is_running:
                return

            cookie_file = self.config.cookie_file
            if not cookie_file.exists():
                raise CredentialsNotFoundError(cookie_file)

            if await self.http.is_ready():
                logger.info("ord server already running on port %s, using it", self.config.ord_server_port)
                self.adopted = True
                return

            await self.reclaimer.reclaim(self.config.ord_server_port)

            attempt = Attempt.FIRST if allow_recovery else Attempt.RECOVERED
            while True:
                process, mismatch_seen = await self._spawn_and_wait()
                if process.is_running:
                    self.process = process
                    return

                if mismatch_seen and attempt.may_recover:
                    logger.warning("ord reported an incompatible database, clearing it")
                    self.layout.wipe_all()
                    self.notices.database_rebuilding()
                    attempt = Attempt.RECOVERED
                    continue

                raise ServiceStartError(
                    SERVICE_NAME,
                    process.stderr,
                    message="ord server failed to start",
                )

    async def _spawn_and_wait(self) -> tuple[ServiceProcess, bool]:
        """Spawn once; returns the process (running only if ready) and whether a mismatch was seen."""
        mismatch = False

        def watch_stderr(chunk: str) -> None:
            nonlocal mismatch
            if not mismatch and is_version_mismatch(chunk):
                mismatch = True

        process = await ServiceProcess.spawn(SERVICE_NAME, self.build_args(), on_stderr=watch_stderr)
        outcome = await wait_until(
            self.ready_policy,
            self.http.is_ready,
            should_abort=lambda: not process.is_running,
            sleep=self.sleep,
        )

        if outcome is WaitOutcome.READY:
            logger.info("ord server is ready on port %s", self.config.ord_server_port)
            return process, False

        if outcome is WaitOutcome.EXHAUSTED and process.is_running:
            self.process = process
            raise ServiceTimeoutError("ord server")

        await process.wait()
        return process, mismatch or is_version_mismatch(process.stderr)

    async def stop(self) -> None:
        async with self._lock:
            if self.adopted:
                self.adopted = False
                return
            if not self.owns_process:
                return
            logger.info("Stopping ord server (PID %s)", self.process.pid)
            await self.process.terminate(self.config.ord_stop_timeout)
            self.process = None
            logger.info("ord server stopped")
