"""Lifecycle of the bitcoind node process."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..config import Network, OrdstackConfig, bitcoind_network_flag, network_dir
from ..error_handling import PortBusyError, ServiceStartError, ServiceTimeoutError
from ..polling import RetryPolicy, WaitOutcome, wait_until
from .process import ServiceProcess, port_has_listener
from .rpc import BitcoinRpcClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "bitcoind"


class BitcoindService:
    """Starts, probes and stops bitcoind.

    A node already serving RPC on the configured port is adopted instead
    of spawning a second one; adopted nodes are never stopped by us.
    """

    def __init__(
        self,
        config: OrdstackConfig,
        rpc: BitcoinRpcClient,
        *,
        port_probe: Callable[[int], bool] = port_has_listener,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.rpc = rpc
        self.port_probe = port_probe
        self.sleep = sleep
        self.process: ServiceProcess | None = None
        self.adopted = False
        self._lock = asyncio.Lock()

    @property
    def ready_policy(self) -> RetryPolicy:
        return RetryPolicy(self.config.bitcoind_ready_interval, self.config.bitcoind_ready_attempts)

    @property
    def owns_process(self) -> bool:
        return self.process is not None and self.process.is_running

    @property
    def is_running(self) -> bool:
        return self.owns_process or self.adopted

    def build_args(self) -> list[str]:
        args = [self.config.bitcoind_binary]
        flag = bitcoind_network_flag(self.config.network)
        if flag:
            args.append(flag)
        args.extend(
            [
                "-server",
                f"-rpcport={self.config.rpc_port}",
                f"-datadir={self.config.bitcoin_data_dir}",
                "-fallbackfee=0.00001",
                "-txindex=1",
            ],
        )
        if self.config.network == Network.REGTEST:
            args.extend(["-rpcallowip=127.0.0.1", "-rpcbind=127.0.0.1"])
        return args

    async def is_ready(self) -> bool:
        return await self.rpc.is_ready()

    async def start(self) -> None:
        async with self._lock:
            if self.is_running:
                return

            port = self.config.rpc_port
            if self.port_probe(port):
                if await self.rpc.is_ready():
                    logger.info("bitcoind already running on port %s, using it", port)
                    self.adopted = True
                    return
                raise PortBusyError(port, SERVICE_NAME)

            # bitcoind refuses to start without its datadir
            self.config.bitcoin_data_dir.mkdir(parents=True, exist_ok=True)
            network_dir(self.config.bitcoin_data_dir, self.config.network).mkdir(parents=True, exist_ok=True)

            self.process = await ServiceProcess.spawn(SERVICE_NAME, self.build_args())
            await self._wait_ready(self.process)

    async def _wait_ready(self, process: ServiceProcess) -> None:
        outcome = await wait_until(
            self.ready_policy,
            self.rpc.is_ready,
            should_abort=lambda: not process.is_running,
            sleep=self.sleep,
        )
        if outcome is WaitOutcome.READY:
            logger.info("bitcoind is ready")
            return
        if outcome is WaitOutcome.ABORTED or not process.is_running:
            self.process = None
            raise ServiceStartError(SERVICE_NAME, process.stderr)
        raise ServiceTimeoutError(SERVICE_NAME)

    async def stop(self) -> None:
        async with self._lock:
            if self.adopted:
                self.adopted = False
                return
            if not self.owns_process:
                return
            logger.info("Stopping bitcoind (PID %s)", self.process.pid)
            await self.process.terminate(self.config.bitcoind_stop_timeout)
            self.process = None
            logger.info("bitcoind stopped")
