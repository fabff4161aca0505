"""Workflow orchestration for ordstack: services, wallets and publishing."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from ordstack.config import Network, OrdstackConfig
from ordstack.error_handling import (
    ErrorCategory,
    NetworkRestrictedError,
    OrdstackError,
    PreconditionError,
    RpcError,
    ServiceStartError,
    SyncTimeoutError,
    WalletNotFoundError,
    WorkflowStepError,
)
from ordstack.polling import RetryPolicy
from ordstack.services.bitcoind import BitcoindService
from ordstack.services.notices import NoticeService
from ordstack.services.ord import OrdService
from ordstack.services.ord_http import OrdHealth, OrdHttpClient
from ordstack.services.ord_output import WalletBalance
from ordstack.services.ord_wallet import OrdWallet
from ordstack.services.rpc import BitcoinRpcClient
from ordstack.storage.history import InscriptionHistory, InscriptionRecord
from ordstack.storage.ord_data import OrdDataLayout
from ordstack.storage.state import StateStore
from ordstack.wallet_state import WalletState, validate_wallet_name

logger = logging.getLogger(__name__)

COINBASE_MATURITY = 100
MAX_MINE_BLOCKS = 1000
CONFIRMATION_BLOCKS = 1


@dataclass(frozen=True)
class PublishResult:
    inscription_id: str
    local_url: str
    record: InscriptionRecord
    verified: bool


@dataclass(frozen=True)
class StackStatus:
    network: Network
    bitcoind_ready: bool
    block_count: int | None
    ord_health: OrdHealth
    current_wallet: str


class OrdstackOrchestrator:
    """Coordinates bitcoind, the ord server and ord wallets.

    Components are built from the configuration unless injected. Every
    service started by this instance is stopped by :meth:`shutdown`;
    services adopted from another session are left alone.
    """

    def __init__(
        self,
        config: OrdstackConfig,
        *,
        rpc: BitcoinRpcClient | None = None,
        ord_http: OrdHttpClient | None = None,
        bitcoind: BitcoindService | None = None,
        ord_service: OrdService | None = None,
        ord_wallet: OrdWallet | None = None,
        store: StateStore | None = None,
        notices: NoticeService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.sleep = sleep

        self.layout = OrdDataLayout(config.ord_data_dir, config.network)
        self.store = store or StateStore(config.state_dir / "state.json")
        self.wallet_state = WalletState(self.store, self.layout, config.default_wallet)
        self.history = InscriptionHistory(self.store)
        self.notices = notices or NoticeService(config)

        self.rpc = rpc or BitcoinRpcClient(
            config.rpc_port,
            config.cookie_file,
            timeout=config.rpc_request_timeout,
        )
        self.ord_http = ord_http or OrdHttpClient(
            config.ord_server_port,
            timeout=config.ord_request_timeout,
        )
        self.bitcoind = bitcoind or BitcoindService(config, self.rpc, sleep=sleep)
        self.ord = ord_service or OrdService(
            config,
            self.ord_http,
            self.layout,
            self.notices,
            sleep=sleep,
        )
        self.ord_wallet = ord_wallet or OrdWallet(config, self.layout, self.notices)

    # Services

    async def start_services(self) -> None:
        """Start bitcoind, then ord, and make sure ord can reach bitcoind."""
        logger.info("Starting services on %s", self.config.network.value)
        await self.bitcoind.start()
        await self.ord.start()

        health = await self.ord.check_health()
        if not health.healthy:
            self.notices.warning(f"ord server health check failed: {health.error}. Restarting ord...")
            await self.ord.stop()
            await self.ord.start()
            health = await self.ord.check_health()
            if not health.healthy:
                raise ServiceStartError(
                    "ord server",
                    message=f"ord server cannot connect to bitcoind: {health.error}",
                )

        self.notices.services_started()

    async def stop_services(self) -> None:
        """Stop ord first since it depends on bitcoind."""
        await self.ord.stop()
        await self.bitcoind.stop()
        logger.info("Services stopped")

    async def ensure_services_running(self) -> None:
        if not self.bitcoind.is_running:
            await self.bitcoind.start()
        if not self.ord.is_running:
            await self.ord.start()

    async def shutdown(self) -> None:
        """Stop only the processes this session spawned."""
        if self.ord.owns_process:
            await self.ord.stop()
        if self.bitcoind.owns_process:
            await self.bitcoind.stop()
        self.notices.close()

    async def status(self) -> StackStatus:
        bitcoind_ready = await self.rpc.is_ready()
        block_count = None
        if bitcoind_ready:
            try:
                block_count = await self.rpc.get_block_count()
            except RpcError as e:
                logger.warning("Could not read block count: %s", e.message)
        return StackStatus(
            network=self.config.network,
            bitcoind_ready=bitcoind_ready,
            block_count=block_count,
            ord_health=await self.ord_http.check_health(),
            current_wallet=self.wallet_state.current(),
        )

    # Mining and funding

    def _require_mining(self) -> None:
        if not self.config.mining_allowed:
            raise NetworkRestrictedError(
                f"Mining is only available in regtest mode (current network: {self.config.network.value})",
            )

    async def _mining_address(self, wallet: str) -> str:
        try:
            return await self.ord_wallet.get_receive_address(wallet)
        except OrdstackError as e:
            logger.warning("No ord address for %s (%s), mining to node wallet instead", wallet, e.message)
        await self.rpc.ensure_wallet(self.config.mining_wallet)
        return await self.rpc.get_new_address(self.config.mining_wallet)

    async def mine_blocks(self, count: int, wallet: str | None = None) -> list[str]:
        """Generate ``count`` regtest blocks paying the active wallet."""
        self._require_mining()
        if not 1 <= count <= MAX_MINE_BLOCKS:
            raise OrdstackError(
                f"Block count must be between 1 and {MAX_MINE_BLOCKS}",
                ErrorCategory.USER_INPUT,
                recoverable=False,
            )

        await self.ensure_services_running()
        wallet = wallet or self.wallet_state.current()
        address = await self._mining_address(wallet)
        hashes = await self.rpc.generate_to_address(count, address)
        logger.info("Mined %d block(s) to %s", len(hashes), address)
        return hashes

    async def ensure_wallet_funded(self, wallet: str) -> bool:
        """Make sure ``wallet`` can pay for an inscription; mines on regtest if not."""
        await self.ord_wallet.create_wallet(wallet)
        await self.rpc.ensure_wallet(self.config.mining_wallet)

        balance = await self.ord_wallet.get_balance(wallet)
        if balance.cardinal >= self.config.min_funding_balance:
            return True

        if not self.config.mining_allowed:
            logger.warning(
                "Wallet %s has %s sats, below %s",
                wallet,
                balance.cardinal,
                self.config.min_funding_balance,
            )
            return False

        self.notices.info("Wallet needs funding, mining blocks...")
        address = await self.ord_wallet.get_receive_address(wallet)
        # Coinbase outputs are spendable only after maturity
        await self.rpc.generate_to_address(COINBASE_MATURITY + 1, address)
        return True

    async def wait_for_ord_sync(self) -> int:
        """Block until ord has indexed the node's current height."""
        height = await self.rpc.get_block_count()
        policy = RetryPolicy.for_duration(self.config.sync_poll_interval, self.config.sync_timeout)
        if not await self.ord_http.wait_for_sync(height, policy, sleep=self.sleep):
            raise SyncTimeoutError(height)
        return height

    # Publishing

    @contextlib.contextmanager
    def _phase(self, name: str) -> Iterator[None]:
        logger.debug("Publish phase: %s", name)
        try:
            yield
        except WorkflowStepError:
            raise
        except Exception as e:
            raise WorkflowStepError(name, e) from e

    async def publish(
        self,
        file_path: Path,
        fee_rate: float | None = None,
        *,
        confirm: Callable[[str], bool] | None = None,
    ) -> PublishResult | None:
        """Fund, sync and inscribe ``file_path``; returns None if the user declines."""
        if not file_path.is_file():
            raise PreconditionError(f"File to inscribe does not exist: {file_path}")

        if self.config.network == Network.MAINNET:
            prompt = (
                f"You are about to inscribe {file_path.name} on MAINNET. "
                "This will cost real bitcoin. Continue?"
            )
            if confirm is None or not confirm(prompt):
                logger.info("Mainnet inscription of %s cancelled", file_path.name)
                return None

        wallet = self.wallet_state.current()
        fee_rate = fee_rate if fee_rate is not None else self.config.inscription_fee_rate

        with self._phase("services"):
            await self.ensure_services_running()

        with self._phase("funding"):
            if not await self.ensure_wallet_funded(wallet):
                raise PreconditionError(
                    f"Wallet {wallet} does not have enough funds",
                    solution=f"Send at least {self.config.min_funding_balance} sats to the wallet, then retry",
                )

        with self._phase("sync"):
            await self.wait_for_ord_sync()

        with self._phase("inscribe"):
            self.notices.info(f"Inscribing {file_path.name} at {fee_rate:g} sat/vB...")
            inscription = await self.ord_wallet.inscribe(wallet, file_path, fee_rate)

        with self._phase("history"):
            record = InscriptionRecord.now(inscription.inscription_id, file_path.name)
            self.history.add(record)

        with self._phase("confirm"):
            verified = await self._confirm(inscription.inscription_id)

        self.notices.inscription_published(inscription.inscription_id, file_path.name)
        return PublishResult(
            inscription_id=inscription.inscription_id,
            local_url=self.ord_http.inscription_url(inscription.inscription_id),
            record=record,
            verified=verified,
        )

    async def _confirm(self, inscription_id: str) -> bool:
        """Mine a confirmation block on regtest and check ord serves the inscription."""
        if not self.config.mining_allowed:
            return await self.ord_http.inscription_exists(inscription_id)

        try:
            await self.mine_blocks(CONFIRMATION_BLOCKS)
            await self.wait_for_ord_sync()
        except OrdstackError as e:
            logger.warning("Could not confirm inscription %s: %s", inscription_id, e.message)
            return False
        return await self.ord_http.inscription_exists(inscription_id)

    # Wallets

    async def create_wallet(self, name: str | None = None) -> bool:
        """Create an ord wallet (and the node mining wallet); switches to it when named."""
        wallet = validate_wallet_name(name) if name else self.wallet_state.current()
        await self.ensure_services_running()
        created = await self.ord_wallet.create_wallet(wallet)
        await self.rpc.ensure_wallet(self.config.mining_wallet)
        if name:
            self.wallet_state.set_current(wallet)
        return created

    def switch_wallet(self, name: str) -> None:
        validate_wallet_name(name)
        if not self.wallet_state.exists(name):
            raise WalletNotFoundError(name)
        self.wallet_state.set_current(name)

    def list_wallets(self) -> list[str]:
        return self.wallet_state.list_wallets()

    async def get_balance(self, wallet: str | None = None) -> WalletBalance:
        await self.ensure_services_running()
        return await self.ord_wallet.get_balance(wallet or self.wallet_state.current())

    async def reset(self) -> list[Path]:
        """Wipe ord's index and wallets for this network, restarting ord if it ran."""
        if self.ord.adopted:
            raise PreconditionError(
                "ord server is managed by another ordstack session",
                solution="Run 'ordstack stop' first, then reset",
            )

        was_running = self.ord.owns_process
        if was_running:
            await self.ord.stop()

        wallet = self.wallet_state.current()
        if await self.rpc.is_ready():
            try:
                if wallet in await self.rpc.list_wallets():
                    await self.rpc.unload_wallet(wallet)
                    logger.info("Unloaded bitcoind wallet %s", wallet)
            except RpcError as e:
                logger.warning("Could not unload bitcoind wallet %s: %s", wallet, e.message)

        removed = self.layout.wipe_all()

        if was_running:
            await self.ord.start()
        return removed
