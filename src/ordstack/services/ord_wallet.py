"""ord wallet subcommands, each run as its own process against the ord server."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from ..config import OrdstackConfig
from ..error_handling import WalletCommandError
from ..storage.ord_data import OrdDataLayout
from .notices import NoticeService
from .ord import ord_base_args
from .ord_output import (
    Attempt,
    InscriptionResult,
    WalletBalance,
    is_already_exists,
    is_version_mismatch,
    parse_balance,
    parse_inscription,
    parse_receive_address,
)
from .process import CommandResult, run_command

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str], float], Awaitable[CommandResult]]


class OrdWallet:
    """Runs ``ord wallet --name=<w> --server-url=... <subcommand>``.

    Every operation gets one recovery attempt: if ord reports a database
    from another version, ord's data is wiped, the wallet is recreated and
    the operation is retried once.
    """

    def __init__(
        self,
        config: OrdstackConfig,
        layout: OrdDataLayout,
        notices: NoticeService,
        *,
        runner: CommandRunner = run_command,
    ):
        self.config = config
        self.layout = layout
        self.notices = notices
        self.runner = runner

    def build_args(self, wallet: str, subcommand: Sequence[str]) -> list[str]:
        return [
            *ord_base_args(self.config),
            "wallet",
            f"--name={wallet}",
            f"--server-url={self.config.ord_server_url}",
            *subcommand,
        ]

    async def _execute(
        self,
        wallet: str,
        subcommand: Sequence[str],
        action: str,
        *,
        attempt: Attempt,
        accept: Callable[[CommandResult], bool] | None = None,
    ) -> CommandResult:
        result = await self.runner(self.build_args(wallet, subcommand), self.config.ord_command_timeout)
        if result.ok or (accept is not None and accept(result)):
            return result

        logger.error("%s failed (exit %s): %s", action, result.returncode, result.stderr.strip())

        if attempt.may_recover and is_version_mismatch(result.stderr):
            logger.warning("Detected database version mismatch. Clearing and retrying...")
            self.layout.wipe_all()
            self.notices.database_rebuilding()
            if subcommand[0] != "create":
                await self.create_wallet(wallet, allow_recovery=False)
            return await self._execute(
                wallet,
                subcommand,
                action,
                attempt=Attempt.RECOVERED,
                accept=accept,
            )

        raise WalletCommandError(action, result.stderr, fallback=f"exit code {result.returncode}")

    @staticmethod
    def _attempt(allow_recovery: bool) -> Attempt:
        return Attempt.FIRST if allow_recovery else Attempt.RECOVERED

    async def create_wallet(self, wallet: str, *, allow_recovery: bool = True) -> bool:
        """Create ``wallet``; returns False when it already existed."""
        result = await self._execute(
            wallet,
            ["create"],
            "Failed to create wallet",
            attempt=self._attempt(allow_recovery),
            accept=lambda r: is_already_exists(r.stderr, r.stdout),
        )
        if not result.ok:
            logger.info("Wallet %s already exists", wallet)
            return False
        logger.info("Created ord wallet %s", wallet)
        return True

    async def get_receive_address(self, wallet: str, *, allow_recovery: bool = True) -> str:
        result = await self._execute(
            wallet,
            ["receive"],
            "Failed to get receive address",
            attempt=self._attempt(allow_recovery),
        )
        return parse_receive_address(result.stdout, self.config.network)

    async def get_balance(self, wallet: str, *, allow_recovery: bool = True) -> WalletBalance:
        result = await self._execute(
            wallet,
            ["balance"],
            "Failed to get balance",
            attempt=self._attempt(allow_recovery),
        )
        return parse_balance(result.stdout)

    async def inscribe(
        self,
        wallet: str,
        file_path: Path,
        fee_rate: float,
        *,
        allow_recovery: bool = True,
    ) -> InscriptionResult:
        logger.info("Inscribing file: %s", file_path)
        result = await self._execute(
            wallet,
            ["inscribe", "--fee-rate", f"{fee_rate:g}", "--file", str(file_path)],
            "Inscription failed",
            attempt=self._attempt(allow_recovery),
        )
        logger.info("Inscription output: %s", result.stdout.strip())
        return parse_inscription(result.stdout)
