"""Command-line interface for ordstack."""

import asyncio
import logging
import subprocess
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import OrdstackConfig, create_sample_config, load_config
from .core.daemon import OrdstackDaemon
from .core.orchestrator import OrdstackOrchestrator
from .error_handling import (
    ConfigurationError,
    OrdstackError,
    check_dependencies,
    report_failure,
)
from .notify.ntfy import NtfyNotifier
from .process_lock import ProcessLock
from .storage.history import InscriptionHistory
from .storage.state import StateStore
from .storage.versions import VersionManifest
from .updates import UpdateChecker

console = Console()

T = TypeVar("T")

LOG_FILE_NAME = "ordstack.log"


def setup_logging(
    *,
    verbose: bool = False,
    config: OrdstackConfig | None = None,
) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Clean up existing handlers first to prevent resource leaks
    cleanup_logging()

    # Configure RichHandler to show path only at DEBUG level
    show_path = level == logging.DEBUG
    console_handler = RichHandler(console=console, rich_tracebacks=True, show_path=show_path)
    # Child process output goes to the log file only unless verbose
    if not verbose:
        console_handler.addFilter(lambda record: not record.name.startswith("ordstack.process."))
    handlers: list[logging.Handler] = [console_handler]

    # Add file handler if config is available
    if config and config.log_dir:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = config.log_dir / LOG_FILE_NAME
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            ),
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,  # Force reconfiguration of root logger
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def cleanup_logging() -> None:
    """Clean up logging handlers to prevent ResourceWarnings."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


def build_orchestrator(config: OrdstackConfig) -> OrdstackOrchestrator:
    return OrdstackOrchestrator(config)


def run_session(
    ctx: click.Context,
    context: str,
    action: Callable[[OrdstackOrchestrator], Awaitable[T]],
) -> T:
    """Run one orchestrator action, stopping any services this session started."""
    config: OrdstackConfig = ctx.obj["config"]
    orchestrator = build_orchestrator(config)

    async def session() -> T:
        try:
            return await action(orchestrator)
        finally:
            await orchestrator.shutdown()

    try:
        return asyncio.run(session())
    except OrdstackError as e:
        report_failure(context, e)
        sys.exit(1)


def _require_binaries(config: OrdstackConfig) -> None:
    missing = check_dependencies(config.bitcoind_binary, config.ord_binary)
    if missing:
        console.print("[red bold]🚫 Missing Dependencies[/red bold]")
        for dep in missing:
            dep.display_to_user()
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """ordstack - run bitcoind and ord together for local inscription work."""
    try:
        ctx.ensure_object(dict)
        loaded_config = load_config(config)
        ctx.obj["config"] = loaded_config
        ctx.obj["verbose"] = verbose

        # Setup logging with the loaded config for file logging
        setup_logging(verbose=verbose, config=loaded_config)
    except (OSError, ValueError) as e:
        config_error = ConfigurationError(
            f"Failed to load configuration: {e}",
            config_path=config,
            solution="Run 'ordstack config show' to check your configuration",
        )
        console.print(f"[red]Configuration Error:[/red] {config_error}")
        sys.exit(1)


@cli.group("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Configuration management commands."""


@config_cmd.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config: OrdstackConfig = ctx.obj["config"]

    table = Table()
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("Network", config.network.value)
    table.add_row("bitcoind", config.bitcoind_binary)
    table.add_row("ord", config.ord_binary)
    table.add_row("Bitcoin Data Directory", str(config.bitcoin_data_dir))
    table.add_row("ord Data Directory", str(config.ord_data_dir))
    table.add_row("State Directory", str(config.state_dir))
    table.add_row("Log Directory", str(config.log_dir))
    table.add_row("RPC Port", str(config.rpc_port))
    table.add_row("ord Server Port", str(config.ord_server_port))
    table.add_row("Fee Rate", f"{config.inscription_fee_rate:g} sat/vB")
    table.add_row("Ntfy Topic", config.ntfy_topic or "Not configured")

    console.print(table)


@config_cmd.command("init")
@click.option(
    "--path",
    "-p",
    type=click.Path(path_type=Path),
    default=Path.home() / ".config" / "ordstack" / "config.toml",
    help="Path for the configuration file",
)
def config_init(path: Path) -> None:
    """Create a sample configuration file."""
    try:
        create_sample_config(path)
        console.print(f"[green]Created sample configuration at {path}[/green]")
        console.print("Please edit the configuration file with your settings.")
    except OSError as e:
        console.print(f"[red]Error creating configuration: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start bitcoind and ord in the foreground until Ctrl+C."""
    config: OrdstackConfig = ctx.obj["config"]
    config.ensure_directories()
    _require_binaries(config)

    if config.auto_update_check:
        _print_updates(config, only_if_due=True)

    supervisor = OrdstackDaemon(config)
    try:
        supervisor.run()
    except OrdstackError as e:
        report_failure("Failed to start services", e)
        sys.exit(1)


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the running ordstack supervisor."""
    config: OrdstackConfig = ctx.obj["config"]
    lock = ProcessLock(config)

    pid = lock.find_supervisor()
    if pid is None:
        console.print("[yellow]ordstack is not running[/yellow]")
        return

    console.print(f"[blue]Stopping ordstack (PID {pid})...[/blue]")
    if ProcessLock.stop_process(pid, timeout=config.bitcoind_stop_timeout + config.ord_stop_timeout + 5):
        console.print("[green]ordstack stopped[/green]")
    else:
        console.print(f"[red]Failed to stop ordstack process {pid}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show service status and the active wallet."""
    config: OrdstackConfig = ctx.obj["config"]

    pid = ProcessLock(config).find_supervisor()
    if pid:
        console.print(f"🟢 ordstack: [green]Running (PID {pid})[/green]")
    else:
        console.print("🔴 ordstack: [red]Not running[/red]")

    info = run_session(ctx, "Failed to get status", lambda o: o.status())

    console.print(f"🌐 Network: {info.network.value}")
    if info.bitcoind_ready:
        console.print(f"₿ bitcoind: [green]Ready[/green] (block {info.block_count})")
    else:
        console.print("₿ bitcoind: [red]Not running[/red]")
    if info.ord_health.healthy:
        console.print(f"📇 ord: [green]Ready[/green] (block {info.ord_health.blockcount})")
    else:
        console.print(f"📇 ord: [red]Not ready[/red] [dim]{escape(info.ord_health.error or '')}[/dim]")
    console.print(f"👛 Wallet: {info.current_wallet}")

    if config.ntfy_topic:
        console.print("📱 Notifications: Configured")
    else:
        console.print("📱 Notifications: [yellow]Not configured[/yellow]")


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--fee-rate", type=float, default=None, help="Fee rate in sat/vB")
@click.pass_context
def publish(ctx: click.Context, file_path: Path, fee_rate: float | None) -> None:
    """Inscribe a file, funding the wallet first on regtest."""
    result = run_session(
        ctx,
        "Inscription failed",
        lambda o: o.publish(file_path, fee_rate, confirm=click.confirm),
    )
    if result is None:
        return

    console.print("[green bold]Inscription created[/green bold]")
    console.print(f"ID: {result.inscription_id}")
    console.print(f"View: {result.local_url}")
    if not result.verified:
        console.print("[yellow]ord has not indexed the inscription yet[/yellow]")


@cli.command()
@click.argument("count", type=int)
@click.pass_context
def mine(ctx: click.Context, count: int) -> None:
    """Mine COUNT regtest blocks to the active wallet."""
    hashes = run_session(ctx, "Failed to mine blocks", lambda o: o.mine_blocks(count))
    console.print(f"[green]Mined {len(hashes)} block(s)[/green]")


@cli.command()
@click.pass_context
def balance(ctx: click.Context) -> None:
    """Show the active wallet's balance in sats."""
    result = run_session(ctx, "Failed to get balance", lambda o: o.get_balance())

    table = Table()
    table.add_column("Kind")
    table.add_column("Sats", justify="right")
    table.add_row("Cardinal", f"{result.cardinal:,}")
    table.add_row("Ordinal", f"{result.ordinal:,}")
    table.add_row("Total", f"{result.total:,}")
    console.print(table)


@cli.group()
@click.pass_context
def wallet(ctx: click.Context) -> None:
    """Wallet management commands."""


@wallet.command("create")
@click.argument("name", required=False)
@click.pass_context
def wallet_create(ctx: click.Context, name: str | None) -> None:
    """Create a wallet (the active one if NAME is omitted)."""
    created = run_session(ctx, "Failed to create wallet", lambda o: o.create_wallet(name))
    if created:
        console.print("[green]Wallet created successfully![/green]")
    else:
        console.print("[yellow]Wallet already exists[/yellow]")


@wallet.command("switch")
@click.argument("name")
@click.pass_context
def wallet_switch(ctx: click.Context, name: str) -> None:
    """Make NAME the active wallet."""
    config: OrdstackConfig = ctx.obj["config"]
    orchestrator = build_orchestrator(config)
    try:
        orchestrator.switch_wallet(name)
    except OrdstackError as e:
        report_failure("Failed to switch wallet", e)
        sys.exit(1)
    finally:
        orchestrator.notices.close()
    console.print(f"[green]Switched to wallet {name}[/green]")


@wallet.command("list")
@click.pass_context
def wallet_list(ctx: click.Context) -> None:
    """List wallets in ord's data directory."""
    config: OrdstackConfig = ctx.obj["config"]
    orchestrator = build_orchestrator(config)
    try:
        current = orchestrator.wallet_state.current()
        names = orchestrator.list_wallets()
    finally:
        orchestrator.notices.close()

    if not names:
        console.print("No wallets found")
        return

    table = Table()
    table.add_column("Wallet")
    table.add_column("Active")
    for name in names:
        table.add_row(name, "✓" if name == current else "")
    console.print(table)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def reset(ctx: click.Context, yes: bool) -> None:
    """Delete ord's index and wallets for the current network."""
    config: OrdstackConfig = ctx.obj["config"]
    if not yes and not click.confirm(
        f"This deletes the ord index and ALL ord wallets for {config.network.value}. Continue?",
    ):
        return

    removed = run_session(ctx, "Failed to reset ord data", lambda o: o.reset())
    console.print(f"[green]Removed {len(removed)} item(s); ord will rebuild its index[/green]")


@cli.command()
@click.pass_context
def history(ctx: click.Context) -> None:
    """Show recent inscriptions."""
    config: OrdstackConfig = ctx.obj["config"]
    records = InscriptionHistory(StateStore(config.state_dir / "state.json")).records()

    if not records:
        console.print("No inscriptions yet")
        return

    table = Table()
    table.add_column("Inscription")
    table.add_column("File")
    table.add_column("Created")
    for record in records:
        table.add_row(record.id, record.file_name, record.timestamp)
    console.print(table)


def _print_updates(config: OrdstackConfig, *, only_if_due: bool = False) -> None:
    checker = UpdateChecker(
        config,
        StateStore(config.state_dir / "state.json"),
        VersionManifest(config.state_dir),
    )
    if only_if_due and not checker.is_due():
        return

    async def check():
        await checker.detect_installed()
        return await checker.check()

    updates = asyncio.run(check())
    if not updates:
        console.print("[green]bitcoind and ord are up to date[/green]")
        return
    for update in updates:
        console.print(
            f"[yellow]Update available:[/yellow] {update.component} "
            f"{update.installed or 'unknown'} → {update.latest}",
        )


@cli.command("check-updates")
@click.pass_context
def check_updates(ctx: click.Context) -> None:
    """Compare installed bitcoind/ord with their latest releases."""
    _print_updates(ctx.obj["config"])


@cli.command("test-notify")
@click.pass_context
def send_test_notification(ctx: click.Context) -> None:
    """Send a test notification."""
    config: OrdstackConfig = ctx.obj["config"]
    if not config.ntfy_topic:
        console.print("[yellow]No ntfy topic configured[/yellow]")
        sys.exit(1)

    notifier = NtfyNotifier(config)
    try:
        sent = notifier.test_notification()
    finally:
        notifier.close()

    if sent:
        console.print("[green]Test notification sent successfully[/green]")
    else:
        console.print("[red]Failed to send test notification[/red]")
        sys.exit(1)


@cli.command()
@click.option("--follow", "-f", is_flag=True, help="Follow log output")
@click.option("--lines", "-n", type=int, default=10, help="Number of lines to show")
@click.pass_context
def show(ctx: click.Context, follow: bool, lines: int) -> None:
    """Show ordstack log output with colors."""
    config: OrdstackConfig = ctx.obj["config"]
    log_file = config.log_dir / LOG_FILE_NAME

    if not log_file.exists():
        console.print("[yellow]No log file found[/yellow]")
        console.print(f"Expected location: {log_file}")
        sys.exit(1)

    try:
        if follow:
            cmd = ["tail", "-f", str(log_file)]
        else:
            cmd = ["tail", "-n", str(lines), str(log_file)]

        # Stream output and colorize in real-time
        with subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        ) as proc:
            try:
                for line in proc.stdout:
                    _colorize_log_line(line.rstrip())
            except KeyboardInterrupt:
                proc.terminate()
                sys.exit(0)

        if proc.returncode != 0:
            console.print("[red]Error running tail command[/red]")
            sys.exit(1)

    except FileNotFoundError:
        console.print("[red]tail command not found - install coreutils[/red]")
        sys.exit(1)


def _colorize_log_line(line: str) -> None:
    """Colorize a single log line based on log level."""
    if " ERROR " in line:
        console.print(f"[red]{escape(line)}[/red]")
    elif " WARNING " in line:
        console.print(f"[yellow]{escape(line)}[/yellow]")
    elif " INFO " in line:
        console.print(f"[blue]{escape(line)}[/blue]")
    elif " DEBUG " in line:
        console.print(f"[dim]{escape(line)}[/dim]")
    else:
        console.print(line, markup=False)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
