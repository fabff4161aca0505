"""Error taxonomy and user-facing error reporting for ordstack."""

import logging
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from rich.console import Console

logger = logging.getLogger(__name__)
console = Console()

# Diagnostics attached to errors are cut to this many characters
DIAGNOSTIC_LIMIT = 200


def truncate(text: str | None, limit: int = DIAGNOSTIC_LIMIT) -> str:
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class ErrorCategory(Enum):
    """Categories of errors for better user experience."""

    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    PRECONDITION = "precondition"
    SERVICE = "service"
    NETWORK = "network"
    WALLET = "wallet"
    FILESYSTEM = "filesystem"
    EXTERNAL_TOOL = "external_tool"
    SYSTEM = "system"
    USER_INPUT = "user_input"


class OrdstackError(Exception):
    """Base exception for ordstack with enhanced user experience."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        solution: str | None = None,
        details: str | None = None,
        recoverable: bool = True,
        log_level: int = logging.ERROR,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.solution = solution
        self.details = details
        self.recoverable = recoverable
        self.log_level = log_level
        self.original_error = original_error

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        category_styles = {
            ErrorCategory.CONFIGURATION: ("⚙️", "yellow"),
            ErrorCategory.DEPENDENCY: ("📦", "red"),
            ErrorCategory.PRECONDITION: ("🔒", "yellow"),
            ErrorCategory.SERVICE: ("🛰️", "red"),
            ErrorCategory.NETWORK: ("🌐", "orange1"),
            ErrorCategory.WALLET: ("👛", "red"),
            ErrorCategory.FILESYSTEM: ("📁", "red"),
            ErrorCategory.EXTERNAL_TOOL: ("🔧", "red"),
            ErrorCategory.SYSTEM: ("💻", "red"),
            ErrorCategory.USER_INPUT: ("⌨️", "yellow"),
        }

        emoji, color = category_styles.get(self.category, ("❌", "red"))

        console.print(
            f"\n{emoji} [{color} bold]{self.category.value.replace('_', ' ').title()} Error[/{color} bold]",
        )
        console.print(f"[{color}]{self.message}[/{color}]")

        if self.details:
            console.print(f"\n[dim]Details:[/dim] {self.details}")

        if self.solution:
            console.print(f"\n[green]💡 Solution:[/green] {self.solution}")

        if self.recoverable:
            console.print(
                "\n[dim]This error may be temporary. You can try again.[/dim]",
            )
        else:
            console.print(
                "\n[dim]This error requires intervention before continuing.[/dim]",
            )

        if self.original_error:
            logger.log(
                self.log_level,
                "%s: %s",
                self.category.value,
                self.message,
                exc_info=self.original_error,
            )
        else:
            logger.log(self.log_level, "%s: %s", self.category.value, self.message)


class ConfigurationError(OrdstackError):
    """Configuration-related errors."""

    def __init__(self, message: str, *, config_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and config_path:
            solution = f"Check your configuration file at {config_path}"
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            solution=solution,
            **kwargs,
        )


class DependencyError(OrdstackError):
    """Missing or broken dependency errors."""

    def __init__(
        self,
        dependency: str,
        *,
        install_command: str | None = None,
        **kwargs,
    ):
        message = f"Required dependency '{dependency}' is not available"
        solution = kwargs.pop("solution", None)
        if not solution and install_command:
            solution = f"Install with: {install_command}"
        super().__init__(
            message,
            ErrorCategory.DEPENDENCY,
            solution=solution,
            recoverable=False,
            **kwargs,
        )


class ExternalToolError(OrdstackError):
    """External tool execution errors."""

    def __init__(
        self,
        tool: str,
        exit_code: int | None = None,
        stderr: str | None = None,
        **kwargs,
    ):
        message = kwargs.pop("message", None) or f"{tool} failed"
        if exit_code is not None:
            message += f" with exit code {exit_code}"

        details = kwargs.pop("details", truncate(stderr) or None)
        solution = kwargs.pop(
            "solution",
            f"Check {tool} is properly installed and configured",
        )
        category = kwargs.pop("category", ErrorCategory.EXTERNAL_TOOL)

        super().__init__(
            message,
            category,
            details=details,
            solution=solution,
            **kwargs,
        )
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr or ""


class PreconditionError(OrdstackError):
    """Misconfiguration detected before doing any work; never retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            ErrorCategory.PRECONDITION,
            recoverable=False,
            **kwargs,
        )


class CredentialsNotFoundError(PreconditionError):
    """The node's cookie file does not exist."""

    def __init__(self, cookie_path: Path, **kwargs):
        solution = kwargs.pop("solution", "Start bitcoind first: ordstack start")
        super().__init__(
            f"Bitcoin cookie file not found at {cookie_path}. Is bitcoind running?",
            solution=solution,
            **kwargs,
        )
        self.cookie_path = cookie_path


class PortBusyError(PreconditionError):
    """A port we need is held by a process that is not ours."""

    def __init__(self, port: int, service: str, **kwargs):
        solution = kwargs.pop(
            "solution",
            "Stop the other process or change the port in your configuration",
        )
        super().__init__(
            f"Port {port} is in use but {service} is not responding. "
            "Another process may be using this port.",
            solution=solution,
            **kwargs,
        )
        self.port = port


class ServiceStartError(OrdstackError):
    """A service process exited before it became ready."""

    def __init__(self, service: str, stderr: str | None = None, **kwargs):
        message = kwargs.pop("message", None) or f"{service} failed to start"
        diagnostic = truncate(stderr)
        if diagnostic:
            message = f"{message}: {diagnostic}"
        super().__init__(message, ErrorCategory.SERVICE, **kwargs)
        self.service = service
        self.stderr = stderr or ""


class ServiceTimeoutError(OrdstackError):
    """A service is alive but never answered its readiness probe."""

    def __init__(self, service: str, **kwargs):
        solution = kwargs.pop(
            "solution",
            f"{service} was left running; check 'ordstack show' for its output",
        )
        super().__init__(
            f"{service} failed to become ready in time",
            ErrorCategory.SERVICE,
            solution=solution,
            **kwargs,
        )
        self.service = service


class RpcError(OrdstackError):
    """bitcoind JSON-RPC call failed."""

    def __init__(self, message: str, *, code: int | None = None, **kwargs):
        super().__init__(message, ErrorCategory.NETWORK, **kwargs)
        self.code = code


class WalletCommandError(ExternalToolError):
    """An ord wallet subcommand exited non-zero."""

    def __init__(self, action: str, stderr: str | None = None, **kwargs):
        fallback = kwargs.pop("fallback", "unknown error")
        raw = (stderr or "").strip() or fallback
        super().__init__(
            "ord",
            stderr=stderr,
            message=f"{action}: {truncate(raw)}",
            category=ErrorCategory.WALLET,
            **kwargs,
        )
        self.action = action


class OutputParseError(OrdstackError):
    """ord printed something none of the parsers understood."""

    def __init__(self, what: str, output: str, **kwargs):
        super().__init__(
            f"Could not parse {what} from: {truncate(output)}",
            ErrorCategory.EXTERNAL_TOOL,
            **kwargs,
        )


class SyncTimeoutError(OrdstackError):
    """ord did not reach the node's block height in time."""

    def __init__(self, expected: int, **kwargs):
        super().__init__(
            f"ord server failed to sync with bitcoind (timed out waiting for block {expected})",
            ErrorCategory.SERVICE,
            **kwargs,
        )
        self.expected = expected


class NetworkRestrictedError(OrdstackError):
    """The requested operation is not permitted on this network."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            ErrorCategory.USER_INPUT,
            recoverable=False,
            log_level=logging.WARNING,
            **kwargs,
        )


class InvalidWalletNameError(OrdstackError):
    def __init__(self, name: str, **kwargs):
        super().__init__(
            f"Invalid wallet name {name!r}",
            ErrorCategory.USER_INPUT,
            solution="Wallet names can only contain letters, numbers, hyphens, and underscores",
            recoverable=False,
            **kwargs,
        )


class WalletNotFoundError(OrdstackError):
    def __init__(self, name: str, **kwargs):
        super().__init__(
            f"Wallet {name!r} does not exist",
            ErrorCategory.WALLET,
            recoverable=False,
            **kwargs,
        )


class WorkflowStepError(OrdstackError):
    """Failure of one named phase of a multi-step workflow."""

    def __init__(self, phase: str, error: Exception, **kwargs):
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        category = getattr(error, "category", ErrorCategory.SYSTEM)
        kwargs.setdefault("details", getattr(error, "details", None))
        kwargs.setdefault("solution", getattr(error, "solution", None))
        super().__init__(
            f"{phase} step failed: {message}",
            category,
            original_error=error,
            **kwargs,
        )
        self.phase = phase


@dataclass(frozen=True)
class ErrorSuggestion:
    """Remediation shown for errors whose text matches ``pattern``."""

    pattern: re.Pattern
    message: str
    suggestion: str
    command: str | None = None


ERROR_PATTERNS: list[ErrorSuggestion] = [
    ErrorSuggestion(
        re.compile(r"cookie file.*not found|No \.cookie file", re.IGNORECASE),
        "Bitcoin Core authentication failed",
        "The cookie file is missing. Services may not be running or the data directory is incorrect.",
        "ordstack start",
    ),
    ErrorSuggestion(
        re.compile(r"output in wallet but not in ord server", re.IGNORECASE),
        "Wallet sync issue detected",
        "The ord index is out of sync with the wallet. A full reset will fix this.",
        "ordstack reset",
    ),
    ErrorSuggestion(
        re.compile(r"address.*already in use|EADDRINUSE|port \d+ is in use", re.IGNORECASE),
        "Port is already in use",
        "Another instance may be running, or another application is using the port. "
        "Try stopping services or change the port in your configuration.",
        "ordstack stop",
    ),
    ErrorSuggestion(
        re.compile(r"wallet.*not.*found|no wallet|wallet does not exist|wallet .* does not exist", re.IGNORECASE),
        "No wallet found",
        "A wallet needs to be created before this operation.",
        "ordstack wallet create",
    ),
    ErrorSuggestion(
        re.compile(r"insufficient funds|not enough funds|balance.*insufficient", re.IGNORECASE),
        "Insufficient funds",
        "The wallet needs more bitcoin. In regtest mode, mine some blocks to fund it.",
        "ordstack mine 101",
    ),
    ErrorSuggestion(
        re.compile(r"bitcoind.*not running|bitcoin core.*not running", re.IGNORECASE),
        "Bitcoin Core is not running",
        "Start the services to use this feature.",
        "ordstack start",
    ),
    ErrorSuggestion(
        re.compile(r"ord.*not running|ord server.*not running", re.IGNORECASE),
        "Ord server is not running",
        "Start the services to use this feature.",
        "ordstack start",
    ),
    ErrorSuggestion(
        re.compile(r"connection refused|ECONNREFUSED|connect call failed", re.IGNORECASE),
        "Connection refused",
        "The service is not responding. It may have crashed or failed to start.",
        "ordstack start",
    ),
    ErrorSuggestion(
        re.compile(r"timeout|timed out", re.IGNORECASE),
        "Operation timed out",
        "The operation took too long. Check the logs for more details.",
        "ordstack show",
    ),
]


def find_suggestion(error_message: str) -> ErrorSuggestion | None:
    """Return the first remediation whose pattern matches the message."""
    for suggestion in ERROR_PATTERNS:
        if suggestion.pattern.search(error_message):
            return suggestion
    return None


def report_failure(context: str, error: Exception | str) -> None:
    """Show a single human-readable failure message with a next step."""
    error_message = error.message if isinstance(error, OrdstackError) else str(error)
    logger.error("Error in %s: %s", context, error_message)

    suggestion = find_suggestion(error_message)
    if suggestion:
        console.print(f"[red bold]{suggestion.message}:[/red bold] {suggestion.suggestion}")
        if suggestion.command:
            console.print(f"[green]💡 Try:[/green] {suggestion.command}")
    else:
        console.print(f"[red bold]{context}:[/red bold] {error_message}")
    console.print("[dim]Run 'ordstack show' to view the logs[/dim]")


def check_dependencies(bitcoind_binary: str = "bitcoind", ord_binary: str = "ord") -> list[DependencyError]:
    """Check for missing binaries and return list of errors."""
    errors = []

    if not shutil.which(bitcoind_binary):
        errors.append(
            DependencyError(
                "bitcoind",
                solution="Install Bitcoin Core from https://bitcoincore.org/en/download/ "
                "or set bitcoind_binary in your configuration",
                details="bitcoind is required to run the local node",
            ),
        )

    if not shutil.which(ord_binary):
        errors.append(
            DependencyError(
                "ord",
                install_command="curl --proto '=https' --tlsv1.2 -fsLS https://ordinals.com/install.sh | bash -s",
                details="ord is required for indexing and inscribing",
            ),
        )

    return errors
