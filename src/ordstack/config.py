"""Configuration management for ordstack."""

import os
import sys
from enum import Enum
from pathlib import Path

import tomli
from pydantic import BaseModel, Field, field_validator


class Network(str, Enum):
    """Bitcoin networks supported by the local stack."""

    REGTEST = "regtest"
    TESTNET = "testnet"
    SIGNET = "signet"
    MAINNET = "mainnet"


# Subdirectory bitcoind and ord use for each network's data
NETWORK_SUBDIRS = {
    Network.REGTEST: "regtest",
    Network.TESTNET: "testnet3",
    Network.SIGNET: "signet",
    Network.MAINNET: None,
}

DEFAULT_RPC_PORTS = {
    Network.REGTEST: 18443,
    Network.TESTNET: 18332,
    Network.SIGNET: 38332,
    Network.MAINNET: 8332,
}

ADDRESS_PREFIXES = {
    Network.REGTEST: "bcrt1",
    Network.TESTNET: "tb1",
    Network.SIGNET: "tb1",
    Network.MAINNET: "bc1",
}


def network_dir(base_dir: Path, network: Network) -> Path:
    """Return the per-network data directory below ``base_dir``."""
    subdir = NETWORK_SUBDIRS[Network(network)]
    return base_dir / subdir if subdir else base_dir


def cookie_file_path(data_dir: Path, network: Network) -> Path:
    """Location of the cookie bitcoind writes for RPC authentication."""
    return network_dir(data_dir, network) / ".cookie"


def bitcoind_network_flag(network: Network) -> str | None:
    network = Network(network)
    if network == Network.MAINNET:
        return None
    return f"-{network.value}"


def ord_network_flag(network: Network) -> str | None:
    network = Network(network)
    if network == Network.MAINNET:
        return None
    return f"--{network.value}"


def _app_support_dir(name: str, unix_name: str) -> Path:
    home = Path.home()
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", str(home))) / name
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / name
    return home / unix_name


def default_bitcoin_data_dir() -> Path:
    """Bitcoin Core's default data directory for this platform."""
    return _app_support_dir("Bitcoin", ".bitcoin")


def default_ord_data_dir() -> Path:
    """ord's default data directory for this platform."""
    return _app_support_dir("ord", ".ord")


class OrdstackConfig(BaseModel):
    """Main configuration for ordstack."""

    network: Network = Field(default=Network.REGTEST)

    # Paths
    bitcoin_data_dir: Path = Field(default_factory=default_bitcoin_data_dir)
    ord_data_dir: Path = Field(default_factory=default_ord_data_dir)
    state_dir: Path = Field(default=Path("~/.local/share/ordstack"))
    log_dir: Path = Field(default=Path("~/.local/share/ordstack/logs"))

    # Binaries (downloaded separately, resolved on PATH by default)
    bitcoind_binary: str = Field(default="bitcoind")
    ord_binary: str = Field(default="ord")

    # Ports
    bitcoind_rpc_port: int | None = None  # None = network default
    ord_server_port: int = Field(default=9001)

    # Wallet
    default_wallet: str = Field(default="ord")
    mining_wallet: str = Field(default="mining")
    min_funding_balance: int = Field(default=10000)  # sats
    inscription_fee_rate: float = Field(default=1.0)  # sat/vB

    # Notifications
    ntfy_topic: str | None = None

    # Updates
    auto_update_check: bool = Field(default=True)
    update_check_interval: int = Field(default=24)  # hours

    # Readiness polling
    bitcoind_ready_interval: float = Field(default=1.0)
    bitcoind_ready_attempts: int = Field(default=30)
    ord_ready_interval: float = Field(default=1.0)
    ord_ready_attempts: int = Field(default=60)
    sync_poll_interval: float = Field(default=0.5)
    sync_timeout: int = Field(default=30)  # seconds

    # Timeout Settings (seconds)
    bitcoind_stop_timeout: int = Field(default=10)
    ord_stop_timeout: int = Field(default=5)
    ord_command_timeout: int = Field(default=600)
    rpc_request_timeout: int = Field(default=30)
    ord_request_timeout: int = Field(default=5)
    ntfy_request_timeout: int = Field(default=10)
    release_check_timeout: int = Field(default=15)

    @field_validator(
        "bitcoin_data_dir",
        "ord_data_dir",
        "state_dir",
        "log_dir",
        mode="before",
    )
    @classmethod
    def expand_paths(cls, v: Path | str) -> Path:
        """Expand user home directory in paths."""
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser().resolve()

    @field_validator("default_wallet", "mining_wallet")
    @classmethod
    def wallet_name_charset(cls, v: str) -> str:
        from .wallet_state import is_valid_wallet_name

        if not is_valid_wallet_name(v):
            msg = f"Invalid wallet name: {v!r}"
            raise ValueError(msg)
        return v

    @property
    def rpc_port(self) -> int:
        """bitcoind RPC port, falling back to the network default."""
        if self.bitcoind_rpc_port is not None:
            return self.bitcoind_rpc_port
        return DEFAULT_RPC_PORTS[self.network]

    @property
    def cookie_file(self) -> Path:
        return cookie_file_path(self.bitcoin_data_dir, self.network)

    @property
    def ord_network_dir(self) -> Path:
        return network_dir(self.ord_data_dir, self.network)

    @property
    def ord_server_url(self) -> str:
        return f"http://127.0.0.1:{self.ord_server_port}"

    @property
    def mining_allowed(self) -> bool:
        """Only regtest permits instant, free block generation."""
        return self.network == Network.REGTEST

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.state_dir, self.log_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Path | None = None) -> OrdstackConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        # Check common config locations (user config first)
        possible_paths = [
            Path.home() / ".config" / "ordstack" / "config.toml",  # User config
            Path.cwd() / "ordstack.toml",  # Current directory
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            config_data = tomli.load(f)
        return OrdstackConfig(**config_data)
    # Use defaults
    return OrdstackConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# ordstack Configuration
# ======================

# ============================================================================
# NETWORK - changing it requires restarting services
# ============================================================================

network = "regtest"                               # regtest, testnet, signet or mainnet

# ============================================================================
# COMMONLY CUSTOMIZED SETTINGS
# ============================================================================

# Binaries (absolute paths, or names resolved on PATH)
bitcoind_binary = "bitcoind"
ord_binary = "ord"

# Data directories (defaults follow each tool's platform default)
# bitcoin_data_dir = "~/.bitcoin"
# ord_data_dir = "~/.ord"
state_dir = "~/.local/share/ordstack"             # Current wallet, inscription history
log_dir = "~/.local/share/ordstack/logs"          # ordstack.log

# Ports
# bitcoind_rpc_port = 18443                       # Defaults to the network's standard port
ord_server_port = 9001

# Wallet
default_wallet = "ord"                            # Used until you switch wallets
min_funding_balance = 10000                       # Regtest auto-funds below this many sats
inscription_fee_rate = 1.0                        # sat/vB

# Notifications (optional)
# ntfy_topic = "https://ntfy.sh/your_topic"

# ============================================================================
# ADVANCED SETTINGS - Most users can leave these as defaults
# ============================================================================

# Updates
auto_update_check = true
update_check_interval = 24                        # Hours between release checks

# Readiness polling
bitcoind_ready_interval = 1.0                     # Seconds between bitcoind RPC probes
bitcoind_ready_attempts = 30
ord_ready_interval = 1.0                          # Seconds between ord /blockcount probes
ord_ready_attempts = 60
sync_poll_interval = 0.5
sync_timeout = 30                                 # Seconds to wait for ord to catch up

# Operation Timeouts (seconds)
bitcoind_stop_timeout = 10                        # Grace period before bitcoind is killed
ord_stop_timeout = 5                              # Grace period before ord is killed
ord_command_timeout = 600                         # ord wallet commands (inscribe can be slow)
rpc_request_timeout = 30
ord_request_timeout = 5
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
