"""Layout of ord's data directory: index and wallet databases."""

import logging
import shutil
from pathlib import Path

from ..config import Network, network_dir

logger = logging.getLogger(__name__)

INDEX_FILE = "index.redb"


class OrdDataLayout:
    """Knows where ord keeps its index and wallets for one network.

    Older ord releases wrote ``index.redb`` and the wallet database at the
    root of the data directory; newer ones use a per-network subdirectory
    and a ``wallets`` folder. Both layouts are handled.
    """

    def __init__(self, data_dir: Path, network: Network):
        self.data_dir = data_dir
        self.network = network
        self.network_dir = network_dir(data_dir, network)

    def index_paths(self) -> list[Path]:
        paths = [self.network_dir / INDEX_FILE]
        legacy = self.data_dir / INDEX_FILE
        if legacy not in paths:
            paths.append(legacy)
        return paths

    def wallet_paths(self) -> list[Path]:
        candidates = [
            self.network_dir / "wallets",
            self.data_dir / "wallets",
            self.network_dir / "wallet.redb",
            self.network_dir / "wallet",
            self.data_dir / "wallet.redb",
            self.data_dir / "wallet",
        ]
        paths: list[Path] = []
        for path in candidates:
            if path not in paths:
                paths.append(path)
        return paths

    def wipe_index(self) -> list[Path]:
        return self._remove(self.index_paths())

    def wipe_wallets(self) -> list[Path]:
        return self._remove(self.wallet_paths())

    def wipe_all(self) -> list[Path]:
        """Remove the index and every wallet database; returns what was removed."""
        removed = self.wipe_index() + self.wipe_wallets()
        logger.info("Cleared ord data for %s: %d path(s) removed", self.network.value, len(removed))
        return removed

    def list_wallets(self) -> list[str]:
        """Wallet names found under ``<network dir>/wallets``."""
        wallets_dir = self.network_dir / "wallets"
        if not wallets_dir.is_dir():
            return []

        names = set()
        for entry in wallets_dir.iterdir():
            if entry.is_dir() and any(entry.glob("*.redb")):
                names.add(entry.name)
            elif entry.is_file() and entry.suffix == ".redb":
                names.add(entry.stem)
        return sorted(names)

    def _remove(self, paths: list[Path]) -> list[Path]:
        removed = []
        for path in paths:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
            else:
                continue
            logger.info("Removed %s", path)
            removed.append(path)
        return removed
