"""Compare installed bitcoind/ord versions against their latest releases."""

import logging
import re
import time
from dataclasses import dataclass

import httpx

from . import __version__
from .config import OrdstackConfig
from .error_handling import OrdstackError
from .services.process import run_command
from .storage.state import StateStore
from .storage.versions import VersionManifest

logger = logging.getLogger(__name__)

LAST_UPDATE_CHECK_KEY = "last_update_check"

RELEASE_URLS = {
    "bitcoind": "https://api.github.com/repos/bitcoin/bitcoin/releases/latest",
    "ord": "https://api.github.com/repos/ordinals/ord/releases/latest",
}

VERSION_PATTERN = re.compile(r"v?(?P<version>\d+(?:\.\d+)+)")


def normalize_version(version: str | None) -> tuple[int, ...] | None:
    """``v27.0``, ``27.0.0`` and ``Bitcoin Core version v27.0.0`` all compare equal."""
    if not version:
        return None
    match = VERSION_PATTERN.search(version)
    if not match:
        return None
    parts = [int(p) for p in match.group("version").split(".")]
    while len(parts) > 1 and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


@dataclass(frozen=True)
class AvailableUpdate:
    component: str
    installed: str | None
    latest: str


class UpdateChecker:
    def __init__(
        self,
        config: OrdstackConfig,
        store: StateStore,
        manifest: VersionManifest,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.store = store
        self.manifest = manifest
        self._transport = transport

    def is_due(self, now: float | None = None) -> bool:
        """True when auto-checking is on and the interval has elapsed."""
        if not self.config.auto_update_check or self.config.update_check_interval <= 0:
            return False
        last = self.store.get(LAST_UPDATE_CHECK_KEY)
        if not isinstance(last, int | float):
            return True
        now = time.time() if now is None else now
        hours_since = (now - last) / 3600
        if hours_since < self.config.update_check_interval:
            logger.debug(
                "Skipping update check (%.1fh since last check, interval is %sh)",
                hours_since,
                self.config.update_check_interval,
            )
            return False
        return True

    async def detect_installed(self) -> dict[str, str]:
        """Ask each binary for its version and record it in the manifest."""
        binaries = {"bitcoind": self.config.bitcoind_binary, "ord": self.config.ord_binary}
        found = {}
        for component, binary in binaries.items():
            try:
                result = await run_command([binary, "--version"], self.config.release_check_timeout)
            except (OrdstackError, OSError) as e:
                logger.warning("Could not query %s version: %s", component, e)
                continue
            first_line = (result.stdout.strip().splitlines() or [""])[0]
            match = VERSION_PATTERN.search(first_line)
            if result.ok and match:
                found[component] = match.group(0)
                self.manifest.record(component, match.group(0))
        return found

    async def latest_releases(self) -> dict[str, str]:
        releases = {}
        async with httpx.AsyncClient(
            timeout=self.config.release_check_timeout,
            headers={"User-Agent": f"ordstack/{__version__}", "Accept": "application/vnd.github+json"},
            transport=self._transport,
        ) as client:
            for component, url in RELEASE_URLS.items():
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                    releases[component] = response.json()["tag_name"]
                except (httpx.HTTPError, KeyError, ValueError) as e:
                    logger.warning("Failed to check %s updates: %s", component, e)
        return releases

    async def check(self) -> list[AvailableUpdate]:
        installed = self.manifest.load()
        updates = []
        for component, latest in (await self.latest_releases()).items():
            current = installed.get(component)
            if normalize_version(current) != normalize_version(latest):
                updates.append(AvailableUpdate(component, current, latest))
        self.store.set(LAST_UPDATE_CHECK_KEY, time.time())
        return updates
