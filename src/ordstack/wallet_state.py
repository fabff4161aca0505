"""Wallet naming rules and the persisted choice of active wallet."""

import logging
import re

from .error_handling import InvalidWalletNameError
from .storage.ord_data import OrdDataLayout
from .storage.state import StateStore

logger = logging.getLogger(__name__)

WALLET_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
CURRENT_WALLET_KEY = "current_wallet"


def is_valid_wallet_name(name: str) -> bool:
    return bool(name) and WALLET_NAME_PATTERN.fullmatch(name) is not None


def validate_wallet_name(name: str) -> str:
    if not is_valid_wallet_name(name):
        raise InvalidWalletNameError(name)
    return name


class WalletState:
    """Tracks which ord wallet commands act on."""

    def __init__(self, store: StateStore, layout: OrdDataLayout, default_wallet: str = "ord"):
        self.store = store
        self.layout = layout
        self.default_wallet = default_wallet

    def current(self) -> str:
        name = self.store.get(CURRENT_WALLET_KEY)
        if isinstance(name, str) and is_valid_wallet_name(name):
            return name
        return self.default_wallet

    def set_current(self, name: str) -> None:
        validate_wallet_name(name)
        self.store.set(CURRENT_WALLET_KEY, name)
        logger.info("Active wallet is now %s", name)

    def list_wallets(self) -> list[str]:
        return self.layout.list_wallets()

    def exists(self, name: str) -> bool:
        return name in self.list_wallets()
