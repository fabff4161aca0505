"""Parsing of ord wallet command output and classification of its stderr."""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from ..config import ADDRESS_PREFIXES, Network
from ..error_handling import OutputParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

VERSION_MISMATCH_MARKERS = (
    "Manual upgrade required",
    "Expected file format version",
    "failed to open index",
    "failed to open wallet database",
)

INSCRIPTION_ID_PATTERN = re.compile(r"(?P<id>[a-f0-9]{64}i\d+)", re.IGNORECASE)
REVEAL_PATTERN = re.compile(r"reveal\s+(?P<txid>[a-f0-9]{64})", re.IGNORECASE)
INTEGER_PATTERN = re.compile(r"(?P<value>\d+)")


def is_version_mismatch(text: str) -> bool:
    """True when ord reports an index or wallet database from another version."""
    return any(marker in text for marker in VERSION_MISMATCH_MARKERS)


def is_already_exists(*outputs: str) -> bool:
    return any("already exists" in (output or "") for output in outputs)


def address_pattern(network: Network) -> re.Pattern:
    prefix = re.escape(ADDRESS_PREFIXES[Network(network)])
    return re.compile(rf"\b(?P<address>{prefix}[a-zA-HJ-NP-Z0-9]{{25,100}})\b")


@dataclass(frozen=True)
class WalletBalance:
    cardinal: int = 0
    ordinal: int = 0
    total: int = 0


@dataclass(frozen=True)
class InscriptionResult:
    inscription_id: str
    reveal_txid: str = ""
    total_fees: int = 0


class ParserChain(Generic[T]):
    """Tries each strategy in order; the first non-None result wins."""

    def __init__(self, what: str, *strategies: Callable[[str], T | None]):
        self.what = what
        self.strategies = strategies

    def parse(self, output: str) -> T:
        for strategy in self.strategies:
            result = strategy(output)
            if result is not None:
                return result
        raise OutputParseError(self.what, output)


def decode_json(output: str) -> Any:
    try:
        return json.loads(output.strip())
    except json.JSONDecodeError:
        return None


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def _address_from_json(output: str) -> str | None:
    data = decode_json(output)
    if not isinstance(data, dict):
        return None
    addresses = data.get("addresses")
    if isinstance(addresses, list) and addresses:
        first = addresses[0]
        if isinstance(first, dict) and first.get("address"):
            return str(first["address"])
        if isinstance(first, str):
            return first
    if data.get("address"):
        return str(data["address"])
    return None


def address_parser(network: Network) -> ParserChain[str]:
    pattern = address_pattern(network)

    def from_text(output: str) -> str | None:
        match = pattern.search(output)
        return match.group("address") if match else None

    return ParserChain("receive address", _address_from_json, from_text)


def _inscription_from_json(output: str) -> InscriptionResult | None:
    data = decode_json(output)
    if not isinstance(data, dict):
        return None
    inscriptions = data.get("inscriptions")
    inscription_id = None
    if isinstance(inscriptions, list) and inscriptions and isinstance(inscriptions[0], dict):
        inscription_id = inscriptions[0].get("id")
    if not inscription_id:
        inscription_id = data.get("inscription")
    if not inscription_id:
        return None
    return InscriptionResult(
        inscription_id=str(inscription_id),
        reveal_txid=str(data.get("reveal") or ""),
        total_fees=_as_int(data.get("total_fees")),
    )


def _inscription_from_text(output: str) -> InscriptionResult | None:
    id_match = INSCRIPTION_ID_PATTERN.search(output)
    if not id_match:
        return None
    reveal_match = REVEAL_PATTERN.search(output)
    return InscriptionResult(
        inscription_id=id_match.group("id"),
        reveal_txid=reveal_match.group("txid") if reveal_match else "",
    )


def _balance_from_json(output: str) -> WalletBalance | None:
    data = decode_json(output)
    if not isinstance(data, dict):
        return None
    cardinal = _as_int(data.get("cardinal"))
    ordinal = _as_int(data.get("ordinal"))
    total = _as_int(data.get("total")) or cardinal + ordinal
    return WalletBalance(cardinal=cardinal, ordinal=ordinal, total=total)


def _balance_from_text(output: str) -> WalletBalance:
    # Older ord printed a bare number; no number at all reads as empty
    match = INTEGER_PATTERN.search(output)
    total = int(match.group("value")) if match else 0
    return WalletBalance(cardinal=total, ordinal=0, total=total)


inscription_parser: ParserChain[InscriptionResult] = ParserChain(
    "inscription result",
    _inscription_from_json,
    _inscription_from_text,
)

balance_parser: ParserChain[WalletBalance] = ParserChain(
    "wallet balance",
    _balance_from_json,
    _balance_from_text,
)


def parse_receive_address(output: str, network: Network) -> str:
    return address_parser(network).parse(output)


def parse_inscription(output: str) -> InscriptionResult:
    return inscription_parser.parse(output)


def parse_balance(output: str) -> WalletBalance:
    return balance_parser.parse(output)


class Attempt(Enum):
    """Position in the one-shot version-mismatch recovery."""

    FIRST = "first"
    RECOVERED = "recovered"

    @property
    def may_recover(self) -> bool:
        return self is Attempt.FIRST
