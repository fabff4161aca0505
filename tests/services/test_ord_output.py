"""ord output parsing and stderr classification tests."""

import json

import pytest

from ordstack.config import Network
from ordstack.error_handling import OutputParseError
from ordstack.services.ord_output import (
    Attempt,
    WalletBalance,
    is_already_exists,
    is_version_mismatch,
    parse_balance,
    parse_inscription,
    parse_receive_address,
)

REGTEST_ADDRESS = "bcrt1qs758ursh4q9z627kt3pp5yysm78ddny6txaqgw"
MAINNET_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
INSCRIPTION_ID = "6fb976ab49dcec017f1e201e84395983204ae1a7c2abf7ced0a85d692e442799i0"
REVEAL_TXID = "6fb976ab49dcec017f1e201e84395983204ae1a7c2abf7ced0a85d692e442799"


class TestVersionMismatch:
    @pytest.mark.parametrize(
        "stderr",
        [
            "error: Manual upgrade required. Expected file format version 2, but file is at version 1",
            "Expected file format version 3",
            "error: failed to open index: IO error",
            "error: failed to open wallet database",
        ],
    )
    def test_detected(self, stderr):
        assert is_version_mismatch(stderr)

    @pytest.mark.parametrize(
        "stderr",
        ["", "error: insufficient funds", "connection refused", "Connection refused", "Bitcoin RPC error", "Network timeout"],
    )
    def test_not_detected(self, stderr):
        assert not is_version_mismatch(stderr)

    def test_already_exists(self):
        assert is_already_exists("", "error: wallet `ord` already exists")
        assert is_already_exists("already exists", "")
        assert not is_already_exists("", "")

    def test_attempt_recovers_once(self):
        assert Attempt.FIRST.may_recover
        assert not Attempt.RECOVERED.may_recover


class TestReceiveAddress:
    def test_json_addresses_list(self):
        output = json.dumps({"addresses": [REGTEST_ADDRESS]})

        assert parse_receive_address(output, Network.REGTEST) == REGTEST_ADDRESS

    def test_json_address_objects(self):
        output = json.dumps({"addresses": [{"address": REGTEST_ADDRESS}]})

        assert parse_receive_address(output, Network.REGTEST) == REGTEST_ADDRESS

    def test_json_single_address(self):
        output = json.dumps({"address": REGTEST_ADDRESS})

        assert parse_receive_address(output, Network.REGTEST) == REGTEST_ADDRESS

    def test_plain_text(self):
        assert parse_receive_address(f"address: {REGTEST_ADDRESS}\n", Network.REGTEST) == REGTEST_ADDRESS

    def test_text_must_match_network_prefix(self):
        with pytest.raises(OutputParseError):
            parse_receive_address(f"address: {MAINNET_ADDRESS}", Network.REGTEST)

        assert parse_receive_address(MAINNET_ADDRESS, Network.MAINNET) == MAINNET_ADDRESS


class TestInscription:
    def test_json_inscriptions_list(self):
        output = json.dumps(
            {
                "commit": "c" * 64,
                "inscriptions": [{"id": INSCRIPTION_ID, "location": f"{REVEAL_TXID}:0:0"}],
                "reveal": REVEAL_TXID,
                "total_fees": 322,
            },
        )

        result = parse_inscription(output)

        assert result.inscription_id == INSCRIPTION_ID
        assert result.reveal_txid == REVEAL_TXID
        assert result.total_fees == 322

    def test_json_single_inscription(self):
        output = json.dumps({"inscription": INSCRIPTION_ID, "reveal": REVEAL_TXID})

        result = parse_inscription(output)

        assert result.inscription_id == INSCRIPTION_ID
        assert result.total_fees == 0

    def test_text_output(self):
        result = parse_inscription(f"commit {'c' * 64}\ninscription {INSCRIPTION_ID}\nreveal {REVEAL_TXID}\n")

        assert result.inscription_id == INSCRIPTION_ID
        assert result.reveal_txid == REVEAL_TXID

    def test_json_without_id_falls_back_to_text(self):
        output = json.dumps({"note": f"created {INSCRIPTION_ID}"})

        assert parse_inscription(output).inscription_id == INSCRIPTION_ID

    def test_unparseable(self):
        with pytest.raises(OutputParseError, match="inscription result"):
            parse_inscription("something went sideways")


class TestBalance:
    def test_json(self):
        output = json.dumps({"cardinal": 5000, "ordinal": 10000, "runic": 0, "total": 15000})

        assert parse_balance(output) == WalletBalance(cardinal=5000, ordinal=10000, total=15000)

    def test_json_total_derived(self):
        assert parse_balance(json.dumps({"cardinal": 7, "ordinal": 3})).total == 10

    def test_plain_number(self):
        assert parse_balance("2500000000\n") == WalletBalance(cardinal=2500000000, ordinal=0, total=2500000000)

    def test_no_number_reads_as_zero(self):
        assert parse_balance("no balance information") == WalletBalance()
