"""bitcoind lifecycle tests using a stand-in executable."""

import asyncio

import pytest

from ordstack.config import Network, OrdstackConfig
from ordstack.error_handling import PortBusyError, ServiceStartError, ServiceTimeoutError
from ordstack.services.bitcoind import BitcoindService

LONG_RUNNING = """
import pathlib, sys, time
datadir = next(a.split("=", 1)[1] for a in sys.argv[1:] if a.startswith("-datadir="))
log = pathlib.Path(datadir) / "spawns.log"
with open(log, "a") as f:
    f.write(" ".join(sys.argv[1:]) + "\\n")
time.sleep(30)
"""


class FakeRpc:
    """RPC stand-in whose readiness flips after a number of probes.

    With a ``marker`` path it also stays unready until the child has
    written that file, so the node "answers" only once it really started.
    """

    def __init__(self, ready_after=None, marker=None):
        self.ready_after = ready_after
        self.marker = marker
        self.probes = 0

    async def is_ready(self):
        self.probes += 1
        if self.marker is not None and not (self.marker.exists() and self.marker.read_text().endswith("\n")):
            return False
        return self.ready_after is not None and self.probes > self.ready_after


def spawn_log(config):
    return config.bitcoin_data_dir / "spawns.log"


def spawn_count(config):
    log = spawn_log(config)
    return len(log.read_text().splitlines()) if log.exists() else 0


@pytest.fixture
def bitcoind_config(config, write_script):
    script = write_script("bitcoind", LONG_RUNNING)
    return config.model_copy(update={"bitcoind_binary": str(script)})


class TestBuildArgs:
    def test_regtest_args(self, config):
        service = BitcoindService(config, FakeRpc())

        args = service.build_args()

        assert args == [
            "bitcoind",
            "-regtest",
            "-server",
            "-rpcport=18443",
            f"-datadir={config.bitcoin_data_dir}",
            "-fallbackfee=0.00001",
            "-txindex=1",
            "-rpcallowip=127.0.0.1",
            "-rpcbind=127.0.0.1",
        ]

    def test_mainnet_args(self, tmp_path):
        config = OrdstackConfig(network=Network.MAINNET, bitcoin_data_dir=tmp_path)

        args = BitcoindService(config, FakeRpc()).build_args()

        assert args[1] == "-server"
        assert "-rpcport=8332" in args
        assert "-rpcbind=127.0.0.1" not in args


class TestStart:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, bitcoind_config):
        service = BitcoindService(
            bitcoind_config,
            FakeRpc(ready_after=2, marker=spawn_log(bitcoind_config)),
            port_probe=lambda port: False,
        )

        await service.start()

        assert service.owns_process
        assert spawn_count(bitcoind_config) == 1

        await service.stop()

        assert not service.is_running
        assert service.process is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, bitcoind_config):
        service = BitcoindService(
            bitcoind_config,
            FakeRpc(ready_after=0, marker=spawn_log(bitcoind_config)),
            port_probe=lambda port: False,
        )

        await service.start()
        pid = service.process.pid
        await service.start()

        assert service.process.pid == pid
        assert spawn_count(bitcoind_config) == 1
        await service.stop()

    @pytest.mark.asyncio
    async def test_concurrent_starts_spawn_once(self, bitcoind_config):
        service = BitcoindService(
            bitcoind_config,
            FakeRpc(ready_after=3, marker=spawn_log(bitcoind_config)),
            port_probe=lambda port: False,
        )

        await asyncio.gather(service.start(), service.start())

        assert spawn_count(bitcoind_config) == 1
        await service.stop()

    @pytest.mark.asyncio
    async def test_adopts_running_node(self, bitcoind_config):
        service = BitcoindService(bitcoind_config, FakeRpc(ready_after=0), port_probe=lambda port: True)

        await service.start()

        assert service.adopted
        assert service.is_running
        assert not service.owns_process
        assert spawn_count(bitcoind_config) == 0

        await service.stop()
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_port_busy_not_ours(self, bitcoind_config):
        service = BitcoindService(bitcoind_config, FakeRpc(), port_probe=lambda port: True)

        with pytest.raises(PortBusyError, match="Port 18443 is in use"):
            await service.start()

        assert spawn_count(bitcoind_config) == 0

    @pytest.mark.asyncio
    async def test_crash_during_startup(self, config, write_script):
        script = write_script(
            "bitcoind",
            """
            import sys
            print("Error: Cannot obtain a lock on data directory", file=sys.stderr)
            sys.exit(1)
            """,
        )
        config = config.model_copy(update={"bitcoind_binary": str(script)})
        service = BitcoindService(config, FakeRpc(), port_probe=lambda port: False)

        with pytest.raises(ServiceStartError) as exc_info:
            await service.start()

        assert exc_info.value.message.startswith("bitcoind failed to start")
        assert "Cannot obtain a lock" in exc_info.value.message
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_timeout_leaves_process_running(self, bitcoind_config):
        config = bitcoind_config.model_copy(update={"bitcoind_ready_attempts": 3})
        service = BitcoindService(config, FakeRpc(), port_probe=lambda port: False)

        with pytest.raises(ServiceTimeoutError, match="failed to become ready in time"):
            await service.start()

        assert service.owns_process
        await service.stop()
        assert not service.is_running
