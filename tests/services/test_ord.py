"""ord server lifecycle and database recovery tests."""

from unittest.mock import Mock

import pytest

from ordstack.error_handling import CredentialsNotFoundError, ServiceStartError, ServiceTimeoutError
from ordstack.services.notices import NoticeService
from ordstack.services.ord import OrdService
from ordstack.services.ord_http import OrdHealth
from ordstack.services.process import NoopPortReclaimer
from ordstack.storage.ord_data import OrdDataLayout

# Shared prologue: record each spawn and locate the data directory
PROLOGUE = """
import pathlib, sys, time
data_dir = pathlib.Path(next(a.split("=", 1)[1] for a in sys.argv[1:] if a.startswith("--data-dir=")))
data_dir.mkdir(parents=True, exist_ok=True)
with open(data_dir / "spawns.log", "a") as f:
    f.write(" ".join(sys.argv[1:]) + "\\n")
"""

ALWAYS_OUTDATED = PROLOGUE + """
print("error: Manual upgrade required. Expected file format version 2, but file is at version 1", file=sys.stderr)
sys.exit(1)
"""

OUTDATED_WHILE_INDEX_EXISTS = PROLOGUE + """
if (data_dir / "regtest" / "index.redb").exists():
    print("error: failed to open index: Manual upgrade required", file=sys.stderr)
    sys.exit(1)
(data_dir / "serving").touch()
time.sleep(30)
"""

CRASHES = PROLOGUE + """
print("error: boom", file=sys.stderr)
sys.exit(1)
"""

SERVES = PROLOGUE + """
(data_dir / "serving").touch()
time.sleep(30)
"""

HANGS = PROLOGUE + """
time.sleep(30)
"""


class FakeOrdHttp:
    """Ready once the stand-in ord has written its ``serving`` marker."""

    def __init__(self, marker, already_serving=False):
        self.marker = marker
        self.already_serving = already_serving

    async def is_ready(self):
        return self.already_serving or self.marker.exists()

    async def check_health(self):
        if await self.is_ready():
            return OrdHealth(healthy=True, blockcount=0)
        return OrdHealth(healthy=False, error="Connection error: refused")


def spawn_count(config):
    log = config.ord_data_dir / "spawns.log"
    return len(log.read_text().splitlines()) if log.exists() else 0


@pytest.fixture
def notices():
    return Mock(spec=NoticeService)


@pytest.fixture
def make_service(config, cookie, write_script, notices):
    def _make(body, *, already_serving=False, **overrides):
        script = write_script("ord", body)
        service_config = config.model_copy(update={"ord_binary": str(script), **overrides})
        http = FakeOrdHttp(service_config.ord_data_dir / "serving", already_serving=already_serving)
        layout = OrdDataLayout(service_config.ord_data_dir, service_config.network)
        service = OrdService(service_config, http, layout, notices, reclaimer=NoopPortReclaimer())
        return service, service_config

    return _make


def create_index(config):
    index = config.ord_network_dir / "index.redb"
    index.parent.mkdir(parents=True, exist_ok=True)
    index.touch()
    return index


class TestBuildArgs:
    def test_server_args(self, config):
        service = OrdService(config, FakeOrdHttp(config.ord_data_dir / "x"), Mock(), Mock())

        assert service.build_args() == [
            "ord",
            "--regtest",
            f"--cookie-file={config.cookie_file}",
            f"--data-dir={config.ord_data_dir}",
            "server",
            "--http-port=9001",
        ]


class TestStart:
    @pytest.mark.asyncio
    async def test_requires_cookie(self, config, notices):
        service = OrdService(config, FakeOrdHttp(config.ord_data_dir / "x"), Mock(), notices)

        with pytest.raises(CredentialsNotFoundError, match="Is bitcoind running"):
            await service.start()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_service):
        service, config = make_service(SERVES)

        await service.start()

        assert service.owns_process
        assert spawn_count(config) == 1

        await service.stop()
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_adopts_serving_ord(self, make_service):
        service, config = make_service(SERVES, already_serving=True)

        await service.start()

        assert service.adopted
        assert spawn_count(config) == 0

    @pytest.mark.asyncio
    async def test_crash_reports_stderr(self, make_service, notices):
        service, config = make_service(CRASHES)

        with pytest.raises(ServiceStartError) as exc_info:
            await service.start()

        assert exc_info.value.message == "ord server failed to start: error: boom"
        assert spawn_count(config) == 1
        notices.database_rebuilding.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_leaves_process_running(self, make_service):
        service, _ = make_service(HANGS, ord_ready_attempts=3)

        with pytest.raises(ServiceTimeoutError):
            await service.start()

        assert service.owns_process
        await service.stop()
        assert not service.is_running


class TestVersionMismatchRecovery:
    @pytest.mark.asyncio
    async def test_recovers_after_wiping_index(self, make_service, notices):
        service, config = make_service(OUTDATED_WHILE_INDEX_EXISTS)
        index = create_index(config)
        wallet = config.ord_network_dir / "wallets" / "ord" / "wallet.redb"
        wallet.parent.mkdir(parents=True)
        wallet.touch()

        await service.start()

        assert service.owns_process
        assert spawn_count(config) == 2
        assert not index.exists()
        assert not wallet.exists()
        notices.database_rebuilding.assert_called_once()
        await service.stop()

    @pytest.mark.asyncio
    async def test_recovery_attempted_only_once(self, make_service, notices):
        service, config = make_service(ALWAYS_OUTDATED)
        create_index(config)

        with pytest.raises(ServiceStartError, match="Manual upgrade required"):
            await service.start()

        assert spawn_count(config) == 2
        notices.database_rebuilding.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_recovery_when_disabled(self, make_service, notices):
        service, config = make_service(ALWAYS_OUTDATED)
        index = create_index(config)

        with pytest.raises(ServiceStartError):
            await service.start(allow_recovery=False)

        assert spawn_count(config) == 1
        assert index.exists()
        notices.database_rebuilding.assert_not_called()
