"""Tests for release update checks."""

import time

import httpx
import pytest

from ordstack.storage.state import StateStore
from ordstack.storage.versions import VersionManifest
from ordstack.updates import LAST_UPDATE_CHECK_KEY, RELEASE_URLS, UpdateChecker, normalize_version


def release_transport(tags, failing=()):
    """Answer GitHub release lookups with the given tag per component."""
    urls = {url: component for component, url in RELEASE_URLS.items()}

    def handler(request):
        component = urls[str(request.url)]
        if component in failing:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"tag_name": tags[component]})

    return httpx.MockTransport(handler)


@pytest.fixture
def store(config):
    return StateStore(config.state_dir / "state.json")


@pytest.fixture
def manifest(config):
    return VersionManifest(config.state_dir)


class TestNormalizeVersion:
    @pytest.mark.parametrize(
        "left,right",
        [
            ("v27.0", "27.0.0"),
            ("Bitcoin Core version v27.1.0", "27.1"),
            ("ord 0.20.1", "0.20.1"),
        ],
    )
    def test_equivalent_spellings(self, left, right):
        assert normalize_version(left) == normalize_version(right)

    def test_unparseable(self):
        assert normalize_version(None) is None
        assert normalize_version("nightly") is None

    def test_orders_numerically(self):
        assert normalize_version("0.21.0") > normalize_version("0.9.3")


class TestIsDue:
    def test_due_without_previous_check(self, config, store, manifest):
        assert UpdateChecker(config, store, manifest).is_due()

    def test_not_due_within_interval(self, config, store, manifest):
        now = time.time()
        store.set(LAST_UPDATE_CHECK_KEY, now - 3600)

        assert not UpdateChecker(config, store, manifest).is_due(now)

    def test_due_after_interval(self, config, store, manifest):
        now = time.time()
        store.set(LAST_UPDATE_CHECK_KEY, now - 25 * 3600)

        assert UpdateChecker(config, store, manifest).is_due(now)

    def test_disabled(self, config, store, manifest):
        cfg = config.model_copy(update={"auto_update_check": False})

        assert not UpdateChecker(cfg, store, manifest).is_due()


class TestCheck:
    @pytest.mark.asyncio
    async def test_reports_outdated_components(self, config, store, manifest):
        manifest.record("bitcoind", "v27.0.0")
        manifest.record("ord", "0.20.0")
        transport = release_transport({"bitcoind": "v27.0", "ord": "0.21.0"})

        updates = await UpdateChecker(config, store, manifest, transport=transport).check()

        assert [(u.component, u.installed, u.latest) for u in updates] == [("ord", "0.20.0", "0.21.0")]
        assert isinstance(store.get(LAST_UPDATE_CHECK_KEY), float)

    @pytest.mark.asyncio
    async def test_unknown_install_is_reported(self, config, store, manifest):
        transport = release_transport({"bitcoind": "v28.0", "ord": "0.21.0"})

        updates = await UpdateChecker(config, store, manifest, transport=transport).check()

        assert {u.component for u in updates} == {"bitcoind", "ord"}
        assert all(u.installed is None for u in updates)

    @pytest.mark.asyncio
    async def test_failed_lookup_skips_component(self, config, store, manifest):
        transport = release_transport({"bitcoind": "v28.0"}, failing={"ord"})

        updates = await UpdateChecker(config, store, manifest, transport=transport).check()

        assert [u.component for u in updates] == ["bitcoind"]


class TestDetectInstalled:
    @pytest.mark.asyncio
    async def test_records_versions(self, config, store, manifest, write_script):
        bitcoind = write_script("bitcoind", 'print("Bitcoin Core version v27.0.0")\n')
        ord_binary = write_script("ord", 'print("ord 0.20.1")\n')
        cfg = config.model_copy(update={"bitcoind_binary": str(bitcoind), "ord_binary": str(ord_binary)})

        found = await UpdateChecker(cfg, store, manifest).detect_installed()

        assert found == {"bitcoind": "v27.0.0", "ord": "0.20.1"}
        assert manifest.load() == found

    @pytest.mark.asyncio
    async def test_missing_binary_is_skipped(self, config, store, manifest):
        cfg = config.model_copy(update={"bitcoind_binary": "/nonexistent/bitcoind", "ord_binary": "/nonexistent/ord"})

        assert await UpdateChecker(cfg, store, manifest).detect_installed() == {}
        assert manifest.load() == {}
