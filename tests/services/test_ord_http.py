"""ord HTTP client and health classification tests."""

import httpx
import pytest

from ordstack.polling import RetryPolicy
from ordstack.services.ord_http import OrdHttpClient, classify_health, parse_block_count


async def no_sleep(seconds):
    return None


def client_for(handler):
    return OrdHttpClient(9001, transport=httpx.MockTransport(handler))


class TestClassifyHealth:
    def test_healthy(self):
        health = classify_health(200, "42\n")

        assert health.healthy
        assert health.blockcount == 42
        assert health.error is None

    def test_zero_is_healthy(self):
        assert classify_health(200, "0").blockcount == 0

    def test_invalid_body(self):
        health = classify_health(200, "loading")

        assert not health.healthy
        assert health.error == "Invalid blockcount response: loading"

    def test_server_error(self):
        health = classify_health(500, "JSON-RPC error")

        assert health.error == "Server error (likely auth failure): JSON-RPC error"

    def test_other_status(self):
        assert classify_health(404, "not found").error == "HTTP 404: not found"


class TestParseBlockCount:
    @pytest.mark.parametrize("body", ["12abc", "-1", "", "1.5", "twelve", "١٥٠", "１２"])
    def test_rejects_non_integers(self, body):
        assert parse_block_count(body) is None

    def test_accepts_whitespace(self):
        assert parse_block_count(" 101\n") == 101


class TestOrdHttpClient:
    @pytest.mark.asyncio
    async def test_check_health_hits_blockcount(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, text="7")

        health = await client_for(handler).check_health()

        assert health.blockcount == 7
        assert paths == ["/blockcount"]

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused")

        health = await client_for(handler).check_health()

        assert not health.healthy
        assert health.error == "Connection error: Connection refused"

    @pytest.mark.asyncio
    async def test_not_ready_on_500(self):
        client = client_for(lambda request: httpx.Response(500, text="auth"))

        assert not await client.is_ready()

    @pytest.mark.asyncio
    async def test_wait_for_sync_reaches_height(self):
        counts = iter(["98", "99", "101"])
        client = client_for(lambda request: httpx.Response(200, text=next(counts)))

        assert await client.wait_for_sync(100, RetryPolicy(0.5, 10), sleep=no_sleep)

    @pytest.mark.asyncio
    async def test_wait_for_sync_times_out(self):
        client = client_for(lambda request: httpx.Response(200, text="5"))

        assert not await client.wait_for_sync(100, RetryPolicy(0.5, 3), sleep=no_sleep)

    @pytest.mark.asyncio
    async def test_get_block_count_raises_when_unhealthy(self):
        client = client_for(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(Exception, match="Could not read ord block count"):
            await client.get_block_count()

    @pytest.mark.asyncio
    async def test_inscription_exists(self):
        inscription_id = "a" * 64 + "i0"

        def handler(request):
            if request.url.path == f"/inscription/{inscription_id}":
                return httpx.Response(200, text="<html></html>")
            return httpx.Response(404)

        client = client_for(handler)

        assert await client.inscription_exists(inscription_id)
        assert not await client.inscription_exists("b" * 64 + "i0")
        assert client.inscription_url(inscription_id) == f"http://127.0.0.1:9001/inscription/{inscription_id}"
