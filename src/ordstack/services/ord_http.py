"""Client for the ord server's HTTP surface."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from ..error_handling import ErrorCategory, OrdstackError, truncate
from ..polling import RetryPolicy, WaitOutcome, wait_until

logger = logging.getLogger(__name__)

BLOCKCOUNT_PATTERN = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class OrdHealth:
    healthy: bool
    blockcount: int | None = None
    error: str | None = None


def parse_block_count(body: str) -> int | None:
    """Strictly parse a ``/blockcount`` body; anything but a bare integer is None."""
    text = body.strip()
    if not BLOCKCOUNT_PATTERN.fullmatch(text):
        return None
    return int(text)


def classify_health(status: int, body: str) -> OrdHealth:
    """Map a ``/blockcount`` response to a health verdict.

    ord answers 500 when it cannot reach bitcoind, usually a cookie or
    auth problem.
    """
    if status == 200:
        count = parse_block_count(body)
        if count is not None:
            return OrdHealth(healthy=True, blockcount=count)
        return OrdHealth(healthy=False, error=f"Invalid blockcount response: {body}")
    if status == 500:
        return OrdHealth(healthy=False, error=f"Server error (likely auth failure): {body}")
    return OrdHealth(healthy=False, error=f"HTTP {status}: {body}")


class OrdHttpClient:
    def __init__(
        self,
        port: int,
        *,
        timeout: float = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.port = port
        self.timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def inscription_url(self, inscription_id: str) -> str:
        return f"{self.base_url}/inscription/{inscription_id}"

    async def _get(self, path: str) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            return await client.get(path)

    async def check_health(self) -> OrdHealth:
        try:
            response = await self._get("/blockcount")
        except httpx.TimeoutException:
            return OrdHealth(healthy=False, error="Request timeout")
        except httpx.HTTPError as e:
            return OrdHealth(healthy=False, error=f"Connection error: {str(e) or type(e).__name__}")
        return classify_health(response.status_code, response.text)

    async def is_ready(self) -> bool:
        """Ready only when ``/blockcount`` serves a non-negative integer."""
        health = await self.check_health()
        if not health.healthy:
            logger.debug("ord not ready: %s", health.error)
        return health.healthy

    async def get_block_count(self) -> int:
        health = await self.check_health()
        if not health.healthy:
            raise OrdstackError(
                f"Could not read ord block count: {truncate(health.error)}",
                ErrorCategory.NETWORK,
            )
        return health.blockcount

    async def wait_for_sync(
        self,
        height: int,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> bool:
        """Poll until ord has indexed at least ``height`` blocks."""

        async def caught_up() -> bool:
            health = await self.check_health()
            if health.healthy and health.blockcount >= height:
                return True
            if health.healthy:
                logger.info("Waiting for ord to sync... (%s/%s blocks)", health.blockcount, height)
            return False

        outcome = await wait_until(policy, caught_up, sleep=sleep)
        return outcome is WaitOutcome.READY

    async def inscription_exists(self, inscription_id: str) -> bool:
        try:
            response = await self._get(f"/inscription/{inscription_id}")
        except httpx.HTTPError as e:
            logger.warning("Could not verify inscription %s: %s", inscription_id, e)
            return False
        return response.status_code == 200
