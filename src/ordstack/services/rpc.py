"""JSON-RPC client for bitcoind, authenticated with the node's cookie file."""

import base64
import itertools
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from ..error_handling import CredentialsNotFoundError, RpcError, truncate

logger = logging.getLogger(__name__)

# bitcoind RPC error codes we react to
RPC_WALLET_NOT_FOUND = -18
RPC_WALLET_ALREADY_LOADED = -35


class BitcoinRpcClient:
    """Talks to bitcoind over ``http://127.0.0.1:<port>/``.

    The cookie is read on every call since bitcoind rewrites it on each
    start.
    """

    def __init__(
        self,
        port: int,
        cookie_file: Path,
        *,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.port = port
        self.cookie_file = cookie_file
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def _auth_header(self) -> str:
        if not self.cookie_file.exists():
            raise CredentialsNotFoundError(self.cookie_file)
        cookie = self.cookie_file.read_text(encoding="utf-8").strip()
        return "Basic " + base64.b64encode(cookie.encode("utf-8")).decode("ascii")

    async def call(self, method: str, params: list[Any] | None = None, wallet: str | None = None) -> Any:
        path = f"/wallet/{wallet}" if wallet else "/"
        payload = {
            "jsonrpc": "1.0",
            "id": f"req-{next(self._ids)}",
            "method": method,
            "params": params or [],
        }
        headers = {"Authorization": self._auth_header()}

        logger.debug("RPC %s %s", method, path)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise RpcError(
                f"bitcoind RPC connection error: {str(e) or type(e).__name__}",
                original_error=e,
            ) from e

        if response.status_code == 401:
            raise RpcError(
                "RPC Error: authentication failed (401)",
                code=401,
                solution="The cookie file may be stale; restart services with 'ordstack start'",
            )

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise RpcError(f"Failed to parse RPC response: {truncate(response.text)}") from e
        if not isinstance(body, dict):
            raise RpcError(f"Failed to parse RPC response: {truncate(response.text)}")

        error = body.get("error")
        if error and not isinstance(error, dict):
            raise RpcError(f"RPC Error: {truncate(str(error))}")
        if error:
            code = error.get("code")
            raise RpcError(f"RPC Error: {error.get('message')} ({code})", code=code)
        return body.get("result")

    async def is_ready(self) -> bool:
        """True once ``getblockchaininfo`` answers without error."""
        try:
            await self.get_blockchain_info()
        except (RpcError, CredentialsNotFoundError) as e:
            logger.debug("bitcoind not ready: %s", e.message)
            return False
        return True

    async def get_blockchain_info(self) -> dict[str, Any]:
        return await self.call("getblockchaininfo")

    async def get_block_count(self) -> int:
        return int(await self.call("getblockcount"))

    async def get_wallet_info(self, wallet: str) -> dict[str, Any]:
        return await self.call("getwalletinfo", wallet=wallet)

    async def create_wallet(self, name: str) -> dict[str, Any]:
        # descriptor wallet with private keys, not blank, no passphrase
        return await self.call("createwallet", [name, False, False, "", False, True])

    async def load_wallet(self, name: str) -> dict[str, Any]:
        return await self.call("loadwallet", [name])

    async def unload_wallet(self, name: str) -> None:
        await self.call("unloadwallet", [name])

    async def list_wallets(self) -> list[str]:
        return list(await self.call("listwallets") or [])

    async def get_new_address(self, wallet: str) -> str:
        return await self.call("getnewaddress", wallet=wallet)

    async def generate_to_address(self, count: int, address: str) -> list[str]:
        return await self.call("generatetoaddress", [count, address])

    async def get_balance(self, wallet: str) -> float:
        return await self.call("getbalance", wallet=wallet)

    async def stop(self) -> None:
        await self.call("stop")

    async def ensure_wallet(self, name: str) -> None:
        """Make sure a node wallet is loaded, creating it if needed."""
        if name in await self.list_wallets():
            return
        try:
            await self.load_wallet(name)
            logger.info("Loaded bitcoind wallet %r", name)
            return
        except RpcError as e:
            if e.code == RPC_WALLET_ALREADY_LOADED:
                return
            if e.code != RPC_WALLET_NOT_FOUND:
                raise
        await self.create_wallet(name)
        logger.info("Created bitcoind wallet %r", name)
