"""
JSON-RPC network client — a read-only ChainReader over HTTP.

Uses httpx for async HTTP. Talks plain Ethereum JSON-RPC (eth_chainId,
eth_blockNumber, eth_getBalance, eth_getCode, eth_getTransactionReceipt,
eth_call) so any public endpoint works; Sepolia is the default network.

`call` is a passthrough: the method must be a 4-byte selector and each
argument an int or a hex word, since call data is not ABI-encoded here.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import httpx

from multisig_forge.config import settings
from multisig_forge.deployment.collaborators import TransactionReceipt
from multisig_forge.errors import DeploymentTimeoutError, RpcError

logger = logging.getLogger(__name__)


def _encode_word(arg: Any) -> str:
    if isinstance(arg, bool):
        return f"{int(arg):064x}"
    if isinstance(arg, int):
        if arg < 0:
            raise ValueError(f"Negative integers cannot be encoded: {arg}")
        return f"{arg:064x}"
    if isinstance(arg, str):
        body = arg.lower().removeprefix("0x")
        if len(body) > 64 or any(c not in "0123456789abcdef" for c in body):
            raise ValueError(f"Not a hex word: {arg!r}")
        return body.rjust(64, "0")
    raise ValueError(f"Unsupported call argument type: {type(arg).__name__}")


def encode_call_data(selector: str, *args: Any) -> str:
    """'0x70a08231' + one 32-byte word per argument."""
    body = selector.lower().removeprefix("0x")
    if len(body) != 8:
        raise ValueError(f"Selector must be 4 bytes, got {selector!r}")
    return "0x" + body + "".join(_encode_word(a) for a in args)


class JsonRpcClient:
    """
    Async Ethereum JSON-RPC client.

    Args:
        url: Endpoint URL. Defaults to settings.rpc_url.
        timeout: Per-request timeout in seconds.
        poll_interval: Delay between receipt polls in wait_for_confirmation.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url or settings.rpc_url
        self.timeout = timeout if timeout is not None else settings.rpc_timeout_seconds
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self._transport = transport
        self._ids = itertools.count(1)
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> JsonRpcClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Send one JSON-RPC request and return its `result`.

        Raises:
            RpcError: If the response carries an `error` object.
            httpx.HTTPStatusError: On a non-2xx HTTP status.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        client = await self._ensure_client()
        resp = await client.post(self.url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if data.get("error"):
            error = data["error"]
            raise RpcError(method, int(error.get("code", 0)), error.get("message", ""), error.get("data"))
        return data.get("result")

    # ── Network ──────────────────────────────────────────────

    async def get_chain_id(self) -> int:
        return int(await self.request("eth_chainId"), 16)

    async def get_block_number(self) -> int:
        return int(await self.request("eth_blockNumber"), 16)

    async def check_network(self) -> bool:
        """True if the endpoint serves the configured chain."""
        chain_id = await self.get_chain_id()
        if chain_id != settings.chain_id:
            logger.warning("RPC %s serves chain %d, expected %d", self.url, chain_id, settings.chain_id)
            return False
        return True

    # ── ChainReader ──────────────────────────────────────────

    async def get_balance(self, address: str) -> int:
        return int(await self.request("eth_getBalance", [address, "latest"]), 16)

    async def get_code(self, address: str) -> str:
        return await self.request("eth_getCode", [address, "latest"]) or "0x"

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        data = await self.request("eth_getTransactionReceipt", [tx_hash])
        if not data:
            return None
        block = data.get("blockNumber")
        return TransactionReceipt(
            tx_hash=data.get("transactionHash", tx_hash),
            status=data.get("status") == "0x1",
            contract_address=(data.get("contractAddress") or None),
            block_number=int(block, 16) if block else None,
            logs=tuple(data.get("logs") or ()),
        )

    async def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        """Poll for a receipt until `timeout` seconds have passed."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise DeploymentTimeoutError(tx_hash, timeout)
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def call(self, address: str, method: str, *args: Any) -> str:
        """eth_call with raw call data; returns the raw hex result."""
        data = encode_call_data(method, *args)
        return await self.request("eth_call", [{"to": address, "data": data}, "latest"])
