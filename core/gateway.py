"""
Ethereum JSON-RPC gateway.
Thin async wrapper over the node primitives the scanner and locator need.
"""
import asyncio
import itertools
import logging
from typing import List, Optional, Sequence

import aiohttp

from core.exceptions import ConnectivityError, RpcResponseError

logger = logging.getLogger(__name__)


def to_hex(value: int) -> str:
    """Encode an integer as a JSON-RPC quantity."""
    return hex(value)


def parse_quantity(value) -> Optional[int]:
    """Decode a JSON-RPC quantity ("0x1a", 26 or None)."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise ValueError(f"Unsupported quantity: {value!r}")


class LedgerGateway:
    """
    Async Ethereum JSON-RPC client.

    Every call may fail: transport problems raise ConnectivityError and
    node-side errors raise RpcResponseError.
    """

    def __init__(self, rpc_url: str, timeout: int = 30):
        """Initialize the gateway for an RPC endpoint."""
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _call(self, method: str, params: list):
        """Send one JSON-RPC request and return its result field."""
        await self._ensure_session()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params
        }

        try:
            async with self._session.post(self.rpc_url, json=payload) as resp:
                if resp.status != 200:
                    raise ConnectivityError(f"{method}: HTTP {resp.status}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ConnectivityError(f"{method}: {e!r}") from e
        except ValueError as e:
            # Proxies answer 200 with an HTML error page
            raise ConnectivityError(f"{method}: response is not JSON ({e})") from e

        if not isinstance(data, dict):
            raise ConnectivityError(f"{method}: unexpected response {data!r}")

        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcResponseError(method, error.get("code"), error.get("message", ""))
            raise RpcResponseError(method, None, str(error))

        return data.get("result")

    async def current_height(self) -> int:
        """Latest block number."""
        return parse_quantity(await self._call("eth_blockNumber", []))

    async def block_by_height(self, height: int) -> Optional[dict]:
        """Block header (without transactions) or None if it does not exist."""
        return await self._call("eth_getBlockByNumber", [to_hex(height), False])

    async def logs_in_range(
        self,
        contract_address: str,
        event_signature: str,
        from_height: int,
        to_height: int,
        topic_filters: Optional[Sequence[Optional[str]]] = None
    ) -> List[dict]:
        """Logs emitted by a contract over an inclusive block range."""
        topics = list(topic_filters) if topic_filters else [event_signature]
        logger.debug(f"eth_getLogs {contract_address[:10]}... blocks {from_height}-{to_height}")

        result = await self._call("eth_getLogs", [{
            "fromBlock": to_hex(from_height),
            "toBlock": to_hex(to_height),
            "address": contract_address,
            "topics": topics
        }])
        return result or []

    async def transaction_by_hash(self, tx_id: str) -> Optional[dict]:
        """Transaction object or None."""
        return await self._call("eth_getTransactionByHash", [tx_id])

    async def receipt_by_hash(self, tx_id: str) -> Optional[dict]:
        """Transaction receipt or None."""
        return await self._call("eth_getTransactionReceipt", [tx_id])
