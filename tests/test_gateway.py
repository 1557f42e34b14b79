"""
Tests for the JSON-RPC gateway against a local aiohttp server.
"""
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.exceptions import ConnectivityError, GatewayError, RpcResponseError
from core.gateway import LedgerGateway
from core.locator import HistoricalLocator
from core.poller import IncrementalPoller
from core.scanner import EventScanner

HTML_ERROR_PAGE = "<html>502 Bad Gateway</html>"


def rpc_result(result) -> str:
    return json.dumps({"jsonrpc": "2.0", "id": 1, "result": result})


class RpcEndpoint:
    """Replies per JSON-RPC method with a fixed (status, body)."""

    def __init__(self):
        self.replies = {}
        self.methods = []
        self.url = None

    def reply(self, method: str, body: str, status: int = 200):
        self.replies[method] = (status, body)

    async def handle(self, request: web.Request) -> web.Response:
        payload = await request.json()
        self.methods.append(payload["method"])
        status, body = self.replies.get(payload["method"], (200, rpc_result(None)))
        return web.Response(status=status, text=body, content_type="application/json")


@pytest.fixture
async def endpoint():
    rpc = RpcEndpoint()
    app = web.Application()
    app.router.add_post("/", rpc.handle)

    server = TestServer(app)
    await server.start_server()
    rpc.url = str(server.make_url("/"))

    yield rpc

    await server.close()


@pytest.fixture
async def ledger(endpoint):
    gateway = LedgerGateway(endpoint.url, timeout=5)
    yield gateway
    await gateway.close()


class TestResults:

    @pytest.mark.asyncio
    async def test_current_height(self, endpoint, ledger):
        endpoint.reply("eth_blockNumber", rpc_result("0x3e8"))

        assert await ledger.current_height() == 1000
        assert endpoint.methods == ["eth_blockNumber"]

    @pytest.mark.asyncio
    async def test_missing_block_is_none(self, endpoint, ledger):
        endpoint.reply("eth_getBlockByNumber", rpc_result(None))

        assert await ledger.block_by_height(10 ** 9) is None

    @pytest.mark.asyncio
    async def test_null_logs_are_empty(self, endpoint, ledger):
        endpoint.reply("eth_getLogs", rpc_result(None))

        assert await ledger.logs_in_range("0x" + "a" * 40, "0x" + "d" * 64, 1, 2) == []


class TestErrors:

    @pytest.mark.asyncio
    async def test_http_error_status(self, endpoint, ledger):
        endpoint.reply("eth_blockNumber", "internal error", status=500)

        with pytest.raises(ConnectivityError, match="HTTP 500"):
            await ledger.current_height()

    @pytest.mark.asyncio
    async def test_error_object(self, endpoint, ledger):
        endpoint.reply("eth_getLogs", json.dumps({
            "jsonrpc": "2.0",
            "id": 1,
            "error": {"code": -32005, "message": "query returned more than 10000 results"}
        }))

        with pytest.raises(RpcResponseError) as exc_info:
            await ledger.logs_in_range("0x" + "a" * 40, "0x" + "d" * 64, 1, 2)

        assert exc_info.value.code == -32005
        assert exc_info.value.method == "eth_getLogs"

    @pytest.mark.asyncio
    async def test_error_string(self, endpoint, ledger):
        endpoint.reply("eth_blockNumber", json.dumps({"jsonrpc": "2.0", "id": 1, "error": "rate limited"}))

        with pytest.raises(RpcResponseError, match="rate limited") as exc_info:
            await ledger.current_height()

        assert exc_info.value.code is None

    @pytest.mark.asyncio
    async def test_html_body(self, endpoint, ledger):
        endpoint.reply("eth_blockNumber", HTML_ERROR_PAGE)

        with pytest.raises(ConnectivityError, match="not JSON"):
            await ledger.current_height()

    @pytest.mark.asyncio
    async def test_non_object_body(self, endpoint, ledger):
        endpoint.reply("eth_blockNumber", "[1, 2, 3]")

        with pytest.raises(ConnectivityError):
            await ledger.current_height()

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self):
        gateway = LedgerGateway("http://127.0.0.1:1", timeout=5)
        try:
            with pytest.raises(GatewayError):
                await gateway.current_height()
        finally:
            await gateway.close()


class TestCallers:

    @pytest.mark.asyncio
    async def test_poller_gives_up_on_html_logs(self, endpoint, ledger, transfer_filter):
        endpoint.reply("eth_blockNumber", rpc_result("0x3e8"))
        endpoint.reply("eth_getLogs", HTML_ERROR_PAGE)
        poller = IncrementalPoller(ledger, EventScanner(ledger, transfer_filter), max_window_retries=1)

        assert await poller.poll_once() == []
        assert poller.cursor.last_scanned_height == 1000

    @pytest.mark.asyncio
    async def test_html_probe_counts_as_failed(self, endpoint, ledger):
        endpoint.reply("eth_getBlockByNumber", HTML_ERROR_PAGE)

        assert await HistoricalLocator(ledger)._block_timestamp(500) is None
