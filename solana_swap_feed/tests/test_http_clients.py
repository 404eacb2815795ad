"""
Tests for the pool metadata HTTP clients

Both clients must absorb non-200 responses and malformed bodies.
"""

import json

import aiohttp
import httpx
import pytest

from solana_swap_feed.constants import WSOL_MINT
from solana_swap_feed.core.dexscreener_client import DexScreenerClient
from solana_swap_feed.core.raydium_client import RaydiumPoolClient
from solana_swap_feed.tests.fakes import OTHER_MINT, POOL_ADDRESS, TOKEN_MINT, dexscreener_pair, make_settings


def dexscreener(handler, **settings) -> DexScreenerClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DexScreenerClient(make_settings(**settings), client)


class FakeResponse:
    def __init__(self, status: int, body):
        self.status = status
        self.body = body

    async def json(self, content_type=None):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params))
        if self.error:
            raise self.error
        return self.response


def raydium_payload(*pools):
    return {"id": "req", "success": True, "data": {"count": len(pools), "data": list(pools)}}


def raydium_pool(pool_id=POOL_ADDRESS, mint_a=TOKEN_MINT, mint_b=WSOL_MINT, decimals_a=5, decimals_b=9):
    return {
        "type": "Standard",
        "programId": "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",
        "id": pool_id,
        "mintA": {"address": mint_a, "decimals": decimals_a},
        "mintB": {"address": mint_b, "decimals": decimals_b},
        "tvl": 12345.6,
    }


class TestDexScreenerClient:

    @pytest.mark.asyncio
    async def test_returns_pairs(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"schemaVersion": "1.0.0", "pairs": [dexscreener_pair()]})

        client = dexscreener(handler)
        pairs = await client.get_token_pairs(TOKEN_MINT)
        await client.close()

        assert seen == [f"/latest/dex/tokens/{TOKEN_MINT}"]
        assert pairs[0]["pairAddress"] == POOL_ADDRESS

    @pytest.mark.asyncio
    async def test_server_error_yields_empty(self):
        client = dexscreener(lambda request: httpx.Response(500, text="oops"))
        assert await client.get_token_pairs(TOKEN_MINT) == []

    @pytest.mark.asyncio
    async def test_malformed_json_yields_empty(self):
        client = dexscreener(lambda request: httpx.Response(200, text="<html>not json"))
        assert await client.get_token_pairs(TOKEN_MINT) == []

    @pytest.mark.asyncio
    async def test_null_pairs_yields_empty(self):
        client = dexscreener(lambda request: httpx.Response(200, json={"pairs": None}))
        assert await client.get_token_pairs(TOKEN_MINT) == []

    @pytest.mark.asyncio
    async def test_retries_after_transport_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200, json={"pairs": [dexscreener_pair()]})

        client = dexscreener(handler, DEXSCREENER_MAX_RETRIES=2)
        pairs = await client.get_token_pairs(TOKEN_MINT)

        assert len(calls) == 2
        assert len(pairs) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_with_http_date_retry_after_still_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
            return httpx.Response(200, json={"pairs": [dexscreener_pair()]})

        client = dexscreener(handler, DEXSCREENER_MAX_RETRIES=2)
        pairs = await client.get_token_pairs(TOKEN_MINT)

        assert len(calls) == 2
        assert pairs[0]["pairAddress"] == POOL_ADDRESS

    def test_retry_after_parsing(self):
        assert DexScreenerClient._retry_after("2", 5.0) == 2.0
        assert DexScreenerClient._retry_after(None, 5.0) == 5.0
        assert DexScreenerClient._retry_after("Wed, 21 Oct 2015 07:28:00 GMT", 5.0) == 5.0


class TestRaydiumPoolClient:

    @pytest.mark.asyncio
    async def test_returns_sol_pools(self):
        session = FakeSession(FakeResponse(200, raydium_payload(
            raydium_pool(),
            raydium_pool(pool_id="UsdcPool", mint_b=OTHER_MINT),
        )))
        client = RaydiumPoolClient(make_settings(), session=session)

        pools = await client.get_sol_pools(TOKEN_MINT)

        assert [p.pool_address for p in pools] == [POOL_ADDRESS]
        assert pools[0].base_decimals == 5
        assert pools[0].quote_decimals == 9
        url, params = session.requests[0]
        assert url.endswith("/pools/info/mint")
        assert params["mint1"] == TOKEN_MINT
        assert params["mint2"] == WSOL_MINT

    @pytest.mark.asyncio
    async def test_non_200_yields_empty(self):
        client = RaydiumPoolClient(make_settings(), session=FakeSession(FakeResponse(503, {})))
        assert await client.get_sol_pools(TOKEN_MINT) == []

    @pytest.mark.asyncio
    async def test_malformed_body_yields_empty(self):
        bad = FakeResponse(200, json.JSONDecodeError("Expecting value", "<html>", 0))
        client = RaydiumPoolClient(make_settings(), session=FakeSession(bad))
        assert await client.get_sol_pools(TOKEN_MINT) == []

    @pytest.mark.asyncio
    async def test_unexpected_shape_yields_empty(self):
        client = RaydiumPoolClient(make_settings(), session=FakeSession(FakeResponse(200, ["not", "a", "dict"])))
        assert await client.get_sol_pools(TOKEN_MINT) == []

    @pytest.mark.asyncio
    async def test_network_error_yields_empty(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))
        client = RaydiumPoolClient(make_settings(), session=session)
        assert await client.get_sol_pools(TOKEN_MINT) == []

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self):
        session = FakeSession(FakeResponse(200, raydium_payload()))
        client = RaydiumPoolClient(make_settings(), session=session)
        await client.close()
        assert client.session is session
