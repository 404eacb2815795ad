"""
Raydium v3 pool API client.

Used as the fast first tier of pool discovery: one request keyed by mint,
already sorted by liquidity on the server side.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from solana_swap_feed.config import Settings
from solana_swap_feed.constants import DEFAULT_TOKEN_DECIMALS, SOL_DECIMALS, WSOL_MINT

logger = logging.getLogger(__name__)


@dataclass
class RaydiumPool:
    pool_address: str
    program_id: str
    base_mint: str
    quote_mint: str
    base_decimals: int
    quote_decimals: int
    liquidity_usd: float = 0.0

    def pairs_with(self, mint: str) -> bool:
        return mint in (self.base_mint, self.quote_mint)


class RaydiumPoolClient:
    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.base_url = settings.RAYDIUM_API_BASE.rstrip("/")
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self.session

    async def close(self) -> None:
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    async def get_sol_pools(self, token_mint: str) -> List[RaydiumPool]:
        """
        SOL-paired pools for a mint, highest liquidity first.

        Non-200 responses, malformed bodies and network errors all yield
        an empty list.
        """
        url = f"{self.base_url}/pools/info/mint"
        params = {
            "mint1": token_mint,
            "mint2": WSOL_MINT,
            "poolType": "all",
            "poolSortField": "liquidity",
            "sortType": "desc",
            "pageSize": "100",
            "page": "1",
        }
        session = await self._get_session()
        try:
            timeout = aiohttp.ClientTimeout(total=self.settings.API_TIMEOUT_SEC)
            async with session.get(url, params=params, timeout=timeout) as resp:
                if resp.status != 200:
                    logger.debug(f"Raydium API returned {resp.status} for {token_mint[:8]}")
                    return []
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug(f"Raydium API request failed for {token_mint[:8]}: {e}")
            return []

        pools = []
        for raw in self._extract_pool_list(data):
            pool = self._parse_pool(raw)
            if pool and pool.pairs_with(token_mint) and pool.pairs_with(WSOL_MINT):
                pools.append(pool)
        return pools

    @staticmethod
    def _extract_pool_list(data: Any) -> List[Dict[str, Any]]:
        # v3 wraps the page: {"success": true, "data": {"count": n, "data": [...]}}
        if not isinstance(data, dict):
            return []
        inner = data.get("data")
        if isinstance(inner, dict):
            inner = inner.get("data")
        if not isinstance(inner, list):
            return []
        return [item for item in inner if isinstance(item, dict)]

    @staticmethod
    def _parse_pool(raw: Dict[str, Any]) -> Optional[RaydiumPool]:
        pool_id = raw.get("id")
        mint_a = raw.get("mintA") or {}
        mint_b = raw.get("mintB") or {}
        if not pool_id or not isinstance(mint_a, dict) or not isinstance(mint_b, dict):
            return None
        base_mint = mint_a.get("address")
        quote_mint = mint_b.get("address")
        if not base_mint or not quote_mint:
            return None

        def decimals(info: Dict[str, Any], mint: str) -> int:
            value = info.get("decimals")
            if isinstance(value, int):
                return value
            return SOL_DECIMALS if mint == WSOL_MINT else DEFAULT_TOKEN_DECIMALS

        try:
            tvl = float(raw.get("tvl") or 0)
        except (TypeError, ValueError):
            tvl = 0.0

        return RaydiumPool(
            pool_address=pool_id,
            program_id=raw.get("programId", ""),
            base_mint=base_mint,
            quote_mint=quote_mint,
            base_decimals=decimals(mint_a, base_mint),
            quote_decimals=decimals(mint_b, quote_mint),
            liquidity_usd=tvl,
        )
