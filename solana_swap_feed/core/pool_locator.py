"""
Pool discovery for a token mint.

Tiers, first success wins:
- fast_api: Raydium pool API, SOL-paired pools only
- aggregator_api: DexScreener pairs, validated and ranked by liquidity
- on_chain: getProgramAccounts over Raydium AMM v4 pool state

Successful resolutions are cached per mint for POOL_CACHE_TTL_SEC.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from solana.rpc.types import MemcmpOpts
from solders.pubkey import Pubkey

from solana_swap_feed.config import Settings
from solana_swap_feed.constants import (
    DEFAULT_TOKEN_DECIMALS,
    DEXSCREENER_DEX_PROGRAMS,
    RAYDIUM_POOL_BASE_DECIMALS_OFFSET,
    RAYDIUM_POOL_BASE_MINT_OFFSET,
    RAYDIUM_POOL_QUOTE_DECIMALS_OFFSET,
    RAYDIUM_POOL_QUOTE_MINT_OFFSET,
    RAYDIUM_POOL_STATE_SIZE,
    RAYDIUM_V4_PROGRAM,
    SOL_DECIMALS,
    SUPPORTED_DEX_PROGRAMS,
    WSOL_MINT,
)
from solana_swap_feed.core.dexscreener_client import DexScreenerClient
from solana_swap_feed.core.models import PoolRecord
from solana_swap_feed.core.raydium_client import RaydiumPoolClient
from solana_swap_feed.core.rpc_client import SolanaRpcGateway
from solana_swap_feed.exceptions import PoolNotFoundError

logger = logging.getLogger(__name__)

TIER_FAST_API = "fast_api"
TIER_AGGREGATOR_API = "aggregator_api"
TIER_ON_CHAIN = "on_chain"


@dataclass
class CacheEntry:
    """Single cache entry with TTL"""
    value: PoolRecord
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


def _as_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def dex_program_for_pair(pair: Dict[str, Any]) -> Optional[str]:
    """Map a DexScreener pair to the program id of its DEX, if supported."""
    dex_id = str(pair.get("dexId") or "").lower()
    labels = pair.get("labels") or []
    for label in labels:
        program = DEXSCREENER_DEX_PROGRAMS.get((dex_id, str(label)))
        if program:
            return program
    return DEXSCREENER_DEX_PROGRAMS.get((dex_id, None))


class PoolLocator:
    def __init__(
        self,
        settings: Settings,
        raydium: RaydiumPoolClient,
        dexscreener: DexScreenerClient,
        rpc: SolanaRpcGateway,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.raydium = raydium
        self.dexscreener = dexscreener
        self.rpc = rpc
        self.clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self.tiers = (
            (TIER_FAST_API, self._resolve_fast_api),
            (TIER_AGGREGATOR_API, self._resolve_aggregator_api),
            (TIER_ON_CHAIN, self._resolve_on_chain),
        )

    async def resolve(self, token_mint: str) -> PoolRecord:
        cached = self.get_cached(token_mint)
        if cached:
            logger.debug(f"💾 Using cached pool for {token_mint[:8]}...")
            return cached

        logger.info(f"🔍 Searching pool for {token_mint[:8]}...")
        attempted = []
        for name, tier in self.tiers:
            attempted.append(name)
            try:
                record = await tier(token_mint)
            except Exception as e:
                logger.warning(f"⚠️ Pool tier {name} failed for {token_mint[:8]}...: {e}")
                continue
            if record:
                logger.info(f"✅ Pool {record.pool_address[:8]}... found via {name}")
                self._cache[token_mint] = CacheEntry(
                    value=record,
                    timestamp=self.clock(),
                    ttl=self.settings.POOL_CACHE_TTL_SEC,
                )
                return record
            logger.debug(f"Pool tier {name} found nothing for {token_mint[:8]}...")

        raise PoolNotFoundError(token_mint, attempted)

    def get_cached(self, token_mint: str) -> Optional[PoolRecord]:
        entry = self._cache.get(token_mint)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            del self._cache[token_mint]
            return None
        return entry.value

    def clear_expired(self) -> int:
        now = self.clock()
        expired = [mint for mint, entry in self._cache.items() if entry.is_expired(now)]
        for mint in expired:
            del self._cache[mint]
        return len(expired)

    async def _resolve_fast_api(self, token_mint: str) -> Optional[PoolRecord]:
        pools = await self.raydium.get_sol_pools(token_mint)
        if not pools:
            return None
        pool = pools[0]
        return PoolRecord(
            token_mint=token_mint,
            pool_address=pool.pool_address,
            base_mint=pool.base_mint,
            quote_mint=pool.quote_mint,
            base_decimals=pool.base_decimals,
            quote_decimals=pool.quote_decimals,
            source=TIER_FAST_API,
        )

    def _is_valid_pair(self, pair: Dict[str, Any]) -> bool:
        if dex_program_for_pair(pair) not in SUPPORTED_DEX_PROGRAMS:
            return False
        base = (pair.get("baseToken") or {}).get("address")
        quote = (pair.get("quoteToken") or {}).get("address")
        if WSOL_MINT not in (base, quote) or not pair.get("pairAddress"):
            return False
        if _as_float((pair.get("liquidity") or {}).get("usd")) < self.settings.MIN_LIQUIDITY_USD:
            return False
        if _as_float((pair.get("volume") or {}).get("h24")) <= 0:
            return False
        txns = (pair.get("txns") or {}).get("h24") or {}
        return _as_float(txns.get("buys")) + _as_float(txns.get("sells")) > 0

    async def _resolve_aggregator_api(self, token_mint: str) -> Optional[PoolRecord]:
        pairs = await self.dexscreener.get_token_pairs(token_mint)
        valid = [p for p in pairs if self._is_valid_pair(p)]
        if not valid:
            logger.debug(f"DexScreener: {len(pairs)} pairs, none valid for {token_mint[:8]}...")
            return None

        best = max(valid, key=lambda p: _as_float((p.get("liquidity") or {}).get("usd")))
        base_mint = best["baseToken"]["address"]
        quote_mint = best["quoteToken"]["address"]
        return PoolRecord(
            token_mint=token_mint,
            pool_address=best["pairAddress"],
            base_mint=base_mint,
            quote_mint=quote_mint,
            base_decimals=SOL_DECIMALS if base_mint == WSOL_MINT else DEFAULT_TOKEN_DECIMALS,
            quote_decimals=SOL_DECIMALS if quote_mint == WSOL_MINT else DEFAULT_TOKEN_DECIMALS,
            source=TIER_AGGREGATOR_API,
        )

    async def _resolve_on_chain(self, token_mint: str) -> Optional[PoolRecord]:
        for offset in (RAYDIUM_POOL_BASE_MINT_OFFSET, RAYDIUM_POOL_QUOTE_MINT_OFFSET):
            accounts = await self.rpc.get_program_accounts(
                RAYDIUM_V4_PROGRAM,
                [RAYDIUM_POOL_STATE_SIZE, MemcmpOpts(offset=offset, bytes=token_mint)],
            )
            if accounts:
                return self._record_from_pool_state(token_mint, accounts[0].pubkey, accounts[0].data, offset)
        return None

    @staticmethod
    def _record_from_pool_state(token_mint: str, pool_address: str, data: bytes, mint_offset: int) -> PoolRecord:
        token_is_base = mint_offset == RAYDIUM_POOL_BASE_MINT_OFFSET
        base_mint = token_mint if token_is_base else WSOL_MINT
        quote_mint = WSOL_MINT if token_is_base else token_mint
        base_decimals = DEFAULT_TOKEN_DECIMALS if token_is_base else SOL_DECIMALS
        quote_decimals = SOL_DECIMALS if token_is_base else DEFAULT_TOKEN_DECIMALS

        if len(data) >= RAYDIUM_POOL_STATE_SIZE:
            def u64(offset: int) -> int:
                return int.from_bytes(data[offset:offset + 8], "little")

            base_decimals = u64(RAYDIUM_POOL_BASE_DECIMALS_OFFSET)
            quote_decimals = u64(RAYDIUM_POOL_QUOTE_DECIMALS_OFFSET)
            base_mint = str(Pubkey.from_bytes(data[RAYDIUM_POOL_BASE_MINT_OFFSET:RAYDIUM_POOL_BASE_MINT_OFFSET + 32]))
            quote_mint = str(Pubkey.from_bytes(data[RAYDIUM_POOL_QUOTE_MINT_OFFSET:RAYDIUM_POOL_QUOTE_MINT_OFFSET + 32]))

        return PoolRecord(
            token_mint=token_mint,
            pool_address=pool_address,
            base_mint=base_mint,
            quote_mint=quote_mint,
            base_decimals=base_decimals,
            quote_decimals=quote_decimals,
            source=TIER_ON_CHAIN,
        )
