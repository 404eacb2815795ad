"""
In-memory collaborators for the swap feed tests.

VirtualScheduler drives timers without waiting, FakeRpcGateway stands in
for the Solana RPC, and make_tx builds parsed transactions from plain
balances.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

from solana_swap_feed.config import Settings
from solana_swap_feed.constants import LAMPORTS_PER_SOL, WSOL_MINT
from solana_swap_feed.core.models import LogDelivery, ParsedTransaction, PoolRecord, ProgramAccount, TokenBalance

# Real mainnet addresses so solders can parse them where needed
TOKEN_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
OTHER_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
POOL_ADDRESS = "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2"
OTHER_POOL = "7XawhbbxtsRcQA8KTkHT9f9nc6d69UwqCDh6U5EEbEmX"
USER_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
POOL_AUTHORITY = "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"
USER_TOKEN_ACCOUNT = "UserTokenAccount1111111111111111111111111111"
VAULT_TOKEN_ACCOUNT = "VauLtTokenAccount111111111111111111111111111"
VAULT_SOL_ACCOUNT = "VauLtSo1Account11111111111111111111111111111"

SWAP_LOGS = [
    "Program 675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8 invoke [1]",
    "Program log: ray_log: AwCUNXcAAAAA",
    "Program 675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8 success",
]


def make_settings(**overrides) -> Settings:
    defaults = dict(
        FETCH_TIMEOUT_SEC=1.0,
        DEXSCREENER_MAX_RETRIES=1,
        DEXSCREENER_RETRY_BACKOFF_SEC=0.0,
        LOG_DIR="logs",
    )
    defaults.update(overrides)
    return Settings(**defaults).validate()


def make_pool(token_mint: str = TOKEN_MINT, pool_address: str = POOL_ADDRESS) -> PoolRecord:
    return PoolRecord(
        token_mint=token_mint,
        pool_address=pool_address,
        base_mint=token_mint,
        quote_mint=WSOL_MINT,
        base_decimals=5,
        quote_decimals=9,
        source="test",
    )


def sol(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))


def make_tx(
    signature: str = "sig-1",
    account_keys: Optional[List[str]] = None,
    pre_sol: Optional[List[float]] = None,
    post_sol: Optional[List[float]] = None,
    pre_tokens: Optional[List[tuple]] = None,
    post_tokens: Optional[List[tuple]] = None,
    err: Any = None,
    block_time: Optional[float] = 1_700_000_000,
) -> ParsedTransaction:
    """Token tuples are (account_index, mint, owner, ui_amount)."""
    return ParsedTransaction(
        signature=signature,
        account_keys=list(account_keys or []),
        pre_balances=[sol(v) for v in (pre_sol or [])],
        post_balances=[sol(v) for v in (post_sol or [])],
        pre_token_balances=[TokenBalance(*t) for t in (pre_tokens or [])],
        post_token_balances=[TokenBalance(*t) for t in (post_tokens or [])],
        err=err,
        block_time=block_time,
    )


def buy_tx(signature: str = "sig-buy") -> ParsedTransaction:
    """User buys 500 tokens into a fresh token account for 0.05 SOL."""
    return make_tx(
        signature=signature,
        account_keys=[USER_WALLET, USER_TOKEN_ACCOUNT, POOL_ADDRESS, VAULT_TOKEN_ACCOUNT, VAULT_SOL_ACCOUNT, TOKEN_MINT],
        pre_sol=[12.00, 0.002, 0.5, 0.002, 100.00, 1.0],
        post_sol=[11.95, 0.002, 0.5, 0.002, 100.05, 1.0],
        pre_tokens=[(3, TOKEN_MINT, POOL_AUTHORITY, 1_000_000.0)],
        post_tokens=[(1, TOKEN_MINT, USER_WALLET, 500.0), (3, TOKEN_MINT, POOL_AUTHORITY, 999_500.0)],
    )


def sell_tx(signature: str = "sig-sell") -> ParsedTransaction:
    """User sells 2000 tokens for 0.08 SOL."""
    return make_tx(
        signature=signature,
        account_keys=[USER_WALLET, USER_TOKEN_ACCOUNT, POOL_ADDRESS, VAULT_TOKEN_ACCOUNT, VAULT_SOL_ACCOUNT],
        pre_sol=[5.00, 0.002, 0.5, 0.002, 100.00],
        post_sol=[5.08, 0.002, 0.5, 0.002, 99.92],
        pre_tokens=[(1, TOKEN_MINT, USER_WALLET, 2000.0), (3, TOKEN_MINT, POOL_AUTHORITY, 1_000_000.0)],
        post_tokens=[(1, TOKEN_MINT, USER_WALLET, 0.0), (3, TOKEN_MINT, POOL_AUTHORITY, 1_002_000.0)],
    )


class VirtualTimer:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self, start: float = 1000.0):
        self._now = start
        self._seq = itertools.count()
        self._timers: List[tuple] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback) -> VirtualTimer:
        timer = VirtualTimer(self._now + max(delay, 0.0), callback)
        self._timers.append((timer.due, next(self._seq), timer))
        return timer

    def pending(self) -> List[VirtualTimer]:
        return [t for _, _, t in sorted(self._timers) if not t.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = sorted((d, s, t) for d, s, t in self._timers if not t.cancelled and d <= target)
            if not due:
                break
            entry = due[0]
            self._timers.remove(entry)
            self._now = entry[0]
            result = entry[2].callback()
            if asyncio.iscoroutine(result):
                await result
        self._now = target


class FakeSubscription:
    def __init__(self, address: str, callback, on_closed=None, commitment=None):
        self.address = address
        self.callback = callback
        self.on_closed = on_closed
        self.commitment = commitment
        self.closed = False

    def deliver(self, signature: str, logs: Optional[List[str]] = None, err: Any = None) -> None:
        self.callback(LogDelivery(signature=signature, logs=list(SWAP_LOGS if logs is None else logs), err=err))

    def drop(self, cause: Optional[BaseException] = None) -> None:
        """Simulate the server closing the stream."""
        if self.on_closed:
            self.on_closed(cause)

    async def close(self) -> None:
        self.closed = True


class FakeRpcGateway:
    def __init__(self):
        self.transactions: Dict[str, Any] = {}
        self.program_accounts: Dict[int, List[ProgramAccount]] = {}
        self.fetch_calls: List[str] = []
        self.program_account_calls: List[tuple] = []
        self.subscriptions: List[FakeSubscription] = []
        self.subscribe_failures = 0
        self.fetch_gate: Optional[asyncio.Event] = None
        self.subscribe_gate: Optional[asyncio.Event] = None  # Unset gate: subscribe never acknowledged

    @property
    def current(self) -> FakeSubscription:
        return self.subscriptions[-1]

    async def subscribe_logs(self, address, callback, commitment=None, on_closed=None):
        if self.subscribe_gate is not None:
            await self.subscribe_gate.wait()
        if self.subscribe_failures > 0:
            self.subscribe_failures -= 1
            raise ConnectionError("websocket refused")
        subscription = FakeSubscription(address, callback, on_closed, commitment)
        self.subscriptions.append(subscription)
        return subscription

    async def get_parsed_transaction(self, signature, commitment=None, max_supported_transaction_version=0):
        self.fetch_calls.append(signature)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        result = self.transactions.get(signature)
        if isinstance(result, BaseException):
            raise result
        return result

    async def get_program_accounts(self, program_id, filters, commitment=None):
        self.program_account_calls.append((program_id, list(filters)))
        offset = filters[1].offset if len(filters) > 1 else None
        return list(self.program_accounts.get(offset, []))

    async def close(self):
        pass


class FakeRaydium:
    def __init__(self, pools=None, error: Optional[BaseException] = None):
        self.pools = pools or []
        self.error = error
        self.calls: List[str] = []

    async def get_sol_pools(self, token_mint):
        self.calls.append(token_mint)
        if self.error:
            raise self.error
        return list(self.pools)


class FakeDexScreener:
    def __init__(self, pairs=None, error: Optional[BaseException] = None):
        self.pairs = pairs or []
        self.error = error
        self.calls: List[str] = []

    async def get_token_pairs(self, token_address):
        self.calls.append(token_address)
        if self.error:
            raise self.error
        return list(self.pairs)


def dexscreener_pair(
    pair_address: str = POOL_ADDRESS,
    dex_id: str = "raydium",
    labels=None,
    base: str = TOKEN_MINT,
    quote: str = WSOL_MINT,
    liquidity: float = 10_000.0,
    volume: float = 5_000.0,
    buys: int = 10,
    sells: int = 5,
) -> Dict[str, Any]:
    return {
        "chainId": "solana",
        "dexId": dex_id,
        "labels": labels or [],
        "pairAddress": pair_address,
        "baseToken": {"address": base, "symbol": "BASE"},
        "quoteToken": {"address": quote, "symbol": "QUOTE"},
        "liquidity": {"usd": liquidity},
        "volume": {"h24": volume},
        "txns": {"h24": {"buys": buys, "sells": sells}},
    }
