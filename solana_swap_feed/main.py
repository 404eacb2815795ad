import argparse
import asyncio
import logging
import platform
import signal
import sys
from typing import Optional

import aiohttp
import httpx

from solana_swap_feed.config import Settings, get_settings
from solana_swap_feed.constants import DEFAULT_TOKEN_DECIMALS, SOL_DECIMALS, WSOL_MINT
from solana_swap_feed.core.dexscreener_client import DexScreenerClient
from solana_swap_feed.core.event_bus import (
    ConnectionStale,
    Disconnected,
    EngineError,
    MaxReconnectAttempts,
    TradeDetected,
    TradeEventEmitter,
)
from solana_swap_feed.core.models import ConnectionState, PoolRecord
from solana_swap_feed.core.pool_locator import PoolLocator
from solana_swap_feed.core.raydium_client import RaydiumPoolClient
from solana_swap_feed.core.rpc_client import SolanaRpcGateway
from solana_swap_feed.core.swap_listener import SwapListener
from solana_swap_feed.exceptions import PoolNotFoundError
from solana_swap_feed.utils.logging import setup_logging
from solana_swap_feed.utils.scheduler import AsyncioScheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream buy/sell trades for a Solana token.")
    parser.add_argument("token", help="Token mint address to monitor")
    parser.add_argument(
        "--pool",
        default=None,
        help="Pool address to subscribe to directly, skipping pool discovery",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...)")
    parser.add_argument("--no-log-file", action="store_true", help="Console logging only")
    return parser


def manual_pool(token: str, pool_address: str) -> PoolRecord:
    return PoolRecord(
        token_mint=token,
        pool_address=pool_address,
        base_mint=token,
        quote_mint=WSOL_MINT,
        base_decimals=DEFAULT_TOKEN_DECIMALS,
        quote_decimals=SOL_DECIMALS,
        source="manual",
    )


def print_trade(event: TradeDetected) -> None:
    trade = event.trade
    icon = "🟢" if trade.is_buy else "🔴"
    print(
        f"{icon} {trade.side.value.upper():4s} {trade.token_amount:>16,.2f} tokens "
        f"for {trade.sol_amount:>10.4f} SOL @ {trade.price:.10f} | {trade.user} | {trade.signature}",
        flush=True,
    )


async def run(settings: Settings, token: str, pool_address: Optional[str] = None) -> int:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        print(f"\n🛑 [SHUTDOWN] Received signal {sig}...")
        shutdown_event.set()

    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

    emitter = TradeEventEmitter()
    scheduler = AsyncioScheduler()
    rpc = SolanaRpcGateway(settings.RPC_URL, settings.ws_url, timeout=settings.FETCH_TIMEOUT_SEC)
    session = aiohttp.ClientSession()
    raydium = RaydiumPoolClient(settings, session=session)
    dexscreener = DexScreenerClient(settings, httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC))
    locator = PoolLocator(settings, raydium, dexscreener, rpc)
    listener = SwapListener(settings, rpc, locator, emitter, scheduler)

    emitter.subscribe(TradeDetected, print_trade)
    emitter.subscribe(MaxReconnectAttempts, lambda e: shutdown_event.set())
    emitter.subscribe(ConnectionStale, lambda e: logger.warning(f"⚠️ Stream stale for {e.seconds_since_activity:.0f}s"))
    emitter.subscribe(EngineError, lambda e: logger.debug(f"Engine error: {e.error}"))
    emitter.subscribe(Disconnected, lambda e: logger.info(f"Disconnected ({e.reason})"))

    exit_code = 0
    try:
        target = manual_pool(token, pool_address) if pool_address else token
        pool = await listener.start(target)
        logger.info(f"✅ Listening to {pool.pool_address} ({pool.source}) for {pool.token_mint}")
        await shutdown_event.wait()
        if listener.state == ConnectionState.FAILED:
            exit_code = 2
    except PoolNotFoundError as e:
        logger.error(f"❌ {e}")
        exit_code = 1
    finally:
        logger.info("Initiating graceful shutdown...")
        await listener.stop()
        await listener.wait_idle()
        await scheduler.shutdown()
        await dexscreener.close()
        await session.close()
        await rpc.close()
        logger.info("Shutdown complete")
    return exit_code


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    if args.log_level:
        settings.LOG_LEVEL = args.log_level.upper()
    setup_logging(settings, enable_file=not args.no_log_file)

    try:
        return asyncio.run(run(settings, args.token, args.pool))
    except KeyboardInterrupt:
        print("👋 Stopped by user.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
