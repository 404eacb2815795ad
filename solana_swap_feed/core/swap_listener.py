"""
Swap listener facade.

Wires PoolLocator -> ConnectionManager -> LogFilter -> TransactionFetcher
-> SwapClassifier -> TradeEventEmitter for one monitored token.

Usage:
    listener = SwapListener(settings, rpc, locator, emitter, AsyncioScheduler())
    emitter.subscribe(TradeDetected, on_trade)
    await listener.start("<token mint>")
    ...
    await listener.stop()
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Union

from solana_swap_feed.config import Settings
from solana_swap_feed.core.connection_manager import ConnectionManager
from solana_swap_feed.core.event_bus import EngineError, Heartbeat, TradeDetected, TradeEventEmitter
from solana_swap_feed.core.log_filter import LogFilter
from solana_swap_feed.core.models import ConnectionState, LogDelivery, PoolRecord, RejectionReason
from solana_swap_feed.core.pool_locator import PoolLocator
from solana_swap_feed.core.rpc_client import SolanaRpcGateway
from solana_swap_feed.core.swap_classifier import SwapClassifier
from solana_swap_feed.core.transaction_fetcher import TransactionFetcher
from solana_swap_feed.utils.scheduler import Scheduler

logger = logging.getLogger(__name__)

HEARTBEAT_REASONS = {
    RejectionReason.TOKEN_NOT_IN_TRANSACTION: "token_mismatch",
    RejectionReason.NO_TOKEN_FOUND: "no_token_found",
}


class SwapListener:
    def __init__(
        self,
        settings: Settings,
        rpc: SolanaRpcGateway,
        locator: PoolLocator,
        emitter: TradeEventEmitter,
        scheduler: Scheduler,
        log_filter: Optional[LogFilter] = None,
        classifier: Optional[SwapClassifier] = None,
    ):
        self.settings = settings
        self.locator = locator
        self.emitter = emitter
        self.log_filter = log_filter or LogFilter()
        self.fetcher = TransactionFetcher(settings, rpc)
        self.classifier = classifier or SwapClassifier(settings)
        self.connection = ConnectionManager(settings, rpc, emitter, scheduler, self._on_delivery)

        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0

        # Stats
        self.deliveries = 0
        self.filtered_out = 0
        self.trades_emitted = 0
        self.rejections: Dict[str, int] = {}
        self.last_trade_time: Optional[float] = None

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def pool(self) -> Optional[PoolRecord]:
        return self.connection.pool

    async def start(self, token_or_pool: Union[str, PoolRecord]) -> PoolRecord:
        """
        Start monitoring a token.

        A mint string is resolved through the PoolLocator first;
        PoolNotFoundError propagates to the caller.
        """
        if isinstance(token_or_pool, PoolRecord):
            pool = token_or_pool
        else:
            pool = await self.locator.resolve(token_or_pool)

        current = self.connection.pool
        if current is None or current.token_mint.lower() != pool.token_mint.lower():
            self._generation += 1
            self.fetcher.reset()
        await self.connection.start(pool)
        return pool

    async def stop_token(self, token_address: str) -> bool:
        if not self.is_monitoring_token(token_address):
            return False
        await self.stop()
        return True

    async def stop(self) -> None:
        # Bump first so fetches still in flight are discarded
        self._generation += 1
        await self.connection.stop()
        self.fetcher.reset()

    def is_active(self) -> bool:
        return self.connection.pool is not None and self.connection.state != ConnectionState.FAILED

    def is_monitoring_token(self, token_address: str) -> bool:
        pool = self.connection.pool
        return pool is not None and pool.token_mint.lower() == token_address.lower()

    def get_monitored_tokens(self) -> List[str]:
        pool = self.connection.pool
        return [pool.token_mint] if pool else []

    def get_status(self) -> Dict[str, Any]:
        status = self.connection.get_status()
        status.update({
            "deliveries": self.deliveries,
            "filtered_out": self.filtered_out,
            "fetched": self.fetcher.fetched,
            "duplicates": self.fetcher.duplicates,
            "unavailable": self.fetcher.unavailable,
            "trades_emitted": self.trades_emitted,
            "rejections": dict(self.rejections),
            "last_trade_time": self.last_trade_time,
            "in_flight": len(self._tasks),
        })
        return status

    async def wait_idle(self) -> None:
        """Wait for every in-flight delivery pipeline to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ============================================
    # PIPELINE
    # ============================================

    def _on_delivery(self, delivery: LogDelivery) -> None:
        self.deliveries += 1
        if delivery.err:
            return
        if not self.log_filter.is_candidate(delivery.logs):
            self.filtered_out += 1
            return
        pool = self.connection.pool
        if pool is None:
            return
        task = asyncio.ensure_future(self._process(self._generation, pool, delivery.signature))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, generation: int, pool: PoolRecord, signature: str) -> None:
        try:
            tx = await self.fetcher.fetch(signature)
            if tx is None or generation != self._generation:
                return

            result = self.classifier.classify(tx, pool)
            if generation != self._generation:
                return

            if result.trade is not None:
                trade = result.trade
                self.trades_emitted += 1
                self.last_trade_time = trade.timestamp
                icon = "🟢" if trade.is_buy else "🔴"
                logger.info(
                    f"{icon} {trade.side.value.upper()} {trade.token_amount:,.2f} tokens for {trade.sol_amount:.4f} SOL "
                    f"| user={trade.user[:8]}... sig={trade.signature[:16]}..."
                    + (" (low confidence)" if trade.low_confidence else "")
                )
                self.emitter.publish(TradeDetected(trade=trade))
                return

            reason = result.rejection
            self.rejections[reason.value] = self.rejections.get(reason.value, 0) + 1
            logger.debug(f"Rejected {signature[:16]}...: {reason.value} {result.detail}")
            if reason in HEARTBEAT_REASONS:
                self.emitter.publish(Heartbeat(
                    reason=HEARTBEAT_REASONS[reason],
                    expected_mint=pool.token_mint,
                    found_mints=tuple(result.detail.get("found_mints", ())),
                ))
        except Exception as e:
            logger.error(f"❌ Pipeline failed for {signature[:16]}...: {e}", exc_info=True)
            if generation == self._generation:
                self.emitter.publish(EngineError(error=e, context={"signature": signature}))
